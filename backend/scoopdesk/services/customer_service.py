from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Customer


def _normalize_cpf(cpf: str | None) -> str | None:
    if not cpf:
        return None
    digits = "".join(ch for ch in cpf if ch.isdigit())
    if len(digits) != 11:
        raise ValidationError("CPF must have 11 digits")
    return digits


def create_customer(data: dict) -> Customer:
    """
    Register a customer. Email and CPF are unique.

    Raises:
        ConflictError: email or CPF already registered
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    email = (data.get("email") or "").strip().lower() or None
    cpf = _normalize_cpf(data.get("cpf"))

    if email and db.session.query(Customer).filter_by(email=email).first():
        raise ConflictError("Email already registered", {"email": email})
    if cpf and db.session.query(Customer).filter_by(cpf=cpf).first():
        raise ConflictError("CPF already registered", {"cpf": cpf})

    customer = Customer(
        name=name,
        email=email,
        cpf=cpf,
        phone=data.get("phone"),
        loyalty_points=0,
        cashback_balance_cents=0,
        is_active=True,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return customer


def search_customers(term: str | None = None, limit: int = 50) -> list[Customer]:
    query = db.session.query(Customer).filter_by(is_active=True)
    if term:
        like = f"%{term}%"
        query = query.filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.cpf.like(like)))
    return query.order_by(Customer.name).limit(limit).all()

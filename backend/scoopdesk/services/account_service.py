"""
Accounts payable / receivable

Each account posts one FinancialTransaction when it is created, keyed by
PAYABLE-{id} / RECEIVABLE-{id}. Paying, receiving and cancelling the account
moves that transaction along with it; the status reconciler repairs rows
written before the link existed.

LIFECYCLE:
    PENDING -> PAID | CANCELLED
    PENDING -> OVERDUE (mark_overdue) -> PAID | CANCELLED
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import AccountPayable, AccountReceivable, Customer, FinancialCategory
from scoopdesk.time_utils import start_of_day, utcnow
from . import financial_service
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

OPEN_STATUSES = ("PENDING", "OVERDUE")


def payable_reference(payable_id: int) -> str:
    return f"PAYABLE-{payable_id}"


def receivable_reference(receivable_id: int) -> str:
    return f"RECEIVABLE-{receivable_id}"


def _require_category(category_id, category_type: str) -> FinancialCategory:
    category = db.session.get(FinancialCategory, category_id) if category_id else None
    if category is None:
        raise NotFoundError("Financial category not found", {"category_id": category_id})
    if category.category_type != category_type:
        raise ValidationError(
            f"Category must be of type {category_type}",
            {"category_id": category_id, "category_type": category.category_type},
        )
    return category


def _validate_account(data: dict) -> tuple[str, int, datetime]:
    description = (data.get("description") or "").strip()
    if not description:
        raise ValidationError("description is required")
    amount = data.get("amount_cents")
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    due_date = data.get("due_date")
    if not isinstance(due_date, datetime):
        raise ValidationError("due_date is required")
    return description, amount, due_date


def _initial_status(due_date: datetime) -> str:
    return "OVERDUE" if due_date < start_of_day(utcnow()) else "PENDING"


def _primary_transaction(reference: str):
    rows = financial_service.find_by_reference(reference)
    return rows[0] if len(rows) == 1 else None


def _sync_transaction(reference: str, status: str, paid_at: datetime | None) -> None:
    txn = _primary_transaction(reference)
    if txn is None:
        logger.warning("No single transaction for %s; left for the status reconciler", reference)
        return
    txn.status = status
    txn.paid_at = paid_at
    if status == "PAID" and paid_at:
        txn.transaction_date = start_of_day(paid_at)


# =============================================================================
# PAYABLES
# =============================================================================

def create_payable(data: dict, user_id: int | None = None) -> AccountPayable:
    description, amount, due_date = _validate_account(data)

    def _op():
        category = _require_category(data.get("category_id"), "EXPENSE")
        payable = AccountPayable(
            category_id=category.id,
            supplier_name=data.get("supplier_name"),
            description=description,
            amount_cents=amount,
            due_date=due_date,
            status=_initial_status(due_date),
            notes=data.get("notes"),
        )
        db.session.add(payable)
        db.session.flush()
        financial_service.create_transaction(
            category_id=category.id,
            transaction_type="EXPENSE",
            description=description,
            amount_cents=amount,
            transaction_date=due_date,
            due_date=due_date,
            status=payable.status,
            reference_number=payable_reference(payable.id),
            notes=data.get("notes"),
            user_id=user_id,
            commit=False,
        )
        db.session.commit()
        logger.info("Payable %s created (%s cents)", payable.id, amount)
        return payable

    return run_with_retry(_op)


def get_payable(payable_id: int) -> AccountPayable:
    payable = db.session.get(AccountPayable, payable_id)
    if not payable:
        raise NotFoundError("Account payable not found", {"payable_id": payable_id})
    return payable


def list_payables(status: str | None = None) -> list[AccountPayable]:
    query = db.session.query(AccountPayable)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(AccountPayable.due_date, AccountPayable.id).all()


def pay_payable(payable_id: int, paid_at: datetime | None = None) -> AccountPayable:
    def _op():
        payable = get_payable(payable_id)
        if payable.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot pay an account in status {payable.status}",
                {"payable_id": payable_id, "status": payable.status},
            )
        payable.status = "PAID"
        payable.paid_at = paid_at or utcnow()
        _sync_transaction(payable_reference(payable.id), "PAID", payable.paid_at)
        db.session.commit()
        return payable

    return run_with_retry(_op)


def cancel_payable(payable_id: int) -> AccountPayable:
    def _op():
        payable = get_payable(payable_id)
        if payable.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel an account in status {payable.status}",
                {"payable_id": payable_id, "status": payable.status},
            )
        payable.status = "CANCELLED"
        payable.paid_at = None
        _sync_transaction(payable_reference(payable.id), "CANCELLED", None)
        db.session.commit()
        return payable

    return run_with_retry(_op)


# =============================================================================
# RECEIVABLES
# =============================================================================

def create_receivable(data: dict, user_id: int | None = None) -> AccountReceivable:
    description, amount, due_date = _validate_account(data)
    customer_id = data.get("customer_id")

    def _op():
        category = _require_category(data.get("category_id"), "REVENUE")
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found", {"customer_id": customer_id})
        receivable = AccountReceivable(
            category_id=category.id,
            customer_id=customer_id,
            description=description,
            amount_cents=amount,
            due_date=due_date,
            status=_initial_status(due_date),
            notes=data.get("notes"),
        )
        db.session.add(receivable)
        db.session.flush()
        financial_service.create_transaction(
            category_id=category.id,
            transaction_type="REVENUE",
            description=description,
            amount_cents=amount,
            transaction_date=due_date,
            due_date=due_date,
            status=receivable.status,
            reference_number=receivable_reference(receivable.id),
            notes=data.get("notes"),
            user_id=user_id,
            commit=False,
        )
        db.session.commit()
        logger.info("Receivable %s created (%s cents)", receivable.id, amount)
        return receivable

    return run_with_retry(_op)


def get_receivable(receivable_id: int) -> AccountReceivable:
    receivable = db.session.get(AccountReceivable, receivable_id)
    if not receivable:
        raise NotFoundError("Account receivable not found", {"receivable_id": receivable_id})
    return receivable


def list_receivables(status: str | None = None) -> list[AccountReceivable]:
    query = db.session.query(AccountReceivable)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(AccountReceivable.due_date, AccountReceivable.id).all()


def receive_receivable(receivable_id: int, received_at: datetime | None = None) -> AccountReceivable:
    def _op():
        receivable = get_receivable(receivable_id)
        if receivable.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot receive an account in status {receivable.status}",
                {"receivable_id": receivable_id, "status": receivable.status},
            )
        receivable.status = "PAID"
        receivable.received_at = received_at or utcnow()
        _sync_transaction(receivable_reference(receivable.id), "PAID", receivable.received_at)
        db.session.commit()
        return receivable

    return run_with_retry(_op)


def cancel_receivable(receivable_id: int) -> AccountReceivable:
    def _op():
        receivable = get_receivable(receivable_id)
        if receivable.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel an account in status {receivable.status}",
                {"receivable_id": receivable_id, "status": receivable.status},
            )
        receivable.status = "CANCELLED"
        receivable.received_at = None
        _sync_transaction(receivable_reference(receivable.id), "CANCELLED", None)
        db.session.commit()
        return receivable

    return run_with_retry(_op)


# =============================================================================
# OVERDUE
# =============================================================================

def mark_overdue(as_of: datetime | None = None) -> dict:
    """PENDING accounts due before as_of (default: today) become OVERDUE."""
    cutoff = as_of or start_of_day(utcnow())

    def _op():
        counts = {"payables": 0, "receivables": 0}
        for key, model, reference in (
            ("payables", AccountPayable, payable_reference),
            ("receivables", AccountReceivable, receivable_reference),
        ):
            rows = db.session.query(model).filter(model.status == "PENDING", model.due_date < cutoff).all()
            for row in rows:
                row.status = "OVERDUE"
                txn = _primary_transaction(reference(row.id))
                if txn is not None and txn.status == "PENDING":
                    txn.status = "OVERDUE"
            counts[key] = len(rows)
        db.session.commit()
        if counts["payables"] or counts["receivables"]:
            logger.info("Marked overdue: %s", counts)
        return counts

    return run_with_retry(_op)

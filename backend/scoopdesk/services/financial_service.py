"""
Financial ledger: categories and FinancialTransaction rows.

WHY: Accounting entries derived from operations (card fees, session
revenue, payables/receivables) and manual entries share one ledger. Derived
entries are keyed by reference_number so their jobs can be re-run safely.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import DRE_GROUPS, FinancialCategory, FinancialTransaction
from scoopdesk.time_utils import utcnow


TRANSACTION_TYPES = ("REVENUE", "EXPENSE", "TRANSFER")
TRANSACTION_STATUSES = ("PENDING", "PAID", "CANCELLED", "OVERDUE")

# =============================================================================
# CATEGORIES
# =============================================================================

SALES_CATEGORY = ("Vendas", "REVENUE", "GROSS_REVENUE")
CARD_FEE_CATEGORY = ("Despesas Financeiras - Taxas de Cartão", "EXPENSE", "FINANCIAL_RESULT")

DEFAULT_CATEGORIES = (
    SALES_CATEGORY,
    CARD_FEE_CATEGORY,
    ("Receitas Financeiras", "REVENUE", "FINANCIAL_RESULT"),
    ("Receitas Extraordinárias", "REVENUE", "OTHER"),
    ("Compras de Mercadorias", "EXPENSE", "COGS"),
    ("Despesas Operacionais", "EXPENSE", "OPERATING_EXPENSES"),
    ("Aluguel", "EXPENSE", "OPERATING_EXPENSES"),
    ("Salários", "EXPENSE", "OPERATING_EXPENSES"),
    ("Despesas Extraordinárias", "EXPENSE", "OTHER"),
    ("Impostos", "EXPENSE", "TAXES"),
)


def ensure_category(name: str, category_type: str, dre_group: str) -> FinancialCategory:
    """Get-or-create inside the caller's transaction (flush, no commit)."""
    category = db.session.query(FinancialCategory).filter_by(name=name, category_type=category_type).first()
    if category:
        return category
    category = FinancialCategory(name=name, category_type=category_type, dre_group=dre_group, is_active=True)
    db.session.add(category)
    db.session.flush()
    return category


def seed_default_categories() -> list[FinancialCategory]:
    categories = [ensure_category(*entry) for entry in DEFAULT_CATEGORIES]
    db.session.commit()
    return categories


def create_category(name: str, category_type: str, dre_group: str) -> FinancialCategory:
    if not name:
        raise ValidationError("name is required")
    if category_type not in ("REVENUE", "EXPENSE"):
        raise ValidationError("category_type must be REVENUE or EXPENSE")
    if dre_group not in DRE_GROUPS:
        raise ValidationError(f"dre_group must be one of {', '.join(DRE_GROUPS)}")
    category = ensure_category(name, category_type, dre_group)
    db.session.commit()
    return category


def list_categories() -> list[FinancialCategory]:
    return db.session.query(FinancialCategory).order_by(FinancialCategory.category_type, FinancialCategory.name).all()


# =============================================================================
# TRANSACTIONS
# =============================================================================

def find_by_reference(reference_number: str) -> list[FinancialTransaction]:
    return (
        db.session.query(FinancialTransaction)
        .filter_by(reference_number=reference_number)
        .order_by(FinancialTransaction.id)
        .all()
    )


def create_transaction(
    *,
    category_id: int,
    transaction_type: str,
    description: str,
    amount_cents: int,
    transaction_date: datetime | None = None,
    due_date: datetime | None = None,
    status: str = "PENDING",
    reference_number: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    commit: bool = True,
    **links,
) -> FinancialTransaction:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"transaction_type must be one of {', '.join(TRANSACTION_TYPES)}")
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(TRANSACTION_STATUSES)}")
    if not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if not description:
        raise ValidationError("description is required")
    if db.session.get(FinancialCategory, category_id) is None:
        raise NotFoundError("Financial category not found", {"category_id": category_id})

    when = transaction_date or utcnow()
    txn = FinancialTransaction(
        category_id=category_id,
        transaction_type=transaction_type,
        description=description,
        amount_cents=amount_cents,
        status=status,
        transaction_date=when,
        due_date=due_date,
        paid_at=when if status == "PAID" else None,
        reference_number=reference_number,
        notes=notes,
        created_by_user_id=user_id,
        **links,
    )
    db.session.add(txn)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return txn


def get_transaction(transaction_id: int) -> FinancialTransaction:
    txn = db.session.get(FinancialTransaction, transaction_id)
    if not txn:
        raise NotFoundError("Financial transaction not found", {"transaction_id": transaction_id})
    return txn


def mark_transaction_paid(transaction_id: int, paid_at: datetime | None = None) -> FinancialTransaction:
    txn = get_transaction(transaction_id)
    if txn.status == "CANCELLED":
        raise InvalidStateError("Cannot pay a cancelled transaction")
    txn.status = "PAID"
    txn.paid_at = paid_at or utcnow()
    db.session.commit()
    return txn


def cancel_transaction(transaction_id: int) -> FinancialTransaction:
    txn = get_transaction(transaction_id)
    txn.status = "CANCELLED"
    txn.paid_at = None
    db.session.commit()
    return txn


def list_transactions(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    transaction_type: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[FinancialTransaction]:
    query = db.session.query(FinancialTransaction)
    if start:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end:
        query = query.filter(FinancialTransaction.transaction_date < end)
    if transaction_type:
        query = query.filter_by(transaction_type=transaction_type)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(FinancialTransaction.transaction_date.desc(), FinancialTransaction.id.desc()).limit(limit).all()

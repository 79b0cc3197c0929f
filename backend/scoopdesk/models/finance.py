from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


# DRE groups a category can roll up into
DRE_GROUPS = (
    "GROSS_REVENUE",
    "DEDUCTIONS",
    "COGS",
    "OPERATING_EXPENSES",
    "FINANCIAL_RESULT",
    "OTHER",
    "TAXES",
)


class FinancialCategory(db.Model):
    __tablename__ = "financial_categories"
    __table_args__ = (
        db.UniqueConstraint("name", "category_type", name="uq_financial_categories_name_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    category_type = db.Column(db.String(16), nullable=False)  # REVENUE, EXPENSE
    dre_group = db.Column(db.String(32), nullable=False, default="OPERATING_EXPENSES")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category_type": self.category_type,
            "dre_group": self.dre_group,
            "is_active": self.is_active,
        }


class FinancialTransaction(db.Model):
    """
    General ledger row.

    IDEMPOTENCY: reference_number is the key derived jobs check before
    inserting (CARD_FEE-*, CASHSESSION-*, PAYABLE-*, RECEIVABLE-*).
    It is indexed but not unique: historic data may carry duplicates the
    status reconciler is expected to find and cancel.
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_financial_transactions_type_date", "transaction_type", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("financial_categories.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)  # REVENUE, EXPENSE, TRANSFER
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, PAID, CANCELLED, OVERDUE
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reference_number = db.Column(db.String(96), nullable=True, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    comanda_id = db.Column(db.Integer, db.ForeignKey("comandas.id"), nullable=True, index=True)
    delivery_order_id = db.Column(db.Integer, db.ForeignKey("delivery_orders.id"), nullable=True, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("FinancialCategory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "transaction_type": self.transaction_type,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "transaction_date": to_utc_z(self.transaction_date),
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
            "reference_number": self.reference_number,
            "sale_id": self.sale_id,
            "comanda_id": self.comanda_id,
            "delivery_order_id": self.delivery_order_id,
            "cash_session_id": self.cash_session_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class AccountPayable(db.Model):
    __tablename__ = "accounts_payable"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("financial_categories.id"), nullable=False, index=True)
    supplier_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, PAID, CANCELLED, OVERDUE
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("FinancialCategory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "supplier_name": self.supplier_name,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class AccountReceivable(db.Model):
    __tablename__ = "accounts_receivable"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("financial_categories.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, PAID, CANCELLED, OVERDUE
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("FinancialCategory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "customer_id": self.customer_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
            "received_at": to_utc_z(self.received_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }

from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


# Payment method -> CashSession running-total column
PAYMENT_METHOD_TOTAL_COLUMNS = {
    "CASH": "total_cash_cents",
    "DEBIT_CARD": "total_debit_cents",
    "CREDIT_CARD": "total_credit_cents",
    "PIX": "total_pix_cents",
    "OTHER": "total_other_cents",
}
PAYMENT_METHODS = tuple(PAYMENT_METHOD_TOTAL_COLUMNS)


class CashSession(db.Model):
    """
    A terminal's cash-drawer period.

    LIFECYCLE:
    - OPEN: accepts settlements; totals move by atomic increments
    - CASHIER_CLOSED: operator counted the drawer, difference recorded
    - MANAGER_CLOSED: supervisor validated the count (terminal)

    INVARIANT: at most one OPEN session per terminal_id.
    Totals are never rewritten except by an explicit recalculation.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_terminal_status", "terminal_id", "status"),
        # One OPEN session per terminal, enforced by the database on every dialect
        db.Index(
            "uq_cash_sessions_terminal_open",
            "terminal_id",
            unique=True,
            postgresql_where=db.text("status = 'OPEN'"),
            sqlite_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    terminal_id = db.Column(db.String(64), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CASHIER_CLOSED, MANAGER_CLOSED

    # All amounts in cents
    initial_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_debit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_pix_cents = db.Column(db.Integer, nullable=False, default=0)
    total_other_cents = db.Column(db.Integer, nullable=False, default=0)

    # Cashier close
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    cashier_difference_cents = db.Column(db.Integer, nullable=True)  # counted - total_cash
    cashier_closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cashier_closed_by_user_id = db.Column(db.Integer, nullable=True)
    cashier_notes = db.Column(db.Text, nullable=True)

    # Manager close
    manager_validated = db.Column(db.Boolean, nullable=False, default=False)
    manager_closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_closed_by_user_id = db.Column(db.Integer, nullable=True)
    manager_notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_card_cents(self) -> int:
        return (self.total_debit_cents or 0) + (self.total_credit_cents or 0)

    def totals(self) -> dict:
        return {
            "total_sales_cents": self.total_sales_cents,
            "total_cash_cents": self.total_cash_cents,
            "total_debit_cents": self.total_debit_cents,
            "total_credit_cents": self.total_credit_cents,
            "total_card_cents": self.total_card_cents,
            "total_pix_cents": self.total_pix_cents,
            "total_other_cents": self.total_other_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "terminal_id": self.terminal_id,
            "opened_by_user_id": self.opened_by_user_id,
            "status": self.status,
            "initial_cash_cents": self.initial_cash_cents,
            **self.totals(),
            "counted_cash_cents": self.counted_cash_cents,
            "cashier_difference_cents": self.cashier_difference_cents,
            "cashier_closed_at": to_utc_z(self.cashier_closed_at),
            "cashier_closed_by_user_id": self.cashier_closed_by_user_id,
            "cashier_notes": self.cashier_notes,
            "manager_validated": self.manager_validated,
            "manager_closed_at": to_utc_z(self.manager_closed_at),
            "manager_closed_by_user_id": self.manager_closed_by_user_id,
            "manager_notes": self.manager_notes,
            "opened_at": to_utc_z(self.opened_at),
            "payments": [p.to_dict() for p in self.breakdown],
            "version_id": self.version_id,
        }


class CashSessionPayment(db.Model):
    """Per-method count recorded at cashier close (replaced on re-submit)."""
    __tablename__ = "cash_session_payments"
    __table_args__ = (
        db.UniqueConstraint("cash_session_id", "method", name="uq_cash_session_payments_session_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    expected_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_cents = db.Column(db.Integer, nullable=False, default=0)
    difference_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_session = db.relationship(
        "CashSession",
        backref=db.backref("breakdown", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "expected_cents": self.expected_cents,
            "counted_cents": self.counted_cents,
            "difference_cents": self.difference_cents,
        }

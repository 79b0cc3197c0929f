from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data and reward balances.

    INVARIANT: loyalty_points equals the sum of LoyaltyTransaction.points
    and cashback_balance_cents equals the sum of CashbackTransaction.amount_cents.
    Balances are never mutated without the matching ledger row.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    cpf = db.Column(db.String(14), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    cashback_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "cpf": self.cpf,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "cashback_balance_cents": self.cashback_balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class RewardLedgerColumns:
    """
    TRANSACTION TYPES:
    - EARN: accrued by a settlement
    - REDEEM: spent (standalone or as a settlement discount)
    - ADJUSTMENT: manual correction by a manager
    - REVERSAL: undo of a cancelled/reopened settlement
    - EXPIRE: lapsed EARN row written off by the expiry job;
      source_transaction_id names the EARN row (one EXPIRE per EARN)

    IMMUTABLE: Records are never updated or deleted.
    """
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    source_transaction_id = db.Column(db.Integer, nullable=True, index=True)

    sale_id = db.Column(db.Integer, nullable=True, index=True)
    comanda_id = db.Column(db.Integer, nullable=True, index=True)
    delivery_order_id = db.Column(db.Integer, nullable=True, index=True)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)


class LoyaltyTransaction(RewardLedgerColumns, db.Model):
    __tablename__ = "loyalty_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    balance_after = db.Column(db.Integer, nullable=False)

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "description": self.description,
            "expires_at": to_utc_z(self.expires_at),
            "source_transaction_id": self.source_transaction_id,
            "sale_id": self.sale_id,
            "comanda_id": self.comanda_id,
            "delivery_order_id": self.delivery_order_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class CashbackTransaction(RewardLedgerColumns, db.Model):
    __tablename__ = "cashback_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    balance_after_cents = db.Column(db.Integer, nullable=False)

    customer = db.relationship("Customer", backref=db.backref("cashback_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "description": self.description,
            "expires_at": to_utc_z(self.expires_at),
            "source_transaction_id": self.source_transaction_id,
            "sale_id": self.sale_id,
            "comanda_id": self.comanda_id,
            "delivery_order_id": self.delivery_order_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }

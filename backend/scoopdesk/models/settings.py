from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


class LoyaltyConfig(db.Model):
    """
    Loyalty program configuration (one logical row).

    Read by the reward engine through LoyaltyPolicy; a missing row means
    the program is inactive.

    ELIGIBILITY POLICIES (when apply_to_all_products is False):
    - WHOLE_TOTAL: any eligible line makes the whole total earn
    - PRO_RATED: only the eligible lines' share of the total earns
    """
    __tablename__ = "loyalty_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    points_per_real = db.Column(db.Numeric(8, 2), nullable=False, default=1)
    min_purchase_for_points_cents = db.Column(db.Integer, nullable=False, default=0)
    points_expiration_days = db.Column(db.Integer, nullable=True, default=365)
    min_points_to_redeem = db.Column(db.Integer, nullable=False, default=100)
    points_redemption_value_cents = db.Column(db.Integer, nullable=False, default=1)
    apply_to_all_products = db.Column(db.Boolean, nullable=False, default=True)
    eligibility_policy = db.Column(db.String(16), nullable=False, default="WHOLE_TOTAL")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "points_per_real": str(self.points_per_real),
            "min_purchase_for_points_cents": self.min_purchase_for_points_cents,
            "points_expiration_days": self.points_expiration_days,
            "min_points_to_redeem": self.min_points_to_redeem,
            "points_redemption_value_cents": self.points_redemption_value_cents,
            "apply_to_all_products": self.apply_to_all_products,
            "eligibility_policy": self.eligibility_policy,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class CashbackConfig(db.Model):
    """Cashback program configuration (one logical row). Missing row = inactive."""
    __tablename__ = "cashback_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cashback_bps = db.Column(db.Integer, nullable=False, default=500)  # 5%
    min_purchase_for_cashback_cents = db.Column(db.Integer, nullable=False, default=0)
    max_cashback_per_purchase_cents = db.Column(db.Integer, nullable=True)
    cashback_expiration_days = db.Column(db.Integer, nullable=True, default=180)
    min_cashback_to_use_cents = db.Column(db.Integer, nullable=False, default=500)
    apply_to_all_products = db.Column(db.Boolean, nullable=False, default=True)
    eligibility_policy = db.Column(db.String(16), nullable=False, default="WHOLE_TOTAL")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashback_bps": self.cashback_bps,
            "min_purchase_for_cashback_cents": self.min_purchase_for_cashback_cents,
            "max_cashback_per_purchase_cents": self.max_cashback_per_purchase_cents,
            "cashback_expiration_days": self.cashback_expiration_days,
            "min_cashback_to_use_cents": self.min_cashback_to_use_cents,
            "apply_to_all_products": self.apply_to_all_products,
            "eligibility_policy": self.eligibility_policy,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentMethodConfig(db.Model):
    """
    Per-method acquirer fee configuration.

    A method without a row is treated as active with no fee.
    """
    __tablename__ = "payment_method_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    method = db.Column(db.String(16), nullable=False, unique=True)
    fee_bps = db.Column(db.Integer, nullable=False, default=0)
    settlement_days = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "fee_bps": self.fee_bps,
            "settlement_days": self.settlement_days,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }

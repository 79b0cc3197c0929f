from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon redeemed at settlement.

    INVARIANT: usage_count <= usage_limit when a limit is set.
    Redemption is append-only via CouponUsage.
    """
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)  # Always stored uppercase
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED
    discount_value = db.Column(db.Integer, nullable=False)  # cents for FIXED, basis points for PERCENTAGE

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_to = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, INACTIVE

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CouponUsage(db.Model):
    """One redemption of a coupon. IMMUTABLE."""
    __tablename__ = "coupon_usages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    order_ref = db.Column(db.String(64), nullable=False)  # e.g. SALE-12, COMANDA-3, DELIVERY-7
    discount_applied_cents = db.Column(db.Integer, nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self):
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "customer_id": self.customer_id,
            "order_ref": self.order_ref,
            "discount_applied_cents": self.discount_applied_cents,
            "used_at": to_utc_z(self.used_at),
        }

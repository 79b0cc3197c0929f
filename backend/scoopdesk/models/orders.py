from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


class SettledOrderColumns:
    """
    Header columns shared by the three order-taking channels.

    INVARIANT (enforced by settlement):
    sum(items.subtotal) + fees - discount - coupon_discount - reward discounts == total
    """
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    cashback_used_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    cashback_earned_cents = db.Column(db.Integer, nullable=False, default=0)
    # Earned rewards actually taken back by the last reversal (capped at the balance)
    loyalty_points_reversed = db.Column(db.Integer, nullable=False, default=0)
    cashback_reversed_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    def settlement_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "fees_cents": self.fees_cents,
            "discount_cents": self.discount_cents,
            "coupon_id": self.coupon_id,
            "coupon_discount_cents": self.coupon_discount_cents,
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_discount_cents": self.loyalty_discount_cents,
            "cashback_used_cents": self.cashback_used_cents,
            "total_cents": self.total_cents,
            "loyalty_points_earned": self.loyalty_points_earned,
            "cashback_earned_cents": self.cashback_earned_cents,
            "loyalty_points_reversed": self.loyalty_points_reversed,
            "cashback_reversed_cents": self.cashback_reversed_cents,
            "notes": self.notes,
        }


class ItemSnapshotColumns:
    """Point-in-time product snapshot carried by every order line."""
    product_name = db.Column(db.String(255), nullable=False)
    size_name = db.Column(db.String(32), nullable=True)
    flavor_count = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    def snapshot_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "size_id": self.size_id,
            "size_name": self.size_name,
            "flavor_count": self.flavor_count,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


class PaymentColumns:
    method = db.Column(db.String(16), nullable=False)  # CASH, DEBIT_CARD, CREDIT_CARD, PIX, OTHER
    amount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }


# =============================================================================
# WALK-IN SALES
# =============================================================================

class Sale(SettledOrderColumns, db.Model):
    """
    Walk-in counter sale.

    LIFECYCLE:
    - COMPLETED: settled at creation
    - CANCELLED: effects reversed (stock, session totals, rewards)
    - ADJUSTED: a cancelled sale reopened; effects re-applied
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_session_status", "cash_session_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, CANCELLED, ADJUSTED
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cash_session = db.relationship("CashSession", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")

    @property
    def fees_cents(self) -> int:
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": "SALE",
            "cash_session_id": self.cash_session_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "status": self.status,
            **self.settlement_dict(),
            "items": [i.to_dict() for i in self.items],
            "payments": [p.to_dict() for p in self.payments],
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(ItemSnapshotColumns, db.Model):
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    size_id = db.Column(db.Integer, db.ForeignKey("category_sizes.id"), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, cascade="all, delete-orphan"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return self.snapshot_dict()


class SalePayment(PaymentColumns, db.Model):
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, cascade="all, delete-orphan"))


class SaleAdjustment(db.Model):
    """
    Audit row for sale cancellations and reopenings.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "sale_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    adjustment_type = db.Column(db.String(16), nullable=False)  # CANCEL, REOPEN
    reason = db.Column(db.String(255), nullable=True)
    previous_status = db.Column(db.String(16), nullable=False)
    new_status = db.Column(db.String(16), nullable=False)
    user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "adjustment_type": self.adjustment_type,
            "reason": self.reason,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


# =============================================================================
# COMANDAS (in-store tabs)
# =============================================================================

class Comanda(SettledOrderColumns, db.Model):
    """
    In-store tab bound to a table.

    Items accumulate while OPEN without touching stock; closing the tab is
    a settlement (pricing, stock, rewards, payments, session totals).

    LIFECYCLE:
    - OPEN -> CLOSED (settled) or CANCELLED
    - CLOSED -> OPEN via explicit reopen (settlement effects reversed)
    - CLOSED -> CANCELLED (settlement effects reversed)
    """
    __tablename__ = "comandas"
    __table_args__ = (
        db.UniqueConstraint("business_date", "number", name="uq_comandas_business_date_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.Integer, nullable=False)
    business_date = db.Column(db.Date, nullable=False, index=True)

    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    opened_by_user_id = db.Column(db.Integer, nullable=False)
    closed_by_user_id = db.Column(db.Integer, nullable=True)

    table_number = db.Column(db.String(16), nullable=True)
    customer_name = db.Column(db.String(128), nullable=True)
    additional_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED, CANCELLED
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_session = db.relationship("CashSession", backref=db.backref("comandas", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def fees_cents(self) -> int:
        return self.additional_fee_cents or 0

    @property
    def active_items(self) -> list:
        return [i for i in self.items if i.status == "ACTIVE"]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": "COMANDA",
            "number": self.number,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "cash_session_id": self.cash_session_id,
            "customer_id": self.customer_id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "additional_fee_cents": self.additional_fee_cents,
            "status": self.status,
            **self.settlement_dict(),
            "items": [i.to_dict() for i in self.items],
            "payments": [p.to_dict() for p in self.payments],
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }


class ComandaItem(ItemSnapshotColumns, db.Model):
    __tablename__ = "comanda_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    comanda_id = db.Column(db.Integer, db.ForeignKey("comandas.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    size_id = db.Column(db.Integer, db.ForeignKey("category_sizes.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, CANCELLED
    item_notes = db.Column(db.String(255), nullable=True)
    added_by_user_id = db.Column(db.Integer, nullable=False)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    comanda = db.relationship(
        "Comanda",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="ComandaItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        payload = self.snapshot_dict()
        payload.update({
            "status": self.status,
            "item_notes": self.item_notes,
            "added_by_user_id": self.added_by_user_id,
            "added_at": to_utc_z(self.added_at),
        })
        return payload


class ComandaPayment(PaymentColumns, db.Model):
    __tablename__ = "comanda_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    comanda_id = db.Column(db.Integer, db.ForeignKey("comandas.id"), nullable=False, index=True)

    comanda = db.relationship("Comanda", backref=db.backref("payments", lazy=True, cascade="all, delete-orphan"))


# =============================================================================
# DELIVERY
# =============================================================================

class DeliveryOrder(SettledOrderColumns, db.Model):
    """
    Delivery order, settled when received.

    LIFECYCLE (one-directional):
    RECEIVED -> PREPARING -> OUT_FOR_DELIVERY -> DELIVERED
    any non-terminal state -> CANCELLED (settlement effects reversed)
    """
    __tablename__ = "delivery_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=False)

    address = db.Column(db.String(255), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    reference_point = db.Column(db.String(255), nullable=True)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    estimated_time = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="RECEIVED", index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    preparing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    out_for_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_session = db.relationship("CashSession", backref=db.backref("delivery_orders", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def fees_cents(self) -> int:
        return self.delivery_fee_cents or 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": "DELIVERY",
            "cash_session_id": self.cash_session_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "address": self.address,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "reference_point": self.reference_point,
            "delivery_fee_cents": self.delivery_fee_cents,
            "estimated_time": self.estimated_time,
            "status": self.status,
            **self.settlement_dict(),
            "items": [i.to_dict() for i in self.items],
            "payments": [p.to_dict() for p in self.payments],
            "created_at": to_utc_z(self.created_at),
            "preparing_at": to_utc_z(self.preparing_at),
            "out_for_delivery_at": to_utc_z(self.out_for_delivery_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class DeliveryItem(ItemSnapshotColumns, db.Model):
    __tablename__ = "delivery_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_order_id = db.Column(db.Integer, db.ForeignKey("delivery_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    size_id = db.Column(db.Integer, db.ForeignKey("category_sizes.id"), nullable=True)

    delivery_order = db.relationship(
        "DeliveryOrder",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return self.snapshot_dict()


class DeliveryPayment(PaymentColumns, db.Model):
    __tablename__ = "delivery_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_order_id = db.Column(db.Integer, db.ForeignKey("delivery_orders.id"), nullable=False, index=True)

    delivery_order = db.relationship(
        "DeliveryOrder",
        backref=db.backref("payments", lazy=True, cascade="all, delete-orphan"),
    )


class DeliveryFee(db.Model):
    """
    Delivery fee table by neighborhood.

    free_delivery_above_cents: orders at or above this value ship free.
    min_order_value_cents: orders below this value are not accepted.
    """
    __tablename__ = "delivery_fees"
    __table_args__ = (
        db.UniqueConstraint("neighborhood", "city", name="uq_delivery_fees_neighborhood_city"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    neighborhood = db.Column(db.String(128), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    fee_cents = db.Column(db.Integer, nullable=False, default=0)
    min_order_value_cents = db.Column(db.Integer, nullable=True)
    free_delivery_above_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "fee_cents": self.fee_cents,
            "min_order_value_cents": self.min_order_value_cents,
            "free_delivery_above_cents": self.free_delivery_above_cents,
            "is_active": self.is_active,
        }

"""
Delivery orders

WHY: Delivery orders are settled when received (stock, rewards, payments,
session totals), then move through the kitchen/dispatch pipeline.

LIFECYCLE (one-directional):
    RECEIVED -> PREPARING -> OUT_FOR_DELIVERY -> DELIVERED
    RECEIVED / PREPARING / OUT_FOR_DELIVERY -> CANCELLED
Cancelling reverses the settlement's effects.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import DeliveryFee, DeliveryOrder, Product
from scoopdesk.time_utils import utcnow
from .channels import DELIVERY
from .concurrency import begin_write, lock_for_update, run_with_retry
from .settlement_service import SettlementRequest, SettlementResult, price_line, reverse_settlement, settle


logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    "RECEIVED": ("PREPARING", "CANCELLED"),
    "PREPARING": ("OUT_FOR_DELIVERY", "CANCELLED"),
    "OUT_FOR_DELIVERY": ("DELIVERED", "CANCELLED"),
    "DELIVERED": (),
    "CANCELLED": (),
}

STATUS_TIMESTAMPS = {
    "PREPARING": "preparing_at",
    "OUT_FOR_DELIVERY": "out_for_delivery_at",
    "DELIVERED": "delivered_at",
    "CANCELLED": "cancelled_at",
}


# =============================================================================
# FEES
# =============================================================================

def delivery_fee_for(neighborhood: str, city: str, order_value_cents: int) -> int:
    """
    Fee for a neighborhood from the fee table.

    Raises:
        ValidationError: no active fee for the area, or order below the area minimum
    """
    fee = (
        db.session.query(DeliveryFee)
        .filter(
            db.func.lower(DeliveryFee.neighborhood) == (neighborhood or "").strip().lower(),
            db.func.lower(DeliveryFee.city) == (city or "").strip().lower(),
            DeliveryFee.is_active.is_(True),
        )
        .first()
    )
    if fee is None:
        raise ValidationError("Delivery is not available for this neighborhood", {"neighborhood": neighborhood, "city": city})
    if fee.min_order_value_cents is not None and order_value_cents < fee.min_order_value_cents:
        raise ValidationError(
            "Order value below the minimum for delivery",
            {"min_order_value_cents": fee.min_order_value_cents},
        )
    if fee.free_delivery_above_cents is not None and order_value_cents >= fee.free_delivery_above_cents:
        return 0
    return fee.fee_cents


def upsert_delivery_fee(data: dict) -> DeliveryFee:
    neighborhood = (data.get("neighborhood") or "").strip()
    city = (data.get("city") or "").strip()
    if not neighborhood or not city:
        raise ValidationError("neighborhood and city are required")
    fee_cents = data.get("fee_cents", 0)
    if not isinstance(fee_cents, int) or fee_cents < 0:
        raise ValidationError("fee_cents must be a non-negative integer")

    fee = db.session.query(DeliveryFee).filter_by(neighborhood=neighborhood, city=city).first()
    if fee is None:
        fee = DeliveryFee(neighborhood=neighborhood, city=city)
        db.session.add(fee)
    fee.fee_cents = fee_cents
    fee.min_order_value_cents = data.get("min_order_value_cents")
    fee.free_delivery_above_cents = data.get("free_delivery_above_cents")
    fee.is_active = bool(data.get("is_active", True))
    db.session.commit()
    return fee


def list_delivery_fees() -> list[DeliveryFee]:
    return db.session.query(DeliveryFee).order_by(DeliveryFee.city, DeliveryFee.neighborhood).all()


def _preview_subtotal(request: SettlementRequest) -> int:
    subtotal = 0
    for item in request.items:
        product = db.session.get(Product, item.product_id)
        if product is None:
            raise NotFoundError("Product not found", {"product_id": item.product_id})
        subtotal += price_line(product, item).total_cents
    return subtotal


# =============================================================================
# ORDERS
# =============================================================================

def create_delivery_order(request: SettlementRequest) -> SettlementResult:
    """
    Settle a delivery order (status RECEIVED).

    A customer is required. When no delivery_fee_cents is given and the
    address has a neighborhood/city, the fee comes from the fee table.
    """
    if request.customer_id is None:
        raise ValidationError("A customer is required for delivery orders")
    request.channel = DELIVERY.name

    extra = request.extra or {}
    if extra.get("fee_from_table") and extra.get("neighborhood") and extra.get("city"):
        request.delivery_fee_cents = delivery_fee_for(
            extra["neighborhood"], extra["city"], _preview_subtotal(request)
        )
    return settle(request)


def get_delivery_order(order_id: int) -> DeliveryOrder:
    order = db.session.get(DeliveryOrder, order_id)
    if not order:
        raise NotFoundError("Delivery order not found", {"delivery_order_id": order_id})
    return order


def list_delivery_orders(status: str | None = None, limit: int = 100) -> list[DeliveryOrder]:
    query = db.session.query(DeliveryOrder)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(DeliveryOrder.id.desc()).limit(limit).all()


def update_delivery_status(order_id: int, new_status: str, user_id: int, reason: str | None = None) -> DeliveryOrder:
    """
    Advance the order along STATUS_TRANSITIONS, stamping the transition time.

    Raises:
        InvalidStateError: transition not allowed from the current status
    """
    new_status = (new_status or "").upper()
    if new_status not in STATUS_TRANSITIONS:
        raise ValidationError(f"Unknown delivery status '{new_status}'")

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(DeliveryOrder).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Delivery order not found", {"delivery_order_id": order_id})
        if new_status not in STATUS_TRANSITIONS[order.status]:
            raise InvalidStateError(
                f"Cannot move delivery order from {order.status} to {new_status}",
                {"delivery_order_id": order_id, "status": order.status, "allowed": list(STATUS_TRANSITIONS[order.status])},
            )

        if new_status == "CANCELLED":
            reverse_settlement(DELIVERY, order, user_id=user_id)
            order.cancel_reason = reason

        order.status = new_status
        setattr(order, STATUS_TIMESTAMPS[new_status], utcnow())
        db.session.commit()
        logger.info("Delivery order %s -> %s", order_id, new_status)
        return order

    return run_with_retry(_op)


def cancel_delivery_order(order_id: int, user_id: int, reason: str) -> DeliveryOrder:
    if not reason:
        raise ValidationError("reason is required")
    return update_delivery_status(order_id, "CANCELLED", user_id, reason)

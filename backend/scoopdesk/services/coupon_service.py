"""
Coupon Validator

WHY: Coupons discount a settlement's pre-coupon base. Validation is a pure
read; redemption (apply_coupon) is recorded inside the settlement's own
transaction so a rolled-back sale never consumes a use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..models import Coupon, CouponUsage
from scoopdesk.time_utils import utcnow
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("PERCENTAGE", "FIXED")


@dataclass(frozen=True)
class CouponQuote:
    coupon: Coupon
    discount_cents: int


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Coupon, base_cents: int) -> int:
    """
    FIXED: the configured value, capped at the base.
    PERCENTAGE: base * bps / 10000 (half-up), capped at max_discount, then at the base.
    """
    if base_cents <= 0:
        return 0
    if coupon.discount_type == "FIXED":
        discount = coupon.discount_value
    else:
        raw = Decimal(base_cents) * Decimal(coupon.discount_value) / Decimal(10000)
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if coupon.max_discount_cents is not None:
            discount = min(discount, coupon.max_discount_cents)
    return max(0, min(discount, base_cents))


def _check_usable(coupon: Coupon, base_cents: int, now: datetime) -> None:
    if coupon.status != "ACTIVE":
        raise InvalidStateError("Coupon is not active", {"code": coupon.code})
    if now < coupon.valid_from or now > coupon.valid_to:
        raise InvalidStateError("Coupon is outside its validity window", {"code": coupon.code})
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise InvalidStateError("Coupon usage limit reached", {"code": coupon.code})
    if coupon.min_purchase_cents is not None and base_cents < coupon.min_purchase_cents:
        raise InvalidStateError(
            "Order value below the coupon minimum purchase",
            {"code": coupon.code, "min_purchase_cents": coupon.min_purchase_cents},
        )


def validate_coupon(code: str, base_cents: int, customer_id: int | None = None, *, now: datetime | None = None) -> CouponQuote:
    """
    Validate a code against a base amount. Does not mutate state.

    Raises:
        NotFoundError: unknown code
        InvalidStateError: inactive, out of window, exhausted, or below minimum purchase
    """
    normalized = normalize_code(code)
    coupon = db.session.query(Coupon).filter_by(code=normalized).first()
    if not coupon:
        raise NotFoundError("Coupon not found", {"code": normalized})

    _check_usable(coupon, base_cents, now or utcnow())
    return CouponQuote(coupon=coupon, discount_cents=compute_discount(coupon, base_cents))


def apply_coupon(coupon_id: int, customer_id: int | None, discount_cents: int, order_ref: str) -> CouponUsage:
    """
    Record a redemption. Runs inside the caller's transaction (no commit).

    The coupon row is locked and the limit re-checked so two concurrent
    settlements cannot both take the last use.
    """
    coupon = lock_for_update(db.session.query(Coupon).filter_by(id=coupon_id)).first()
    if not coupon:
        raise NotFoundError("Coupon not found", {"coupon_id": coupon_id})
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise InvalidStateError("Coupon usage limit reached", {"code": coupon.code})

    coupon.usage_count = (coupon.usage_count or 0) + 1
    usage = CouponUsage(
        coupon_id=coupon.id,
        customer_id=customer_id,
        order_ref=order_ref,
        discount_applied_cents=discount_cents,
    )
    db.session.add(usage)
    return usage


# =============================================================================
# MANAGEMENT
# =============================================================================

def create_coupon(data: dict, user_id: int | None = None) -> Coupon:
    """
    Create a coupon.

    Raises:
        ConflictError: code already exists
        ValidationError: value <= 0, percentage above 100%, or empty window
    """
    code = normalize_code(data.get("code"))
    if not code:
        raise ValidationError("code is required")

    discount_type = (data.get("discount_type") or "").upper()
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")

    discount_value = data.get("discount_value")
    if not isinstance(discount_value, int) or isinstance(discount_value, bool) or discount_value <= 0:
        raise ValidationError("discount_value must be a positive integer")
    if discount_type == "PERCENTAGE" and discount_value > 10000:
        raise ValidationError("Percentage discount cannot exceed 100% (10000 bps)")

    valid_from = data.get("valid_from")
    valid_to = data.get("valid_to")
    if not valid_from or not valid_to:
        raise ValidationError("valid_from and valid_to are required")
    if valid_from >= valid_to:
        raise ValidationError("valid_from must be before valid_to")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None and usage_limit <= 0:
        raise ValidationError("usage_limit must be positive")

    if db.session.query(Coupon).filter_by(code=code).first():
        raise ConflictError(f"Coupon code '{code}' already exists", {"code": code})

    coupon = Coupon(
        code=code,
        description=data.get("description"),
        discount_type=discount_type,
        discount_value=discount_value,
        min_purchase_cents=data.get("min_purchase_cents"),
        max_discount_cents=data.get("max_discount_cents"),
        valid_from=valid_from,
        valid_to=valid_to,
        usage_limit=usage_limit,
        usage_count=0,
        status="ACTIVE",
        created_by_user_id=user_id,
    )
    db.session.add(coupon)
    db.session.commit()
    logger.info("Coupon %s created", code)
    return coupon


def get_coupon(coupon_id: int) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found", {"coupon_id": coupon_id})
    return coupon


def _require_not_expired(coupon: Coupon, action: str) -> None:
    if utcnow() > coupon.valid_to:
        raise InvalidStateError(f"Cannot {action} an expired coupon", {"code": coupon.code})


UPDATABLE_FIELDS = {"description", "min_purchase_cents", "max_discount_cents", "usage_limit", "valid_to"}


def update_coupon(coupon_id: int, data: dict) -> Coupon:
    """
    Edit the mutable terms of a coupon. Code, type and value are fixed once
    created, since past usages were computed with them.

    Raises:
        InvalidStateError: the coupon is past valid_to
        ValidationError: unknown field, limit below usage_count, empty window
    """
    unknown = set(data) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    coupon = get_coupon(coupon_id)
    _require_not_expired(coupon, "edit")

    for field in ("min_purchase_cents", "max_discount_cents"):
        value = data.get(field)
        if value is not None and value < 0:
            raise ValidationError(f"{field} cannot be negative")
    usage_limit = data.get("usage_limit")
    if usage_limit is not None and usage_limit < max(coupon.usage_count or 0, 1):
        raise ValidationError(
            "usage_limit must be positive and not below the uses already recorded",
            {"usage_count": coupon.usage_count},
        )
    valid_to = data.get("valid_to")
    if valid_to is not None and valid_to <= coupon.valid_from:
        raise ValidationError("valid_to must be after valid_from")

    for key, value in data.items():
        setattr(coupon, key, value)
    db.session.commit()
    logger.info("Coupon %s updated: %s", coupon.code, ", ".join(sorted(data)))
    return coupon


def reactivate_coupon(coupon_id: int) -> Coupon:
    coupon = get_coupon(coupon_id)
    _require_not_expired(coupon, "reactivate")
    coupon.status = "ACTIVE"
    db.session.commit()
    return coupon


def delete_coupon(coupon_id: int) -> None:
    """Only coupons that were never redeemed can be deleted; others are deactivated."""
    coupon = get_coupon(coupon_id)
    used = db.session.query(CouponUsage.id).filter_by(coupon_id=coupon.id).first()
    if used or coupon.usage_count:
        raise ConflictError("Coupon has been used and cannot be deleted", {"code": coupon.code})
    db.session.delete(coupon)
    db.session.commit()
    logger.info("Coupon %s deleted", coupon.code)


def usage_history(
    coupon_id: int | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> dict:
    """Redemptions, newest first, with a count and discount total over the whole filter."""
    query = db.session.query(CouponUsage)
    if coupon_id is not None:
        query = query.filter(CouponUsage.coupon_id == coupon_id)
    if customer_id is not None:
        query = query.filter(CouponUsage.customer_id == customer_id)
    if start:
        query = query.filter(CouponUsage.used_at >= start)
    if end:
        query = query.filter(CouponUsage.used_at < end)

    count, discount = query.with_entities(
        db.func.count(CouponUsage.id),
        db.func.coalesce(db.func.sum(CouponUsage.discount_applied_cents), 0),
    ).one()
    usages = query.order_by(CouponUsage.used_at.desc(), CouponUsage.id.desc()).limit(limit).all()
    return {
        "usages": [dict(u.to_dict(), code=u.coupon.code) for u in usages],
        "total_usages": int(count),
        "total_discount_cents": int(discount),
    }


def deactivate_coupon(coupon_id: int) -> Coupon:
    coupon = get_coupon(coupon_id)
    coupon.status = "INACTIVE"
    db.session.commit()
    return coupon


def list_coupons(active_only: bool = False) -> list[Coupon]:
    query = db.session.query(Coupon)
    if active_only:
        query = query.filter_by(status="ACTIVE")
    return query.order_by(Coupon.code).all()

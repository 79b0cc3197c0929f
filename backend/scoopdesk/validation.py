from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from scoopdesk.errors import ValidationError
from scoopdesk.services.settlement_service import SettlementItem, SettlementPayment, SettlementRequest
from scoopdesk.time_utils import parse_iso_datetime


# Maximum price: R$ 9.999.999,99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def require_int(value: Any, field: str, *, minimum: int | None = None, allow_none: bool = False) -> int | None:
    """Strict integer: rejects bools, floats, decimals and scientific notation."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_cents(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    cents = require_int(value, field, minimum=0, allow_none=allow_none)
    if cents is not None and cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def parse_datetime(value: Any, field: str, *, allow_none: bool = True, inclusive_end: bool = False) -> datetime | None:
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value, inclusive_end=inclusive_end)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return require_int(value, col.key)

    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        return parse_datetime(value, col.key, allow_none=False)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
    extra_fields: set[str] | None = None,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned dict with only writable fields.

    extra_fields are non-column keys (e.g. nested size_prices) passed through
    unchanged for the service to validate.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    passthrough = extra_fields or set()

    for k in payload.keys():
        if k in passthrough:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in passthrough:
            patch[k] = raw
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


# =============================================================================
# SETTLEMENT PAYLOADS
# =============================================================================

def parse_items(raw_items: Any) -> list:
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        items.append(SettlementItem(
            product_id=require_int(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=raw.get("quantity", 1),
            size_id=require_int(raw.get("size_id"), f"items[{index}].size_id", allow_none=True),
            flavor_count=require_int(raw.get("flavor_count"), f"items[{index}].flavor_count", allow_none=True),
            discount_cents=parse_cents(raw.get("discount_cents", 0), f"items[{index}].discount_cents"),
        ))
    return items


def parse_payments(raw_payments: Any) -> list:
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")
    payments = []
    for index, raw in enumerate(raw_payments):
        if not isinstance(raw, dict):
            raise ValidationError(f"payments[{index}] must be an object")
        payments.append(SettlementPayment(
            method=str(raw.get("method") or "").upper(),
            amount_cents=parse_cents(raw.get("amount_cents"), f"payments[{index}].amount_cents"),
        ))
    return payments


DELIVERY_FIELDS = ("address", "neighborhood", "city", "reference_point", "estimated_time")


def parse_settlement_payload(data: dict, channel: str, actor_user_id: int):
    """Build a SettlementRequest from a sale / delivery JSON body."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    extra = {}
    if channel == "DELIVERY":
        extra = {key: data.get(key) for key in DELIVERY_FIELDS if data.get(key) is not None}
        extra["fee_from_table"] = data.get("delivery_fee_cents") is None

    return SettlementRequest(
        channel=channel,
        cash_session_id=require_int(data.get("cash_session_id"), "cash_session_id"),
        actor_user_id=actor_user_id,
        items=parse_items(data.get("items")),
        payments=parse_payments(data.get("payments")),
        customer_id=require_int(data.get("customer_id"), "customer_id", allow_none=True),
        coupon_code=data.get("coupon_code") or None,
        discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
        additional_fee_cents=parse_cents(data.get("additional_fee_cents", 0), "additional_fee_cents"),
        delivery_fee_cents=parse_cents(data.get("delivery_fee_cents") or 0, "delivery_fee_cents"),
        loyalty_points_used=require_int(data.get("loyalty_points_used", 0), "loyalty_points_used", minimum=0),
        cashback_used_cents=parse_cents(data.get("cashback_used_cents", 0), "cashback_used_cents"),
        notes=data.get("notes"),
        extra=extra,
    )

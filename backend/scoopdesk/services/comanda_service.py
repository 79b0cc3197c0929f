"""
Comandas (in-store tabs)

WHY: A table orders over time and pays once. Items accumulate on an OPEN
comanda without touching stock or the cash session; closing the comanda is
a settlement through the same engine as a counter sale.

DESIGN:
- Comandas are numbered per business day (number resets daily)
- add/update item checks stock availability against what the tab already
  holds, but only the close settlement decrements it
- Items are re-priced at close; the snapshot taken when an item is added
  is a running preview for the table
- reopen and cancel-after-close reverse the settlement's effects
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from ..models import CashSession, Comanda, ComandaItem, Product
from scoopdesk.time_utils import business_date, utcnow
from .channels import COMANDA
from .concurrency import begin_write, lock_for_update, run_with_retry
from .settlement_service import (
    SettlementItem,
    SettlementPayment,
    SettlementRequest,
    SettlementResult,
    normalize_quantity,
    price_line,
    reverse_settlement,
    settle,
)


logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def get_comanda(comanda_id: int) -> Comanda:
    comanda = db.session.get(Comanda, comanda_id)
    if not comanda:
        raise NotFoundError("Comanda not found", {"comanda_id": comanda_id})
    return comanda


def _lock_comanda(comanda_id: int) -> Comanda:
    comanda = lock_for_update(db.session.query(Comanda).filter_by(id=comanda_id)).first()
    if not comanda:
        raise NotFoundError("Comanda not found", {"comanda_id": comanda_id})
    return comanda


def _require_status(comanda: Comanda, *statuses: str, action: str) -> None:
    if comanda.status not in statuses:
        raise InvalidStateError(
            f"Cannot {action} a comanda in status {comanda.status}",
            {"comanda_id": comanda.id, "status": comanda.status},
        )


def _refresh_preview(comanda: Comanda) -> None:
    """Running subtotal/total shown while the tab is open."""
    items = comanda.active_items
    comanda.subtotal_cents = sum(i.subtotal_cents for i in items)
    comanda.discount_cents = sum(i.discount_cents for i in items)
    comanda.total_cents = comanda.subtotal_cents + comanda.fees_cents - comanda.discount_cents


def _check_tab_stock(comanda: Comanda, product: Product, quantity: Decimal, *, exclude_item_id: int | None = None) -> None:
    if not product.track_stock:
        return
    on_tab = sum(
        (Decimal(i.quantity) for i in comanda.active_items if i.product_id == product.id and i.id != exclude_item_id),
        Decimal(0),
    )
    if Decimal(product.current_stock) < on_tab + quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}",
            {
                "product_id": product.id,
                "available": str(product.current_stock),
                "requested": str(on_tab + quantity),
            },
        )


def _load_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found", {"product_id": product_id})
    if not product.is_active:
        raise InvalidStateError("Product is inactive", {"product_id": product_id})
    return product


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_comanda(
    cash_session_id: int,
    user_id: int,
    *,
    table_number: str | None = None,
    customer_name: str | None = None,
    customer_id: int | None = None,
) -> Comanda:
    """Open a tab on an OPEN cash session with the next daily number."""
    def _op():
        begin_write()
        session = db.session.get(CashSession, cash_session_id)
        if not session:
            raise NotFoundError("Cash session not found", {"cash_session_id": cash_session_id})
        if session.status != "OPEN":
            raise InvalidStateError("Cash session is not open", {"cash_session_id": cash_session_id})

        day = business_date()
        last_number = (
            db.session.query(db.func.max(Comanda.number))
            .filter(Comanda.business_date == day)
            .scalar()
        )
        comanda = Comanda(
            number=(last_number or 0) + 1,
            business_date=day,
            cash_session_id=cash_session_id,
            customer_id=customer_id,
            opened_by_user_id=user_id,
            table_number=table_number,
            customer_name=customer_name,
            status="OPEN",
            opened_at=utcnow(),
        )
        db.session.add(comanda)
        db.session.commit()
        logger.info("Comanda #%s opened (id %s)", comanda.number, comanda.id)
        return comanda

    return run_with_retry(_op)


def list_open_comandas(cash_session_id: int | None = None) -> list[Comanda]:
    query = db.session.query(Comanda).filter_by(status="OPEN")
    if cash_session_id is not None:
        query = query.filter_by(cash_session_id=cash_session_id)
    return query.order_by(Comanda.number).all()


def add_item(
    comanda_id: int,
    *,
    product_id: int,
    quantity,
    user_id: int,
    size_id: int | None = None,
    flavor_count: int | None = None,
    discount_cents: int = 0,
    item_notes: str | None = None,
) -> ComandaItem:
    def _op():
        begin_write()
        comanda = _lock_comanda(comanda_id)
        _require_status(comanda, "OPEN", action="add items to")
        product = _load_product(product_id)
        item = SettlementItem(
            product_id=product_id,
            quantity=normalize_quantity(quantity),
            size_id=size_id,
            flavor_count=flavor_count,
            discount_cents=discount_cents or 0,
        )
        if item.discount_cents < 0:
            raise ValidationError("Item discount cannot be negative")
        _check_tab_stock(comanda, product, item.quantity)
        line = price_line(product, item)

        row = ComandaItem(
            comanda_id=comanda.id,
            status="ACTIVE",
            item_notes=item_notes,
            added_by_user_id=user_id,
            **line.snapshot(),
        )
        comanda.items.append(row)
        _refresh_preview(comanda)
        db.session.commit()
        return row

    return run_with_retry(_op)


def update_item(
    comanda_id: int,
    item_id: int,
    *,
    quantity=None,
    discount_cents: int | None = None,
    item_notes: str | None = None,
) -> ComandaItem:
    def _op():
        begin_write()
        comanda = _lock_comanda(comanda_id)
        _require_status(comanda, "OPEN", action="change items of")
        row = next((i for i in comanda.active_items if i.id == item_id), None)
        if row is None:
            raise NotFoundError("Comanda item not found", {"comanda_id": comanda_id, "item_id": item_id})

        product = _load_product(row.product_id)
        item = SettlementItem(
            product_id=row.product_id,
            quantity=normalize_quantity(quantity if quantity is not None else row.quantity),
            size_id=row.size_id,
            flavor_count=row.flavor_count,
            discount_cents=row.discount_cents if discount_cents is None else discount_cents,
        )
        if item.discount_cents < 0:
            raise ValidationError("Item discount cannot be negative")
        _check_tab_stock(comanda, product, item.quantity, exclude_item_id=row.id)
        for key, value in price_line(product, item).snapshot().items():
            setattr(row, key, value)
        if item_notes is not None:
            row.item_notes = item_notes
        _refresh_preview(comanda)
        db.session.commit()
        return row

    return run_with_retry(_op)


def cancel_item(comanda_id: int, item_id: int) -> ComandaItem:
    def _op():
        begin_write()
        comanda = _lock_comanda(comanda_id)
        _require_status(comanda, "OPEN", action="cancel items of")
        row = next((i for i in comanda.active_items if i.id == item_id), None)
        if row is None:
            raise NotFoundError("Comanda item not found", {"comanda_id": comanda_id, "item_id": item_id})
        row.status = "CANCELLED"
        _refresh_preview(comanda)
        db.session.commit()
        return row

    return run_with_retry(_op)


def close_comanda(
    comanda_id: int,
    *,
    payments: list[SettlementPayment],
    user_id: int,
    customer_id: int | None = None,
    coupon_code: str | None = None,
    discount_cents: int = 0,
    additional_fee_cents: int | None = None,
    loyalty_points_used: int = 0,
    cashback_used_cents: int = 0,
    cash_session_id: int | None = None,
    notes: str | None = None,
) -> SettlementResult:
    """
    Settle an OPEN comanda: OPEN -> CLOSED.

    cash_session_id defaults to the session the tab was opened on; a tab
    left open across a shift change can be closed on the new session.
    """
    comanda = get_comanda(comanda_id)
    _require_status(comanda, "OPEN", action="close")
    items = comanda.active_items
    if not items:
        raise ValidationError("Comanda has no active items", {"comanda_id": comanda_id})

    request = SettlementRequest(
        channel=COMANDA.name,
        cash_session_id=cash_session_id or comanda.cash_session_id,
        actor_user_id=user_id,
        items=[
            SettlementItem(
                product_id=i.product_id,
                quantity=Decimal(i.quantity),
                size_id=i.size_id,
                flavor_count=i.flavor_count,
                discount_cents=i.discount_cents or 0,
                source_item_id=i.id,
            )
            for i in items
        ],
        payments=payments,
        customer_id=customer_id if customer_id is not None else comanda.customer_id,
        coupon_code=coupon_code,
        discount_cents=discount_cents,
        additional_fee_cents=comanda.additional_fee_cents if additional_fee_cents is None else additional_fee_cents,
        loyalty_points_used=loyalty_points_used,
        cashback_used_cents=cashback_used_cents,
        notes=notes,
        extra={"comanda_id": comanda_id},
    )
    return settle(request)


def reopen_comanda(comanda_id: int, user_id: int) -> Comanda:
    """
    CLOSED -> OPEN. The settlement is reversed and its payments removed;
    items stay on the tab.
    """
    def _op():
        begin_write()
        comanda = _lock_comanda(comanda_id)
        _require_status(comanda, "CLOSED", action="reopen")
        reverse_settlement(COMANDA, comanda, user_id=user_id)

        comanda.payments.clear()
        comanda.status = "OPEN"
        comanda.closed_at = None
        comanda.closed_by_user_id = None
        comanda.coupon_id = None
        comanda.coupon_discount_cents = 0
        comanda.loyalty_points_used = 0
        comanda.loyalty_discount_cents = 0
        comanda.cashback_used_cents = 0
        comanda.loyalty_points_earned = 0
        comanda.cashback_earned_cents = 0
        _refresh_preview(comanda)
        db.session.commit()
        logger.info("Comanda %s reopened by user %s", comanda_id, user_id)
        return comanda

    return run_with_retry(_op)


def cancel_comanda(comanda_id: int, user_id: int, reason: str | None = None) -> Comanda:
    """OPEN or CLOSED -> CANCELLED; a closed comanda's settlement is reversed."""
    def _op():
        begin_write()
        comanda = _lock_comanda(comanda_id)
        _require_status(comanda, "OPEN", "CLOSED", action="cancel")
        if comanda.status == "CLOSED":
            reverse_settlement(COMANDA, comanda, user_id=user_id)
        comanda.status = "CANCELLED"
        comanda.cancelled_at = utcnow()
        if reason:
            comanda.notes = f"{comanda.notes}\n{reason}" if comanda.notes else reason
        db.session.commit()
        logger.info("Comanda %s cancelled by user %s", comanda_id, user_id)
        return comanda

    return run_with_retry(_op)

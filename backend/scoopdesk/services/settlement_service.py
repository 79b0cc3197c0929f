"""
Settlement Engine

WHY: A sale, a comanda close and a delivery order all do the same thing:
turn an order into persisted items and payments while moving stock, the
cash session's running totals and the customer's reward balances. Either
all of it happens or none of it does.

DESIGN:
- One SettlementRequest for every channel; channel adapters only decide
  the persistence shape (which header, item and payment tables)
- settle() runs the cheap checks first (fail fast, no locks), then repeats
  them under lock inside a single transaction:
    lock session -> lock products (id order) -> price -> discounts/coupon
    -> rewards -> persist -> stock -> session totals -> commit
- Nothing leaves the transaction before commit; the optional card-fee
  posting runs only after a successful commit
- reverse_settlement / reapply_settlement are the inverse and the replay
  of the same effects, used by cancel/reopen in the channel services

INVARIANT (persisted):
sum(items.subtotal) + fees - discount - coupon_discount
    - loyalty_discount - cashback_used == total
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    CashSession,
    CategorySize,
    Comanda,
    DeliveryOrder,
    PAYMENT_METHODS,
    Product,
    ProductSizePrice,
    Sale,
)
from scoopdesk.time_utils import utcnow
from . import coupon_service, reward_service
from .catalog_service import current_cost_cents
from .cash_session_service import _apply_totals
from .channels import COMANDA, DELIVERY, SALE, Channel, get_channel
from .concurrency import begin_write, lock_for_update, run_with_retry
from .payment_fee_service import generate_card_fees


logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.001")


# =============================================================================
# REQUEST / RESULT TYPES
# =============================================================================

@dataclass
class SettlementItem:
    product_id: int
    quantity: Decimal
    size_id: int | None = None
    flavor_count: int | None = None
    discount_cents: int = 0
    source_item_id: int | None = None  # existing comanda item being settled


@dataclass
class SettlementPayment:
    method: str
    amount_cents: int


@dataclass
class SettlementRequest:
    """Channel-neutral description of an order to settle."""
    channel: str
    cash_session_id: int
    actor_user_id: int
    items: list[SettlementItem]
    payments: list[SettlementPayment]
    customer_id: int | None = None
    coupon_code: str | None = None
    discount_cents: int = 0
    additional_fee_cents: int = 0
    delivery_fee_cents: int = 0
    loyalty_points_used: int = 0
    cashback_used_cents: int = 0
    notes: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def fees_cents(self) -> int:
        return (self.additional_fee_cents or 0) + (self.delivery_fee_cents or 0)


@dataclass
class PricedLine:
    item: SettlementItem
    product: Product
    size: CategorySize | None
    quantity: Decimal
    unit_price_cents: int
    unit_cost_cents: int
    subtotal_cents: int
    discount_cents: int

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents

    def reward_line(self) -> reward_service.RewardLine:
        return reward_service.RewardLine(
            subtotal_cents=self.total_cents,
            eligible_for_loyalty=bool(self.product.eligible_for_loyalty),
            earns_cashback=bool(self.product.earns_cashback),
        )

    def snapshot(self) -> dict:
        return {
            "product_id": self.product.id,
            "product_name": self.product.name,
            "size_id": self.size.id if self.size else None,
            "size_name": self.size.name if self.size else None,
            "flavor_count": self.item.flavor_count if self.size else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


@dataclass
class OrderTotals:
    subtotal_cents: int
    fees_cents: int
    discount_cents: int
    coupon_discount_cents: int
    loyalty_discount_cents: int
    cashback_used_cents: int
    total_cents: int


@dataclass
class SettlementResult:
    channel: str
    order: object
    totals: OrderTotals
    points_earned: int = 0
    cashback_earned_cents: int = 0
    customer_balances: dict | None = None

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "order": self.order.to_dict(),
            "points_earned": self.points_earned,
            "cashback_earned_cents": self.cashback_earned_cents,
            "customer_balances": self.customer_balances,
        }


# =============================================================================
# VALIDATION AND PRICING
# =============================================================================

def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_quantity(value) -> Decimal:
    try:
        quantity = Decimal(str(value)).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)
    except Exception as exc:
        raise ValidationError("quantity must be a number", {"quantity": value}) from exc
    if quantity <= 0:
        raise ValidationError("quantity must be positive", {"quantity": str(value)})
    return quantity


def _integral_quantity(product: Product, quantity: Decimal) -> int:
    if quantity != quantity.to_integral_value():
        raise ValidationError(
            "Quantity must be a whole number for unit-sold products",
            {"product_id": product.id, "quantity": str(quantity)},
        )
    return int(quantity)


def _non_negative_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_request(request: SettlementRequest) -> None:
    """Shape checks that need no store access."""
    if not request.items:
        raise ValidationError("At least one item is required")
    if not request.payments:
        raise ValidationError("At least one payment is required")

    for item in request.items:
        item.quantity = normalize_quantity(item.quantity)
        if item.discount_cents is None or item.discount_cents < 0:
            raise ValidationError("Item discount cannot be negative", {"product_id": item.product_id})
        flavor_count = item.flavor_count
        if flavor_count is not None and (isinstance(flavor_count, bool) or not isinstance(flavor_count, int)):
            raise ValidationError("flavor_count must be an integer", {"product_id": item.product_id})

    for payment in request.payments:
        payment.method = (payment.method or "").upper()
        if payment.method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method '{payment.method}'",
                {"allowed": list(PAYMENT_METHODS)},
            )
        if not _non_negative_int(payment.amount_cents):
            raise ValidationError("Payment amount must be a non-negative integer (cents)")

    for name in ("discount_cents", "additional_fee_cents", "delivery_fee_cents",
                 "loyalty_points_used", "cashback_used_cents"):
        value = getattr(request, name)
        if not _non_negative_int(value):
            raise ValidationError(f"{name} must be a non-negative integer")

    if request.coupon_code and not request.customer_id:
        raise ValidationError("A customer is required to use a coupon")
    if (request.loyalty_points_used or request.cashback_used_cents) and not request.customer_id:
        raise ValidationError("A customer is required to redeem rewards")


def price_line(product: Product, item: SettlementItem) -> PricedLine:
    """
    Price one line.

    - UNIT: sale_price * quantity (whole quantities only)
    - WEIGHT: round(sale_price * weight)
    - ASSEMBLED category: size required and owned by the category,
      flavor_count in [1, max_flavors], unit price = size_price / flavor_count
    """
    quantity = normalize_quantity(item.quantity)
    category = product.category
    size = None

    if category is not None and category.is_assembled:
        if item.size_id is None:
            raise InvalidStateError("Assembled products require a size", {"product_id": product.id})
        size = db.session.get(CategorySize, item.size_id)
        if size is None or size.category_id != category.id:
            raise InvalidStateError(
                "Size does not belong to the product's category",
                {"product_id": product.id, "size_id": item.size_id},
            )
        flavor_count = item.flavor_count if item.flavor_count is not None else 1
        if flavor_count < 1 or flavor_count > size.max_flavors:
            raise ValidationError(
                f"Flavor count must be between 1 and {size.max_flavors} for size {size.name}",
                {"size_id": size.id, "flavor_count": flavor_count, "max_flavors": size.max_flavors},
            )
        item.flavor_count = flavor_count
        size_price = (
            db.session.query(ProductSizePrice)
            .filter_by(product_id=product.id, size_id=size.id)
            .first()
        )
        if size_price is None:
            raise InvalidStateError(
                "Product has no price for the selected size",
                {"product_id": product.id, "size_id": size.id},
            )
        unit_price = round_cents(Decimal(size_price.price_cents) / Decimal(flavor_count))
        subtotal = unit_price * _integral_quantity(product, quantity)
    elif product.sale_type == "WEIGHT":
        unit_price = product.sale_price_cents
        subtotal = round_cents(Decimal(unit_price) * quantity)
    else:
        unit_price = product.sale_price_cents
        subtotal = unit_price * _integral_quantity(product, quantity)

    if item.discount_cents > subtotal:
        raise ValidationError("Item discount exceeds item subtotal", {"product_id": product.id})

    return PricedLine(
        item=item,
        product=product,
        size=size,
        quantity=quantity,
        unit_price_cents=unit_price,
        unit_cost_cents=current_cost_cents(product),
        subtotal_cents=subtotal,
        discount_cents=item.discount_cents,
    )


def _required_stock(items) -> dict[int, Decimal]:
    required = defaultdict(Decimal)
    for item in items:
        required[item.product_id] += normalize_quantity(item.quantity)
    return required


def _check_products(items, products: dict[int, Product]) -> None:
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError("Product not found", {"product_id": item.product_id})
        if not product.is_active:
            raise InvalidStateError("Product is inactive", {"product_id": product.id})

    for product_id, quantity in _required_stock(items).items():
        product = products[product_id]
        if product.track_stock and Decimal(product.current_stock) < quantity:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}",
                {
                    "product_id": product.id,
                    "available": str(product.current_stock),
                    "requested": str(quantity),
                },
            )


def _load_products(product_ids, *, lock: bool) -> dict[int, Product]:
    query = db.session.query(Product).filter(Product.id.in_(sorted(set(product_ids)))).order_by(Product.id)
    if lock:
        query = lock_for_update(query)
    return {p.id: p for p in query.all()}


def _require_open(session: CashSession | None, session_id: int) -> CashSession:
    if session is None:
        raise NotFoundError("Cash session not found", {"cash_session_id": session_id})
    if session.status != "OPEN":
        raise InvalidStateError(
            "Cash session is not open",
            {"cash_session_id": session_id, "status": session.status},
        )
    return session


def compute_totals(request: SettlementRequest, lines: list[PricedLine], loyalty_policy, coupon_discount: int = 0) -> OrderTotals:
    subtotal = sum(line.subtotal_cents for line in lines)
    discount = sum(line.discount_cents for line in lines) + request.discount_cents
    loyalty_discount = reward_service.points_value_cents(loyalty_policy, request.loyalty_points_used)
    total = (
        subtotal + request.fees_cents - discount - coupon_discount
        - loyalty_discount - request.cashback_used_cents
    )
    if total < 0:
        raise ValidationError(
            "Discounts exceed the order value",
            {"subtotal_cents": subtotal, "fees_cents": request.fees_cents, "total_cents": total},
        )
    return OrderTotals(
        subtotal_cents=subtotal,
        fees_cents=request.fees_cents,
        discount_cents=discount,
        coupon_discount_cents=coupon_discount,
        loyalty_discount_cents=loyalty_discount,
        cashback_used_cents=request.cashback_used_cents,
        total_cents=total,
    )


def coupon_base_cents(request: SettlementRequest, lines: list[PricedLine]) -> int:
    """Pre-coupon base: subtotal + fees - discounts, floored at zero."""
    subtotal = sum(line.subtotal_cents for line in lines)
    discount = sum(line.discount_cents for line in lines) + request.discount_cents
    return max(subtotal + request.fees_cents - discount, 0)


def _check_payments(request: SettlementRequest, total_cents: int) -> None:
    paid = sum(p.amount_cents for p in request.payments)
    if current_app.config.get("SETTLEMENT_REQUIRE_PAYMENT_MATCH", True):
        tolerance = current_app.config.get("SETTLEMENT_PAYMENT_TOLERANCE_CENTS", 1)
        if abs(paid - total_cents) > tolerance:
            raise ValidationError(
                "Payments do not match the order total",
                {"total_cents": total_cents, "paid_cents": paid},
            )


def _method_totals(payments) -> dict[str, int]:
    sums = defaultdict(int)
    for payment in payments:
        sums[payment.method] += payment.amount_cents
    return dict(sums)


# =============================================================================
# CHANNEL ADAPTERS (persistence shape only)
# =============================================================================

class ChannelAdapter:
    channel: Channel = None

    def prepare(self, request: SettlementRequest, session: CashSession):
        """Create (or lock) the order header and flush it so it has an id."""
        raise NotImplementedError

    def write_items(self, order, lines: list[PricedLine]) -> None:
        item_model = self.channel.item_model
        for line in lines:
            db.session.add(item_model(**{self.channel.link_field: order.id}, **line.snapshot()))

    def write_payments(self, order, payments: list[SettlementPayment]) -> None:
        payment_model = self.channel.payment_model
        for payment in payments:
            db.session.add(payment_model(
                **{self.channel.link_field: order.id},
                method=payment.method,
                amount_cents=payment.amount_cents,
            ))

    def finalize(self, order, request: SettlementRequest) -> None:
        pass


class SaleAdapter(ChannelAdapter):
    channel = SALE

    def prepare(self, request, session):
        sale = Sale(
            cash_session_id=session.id,
            customer_id=request.customer_id,
            user_id=request.actor_user_id,
            status="COMPLETED",
            notes=request.notes,
        )
        db.session.add(sale)
        db.session.flush()
        return sale


class ComandaAdapter(ChannelAdapter):
    """Closes an existing OPEN comanda; its ACTIVE items are re-snapshotted."""
    channel = COMANDA

    def prepare(self, request, session):
        comanda_id = request.extra.get("comanda_id")
        comanda = lock_for_update(db.session.query(Comanda).filter_by(id=comanda_id)).first()
        if not comanda:
            raise NotFoundError("Comanda not found", {"comanda_id": comanda_id})
        if comanda.status != "OPEN":
            raise InvalidStateError(
                f"Cannot close a comanda in status {comanda.status}",
                {"comanda_id": comanda_id, "status": comanda.status},
            )
        comanda.cash_session_id = session.id
        comanda.customer_id = request.customer_id
        comanda.additional_fee_cents = request.additional_fee_cents
        if request.notes:
            comanda.notes = request.notes
        return comanda

    def write_items(self, order, lines):
        by_id = {item.id: item for item in order.active_items}
        if {line.item.source_item_id for line in lines} != set(by_id):
            raise InvalidStateError("Comanda items changed during close; retry", {"comanda_id": order.id})
        for line in lines:
            row = by_id[line.item.source_item_id]
            for key, value in line.snapshot().items():
                setattr(row, key, value)

    def finalize(self, order, request):
        order.status = "CLOSED"
        order.closed_at = utcnow()
        order.closed_by_user_id = request.actor_user_id


class DeliveryAdapter(ChannelAdapter):
    channel = DELIVERY

    def prepare(self, request, session):
        extra = request.extra
        order = DeliveryOrder(
            cash_session_id=session.id,
            customer_id=request.customer_id,
            user_id=request.actor_user_id,
            address=extra.get("address"),
            neighborhood=extra.get("neighborhood"),
            city=extra.get("city"),
            reference_point=extra.get("reference_point"),
            estimated_time=extra.get("estimated_time"),
            delivery_fee_cents=request.delivery_fee_cents,
            status="RECEIVED",
            notes=request.notes,
        )
        db.session.add(order)
        db.session.flush()
        return order


ADAPTERS = {
    "SALE": SaleAdapter(),
    "COMANDA": ComandaAdapter(),
    "DELIVERY": DeliveryAdapter(),
}


# =============================================================================
# SETTLE
# =============================================================================

def settle(request: SettlementRequest) -> SettlementResult:
    """
    Settle an order atomically.

    Raises:
        InvalidStateError: session not OPEN, inactive product, bad size
        NotFoundError: session, product, customer or coupon missing
        InsufficientStockError: tracked stock below the requested quantity
        InsufficientBalanceError: redeemed rewards exceed the balance
        ValidationError: malformed request, payments mismatch, negative total
    """
    channel = get_channel(request.channel)
    request.channel = channel.name
    adapter = ADAPTERS[channel.name]
    validate_request(request)

    # Fail fast without locks; everything is re-checked under lock below.
    _require_open(db.session.get(CashSession, request.cash_session_id), request.cash_session_id)
    _check_products(request.items, _load_products([i.product_id for i in request.items], lock=False))

    def _op():
        begin_write()
        session = _require_open(
            lock_for_update(db.session.query(CashSession).filter_by(id=request.cash_session_id)).first(),
            request.cash_session_id,
        )
        products = _load_products([i.product_id for i in request.items], lock=True)
        _check_products(request.items, products)

        lines = [price_line(products[item.product_id], item) for item in request.items]

        customer = None
        if request.customer_id is not None:
            customer = reward_service._lock_customer(request.customer_id)

        loyalty_policy = reward_service.load_loyalty_policy()
        cashback_policy = reward_service.load_cashback_policy()

        quote = None
        coupon_discount = 0
        if request.coupon_code:
            quote = coupon_service.validate_coupon(
                request.coupon_code, coupon_base_cents(request, lines), request.customer_id
            )
            coupon_discount = quote.discount_cents

        totals = compute_totals(request, lines, loyalty_policy, coupon_discount)
        _check_payments(request, totals.total_cents)

        order = adapter.prepare(request, session)
        order_ref = channel.order_ref(order.id)
        order_links = channel.order_links(order.id)

        points_earned = 0
        cashback_earned = 0
        if customer is not None:
            reward_service._redeem_for_settlement(
                customer, loyalty_policy, cashback_policy,
                points=request.loyalty_points_used,
                cashback_cents=request.cashback_used_cents,
                order_ref=order_ref, order_links=order_links, user_id=request.actor_user_id,
            )
            reward_lines = [line.reward_line() for line in lines]
            points_earned = reward_service.calculate_points(loyalty_policy, totals.total_cents, reward_lines)
            cashback_earned = reward_service.calculate_cashback(cashback_policy, totals.total_cents, reward_lines)
            reward_service._earn_for_settlement(
                customer, loyalty_policy, cashback_policy,
                points=points_earned, cashback_cents=cashback_earned,
                order_ref=order_ref, order_links=order_links, user_id=request.actor_user_id,
            )

        order.subtotal_cents = totals.subtotal_cents
        order.discount_cents = totals.discount_cents
        order.coupon_id = quote.coupon.id if quote else None
        order.coupon_discount_cents = totals.coupon_discount_cents
        order.loyalty_points_used = request.loyalty_points_used
        order.loyalty_discount_cents = totals.loyalty_discount_cents
        order.cashback_used_cents = totals.cashback_used_cents
        order.total_cents = totals.total_cents
        order.loyalty_points_earned = points_earned
        order.cashback_earned_cents = cashback_earned
        order.loyalty_points_reversed = 0
        order.cashback_reversed_cents = 0

        adapter.write_items(order, lines)
        adapter.write_payments(order, request.payments)
        adapter.finalize(order, request)

        if quote is not None:
            coupon_service.apply_coupon(quote.coupon.id, request.customer_id, coupon_discount, order_ref)

        for product_id, quantity in _required_stock(request.items).items():
            product = products[product_id]
            if product.track_stock:
                product.current_stock = Decimal(product.current_stock) - quantity

        _apply_totals(session, totals.total_cents, _method_totals(request.payments))

        db.session.commit()
        logger.info(
            "Settled %s total=%s session=%s points=%s cashback=%s",
            order_ref, totals.total_cents, session.id, points_earned, cashback_earned,
        )
        balances = None
        if customer is not None:
            balances = {
                "loyalty_points": customer.loyalty_points,
                "cashback_balance_cents": customer.cashback_balance_cents,
            }
        return SettlementResult(
            channel=channel.name,
            order=order,
            totals=totals,
            points_earned=points_earned,
            cashback_earned_cents=cashback_earned,
            customer_balances=balances,
        )

    result = run_with_retry(_op)
    _post_card_fees(channel, result.order.id)
    return result


def _post_card_fees(channel: Channel, order_id: int) -> None:
    """Post-commit hook; a failure here never undoes a committed settlement."""
    if not current_app.config.get("CARD_FEE_AUTO_POST"):
        return
    try:
        generate_card_fees(channel.name, order_id)
    except Exception:
        logger.exception("Card-fee posting failed for %s", channel.order_ref(order_id))


# =============================================================================
# REVERSAL / REPLAY (caller's transaction)
# =============================================================================

def _settled_lines(channel: Channel, order) -> list:
    if channel is COMANDA:
        return order.active_items
    return list(order.items)


def _lock_open_session(order) -> CashSession:
    session = lock_for_update(db.session.query(CashSession).filter_by(id=order.cash_session_id)).first()
    return _require_open(session, order.cash_session_id)


def reverse_settlement(channel: Channel, order, *, user_id: int) -> None:
    """
    Undo stock, session totals and rewards of a settled order.

    Requires the order's cash session to still be OPEN: closed sessions
    are final and their totals are never rewritten by a cancellation.
    """
    session = _lock_open_session(order)
    lines = _settled_lines(channel, order)

    products = _load_products([line.product_id for line in lines], lock=True) if lines else {}
    for line in lines:
        product = products.get(line.product_id)
        if product is not None and product.track_stock:
            product.current_stock = Decimal(product.current_stock) + Decimal(line.quantity)

    _apply_totals(
        session,
        -order.total_cents,
        {method: -amount for method, amount in _method_totals(order.payments).items()},
    )

    if order.customer_id is not None:
        customer = reward_service._lock_customer(order.customer_id)
        reversed_ = reward_service._reverse_for_settlement(
            customer,
            points_earned=order.loyalty_points_earned or 0,
            points_used=order.loyalty_points_used or 0,
            cashback_earned_cents=order.cashback_earned_cents or 0,
            cashback_used_cents=order.cashback_used_cents or 0,
            order_ref=channel.order_ref(order.id),
            order_links=channel.order_links(order.id),
            user_id=user_id,
        )
        order.loyalty_points_reversed = reversed_["points_reversed"]
        order.cashback_reversed_cents = reversed_["cashback_reversed_cents"]


def reapply_settlement(channel: Channel, order, *, user_id: int) -> None:
    """
    Re-apply the recorded effects of a previously reversed order.

    Prices and rewards are not recomputed; the persisted snapshot is
    replayed. Stock is re-checked under lock. Only the earned rewards the
    reversal actually took back are credited again, so points the customer
    spent before the cancellation are not minted twice.
    """
    session = _lock_open_session(order)
    lines = _settled_lines(channel, order)

    products = _load_products([line.product_id for line in lines], lock=True) if lines else {}
    _check_products(lines, products)
    for product_id, quantity in _required_stock(lines).items():
        product = products[product_id]
        if product.track_stock:
            product.current_stock = Decimal(product.current_stock) - quantity

    _apply_totals(session, order.total_cents, _method_totals(order.payments))

    if order.customer_id is not None:
        customer = reward_service._lock_customer(order.customer_id)
        order_ref = channel.order_ref(order.id)
        order_links = channel.order_links(order.id)
        reward_service._earn_for_settlement(
            customer,
            reward_service.load_loyalty_policy(),
            reward_service.load_cashback_policy(),
            points=order.loyalty_points_reversed or 0,
            cashback_cents=order.cashback_reversed_cents or 0,
            order_ref=order_ref, order_links=order_links, user_id=user_id,
        )
        if order.loyalty_points_used:
            reward_service._post_points(
                customer, -order.loyalty_points_used, "REDEEM",
                description=f"Redeemed on {order_ref}", user_id=user_id, order_links=order_links,
            )
        if order.cashback_used_cents:
            reward_service._post_cashback(
                customer, -order.cashback_used_cents, "REDEEM",
                description=f"Used on {order_ref}", user_id=user_id, order_links=order_links,
            )
        order.loyalty_points_earned = order.loyalty_points_reversed or 0
        order.cashback_earned_cents = order.cashback_reversed_cents or 0
        order.loyalty_points_reversed = 0
        order.cashback_reversed_cents = 0


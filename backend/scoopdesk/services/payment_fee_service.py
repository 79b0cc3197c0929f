"""
Card-fee generator

WHY: Acquirers keep a percentage of card (and sometimes PIX) payments.
Each settled order's fees become one expense per payment method so the DRE
shows them as financial expenses.

IDEMPOTENCY: every expense is keyed by
    CARD_FEE-{SOURCE}-{order_id}-{METHOD}
and is skipped when a row with that reference already exists. Running the
generator twice over the same order yields exactly one row per method.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import PAYMENT_METHODS, PaymentMethodConfig
from scoopdesk.time_utils import utcnow
from . import financial_service
from .channels import CHANNELS, get_channel
from .concurrency import run_with_retry
from .outcomes import CREATED, SKIPPED_EXISTING, Outcome


logger = logging.getLogger(__name__)


def card_fee_reference(source: str, order_id: int, method: str) -> str:
    return f"CARD_FEE-{source.upper()}-{order_id}-{method.upper()}"


# =============================================================================
# CONFIGURATION
# =============================================================================

def fee_bps_by_method() -> dict[str, int]:
    """Active fee per method; methods without a row have no fee."""
    rows = db.session.query(PaymentMethodConfig).filter_by(is_active=True).all()
    return {row.method: row.fee_bps for row in rows}


def upsert_payment_method_config(method: str, *, fee_bps: int, settlement_days: int = 0, is_active: bool = True) -> PaymentMethodConfig:
    method = (method or "").upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method '{method}'")
    if not isinstance(fee_bps, int) or not 0 <= fee_bps <= 10000:
        raise ValidationError("fee_bps must be between 0 and 10000")

    config = db.session.query(PaymentMethodConfig).filter_by(method=method).first()
    if config is None:
        config = PaymentMethodConfig(method=method)
        db.session.add(config)
    config.fee_bps = fee_bps
    config.settlement_days = settlement_days
    config.is_active = is_active
    db.session.commit()
    return config


def list_payment_method_configs() -> list[PaymentMethodConfig]:
    return db.session.query(PaymentMethodConfig).order_by(PaymentMethodConfig.method).all()


# =============================================================================
# FEE MATH
# =============================================================================

def compute_fees(payments, fee_bps: dict[str, int]) -> dict[str, int]:
    """Group payment amounts by method and apply each method's fee."""
    amounts = defaultdict(int)
    for payment in payments:
        amounts[payment.method] += payment.amount_cents

    fees = {}
    for method, amount in amounts.items():
        bps = fee_bps.get(method, 0)
        if bps <= 0 or amount <= 0:
            continue
        fee = int((Decimal(amount) * Decimal(bps) / Decimal(10000)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if fee > 0:
            fees[method] = fee
    return fees


# =============================================================================
# GENERATOR
# =============================================================================

def _generate_for_order(channel, order, fee_bps: dict[str, int]) -> list[Outcome]:
    outcomes = []
    fees = compute_fees(order.payments, fee_bps)
    if not fees:
        return outcomes

    category = financial_service.ensure_category(*financial_service.CARD_FEE_CATEGORY)
    settled_at = getattr(order, channel.settled_at_attr, None) or utcnow()

    for method, fee in sorted(fees.items()):
        reference = card_fee_reference(channel.name, order.id, method)
        existing = financial_service.find_by_reference(reference)
        if existing:
            logger.debug("Card fee %s already posted", reference)
            outcomes.append(Outcome(SKIPPED_EXISTING, reference, existing[0].id, existing[0].amount_cents))
            continue

        txn = financial_service.create_transaction(
            category_id=category.id,
            transaction_type="EXPENSE",
            description=f"Taxa {method} - {channel.order_ref(order.id)}",
            amount_cents=fee,
            transaction_date=settled_at,
            status="PAID",
            reference_number=reference,
            commit=False,
            cash_session_id=order.cash_session_id,
            **channel.order_links(order.id),
        )
        outcomes.append(Outcome(CREATED, reference, txn.id, fee, {"method": method, "fee_bps": fee_bps[method]}))
    return outcomes


def generate_card_fees(source: str, order_id: int) -> list[Outcome]:
    """
    Post one PAID expense per payment method with a positive fee.

    Args:
        source: channel name (SALE, COMANDA, DELIVERY)
        order_id: settled order id

    Raises:
        NotFoundError: order does not exist
    """
    channel = get_channel(source)

    def _op():
        order = db.session.get(channel.order_model, order_id)
        if not order:
            raise NotFoundError("Order not found", {"source": channel.name, "order_id": order_id})
        if order.status not in channel.settled_statuses:
            raise InvalidStateError(
                "Card fees are only generated for settled orders",
                {"source": channel.name, "order_id": order_id, "status": order.status},
            )
        outcomes = _generate_for_order(channel, order, fee_bps_by_method())
        db.session.commit()
        created = [o for o in outcomes if o.kind == CREATED]
        if created:
            logger.info("Posted %s card-fee expense(s) for %s", len(created), channel.order_ref(order_id))
        return outcomes

    return run_with_retry(_op)


def generate_card_fees_for_session(cash_session_id: int) -> list[Outcome]:
    """Batch run over every settled order of a cash session."""
    def _op():
        fee_bps = fee_bps_by_method()
        outcomes = []
        for channel in CHANNELS:
            orders = (
                db.session.query(channel.order_model)
                .filter(channel.order_model.cash_session_id == cash_session_id, channel.settled_clause())
                .order_by(channel.order_model.id)
                .all()
            )
            for order in orders:
                outcomes.extend(_generate_for_order(channel, order, fee_bps))
        db.session.commit()
        return outcomes

    return run_with_retry(_op)

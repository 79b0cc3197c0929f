"""
Reward Engine: loyalty points and cashback.

WHY: Customers earn points and cashback on settled orders and spend them
later, either standalone or as a settlement discount. Balances must always
be explainable by the ledger.

DESIGN PRINCIPLES:
- Accrual math is pure: calculate_points / calculate_cashback take an
  injected policy object and never touch the session
- Every balance change goes through _post_points / _post_cashback, which
  write the ledger row with balance_after in the same flush
- Balances never go negative (InsufficientBalanceError)
- Functions prefixed with an underscore run inside the caller's
  transaction and never commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable

from ..extensions import db
from ..errors import InsufficientBalanceError, InvalidStateError, NotFoundError, ValidationError
from ..models import CashbackConfig, CashbackTransaction, Customer, LoyaltyConfig, LoyaltyTransaction
from scoopdesk.time_utils import days_after, to_utc_z, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .outcomes import CREATED, SKIPPED_EXISTING, Outcome, summarize


logger = logging.getLogger(__name__)

ELIGIBILITY_POLICIES = ("WHOLE_TOTAL", "PRO_RATED")


# =============================================================================
# POLICIES (injected configuration)
# =============================================================================

@dataclass(frozen=True)
class RewardLine:
    """What the engine needs to know about one settled line."""
    subtotal_cents: int
    eligible_for_loyalty: bool = True
    earns_cashback: bool = True


@dataclass(frozen=True)
class LoyaltyPolicy:
    is_active: bool = False
    points_per_real: Decimal = Decimal("1")
    min_purchase_for_points_cents: int = 0
    points_expiration_days: int | None = 365
    min_points_to_redeem: int = 100
    points_redemption_value_cents: int = 1
    apply_to_all_products: bool = True
    eligibility_policy: str = "WHOLE_TOTAL"

    @classmethod
    def from_config(cls, config: LoyaltyConfig | None) -> "LoyaltyPolicy":
        if config is None:
            return cls()
        return cls(
            is_active=bool(config.is_active),
            points_per_real=Decimal(str(config.points_per_real)),
            min_purchase_for_points_cents=config.min_purchase_for_points_cents or 0,
            points_expiration_days=config.points_expiration_days,
            min_points_to_redeem=config.min_points_to_redeem or 0,
            points_redemption_value_cents=config.points_redemption_value_cents or 0,
            apply_to_all_products=bool(config.apply_to_all_products),
            eligibility_policy=config.eligibility_policy or "WHOLE_TOTAL",
        )


@dataclass(frozen=True)
class CashbackPolicy:
    is_active: bool = False
    cashback_bps: int = 500
    min_purchase_for_cashback_cents: int = 0
    max_cashback_per_purchase_cents: int | None = None
    cashback_expiration_days: int | None = 180
    min_cashback_to_use_cents: int = 500
    apply_to_all_products: bool = True
    eligibility_policy: str = "WHOLE_TOTAL"

    @classmethod
    def from_config(cls, config: CashbackConfig | None) -> "CashbackPolicy":
        if config is None:
            return cls()
        return cls(
            is_active=bool(config.is_active),
            cashback_bps=config.cashback_bps or 0,
            min_purchase_for_cashback_cents=config.min_purchase_for_cashback_cents or 0,
            max_cashback_per_purchase_cents=config.max_cashback_per_purchase_cents,
            cashback_expiration_days=config.cashback_expiration_days,
            min_cashback_to_use_cents=config.min_cashback_to_use_cents or 0,
            apply_to_all_products=bool(config.apply_to_all_products),
            eligibility_policy=config.eligibility_policy or "WHOLE_TOTAL",
        )


def load_loyalty_policy() -> LoyaltyPolicy:
    """Fetch the loyalty configuration once per operation."""
    config = db.session.query(LoyaltyConfig).order_by(LoyaltyConfig.id.desc()).first()
    return LoyaltyPolicy.from_config(config)


def load_cashback_policy() -> CashbackPolicy:
    config = db.session.query(CashbackConfig).order_by(CashbackConfig.id.desc()).first()
    return CashbackPolicy.from_config(config)


# =============================================================================
# PURE ACCRUAL MATH
# =============================================================================

def eligible_amount(
    total_cents: int,
    lines: Iterable[RewardLine],
    *,
    flag: str,
    apply_to_all_products: bool,
    eligibility_policy: str,
) -> int:
    """
    Portion of the settled total that earns rewards.

    WHOLE_TOTAL: one eligible line makes the whole total count.
    PRO_RATED: total scaled by eligible_subtotal / subtotal (rounded down).
    """
    if total_cents <= 0:
        return 0
    if apply_to_all_products:
        return total_cents

    lines = list(lines)
    eligible_subtotal = sum(l.subtotal_cents for l in lines if getattr(l, flag))
    if eligible_subtotal <= 0:
        return 0

    if eligibility_policy == "PRO_RATED":
        subtotal = sum(l.subtotal_cents for l in lines)
        if subtotal <= 0:
            return 0
        share = Decimal(total_cents) * Decimal(eligible_subtotal) / Decimal(subtotal)
        return int(share.to_integral_value(rounding=ROUND_DOWN))

    return total_cents


def calculate_points(policy: LoyaltyPolicy, total_cents: int, lines: Iterable[RewardLine]) -> int:
    """floor(eligible reais * points_per_real); 0 when inactive or below minimum."""
    if not policy.is_active or total_cents < policy.min_purchase_for_points_cents:
        return 0
    amount = eligible_amount(
        total_cents,
        lines,
        flag="eligible_for_loyalty",
        apply_to_all_products=policy.apply_to_all_products,
        eligibility_policy=policy.eligibility_policy,
    )
    points = Decimal(amount) * policy.points_per_real / Decimal(100)
    return int(points.to_integral_value(rounding=ROUND_DOWN))


def calculate_cashback(policy: CashbackPolicy, total_cents: int, lines: Iterable[RewardLine]) -> int:
    """Eligible amount * cashback_bps, capped at max_cashback_per_purchase."""
    if not policy.is_active or total_cents < policy.min_purchase_for_cashback_cents:
        return 0
    amount = eligible_amount(
        total_cents,
        lines,
        flag="earns_cashback",
        apply_to_all_products=policy.apply_to_all_products,
        eligibility_policy=policy.eligibility_policy,
    )
    cashback = (Decimal(amount) * Decimal(policy.cashback_bps) / Decimal(10000)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    cashback_cents = int(cashback)
    if policy.max_cashback_per_purchase_cents is not None:
        cashback_cents = min(cashback_cents, policy.max_cashback_per_purchase_cents)
    return max(cashback_cents, 0)


def points_value_cents(policy: LoyaltyPolicy, points: int) -> int:
    return points * policy.points_redemption_value_cents


# =============================================================================
# LEDGER POSTING (caller's transaction)
# =============================================================================

def _lock_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return customer


def _post_points(
    customer: Customer,
    points: int,
    transaction_type: str,
    *,
    description: str | None = None,
    expires_at=None,
    user_id: int | None = None,
    order_links: dict | None = None,
) -> LoyaltyTransaction:
    balance_after = (customer.loyalty_points or 0) + points
    if balance_after < 0:
        raise InsufficientBalanceError(
            "Insufficient loyalty points",
            {"available": customer.loyalty_points, "requested": -points},
        )
    customer.loyalty_points = balance_after
    entry = LoyaltyTransaction(
        customer_id=customer.id,
        transaction_type=transaction_type,
        points=points,
        balance_after=balance_after,
        description=description,
        expires_at=expires_at,
        user_id=user_id,
        **(order_links or {}),
    )
    db.session.add(entry)
    return entry


def _post_cashback(
    customer: Customer,
    amount_cents: int,
    transaction_type: str,
    *,
    description: str | None = None,
    expires_at=None,
    user_id: int | None = None,
    order_links: dict | None = None,
) -> CashbackTransaction:
    balance_after = (customer.cashback_balance_cents or 0) + amount_cents
    if balance_after < 0:
        raise InsufficientBalanceError(
            "Insufficient cashback balance",
            {"available_cents": customer.cashback_balance_cents, "requested_cents": -amount_cents},
        )
    customer.cashback_balance_cents = balance_after
    entry = CashbackTransaction(
        customer_id=customer.id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=balance_after,
        description=description,
        expires_at=expires_at,
        user_id=user_id,
        **(order_links or {}),
    )
    db.session.add(entry)
    return entry


def _check_points_redeemable(policy: LoyaltyPolicy, customer: Customer, points: int) -> None:
    if points <= 0:
        raise ValidationError("points must be positive")
    if not policy.is_active:
        raise InvalidStateError("Loyalty program is not active")
    if points < policy.min_points_to_redeem:
        raise ValidationError(
            f"Minimum of {policy.min_points_to_redeem} points to redeem",
            {"min_points_to_redeem": policy.min_points_to_redeem},
        )
    if points > (customer.loyalty_points or 0):
        raise InsufficientBalanceError(
            "Insufficient loyalty points",
            {"available": customer.loyalty_points, "requested": points},
        )


def _check_cashback_usable(policy: CashbackPolicy, customer: Customer, amount_cents: int) -> None:
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be positive")
    if not policy.is_active:
        raise InvalidStateError("Cashback program is not active")
    if amount_cents > (customer.cashback_balance_cents or 0):
        raise InsufficientBalanceError(
            "Insufficient cashback balance",
            {"available_cents": customer.cashback_balance_cents, "requested_cents": amount_cents},
        )
    if (customer.cashback_balance_cents or 0) < policy.min_cashback_to_use_cents:
        raise ValidationError(
            "Cashback balance below the minimum required to use it",
            {"min_cashback_to_use_cents": policy.min_cashback_to_use_cents},
        )


def _redeem_for_settlement(
    customer: Customer,
    loyalty: LoyaltyPolicy,
    cashback: CashbackPolicy,
    *,
    points: int,
    cashback_cents: int,
    order_ref: str,
    order_links: dict,
    user_id: int | None,
) -> None:
    """Debit rewards spent as a settlement discount."""
    if points:
        _check_points_redeemable(loyalty, customer, points)
        _post_points(
            customer, -points, "REDEEM",
            description=f"Redeemed on {order_ref}", user_id=user_id, order_links=order_links,
        )
    if cashback_cents:
        _check_cashback_usable(cashback, customer, cashback_cents)
        _post_cashback(
            customer, -cashback_cents, "REDEEM",
            description=f"Used on {order_ref}", user_id=user_id, order_links=order_links,
        )


def _earn_for_settlement(
    customer: Customer,
    loyalty: LoyaltyPolicy,
    cashback: CashbackPolicy,
    *,
    points: int,
    cashback_cents: int,
    order_ref: str,
    order_links: dict,
    user_id: int | None,
) -> None:
    if points > 0:
        _post_points(
            customer, points, "EARN",
            description=f"Earned on {order_ref}",
            expires_at=days_after(loyalty.points_expiration_days),
            user_id=user_id, order_links=order_links,
        )
    if cashback_cents > 0:
        _post_cashback(
            customer, cashback_cents, "EARN",
            description=f"Earned on {order_ref}",
            expires_at=days_after(cashback.cashback_expiration_days),
            user_id=user_id, order_links=order_links,
        )


def _reverse_for_settlement(
    customer: Customer,
    *,
    points_earned: int,
    points_used: int,
    cashback_earned_cents: int,
    cashback_used_cents: int,
    order_ref: str,
    order_links: dict,
    user_id: int | None,
) -> dict:
    """
    Undo a settlement's reward effects with one REVERSAL row per currency.

    Spent rewards are refunded and earned rewards are taken back. When the
    customer already spent what was earned, the debit is capped at the
    available balance so the balance never goes negative.
    """
    points_delta = points_used - points_earned
    if customer.loyalty_points + points_delta < 0:
        points_delta = -customer.loyalty_points
    cashback_delta = cashback_used_cents - cashback_earned_cents
    if customer.cashback_balance_cents + cashback_delta < 0:
        cashback_delta = -customer.cashback_balance_cents

    if points_earned or points_used:
        _post_points(
            customer, points_delta, "REVERSAL",
            description=f"Reversal of {order_ref}", user_id=user_id, order_links=order_links,
        )
    if cashback_earned_cents or cashback_used_cents:
        _post_cashback(
            customer, cashback_delta, "REVERSAL",
            description=f"Reversal of {order_ref}", user_id=user_id, order_links=order_links,
        )
    return {
        "points_delta": points_delta,
        "cashback_delta_cents": cashback_delta,
        "points_reversed": points_used - points_delta,
        "cashback_reversed_cents": cashback_used_cents - cashback_delta,
    }


# =============================================================================
# STANDALONE OPERATIONS
# =============================================================================

def redeem_points(customer_id: int, points: int, *, user_id: int | None = None, description: str | None = None) -> LoyaltyTransaction:
    """
    Spend points outside of a settlement.

    Raises:
        InsufficientBalanceError: points exceed the current balance
        ValidationError: below min_points_to_redeem
    """
    def _op():
        begin_write()
        policy = load_loyalty_policy()
        customer = _lock_customer(customer_id)
        _check_points_redeemable(policy, customer, points)
        entry = _post_points(customer, -points, "REDEEM", description=description or "Points redeemed", user_id=user_id)
        db.session.commit()
        logger.info("Customer %s redeemed %s points", customer_id, points)
        return entry

    return run_with_retry(_op)


def redeem_cashback(customer_id: int, amount_cents: int, *, user_id: int | None = None, description: str | None = None) -> CashbackTransaction:
    def _op():
        begin_write()
        policy = load_cashback_policy()
        customer = _lock_customer(customer_id)
        _check_cashback_usable(policy, customer, amount_cents)
        entry = _post_cashback(customer, -amount_cents, "REDEEM", description=description or "Cashback used", user_id=user_id)
        db.session.commit()
        logger.info("Customer %s used %s cents of cashback", customer_id, amount_cents)
        return entry

    return run_with_retry(_op)


def adjust_points(customer_id: int, delta: int, reason: str, *, user_id: int | None = None) -> LoyaltyTransaction:
    """Manual correction; cannot make the balance negative."""
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        customer = _lock_customer(customer_id)
        entry = _post_points(customer, delta, "ADJUSTMENT", description=reason, user_id=user_id)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def adjust_cashback(customer_id: int, delta_cents: int, reason: str, *, user_id: int | None = None) -> CashbackTransaction:
    if delta_cents == 0:
        raise ValidationError("delta_cents must be non-zero")
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        customer = _lock_customer(customer_id)
        entry = _post_cashback(customer, delta_cents, "ADJUSTMENT", description=reason, user_id=user_id)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def points_statement(customer_id: int, limit: int = 50) -> dict:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    rows = (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "customer_id": customer_id,
        "loyalty_points": customer.loyalty_points,
        "transactions": [r.to_dict() for r in rows],
    }


def cashback_statement(customer_id: int, limit: int = 50) -> dict:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    rows = (
        db.session.query(CashbackTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(CashbackTransaction.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "customer_id": customer_id,
        "cashback_balance_cents": customer.cashback_balance_cents,
        "transactions": [r.to_dict() for r in rows],
    }


def verify_ledger(customer_id: int) -> dict:
    """Cross-check stored balances against the ledger sums."""
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    points_sum = (
        db.session.query(db.func.coalesce(db.func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.customer_id == customer_id)
        .scalar()
    )
    cashback_sum = (
        db.session.query(db.func.coalesce(db.func.sum(CashbackTransaction.amount_cents), 0))
        .filter(CashbackTransaction.customer_id == customer_id)
        .scalar()
    )
    return {
        "customer_id": customer_id,
        "loyalty_points": customer.loyalty_points,
        "loyalty_ledger_sum": int(points_sum),
        "loyalty_consistent": int(points_sum) == customer.loyalty_points,
        "cashback_balance_cents": customer.cashback_balance_cents,
        "cashback_ledger_sum": int(cashback_sum),
        "cashback_consistent": int(cashback_sum) == customer.cashback_balance_cents,
    }


# =============================================================================
# EXPIRY JOBS
# =============================================================================

ORDER_LINK_COLUMNS = ("sale_id", "comanda_id", "delivery_order_id")


def _reversed_after(model, earn) -> bool:
    """A later REVERSAL of the same order already took this accrual back."""
    links = {name: getattr(earn, name) for name in ORDER_LINK_COLUMNS if getattr(earn, name) is not None}
    if not links:
        return False
    return (
        db.session.query(model.id)
        .filter_by(customer_id=earn.customer_id, transaction_type="REVERSAL", **links)
        .filter(model.id > earn.id)
        .first()
        is not None
    )


def _expire_rewards(model, amount_attr: str, balance_attr: str, post, *, label: str, as_of, dry_run: bool) -> dict:
    """
    Write off lapsed EARN rows with one EXPIRE row each.

    The amount is the EARN amount capped at the customer's balance, so what
    was already spent is not taken twice. EARN rows that already have an
    EXPIRE row (source_transaction_id) are skipped, which makes re-runs
    no-ops; EARN rows of reversed orders are skipped as well.
    """
    as_of = as_of or utcnow()

    def _op():
        begin_write()
        amount_col = getattr(model, amount_attr)
        lapsed = (
            db.session.query(model)
            .filter(
                model.transaction_type == "EARN",
                model.expires_at.isnot(None),
                model.expires_at < as_of,
                amount_col > 0,
            )
            .order_by(model.customer_id, model.id)
            .all()
        )
        already_expired = set()
        if lapsed:
            rows = db.session.query(model.source_transaction_id).filter(
                model.transaction_type == "EXPIRE",
                model.source_transaction_id.in_([earn.id for earn in lapsed]),
            ).all()
            already_expired = {row[0] for row in rows}

        outcomes = []
        customers: dict[int, Customer] = {}
        balances: dict[int, int] = {}
        total = 0
        for earn in lapsed:
            reference = f"EXPIRE-{label}-{earn.id}"
            detail = {"customer_id": earn.customer_id}
            if earn.id in already_expired:
                outcomes.append(Outcome(SKIPPED_EXISTING, reference, earn.id, None, detail))
                continue
            if _reversed_after(model, earn):
                outcomes.append(Outcome(SKIPPED_EXISTING, reference, earn.id, None, dict(detail, reason="reversed")))
                continue

            if earn.customer_id not in customers:
                customers[earn.customer_id] = _lock_customer(earn.customer_id)
                balances[earn.customer_id] = getattr(customers[earn.customer_id], balance_attr) or 0
            amount = min(getattr(earn, amount_attr), balances[earn.customer_id])
            balances[earn.customer_id] -= amount
            total += amount
            detail["amount"] = amount

            if dry_run:
                outcomes.append(Outcome(CREATED, reference, None, amount, dict(detail, dry_run=True)))
                continue

            entry = post(
                customers[earn.customer_id], -amount, "EXPIRE",
                description=f"Expiry of {label.lower()} earned on {earn.created_at:%Y-%m-%d}",
            )
            entry.source_transaction_id = earn.id
            db.session.flush()
            outcomes.append(Outcome(CREATED, reference, entry.id, amount, detail))

        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()

        counts = summarize(outcomes)
        logger.info(
            "%s expiry: scanned=%s expired=%s total=%s dry_run=%s",
            label, len(lapsed), counts[CREATED], total, dry_run,
        )
        return {
            "dry_run": dry_run,
            "as_of": to_utc_z(as_of),
            "scanned": len(lapsed),
            "expired": counts[CREATED],
            "skipped_existing": counts[SKIPPED_EXISTING],
            "total_expired": total,
            "customers_affected": len({o.detail["customer_id"] for o in outcomes if o.kind == CREATED}),
            "outcomes": outcomes,
        }

    return run_with_retry(_op)


def expire_points(as_of=None, *, dry_run: bool = False) -> dict:
    """Expire loyalty points earned before their expires_at (default: now)."""
    return _expire_rewards(
        LoyaltyTransaction, "points", "loyalty_points", _post_points,
        label="POINTS", as_of=as_of, dry_run=dry_run,
    )


def expire_cashback(as_of=None, *, dry_run: bool = False) -> dict:
    return _expire_rewards(
        CashbackTransaction, "amount_cents", "cashback_balance_cents", _post_cashback,
        label="CASHBACK", as_of=as_of, dry_run=dry_run,
    )


# =============================================================================
# CONFIGURATION
# =============================================================================

LOYALTY_FIELDS = {
    "points_per_real", "min_purchase_for_points_cents", "points_expiration_days",
    "min_points_to_redeem", "points_redemption_value_cents", "apply_to_all_products",
    "eligibility_policy", "is_active",
}
CASHBACK_FIELDS = {
    "cashback_bps", "min_purchase_for_cashback_cents", "max_cashback_per_purchase_cents",
    "cashback_expiration_days", "min_cashback_to_use_cents", "apply_to_all_products",
    "eligibility_policy", "is_active",
}


def _upsert_config(model, data: dict, allowed: set[str]):
    unknown = set(data) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    policy = data.get("eligibility_policy")
    if policy is not None and policy not in ELIGIBILITY_POLICIES:
        raise ValidationError(f"eligibility_policy must be one of {', '.join(ELIGIBILITY_POLICIES)}")

    config = db.session.query(model).order_by(model.id.desc()).first()
    if config is None:
        config = model()
        db.session.add(config)
    for key, value in data.items():
        setattr(config, key, value)
    db.session.commit()
    return config


def update_loyalty_config(data: dict) -> LoyaltyConfig:
    if "points_per_real" in data:
        data = dict(data, points_per_real=Decimal(str(data["points_per_real"])))
        if data["points_per_real"] < 0:
            raise ValidationError("points_per_real cannot be negative")
    return _upsert_config(LoyaltyConfig, data, LOYALTY_FIELDS)


def update_cashback_config(data: dict) -> CashbackConfig:
    bps = data.get("cashback_bps")
    if bps is not None and not 0 <= int(bps) <= 10000:
        raise ValidationError("cashback_bps must be between 0 and 10000")
    return _upsert_config(CashbackConfig, data, CASHBACK_FIELDS)

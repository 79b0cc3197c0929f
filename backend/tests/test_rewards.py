"""Loyalty points and cashback: accrual math, ledger and balance rules."""

from datetime import timedelta
from decimal import Decimal

import pytest

from scoopdesk.errors import InsufficientBalanceError, InvalidStateError, ValidationError
from scoopdesk.extensions import db
from scoopdesk.models import CashbackTransaction, Customer, LoyaltyTransaction
from scoopdesk.services import reward_service, sale_service
from scoopdesk.services.outcomes import CREATED, SKIPPED_EXISTING
from scoopdesk.services.reward_service import (
    CashbackPolicy,
    LoyaltyPolicy,
    RewardLine,
    calculate_cashback,
    calculate_points,
    eligible_amount,
)
from scoopdesk.time_utils import utcnow
from conftest import CASHIER_ID, MANAGER_ID, make_request


LINES = [
    RewardLine(subtotal_cents=3000, eligible_for_loyalty=True, earns_cashback=True),
    RewardLine(subtotal_cents=1000, eligible_for_loyalty=False, earns_cashback=False),
]


# =============================================================================
# PURE MATH
# =============================================================================

def test_whole_total_counts_entire_order_when_any_line_eligible():
    amount = eligible_amount(
        3600, LINES, flag="eligible_for_loyalty",
        apply_to_all_products=False, eligibility_policy="WHOLE_TOTAL",
    )
    assert amount == 3600


def test_pro_rated_scales_by_eligible_share():
    # 3600 * 3000 / 4000 = 2700
    amount = eligible_amount(
        3600, LINES, flag="eligible_for_loyalty",
        apply_to_all_products=False, eligibility_policy="PRO_RATED",
    )
    assert amount == 2700


def test_no_eligible_lines_earns_nothing():
    lines = [RewardLine(subtotal_cents=500, eligible_for_loyalty=False, earns_cashback=False)]
    for policy in ("WHOLE_TOTAL", "PRO_RATED"):
        assert eligible_amount(
            500, lines, flag="earns_cashback",
            apply_to_all_products=False, eligibility_policy=policy,
        ) == 0


def test_points_floor():
    policy = LoyaltyPolicy(is_active=True, points_per_real=Decimal("1.5"))
    # R$ 36,99 * 1.5 = 55.485 -> 55
    assert calculate_points(policy, 3699, LINES) == 55


def test_points_inactive_or_below_minimum():
    assert calculate_points(LoyaltyPolicy(is_active=False), 10000, LINES) == 0
    policy = LoyaltyPolicy(is_active=True, min_purchase_for_points_cents=5000)
    assert calculate_points(policy, 4999, LINES) == 0


def test_cashback_rounding_and_cap():
    policy = CashbackPolicy(is_active=True, cashback_bps=250)
    # 2.5% of 1010 = 25.25 -> 25
    assert calculate_cashback(policy, 1010, LINES) == 25
    capped = CashbackPolicy(is_active=True, cashback_bps=1000, max_cashback_per_purchase_cents=300)
    assert calculate_cashback(capped, 10000, LINES) == 300


def test_missing_config_means_inactive(db_session):
    assert reward_service.load_loyalty_policy().is_active is False
    assert reward_service.load_cashback_policy().is_active is False


# =============================================================================
# SETTLEMENT INTEGRATION
# =============================================================================

def test_sale_earns_points_and_cashback(db_session, cash_session, catalog, customer, rewards_on):
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)], customer_id=customer.id,
    ))
    assert result.points_earned == 20
    assert result.cashback_earned_cents == 100
    assert result.customer_balances == {"loyalty_points": 20, "cashback_balance_cents": 100}

    earn = db.session.query(LoyaltyTransaction).filter_by(customer_id=customer.id).one()
    assert earn.transaction_type == "EARN"
    assert earn.sale_id == result.order.id
    assert earn.expires_at is not None


def test_sale_without_customer_earns_nothing(db_session, cash_session, catalog, rewards_on):
    result = sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)]))
    assert result.points_earned == 0
    assert db.session.query(LoyaltyTransaction).count() == 0


def test_pro_rated_settlement_skips_ineligible_products(db_session, cash_session, catalog, customer, rewards_on):
    reward_service.update_loyalty_config({"apply_to_all_products": False, "eligibility_policy": "PRO_RATED"})
    reward_service.update_cashback_config({"apply_to_all_products": False, "eligibility_policy": "PRO_RATED"})
    # picole 10,00 eligible, agua 3,00 not: 13,00 * 10/13 = 10,00
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 2), (catalog["agua"], 1)], [("CASH", 1300)], customer_id=customer.id,
    ))
    assert result.points_earned == 10
    assert result.cashback_earned_cents == 50


def test_redeem_points_and_cashback_in_sale(db_session, cash_session, catalog, customer, rewards_on):
    reward_service.adjust_points(customer.id, 200, "welcome bonus", user_id=MANAGER_ID)
    reward_service.adjust_cashback(customer.id, 500, "welcome bonus", user_id=MANAGER_ID)

    # 20,00 - 1,00 (100 points) - 2,00 cashback = 17,00
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 1700)],
        customer_id=customer.id, loyalty_points_used=100, cashback_used_cents=200,
    ))
    sale = result.order
    assert sale.loyalty_discount_cents == 100
    assert sale.cashback_used_cents == 200
    assert sale.total_cents == 1700
    # earned on the paid total
    assert result.points_earned == 17
    assert result.cashback_earned_cents == 85

    balances = reward_service.verify_ledger(customer.id)
    assert balances["loyalty_points"] == 200 - 100 + 17
    assert balances["cashback_balance_cents"] == 500 - 200 + 85
    assert balances["loyalty_consistent"] and balances["cashback_consistent"]


def test_redeem_more_than_balance_rolls_back(db_session, cash_session, catalog, customer, rewards_on):
    reward_service.adjust_points(customer.id, 50, "bonus")
    with pytest.raises(InsufficientBalanceError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 4)], [("CASH", 1900)],
            customer_id=customer.id, loyalty_points_used=100,
        ))
    assert db.session.get(Customer, customer.id).loyalty_points == 50


def test_rewards_redemption_requires_customer(db_session, cash_session, catalog, rewards_on):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 1)], [("CASH", 400)], loyalty_points_used=100,
        ))


# =============================================================================
# STANDALONE OPERATIONS
# =============================================================================

def test_redeem_points_minimum(db_session, customer, rewards_on):
    reward_service.adjust_points(customer.id, 100, "bonus")
    with pytest.raises(ValidationError):
        reward_service.redeem_points(customer.id, 5)
    entry = reward_service.redeem_points(customer.id, 40, user_id=CASHIER_ID)
    assert entry.points == -40
    assert entry.balance_after == 60


def test_redeem_when_program_inactive(db_session, customer):
    reward_service.adjust_points(customer.id, 100, "bonus")
    with pytest.raises(InvalidStateError):
        reward_service.redeem_points(customer.id, 100)


def test_cashback_minimum_balance(db_session, customer, rewards_on):
    reward_service.adjust_cashback(customer.id, 50, "bonus")
    with pytest.raises(ValidationError):
        reward_service.redeem_cashback(customer.id, 50)


def test_adjust_cannot_go_negative(db_session, customer):
    reward_service.adjust_points(customer.id, 10, "bonus")
    with pytest.raises(InsufficientBalanceError):
        reward_service.adjust_points(customer.id, -11, "correction")
    with pytest.raises(ValidationError):
        reward_service.adjust_cashback(customer.id, 0, "noop")
    with pytest.raises(ValidationError):
        reward_service.adjust_cashback(customer.id, 10, "")


def test_ledger_balance_after_chain(db_session, customer, rewards_on):
    reward_service.adjust_points(customer.id, 100, "a")
    reward_service.adjust_points(customer.id, 50, "b")
    reward_service.redeem_points(customer.id, 30)
    rows = (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer.id)
        .order_by(LoyaltyTransaction.id)
        .all()
    )
    running = 0
    for row in rows:
        running += row.points
        assert row.balance_after == running
    assert running == 120

    statement = reward_service.points_statement(customer.id)
    assert statement["loyalty_points"] == 120
    assert [t["points"] for t in statement["transactions"]] == [-30, 50, 100]


def test_cashback_statement(db_session, customer):
    reward_service.adjust_cashback(customer.id, 700, "refund")
    statement = reward_service.cashback_statement(customer.id)
    assert statement["cashback_balance_cents"] == 700
    assert statement["transactions"][0]["transaction_type"] == "ADJUSTMENT"
    assert db.session.query(CashbackTransaction).count() == 1


def test_config_validation(db_session):
    with pytest.raises(ValidationError):
        reward_service.update_loyalty_config({"eligibility_policy": "SOMETIMES"})
    with pytest.raises(ValidationError):
        reward_service.update_cashback_config({"cashback_bps": 20000})
    with pytest.raises(ValidationError):
        reward_service.update_cashback_config({"surprise": True})


def test_config_upsert_keeps_single_row(db_session, rewards_on):
    reward_service.update_cashback_config({"cashback_bps": 300})
    policy = reward_service.load_cashback_policy()
    assert policy.cashback_bps == 300
    assert policy.is_active is True


# =============================================================================
# EXPIRY
# =============================================================================

def _earning_sale(cash_session, catalog, customer):
    return sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)], customer_id=customer.id,
    )).order


def _after_points_expiry():
    return utcnow() + timedelta(days=400)


def _rows(model, customer_id, transaction_type):
    return db.session.query(model).filter_by(customer_id=customer_id, transaction_type=transaction_type).all()


def test_expire_points_writes_off_lapsed_earn(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)
    reward_service.adjust_points(customer.id, 30, "welcome")
    earn = _rows(LoyaltyTransaction, customer.id, "EARN")[0]

    report = reward_service.expire_points(_after_points_expiry())

    assert report["scanned"] == 1
    assert report["expired"] == 1
    assert report["total_expired"] == 20
    assert report["customers_affected"] == 1
    assert report["outcomes"][0].reference_number == f"EXPIRE-POINTS-{earn.id}"
    [expire] = _rows(LoyaltyTransaction, customer.id, "EXPIRE")
    assert expire.points == -20
    assert expire.source_transaction_id == earn.id
    # manual adjustments never expire
    assert db.session.get(Customer, customer.id).loyalty_points == 30
    assert reward_service.verify_ledger(customer.id)["loyalty_consistent"]


def test_expire_points_rerun_is_noop(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)
    as_of = _after_points_expiry()
    reward_service.expire_points(as_of)

    again = reward_service.expire_points(as_of)

    assert again["expired"] == 0
    assert again["skipped_existing"] == 1
    assert [o.kind for o in again["outcomes"]] == [SKIPPED_EXISTING]
    assert len(_rows(LoyaltyTransaction, customer.id, "EXPIRE")) == 1


def test_nothing_expires_before_due(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)
    report = reward_service.expire_points()
    assert report["scanned"] == 0
    assert db.session.get(Customer, customer.id).loyalty_points == 20


def test_expiry_capped_at_balance(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)
    reward_service.adjust_points(customer.id, -15, "spent elsewhere")

    report = reward_service.expire_points(_after_points_expiry())

    assert report["total_expired"] == 5
    assert _rows(LoyaltyTransaction, customer.id, "EXPIRE")[0].points == -5
    assert db.session.get(Customer, customer.id).loyalty_points == 0
    assert reward_service.verify_ledger(customer.id)["loyalty_consistent"]


def test_expiry_skips_reversed_sale(db_session, cash_session, catalog, customer, rewards_on):
    sale = _earning_sale(cash_session, catalog, customer)
    sale_service.cancel_sale(sale.id, MANAGER_ID, "refund")

    report = reward_service.expire_points(_after_points_expiry())

    assert report["expired"] == 0
    assert report["outcomes"][0].detail["reason"] == "reversed"
    assert _rows(LoyaltyTransaction, customer.id, "EXPIRE") == []


def test_expiry_dry_run_writes_nothing(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)

    report = reward_service.expire_points(_after_points_expiry(), dry_run=True)

    assert report["dry_run"] is True
    assert [o.kind for o in report["outcomes"]] == [CREATED]
    assert report["outcomes"][0].detail["dry_run"] is True
    assert report["total_expired"] == 20
    assert _rows(LoyaltyTransaction, customer.id, "EXPIRE") == []
    assert db.session.get(Customer, customer.id).loyalty_points == 20


def test_expire_cashback(db_session, cash_session, catalog, customer, rewards_on):
    _earning_sale(cash_session, catalog, customer)
    as_of = utcnow() + timedelta(days=200)

    # cashback lapses after 180 days, points after 365
    assert reward_service.expire_points(as_of)["scanned"] == 0
    report = reward_service.expire_cashback(as_of)

    assert report["total_expired"] == 100
    [expire] = _rows(CashbackTransaction, customer.id, "EXPIRE")
    assert expire.amount_cents == -100
    refreshed = db.session.get(Customer, customer.id)
    assert refreshed.cashback_balance_cents == 0
    assert refreshed.loyalty_points == 20
    assert reward_service.verify_ledger(customer.id)["cashback_consistent"]

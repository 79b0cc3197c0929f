"""Coupon creation rules, validation and redemption inside a settlement."""

from datetime import timedelta

import pytest

from scoopdesk.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from scoopdesk.extensions import db
from scoopdesk.models import Coupon, CouponUsage, Sale
from scoopdesk.services import coupon_service, sale_service
from scoopdesk.time_utils import utcnow
from conftest import MANAGER_ID, make_request


def _coupon(**overrides):
    now = utcnow()
    data = {
        "code": "verao10",
        "discount_type": "PERCENTAGE",
        "discount_value": 1000,
        "valid_from": now - timedelta(days=1),
        "valid_to": now + timedelta(days=30),
    }
    data.update(overrides)
    return coupon_service.create_coupon(data, MANAGER_ID)


def test_code_is_stored_uppercase(db_session):
    coupon = _coupon()
    assert coupon.code == "VERAO10"
    assert coupon.usage_count == 0
    assert coupon.status == "ACTIVE"


def test_duplicate_code_conflicts(db_session):
    _coupon()
    with pytest.raises(ConflictError):
        _coupon(code="VERAO10")


@pytest.mark.parametrize("overrides", [
    {"discount_type": "BOGO"},
    {"discount_value": 0},
    {"discount_value": 10001},
    {"valid_to": utcnow() - timedelta(days=2)},
    {"usage_limit": 0},
    {"code": "  "},
])
def test_create_validation(db_session, overrides):
    with pytest.raises(ValidationError):
        _coupon(**overrides)


def test_percentage_discount_rounds_and_caps(db_session):
    coupon = _coupon(discount_value=1250, max_discount_cents=300)
    # 12.5% of 1999 = 249.875 -> 250
    assert coupon_service.compute_discount(coupon, 1999) == 250
    assert coupon_service.compute_discount(coupon, 10000) == 300


def test_fixed_discount_capped_at_base(db_session):
    coupon = _coupon(code="MENOS5", discount_type="FIXED", discount_value=500)
    assert coupon_service.compute_discount(coupon, 2000) == 500
    assert coupon_service.compute_discount(coupon, 350) == 350
    assert coupon_service.compute_discount(coupon, 0) == 0


def test_validate_unknown_code(db_session):
    with pytest.raises(NotFoundError):
        coupon_service.validate_coupon("NOPE", 1000)


def test_validate_window(db_session):
    coupon = _coupon()
    with pytest.raises(InvalidStateError):
        coupon_service.validate_coupon(coupon.code, 1000, now=coupon.valid_to + timedelta(seconds=1))
    with pytest.raises(InvalidStateError):
        coupon_service.validate_coupon(coupon.code, 1000, now=coupon.valid_from - timedelta(seconds=1))


def test_validate_minimum_purchase(db_session):
    coupon = _coupon(min_purchase_cents=3000)
    with pytest.raises(InvalidStateError):
        coupon_service.validate_coupon(coupon.code, 2999)
    quote = coupon_service.validate_coupon("verao10", 3000)
    assert quote.discount_cents == 300


def test_deactivated_coupon_rejected(db_session):
    coupon = _coupon()
    coupon_service.deactivate_coupon(coupon.id)
    with pytest.raises(InvalidStateError):
        coupon_service.validate_coupon(coupon.code, 1000)
    assert coupon_service.list_coupons(active_only=True) == []


def test_validate_does_not_consume(db_session):
    coupon = _coupon(usage_limit=1)
    coupon_service.validate_coupon(coupon.code, 1000)
    coupon_service.validate_coupon(coupon.code, 1000)
    assert db.session.get(Coupon, coupon.id).usage_count == 0


def test_coupon_applied_in_sale(db_session, cash_session, catalog, customer):
    coupon = _coupon()
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CREDIT_CARD", 1800)],
        customer_id=customer.id, coupon_code="verao10",
    ))
    sale = result.order
    assert sale.coupon_id == coupon.id
    assert sale.coupon_discount_cents == 200
    assert sale.total_cents == 1800

    usage = db.session.query(CouponUsage).one()
    assert usage.order_ref == f"SALE-{sale.id}"
    assert usage.discount_applied_cents == 200
    assert usage.customer_id == customer.id
    assert db.session.get(Coupon, coupon.id).usage_count == 1


def test_coupon_base_excludes_line_discounts(db_session, cash_session, catalog, customer):
    _coupon()
    # base = 2000 - 200 line discount - 300 order discount = 1500; 10% = 150
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4, {"discount_cents": 200})], [("CASH", 1350)],
        customer_id=customer.id, coupon_code="VERAO10", discount_cents=300,
    ))
    assert result.order.coupon_discount_cents == 150
    assert result.order.total_cents == 1350


def test_usage_limit_exhausted(db_session, cash_session, catalog, customer):
    _coupon(usage_limit=1)
    sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 2)], [("CASH", 900)],
        customer_id=customer.id, coupon_code="VERAO10",
    ))
    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 2)], [("CASH", 900)],
            customer_id=customer.id, coupon_code="VERAO10",
        ))
    assert db.session.query(Sale).count() == 1


def test_coupon_requires_customer(db_session, cash_session, catalog):
    _coupon()
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 2)], [("CASH", 900)], coupon_code="VERAO10",
        ))


def test_failed_sale_does_not_consume_coupon(db_session, cash_session, catalog, customer):
    coupon = _coupon(usage_limit=5)
    with pytest.raises(ValidationError):
        # payments do not match 1800
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)],
            customer_id=customer.id, coupon_code="VERAO10",
        ))
    assert db.session.get(Coupon, coupon.id).usage_count == 0
    assert db.session.query(CouponUsage).count() == 0


def _redeem(cash_session, catalog, customer, code="VERAO10"):
    return sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 2)], [("CASH", 900)],
        customer_id=customer.id, coupon_code=code,
    )).order


def test_update_mutable_terms(db_session):
    coupon = _coupon(usage_limit=5)
    new_end = coupon.valid_to + timedelta(days=10)

    updated = coupon_service.update_coupon(coupon.id, {
        "description": "Summer", "usage_limit": 10, "min_purchase_cents": 1000, "valid_to": new_end,
    })

    assert updated.description == "Summer"
    assert updated.usage_limit == 10
    assert updated.min_purchase_cents == 1000
    assert updated.valid_to == new_end


@pytest.mark.parametrize("data", [
    {"discount_value": 2000},
    {"code": "OTHER"},
    {"usage_limit": 0},
    {"min_purchase_cents": -1},
])
def test_update_rejects_invalid_changes(db_session, data):
    coupon = _coupon()
    with pytest.raises(ValidationError):
        coupon_service.update_coupon(coupon.id, data)


def test_update_window_must_stay_open(db_session):
    coupon = _coupon()
    with pytest.raises(ValidationError):
        coupon_service.update_coupon(coupon.id, {"valid_to": coupon.valid_from})


def test_usage_limit_cannot_drop_below_uses(db_session, cash_session, catalog, customer):
    coupon = _coupon(usage_limit=5)
    _redeem(cash_session, catalog, customer)
    _redeem(cash_session, catalog, customer)

    with pytest.raises(ValidationError):
        coupon_service.update_coupon(coupon.id, {"usage_limit": 1})
    assert coupon_service.update_coupon(coupon.id, {"usage_limit": 2}).usage_limit == 2


def test_expired_coupon_cannot_be_edited_or_reactivated(db_session):
    now = utcnow()
    coupon = _coupon(valid_from=now - timedelta(days=10), valid_to=now - timedelta(days=1))
    coupon_service.deactivate_coupon(coupon.id)

    with pytest.raises(InvalidStateError):
        coupon_service.update_coupon(coupon.id, {"description": "late"})
    with pytest.raises(InvalidStateError):
        coupon_service.reactivate_coupon(coupon.id)
    assert db.session.get(Coupon, coupon.id).status == "INACTIVE"


def test_reactivate_restores_validation(db_session):
    coupon = _coupon()
    coupon_service.deactivate_coupon(coupon.id)

    assert coupon_service.reactivate_coupon(coupon.id).status == "ACTIVE"
    assert coupon_service.validate_coupon(coupon.code, 1000).discount_cents == 100


def test_delete_unused_coupon(db_session):
    coupon = _coupon()
    coupon_service.delete_coupon(coupon.id)
    assert db.session.get(Coupon, coupon.id) is None
    with pytest.raises(NotFoundError):
        coupon_service.delete_coupon(coupon.id)


def test_used_coupon_cannot_be_deleted(db_session, cash_session, catalog, customer):
    coupon = _coupon()
    _redeem(cash_session, catalog, customer)

    with pytest.raises(ConflictError):
        coupon_service.delete_coupon(coupon.id)
    assert db.session.get(Coupon, coupon.id) is not None


def test_usage_history_filters_and_totals(db_session, cash_session, catalog, customer):
    first = _coupon()
    _coupon(code="MENOS1", discount_type="FIXED", discount_value=100)
    _redeem(cash_session, catalog, customer)
    _redeem(cash_session, catalog, customer)
    _redeem(cash_session, catalog, customer, code="MENOS1")

    everything = coupon_service.usage_history()
    assert everything["total_usages"] == 3
    # 10% of 1000 twice, plus 100 fixed
    assert everything["total_discount_cents"] == 300
    assert [u["code"] for u in everything["usages"]] == ["MENOS1", "VERAO10", "VERAO10"]

    only_first = coupon_service.usage_history(coupon_id=first.id, limit=1)
    assert only_first["total_usages"] == 2
    assert len(only_first["usages"]) == 1

    later = coupon_service.usage_history(start=utcnow() + timedelta(minutes=1))
    assert later == {"usages": [], "total_usages": 0, "total_discount_cents": 0}

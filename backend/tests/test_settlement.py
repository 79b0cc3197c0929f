"""Settlement pipeline: pricing, stock, totals invariant and atomicity."""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from scoopdesk.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from scoopdesk.extensions import db
from scoopdesk.models import CashSession, Product, Sale, SaleItem
from scoopdesk.services import cash_session_service, catalog_service, sale_service, settlement_service
from scoopdesk.services.settlement_service import round_cents, settle
from conftest import CASHIER_ID, make_request


def _stock(product_id):
    return Decimal(db.session.get(Product, product_id).current_stock)


def test_unit_sale_decrements_stock(db_session, cash_session, catalog):
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 3)], [("CASH", 1500)],
    ))
    sale = result.order
    assert sale.status == "COMPLETED"
    assert sale.subtotal_cents == 1500
    assert sale.total_cents == 1500
    assert len(sale.items) == 1
    assert sale.items[0].product_name == "Picolé de Limão"
    assert sale.items[0].unit_cost_cents == 200
    assert _stock(catalog["picole"].id) == Decimal("7")


def test_weight_item_rounds_half_up(db_session, cash_session, catalog):
    # 0.355 kg * 59,90 = 21.2645 -> 21,26
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["sorvete_kg"], "0.355")], [("PIX", 2126)],
    ))
    assert result.order.total_cents == 2126
    assert result.order.items[0].quantity == Decimal("0.355")


def test_unit_product_rejects_fractional_quantity(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], "1.5")], [("CASH", 750)],
        ))


def test_assembled_price_divided_by_flavors(db_session, cash_session, catalog):
    g = catalog["sizes"]["G"]
    # 25,00 / 3 = 8.333 -> 8,33
    result = sale_service.create_sale(make_request(
        cash_session.id,
        [(catalog["acai"], 1, {"size_id": g.id, "flavor_count": 3})],
        [("CASH", 833)],
    ))
    item = result.order.items[0]
    assert item.unit_price_cents == 833
    assert item.size_name == "G"
    assert item.flavor_count == 3


def test_assembled_flavor_count_above_max_fails_without_mutation(db_session, cash_session, catalog):
    g = catalog["sizes"]["G"]
    request = make_request(
        cash_session.id,
        [(catalog["picole"], 1), (catalog["acai"], 1, {"size_id": g.id, "flavor_count": 4})],
        [("CASH", 1125)],
    )
    with pytest.raises(ValidationError):
        sale_service.create_sale(request)

    assert db.session.query(Sale).count() == 0
    assert _stock(catalog["picole"].id) == Decimal("10")
    assert cash_session_service.get_session(cash_session.id).total_sales_cents == 0


def test_assembled_requires_size(db_session, cash_session, catalog):
    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["acai"], 1)], [("CASH", 1200)],
        ))


def test_size_from_other_category_rejected(db_session, cash_session, catalog):
    other = catalog_service.create_category("Milkshake", "ASSEMBLED", sizes=[{"name": "300ml", "max_flavors": 2}])
    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(
            cash_session.id,
            [(catalog["acai"], 1, {"size_id": other.sizes[0].id})],
            [("CASH", 1200)],
        ))


def test_insufficient_stock_rejected(db_session, cash_session, catalog):
    with pytest.raises(InsufficientStockError) as exc:
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 11)], [("CASH", 5500)],
        ))
    assert Decimal(exc.value.details["available"]) == Decimal("10")
    assert _stock(catalog["picole"].id) == Decimal("10")


def test_stock_checked_across_lines(db_session, cash_session, catalog):
    with pytest.raises(InsufficientStockError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["picole"], 6), (catalog["picole"], 5)], [("CASH", 5500)],
        ))


def test_stock_can_reach_zero(db_session, cash_session, catalog):
    sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 10)], [("CASH", 5000)]))
    assert _stock(catalog["picole"].id) == Decimal("0")


def test_inactive_product_rejected(db_session, cash_session, catalog):
    catalog_service.deactivate_product(catalog["agua"].id)
    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 300)]))


def test_unknown_product_rejected(db_session, cash_session, catalog):
    missing = SimpleNamespace(id=9999)
    with pytest.raises(NotFoundError):
        sale_service.create_sale(make_request(cash_session.id, [(missing, 1)], [("CASH", 300)]))


def test_session_must_be_open(db_session, cash_session, catalog):
    cash_session_service.cashier_close(cash_session.id, 0, user_id=CASHIER_ID)
    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 300)]))


def _commit_between_check_and_lock(monkeypatch, change):
    """Run change() and commit it after the lock-free pre-check, before the locked transaction."""
    calls = []
    real_begin_write = settlement_service.begin_write

    def _begin_write():
        if not calls:
            change()
            db.session.commit()
        calls.append(1)
        real_begin_write()

    monkeypatch.setattr(settlement_service, "begin_write", _begin_write)
    return calls


def test_stock_rechecked_under_lock(db_session, cash_session, catalog, monkeypatch):
    picole_id = catalog["picole"].id
    calls = _commit_between_check_and_lock(monkeypatch, lambda: db.session.execute(
        update(Product).where(Product.id == picole_id).values(current_stock=Decimal("2"))
    ))

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)]))

    assert calls == [1]
    assert Decimal(exc.value.details["available"]) == Decimal("2")
    assert _stock(picole_id) == Decimal("2")
    assert db.session.query(Sale).count() == 0
    assert cash_session_service.get_session(cash_session.id).total_sales_cents == 0


def test_session_state_rechecked_under_lock(db_session, cash_session, catalog, monkeypatch):
    session_id = cash_session.id
    calls = _commit_between_check_and_lock(monkeypatch, lambda: db.session.execute(
        update(CashSession).where(CashSession.id == session_id).values(status="CASHIER_CLOSED")
    ))

    with pytest.raises(InvalidStateError):
        sale_service.create_sale(make_request(session_id, [(catalog["picole"], 4)], [("CASH", 2000)]))

    assert calls == [1]
    assert _stock(catalog["picole"].id) == Decimal("10")
    assert db.session.query(Sale).count() == 0


def test_payments_must_match_total(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 250)]))


def test_payment_tolerance_of_one_cent(db_session, cash_session, catalog):
    result = sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 301)]))
    assert result.order.total_cents == 300


def test_payment_match_can_be_disabled(app, db_session, cash_session, catalog):
    app.config["SETTLEMENT_REQUIRE_PAYMENT_MATCH"] = False
    try:
        result = sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 5000)]))
    finally:
        app.config["SETTLEMENT_REQUIRE_PAYMENT_MATCH"] = True
    assert result.order.total_cents == 300
    assert cash_session_service.get_session(cash_session.id).total_cash_cents == 5000


def test_invalid_payment_method(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CHEQUE", 300)]))


@pytest.mark.parametrize("amount", [True, False, 300.0, "300"])
def test_payment_amount_must_be_integer_cents(db_session, cash_session, catalog, amount):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", amount)]))
    assert cash_session_service.get_session(cash_session.id).total_sales_cents == 0


def test_requires_items_and_payments(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(cash_session.id, [], [("CASH", 300)]))
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(cash_session.id, [(catalog["agua"], 1)], []))


def test_discounts_cannot_exceed_order(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["agua"], 1)], [("CASH", 0)], discount_cents=301,
        ))


def test_item_discount_above_subtotal_rejected(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        sale_service.create_sale(make_request(
            cash_session.id, [(catalog["agua"], 1, {"discount_cents": 400})], [("CASH", 0)],
        ))


def test_totals_invariant(db_session, cash_session, catalog):
    result = sale_service.create_sale(make_request(
        cash_session.id,
        [(catalog["picole"], 2, {"discount_cents": 100}), (catalog["agua"], 1)],
        [("CASH", 1100)],
        discount_cents=100,
    ))
    sale = result.order
    assert sum(i.subtotal_cents for i in sale.items) == sale.subtotal_cents == 1300
    assert sale.discount_cents == 200
    assert sale.total_cents == 1100
    assert sale.total_cents == (
        sale.subtotal_cents + sale.fees_cents - sale.discount_cents - sale.coupon_discount_cents
        - sale.loyalty_discount_cents - sale.cashback_used_cents
    )


def test_zero_total_order_allowed(db_session, cash_session, catalog):
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["agua"], 1)], [("CASH", 0)], discount_cents=300,
    ))
    assert result.order.total_cents == 0


def test_unknown_channel_rejected(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        settle(make_request(cash_session.id, [(catalog["agua"], 1)], [("CASH", 300)], channel="KIOSK"))


def test_cost_snapshot_uses_cost_history(db_session, cash_session, catalog):
    catalog_service.add_product_cost(catalog["picole"].id, 250)
    result = sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 1)], [("CASH", 500)]))
    assert result.order.items[0].unit_cost_cents == 250


def test_round_cents_half_up():
    assert round_cents(Decimal("0.5")) == 1
    assert round_cents(Decimal("2.5")) == 3
    assert round_cents(Decimal("2.49")) == 2


def test_items_persisted_once(db_session, cash_session, catalog):
    result = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 1), (catalog["agua"], 2)], [("CASH", 1100)],
    ))
    assert db.session.query(SaleItem).filter_by(sale_id=result.order.id).count() == 2

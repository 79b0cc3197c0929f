"""Comanda tabs: numbering, item editing, close-as-settlement, reopen, cancel."""

from decimal import Decimal

import pytest

from scoopdesk.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from scoopdesk.extensions import db
from scoopdesk.models import CashSession, ComandaPayment, Customer, Product
from scoopdesk.services import cash_session_service, comanda_service
from scoopdesk.services.settlement_service import SettlementPayment
from conftest import CASHIER_ID, MANAGER_ID


def _stock(product_id):
    return Decimal(db.session.get(Product, product_id).current_stock)


def _open(cash_session, **kwargs):
    return comanda_service.open_comanda(cash_session.id, CASHIER_ID, **kwargs)


def _add(comanda, product, quantity, **kwargs):
    return comanda_service.add_item(
        comanda.id, product_id=product.id, quantity=quantity, user_id=CASHIER_ID, **kwargs,
    )


def _pay(method, amount):
    return [SettlementPayment(method=method, amount_cents=amount)]


def test_numbers_increase_within_the_day(db_session, cash_session):
    first = _open(cash_session, table_number="4")
    second = _open(cash_session, customer_name="Balcão")
    assert (first.number, second.number) == (1, 2)
    assert first.business_date == second.business_date
    assert [c.id for c in comanda_service.list_open_comandas(cash_session.id)] == [first.id, second.id]


def test_open_requires_open_session(db_session, cash_session):
    cash_session_service.cashier_close(cash_session.id, 0, user_id=CASHIER_ID)
    with pytest.raises(InvalidStateError):
        _open(cash_session)


def test_items_preview_without_touching_stock(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 2)
    _add(comanda, catalog["acai"], 1, size_id=catalog["sizes"]["M"].id, flavor_count=2, item_notes="sem granola")

    refreshed = comanda_service.get_comanda(comanda.id)
    # 2 * 5,00 + 18,00 / 2
    assert refreshed.subtotal_cents == 1900
    assert refreshed.total_cents == 1900
    assert _stock(catalog["picole"].id) == Decimal("10")
    assert db.session.get(CashSession, cash_session.id).total_sales_cents == 0


def test_add_checks_stock_against_tab(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 6)
    with pytest.raises(InsufficientStockError):
        _add(comanda, catalog["picole"], 5)
    _add(comanda, catalog["picole"], 4)


def test_update_and_cancel_item(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    row = _add(comanda, catalog["picole"], 2)
    other = _add(comanda, catalog["agua"], 1)

    comanda_service.update_item(comanda.id, row.id, quantity=3, discount_cents=100)
    assert comanda_service.get_comanda(comanda.id).total_cents == 1500 - 100 + 300

    comanda_service.cancel_item(comanda.id, other.id)
    refreshed = comanda_service.get_comanda(comanda.id)
    assert refreshed.total_cents == 1400
    assert [i.id for i in refreshed.active_items] == [row.id]

    with pytest.raises(NotFoundError):
        comanda_service.update_item(comanda.id, other.id, quantity=1)


def test_update_stock_check_excludes_own_row(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    row = _add(comanda, catalog["picole"], 8)
    comanda_service.update_item(comanda.id, row.id, quantity=10)
    with pytest.raises(InsufficientStockError):
        comanda_service.update_item(comanda.id, row.id, quantity=11)


def test_close_settles_the_tab(db_session, cash_session, catalog, customer, rewards_on):
    comanda = _open(cash_session, table_number="7")
    _add(comanda, catalog["picole"], 2)
    _add(comanda, catalog["agua"], 1)

    result = comanda_service.close_comanda(
        comanda.id, payments=_pay("DEBIT_CARD", 1300), user_id=CASHIER_ID,
        customer_id=customer.id, additional_fee_cents=0,
    )

    closed = result.order
    assert result.channel == "COMANDA"
    assert closed.status == "CLOSED"
    assert closed.closed_at is not None
    assert closed.closed_by_user_id == CASHIER_ID
    assert closed.total_cents == 1300
    assert _stock(catalog["picole"].id) == Decimal("8")
    session = db.session.get(CashSession, cash_session.id)
    assert session.total_debit_cents == 1300
    assert result.points_earned == 13
    assert db.session.query(ComandaPayment).filter_by(comanda_id=comanda.id).count() == 1


def test_close_with_service_fee(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 2)
    result = comanda_service.close_comanda(
        comanda.id, payments=_pay("CASH", 1100), user_id=CASHIER_ID, additional_fee_cents=100,
    )
    assert result.order.additional_fee_cents == 100
    assert result.order.total_cents == 1100


def test_close_empty_tab_rejected(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    row = _add(comanda, catalog["picole"], 1)
    comanda_service.cancel_item(comanda.id, row.id)
    with pytest.raises(ValidationError):
        comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 0), user_id=CASHIER_ID)


def test_close_payment_mismatch_keeps_tab_open(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 2)
    with pytest.raises(ValidationError):
        comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 500), user_id=CASHIER_ID)
    assert comanda_service.get_comanda(comanda.id).status == "OPEN"
    assert _stock(catalog["picole"].id) == Decimal("10")


def test_closed_tab_is_frozen(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 1)
    comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 500), user_id=CASHIER_ID)
    with pytest.raises(InvalidStateError):
        _add(comanda, catalog["picole"], 1)
    with pytest.raises(InvalidStateError):
        comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 500), user_id=CASHIER_ID)


def test_reopen_reverses_and_clears_payments(db_session, cash_session, catalog, customer, rewards_on):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 2)
    comanda_service.close_comanda(
        comanda.id, payments=_pay("PIX", 1000), user_id=CASHIER_ID, customer_id=customer.id,
    )

    reopened = comanda_service.reopen_comanda(comanda.id, MANAGER_ID)

    assert reopened.status == "OPEN"
    assert reopened.closed_at is None
    assert reopened.payments == []
    assert reopened.loyalty_points_earned == 0
    assert len(reopened.active_items) == 1
    assert _stock(catalog["picole"].id) == Decimal("10")
    assert db.session.get(CashSession, cash_session.id).total_pix_cents == 0
    assert db.session.get(Customer, customer.id).loyalty_points == 0

    # can be closed again with a different payment
    _add(reopened, catalog["agua"], 1)
    result = comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 1300), user_id=CASHIER_ID)
    assert result.order.total_cents == 1300


def test_reopen_requires_closed(db_session, cash_session):
    comanda = _open(cash_session)
    with pytest.raises(InvalidStateError):
        comanda_service.reopen_comanda(comanda.id, MANAGER_ID)


def test_cancel_open_tab(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 1)
    cancelled = comanda_service.cancel_comanda(comanda.id, MANAGER_ID, "table left")
    assert cancelled.status == "CANCELLED"
    assert cancelled.cancelled_at is not None
    assert cancelled.notes == "table left"
    assert _stock(catalog["picole"].id) == Decimal("10")


def test_cancel_closed_tab_reverses(db_session, cash_session, catalog):
    comanda = _open(cash_session)
    _add(comanda, catalog["picole"], 3)
    comanda_service.close_comanda(comanda.id, payments=_pay("CASH", 1500), user_id=CASHIER_ID)

    comanda_service.cancel_comanda(comanda.id, MANAGER_ID, "charged twice")

    assert _stock(catalog["picole"].id) == Decimal("10")
    assert db.session.get(CashSession, cash_session.id).total_cash_cents == 0
    with pytest.raises(InvalidStateError):
        comanda_service.cancel_comanda(comanda.id, MANAGER_ID)

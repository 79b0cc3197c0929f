"""Delivery orders: settlement on receipt, status pipeline, fee table."""

from decimal import Decimal

import pytest

from scoopdesk.errors import InvalidStateError, ValidationError
from scoopdesk.extensions import db
from scoopdesk.models import CashSession, Customer, DeliveryOrder, Product
from scoopdesk.services import delivery_service
from conftest import CASHIER_ID, MANAGER_ID, make_request


ADDRESS = {
    "address": "Rua das Flores, 120",
    "neighborhood": "Centro",
    "city": "Campinas",
}


def _order(cash_session, catalog, customer, quantity=2, fee=500, **kwargs):
    return delivery_service.create_delivery_order(make_request(
        cash_session.id, [(catalog["picole"], quantity)], [("PIX", 500 * quantity + fee)],
        channel="DELIVERY", customer_id=customer.id, delivery_fee_cents=fee,
        extra=dict(ADDRESS), **kwargs,
    )).order


def test_customer_required(db_session, cash_session, catalog):
    with pytest.raises(ValidationError):
        delivery_service.create_delivery_order(make_request(
            cash_session.id, [(catalog["picole"], 1)], [("PIX", 500)], channel="DELIVERY",
        ))
    assert db.session.query(DeliveryOrder).count() == 0


def test_order_settled_on_receipt(db_session, cash_session, catalog, customer, rewards_on):
    order = _order(cash_session, catalog, customer)
    assert order.status == "RECEIVED"
    assert order.delivery_fee_cents == 500
    assert order.subtotal_cents == 1000
    assert order.total_cents == 1500
    assert order.neighborhood == "Centro"
    assert Decimal(db.session.get(Product, catalog["picole"].id).current_stock) == Decimal("8")
    assert db.session.get(CashSession, cash_session.id).total_pix_cents == 1500
    assert db.session.get(Customer, customer.id).loyalty_points == 15


def test_status_pipeline_stamps_times(db_session, cash_session, catalog, customer):
    order = _order(cash_session, catalog, customer)
    for status, stamp in (
        ("PREPARING", "preparing_at"),
        ("out_for_delivery", "out_for_delivery_at"),
        ("DELIVERED", "delivered_at"),
    ):
        updated = delivery_service.update_delivery_status(order.id, status, CASHIER_ID)
        assert updated.status == status.upper()
        assert getattr(updated, stamp) is not None


@pytest.mark.parametrize("target", ["DELIVERED", "OUT_FOR_DELIVERY", "RECEIVED"])
def test_invalid_transition_from_received(db_session, cash_session, catalog, customer, target):
    order = _order(cash_session, catalog, customer)
    with pytest.raises(InvalidStateError):
        delivery_service.update_delivery_status(order.id, target, CASHIER_ID)


def test_unknown_status(db_session, cash_session, catalog, customer):
    order = _order(cash_session, catalog, customer)
    with pytest.raises(ValidationError):
        delivery_service.update_delivery_status(order.id, "LOST", CASHIER_ID)


def test_delivered_is_terminal(db_session, cash_session, catalog, customer):
    order = _order(cash_session, catalog, customer)
    for status in ("PREPARING", "OUT_FOR_DELIVERY", "DELIVERED"):
        delivery_service.update_delivery_status(order.id, status, CASHIER_ID)
    with pytest.raises(InvalidStateError):
        delivery_service.cancel_delivery_order(order.id, MANAGER_ID, "late")


def test_cancel_reverses_settlement(db_session, cash_session, catalog, customer, rewards_on):
    order = _order(cash_session, catalog, customer)
    delivery_service.update_delivery_status(order.id, "PREPARING", CASHIER_ID)

    cancelled = delivery_service.cancel_delivery_order(order.id, MANAGER_ID, "customer unreachable")

    assert cancelled.status == "CANCELLED"
    assert cancelled.cancel_reason == "customer unreachable"
    assert cancelled.cancelled_at is not None
    assert Decimal(db.session.get(Product, catalog["picole"].id).current_stock) == Decimal("10")
    session = db.session.get(CashSession, cash_session.id)
    assert session.total_sales_cents == 0
    assert session.total_pix_cents == 0
    assert db.session.get(Customer, customer.id).loyalty_points == 0


def test_cancel_requires_reason(db_session, cash_session, catalog, customer):
    order = _order(cash_session, catalog, customer)
    with pytest.raises(ValidationError):
        delivery_service.cancel_delivery_order(order.id, MANAGER_ID, "")


# =============================================================================
# FEE TABLE
# =============================================================================

@pytest.fixture
def centro_fee(db_session):
    return delivery_service.upsert_delivery_fee({
        "neighborhood": "Centro",
        "city": "Campinas",
        "fee_cents": 700,
        "min_order_value_cents": 1000,
        "free_delivery_above_cents": 5000,
    })


def test_fee_lookup_is_case_insensitive(centro_fee):
    assert delivery_service.delivery_fee_for(" centro ", "CAMPINAS", 2000) == 700


def test_fee_free_above_threshold(centro_fee):
    assert delivery_service.delivery_fee_for("Centro", "Campinas", 5000) == 0


def test_fee_minimum_order(centro_fee):
    with pytest.raises(ValidationError):
        delivery_service.delivery_fee_for("Centro", "Campinas", 999)


def test_fee_area_not_served(centro_fee):
    with pytest.raises(ValidationError):
        delivery_service.delivery_fee_for("Barão Geraldo", "Campinas", 2000)


def test_inactive_fee_not_served(centro_fee):
    delivery_service.upsert_delivery_fee({"neighborhood": "Centro", "city": "Campinas", "fee_cents": 700, "is_active": False})
    with pytest.raises(ValidationError):
        delivery_service.delivery_fee_for("Centro", "Campinas", 2000)
    assert len(delivery_service.list_delivery_fees()) == 1


def test_order_uses_fee_table(db_session, cash_session, catalog, customer, centro_fee):
    # 4 picolés = 20,00 + 7,00 fee
    result = delivery_service.create_delivery_order(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 2700)],
        channel="DELIVERY", customer_id=customer.id,
        extra=dict(ADDRESS, fee_from_table=True),
    ))
    assert result.order.delivery_fee_cents == 700
    assert result.order.total_cents == 2700

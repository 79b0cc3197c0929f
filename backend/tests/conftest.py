"""
Pytest fixtures for scoopdesk backend tests.

Provides the app on an in-memory database, a per-test clean session, a
small ice-cream catalog and helpers to build settlement requests.
"""

from decimal import Decimal

import pytest

from scoopdesk import create_app
from scoopdesk.extensions import db
from scoopdesk.services import (
    cash_session_service,
    catalog_service,
    customer_service,
    reward_service,
)
from scoopdesk.services.settlement_service import SettlementItem, SettlementPayment, SettlementRequest


CASHIER_ID = 10
MANAGER_ID = 20


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CARD_FEE_AUTO_POST': False,
        'CASH_SESSION_REQUIRE_DISTINCT_MANAGER': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cashier_headers():
    return {'X-User-Id': str(CASHIER_ID), 'X-User-Role': 'CASHIER'}


@pytest.fixture(scope='function')
def manager_headers():
    return {'X-User-Id': str(MANAGER_ID), 'X-User-Role': 'MANAGER'}


@pytest.fixture(scope='function')
def cash_session(db_session):
    """OPEN session on terminal T1 with a R$100,00 float."""
    return cash_session_service.open_session("T1", 10000, CASHIER_ID)


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    Small catalog:
    - picole: UNIT, R$5,00, stock tracked (10 units)
    - sorvete_kg: WEIGHT, R$59,90/kg, not tracked
    - acai: assembled category with sizes P (1 flavor), M (2), G (3)
    - agua: UNIT, R$3,00, not eligible for rewards
    """
    picole = catalog_service.create_product({
        "name": "Picolé de Limão",
        "code": "PIC-LIM",
        "sale_price_cents": 500,
        "cost_price_cents": 200,
        "track_stock": True,
        "current_stock": 10,
    })
    sorvete_kg = catalog_service.create_product({
        "name": "Sorvete Self-Service",
        "code": "SELF-KG",
        "sale_type": "WEIGHT",
        "sale_price_cents": 5990,
        "cost_price_cents": 2000,
    })
    category = catalog_service.create_category(
        "Açaí Montado",
        "ASSEMBLED",
        sizes=[
            {"name": "P", "max_flavors": 1},
            {"name": "M", "max_flavors": 2},
            {"name": "G", "max_flavors": 3},
        ],
    )
    sizes = {s.name: s for s in category.sizes}
    acai = catalog_service.create_product({
        "name": "Açaí",
        "code": "ACAI",
        "category_id": category.id,
        "size_prices": [
            {"size_id": sizes["P"].id, "price_cents": 1200},
            {"size_id": sizes["M"].id, "price_cents": 1800},
            {"size_id": sizes["G"].id, "price_cents": 2500},
        ],
        "cost_price_cents": 600,
    })
    agua = catalog_service.create_product({
        "name": "Água Mineral",
        "code": "AGUA",
        "sale_price_cents": 300,
        "eligible_for_loyalty": False,
        "earns_cashback": False,
    })
    return {
        "picole": picole,
        "sorvete_kg": sorvete_kg,
        "acai": acai,
        "acai_category": category,
        "sizes": sizes,
        "agua": agua,
    }


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer({
        "name": "Maria Souza",
        "email": "maria@example.com",
        "cpf": "123.456.789-09",
        "phone": "11999990000",
    })


@pytest.fixture(scope='function')
def rewards_on(db_session):
    """1 point per real, 1 point = R$0,01, 5% cashback, no minimums."""
    loyalty = reward_service.update_loyalty_config({
        "is_active": True,
        "points_per_real": 1,
        "min_purchase_for_points_cents": 0,
        "min_points_to_redeem": 10,
        "points_redemption_value_cents": 1,
        "points_expiration_days": 365,
    })
    cashback = reward_service.update_cashback_config({
        "is_active": True,
        "cashback_bps": 500,
        "min_purchase_for_cashback_cents": 0,
        "min_cashback_to_use_cents": 100,
        "cashback_expiration_days": 180,
    })
    return loyalty, cashback


def make_request(
    session_id,
    items,
    payments,
    *,
    channel="SALE",
    user_id=CASHIER_ID,
    **kwargs,
):
    """
    Build a SettlementRequest from (product, quantity[, extra]) tuples and
    (method, amount_cents) tuples.
    """
    settlement_items = []
    for entry in items:
        product, quantity = entry[0], entry[1]
        extra = entry[2] if len(entry) > 2 else {}
        settlement_items.append(SettlementItem(
            product_id=product.id,
            quantity=Decimal(str(quantity)),
            **extra,
        ))
    return SettlementRequest(
        channel=channel,
        cash_session_id=session_id,
        actor_user_id=user_id,
        items=settlement_items,
        payments=[SettlementPayment(method=m, amount_cents=a) for m, a in payments],
        **kwargs,
    )

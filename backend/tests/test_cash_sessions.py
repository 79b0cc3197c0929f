"""Cash session lifecycle, running totals and recalculation."""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError

from scoopdesk.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from scoopdesk.extensions import db
from scoopdesk.models import CashSession
from scoopdesk.services import cash_session_service, sale_service
from conftest import CASHIER_ID, MANAGER_ID, make_request


def test_open_close_scenario(db_session, catalog):
    session = cash_session_service.open_session("T1", 10000, CASHIER_ID)
    assert session.status == "OPEN"

    # 5 picolés (25,00) + 1 açaí P (12,00) - 1,00 discount = 36,00 in cash
    request = make_request(
        session.id,
        [(catalog["picole"], 5), (catalog["acai"], 1, {"size_id": catalog["sizes"]["P"].id})],
        [("CASH", 3600)],
        discount_cents=100,
    )
    result = sale_service.create_sale(request)
    assert result.order.total_cents == 3600

    session = cash_session_service.get_session(session.id)
    assert session.total_cash_cents == 3600
    assert session.total_sales_cents == 3600

    closed = cash_session_service.cashier_close(session.id, 13600, user_id=CASHIER_ID)
    assert closed.status == "CASHIER_CLOSED"
    # Difference is measured against recorded cash sales, not the float
    assert closed.cashier_difference_cents == 10000

    final = cash_session_service.manager_close(session.id, manager_id=MANAGER_ID, notes="ok")
    assert final.status == "MANAGER_CLOSED"
    assert final.manager_validated is True

    with pytest.raises(InvalidStateError):
        cash_session_service.manager_close(session.id, manager_id=MANAGER_ID)


def test_one_open_session_per_terminal(db_session):
    cash_session_service.open_session("T1", 0, CASHIER_ID)
    with pytest.raises(ConflictError):
        cash_session_service.open_session("T1", 0, CASHIER_ID)
    # Another terminal is independent
    other = cash_session_service.open_session("T2", 0, CASHIER_ID)
    assert other.status == "OPEN"


def test_terminal_can_reopen_after_close(db_session, cash_session):
    cash_session_service.cashier_close(cash_session.id, 10000, user_id=CASHIER_ID)
    again = cash_session_service.open_session("T1", 5000, CASHIER_ID)
    assert again.id != cash_session.id


def test_open_rejects_negative_float(db_session):
    with pytest.raises(ValidationError):
        cash_session_service.open_session("T1", -1, CASHIER_ID)
    with pytest.raises(ValidationError):
        cash_session_service.open_session("T1", True, CASHIER_ID)


def test_database_rejects_second_open_session(db_session):
    db.session.add(CashSession(terminal_id="T1", opened_by_user_id=CASHIER_ID, status="OPEN"))
    db.session.commit()

    db.session.add(CashSession(terminal_id="T1", opened_by_user_id=CASHIER_ID, status="OPEN"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    # Closed sessions are outside the unique index
    db.session.add(CashSession(terminal_id="T1", opened_by_user_id=CASHIER_ID, status="MANAGER_CLOSED"))
    db.session.commit()
    assert db.session.query(CashSession).filter_by(terminal_id="T1").count() == 2


def test_concurrent_open_maps_to_conflict(db_session):
    def _competing_open(mapper, connection, target):
        # Another client opens T1 between our check and our insert
        connection.execute(
            CashSession.__table__.insert().values(
                terminal_id=target.terminal_id, opened_by_user_id=MANAGER_ID, status="OPEN",
            )
        )

    event.listen(CashSession, "before_insert", _competing_open)
    try:
        with pytest.raises(ConflictError):
            cash_session_service.open_session("T1", 0, CASHIER_ID)
    finally:
        event.remove(CashSession, "before_insert", _competing_open)

    assert db.session.query(CashSession).count() == 0
    assert cash_session_service.open_session("T1", 0, CASHIER_ID).status == "OPEN"


def test_cashier_close_requires_open(db_session, cash_session):
    cash_session_service.cashier_close(cash_session.id, 0, user_id=CASHIER_ID)
    with pytest.raises(InvalidStateError):
        cash_session_service.cashier_close(cash_session.id, 0, user_id=CASHIER_ID)


def test_manager_close_requires_cashier_close(db_session, cash_session):
    with pytest.raises(InvalidStateError):
        cash_session_service.manager_close(cash_session.id, manager_id=MANAGER_ID)


def test_distinct_manager_flag(app, db_session, cash_session):
    cash_session_service.cashier_close(cash_session.id, 0, user_id=CASHIER_ID)
    app.config["CASH_SESSION_REQUIRE_DISTINCT_MANAGER"] = True
    try:
        with pytest.raises(InvalidStateError):
            cash_session_service.manager_close(cash_session.id, manager_id=CASHIER_ID)
        closed = cash_session_service.manager_close(cash_session.id, manager_id=MANAGER_ID)
        assert closed.status == "MANAGER_CLOSED"
    finally:
        app.config["CASH_SESSION_REQUIRE_DISTINCT_MANAGER"] = False


def test_cashier_close_breakdown(db_session, cash_session, catalog):
    sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 1000), ("PIX", 1000)],
    ))
    closed = cash_session_service.cashier_close(
        cash_session.id,
        1100,
        [{"method": "cash", "counted_cents": 1100}, {"method": "PIX", "counted_cents": 1000}],
        user_id=CASHIER_ID,
    )
    rows = {row.method: row for row in closed.breakdown}
    assert rows["CASH"].expected_cents == 1000
    assert rows["CASH"].difference_cents == 100
    assert rows["PIX"].difference_cents == 0


def test_cashier_close_breakdown_rejects_duplicates(db_session, cash_session):
    with pytest.raises(ValidationError):
        cash_session_service.cashier_close(
            cash_session.id,
            0,
            [{"method": "CASH", "counted_cents": 0}, {"method": "CASH", "counted_cents": 0}],
            user_id=CASHIER_ID,
        )
    assert cash_session_service.get_session(cash_session.id).status == "OPEN"


def test_totals_split_by_method(db_session, cash_session, catalog):
    sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 2)], [("DEBIT_CARD", 600), ("CREDIT_CARD", 400)],
    ))
    session = cash_session_service.get_session(cash_session.id)
    assert session.total_debit_cents == 600
    assert session.total_credit_cents == 400
    assert session.total_card_cents == 1000
    assert session.total_cash_cents == 0


def test_recalculate_repairs_drift(db_session, cash_session, catalog):
    sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 3)], [("CASH", 1500)]))

    session = db.session.get(CashSession, cash_session.id)
    session.total_sales_cents = 999999
    session.total_cash_cents = 1
    db.session.commit()

    report = cash_session_service.session_report(cash_session.id)
    assert report["drift"]["total_sales_cents"] == 999999 - 1500

    fixed = cash_session_service.recalculate_totals(cash_session.id)
    assert fixed.total_sales_cents == 1500
    assert fixed.total_cash_cents == 1500

    # Idempotent
    again = cash_session_service.recalculate_totals(cash_session.id)
    assert again.totals() == fixed.totals()


def test_recalculate_ignores_cancelled_sales(db_session, cash_session, catalog):
    kept = sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 1)], [("CASH", 500)]))
    dropped = sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 2)], [("PIX", 1000)]))
    sale_service.cancel_sale(dropped.order.id, MANAGER_ID, "wrong order")

    session = cash_session_service.recalculate_totals(cash_session.id)
    assert session.total_sales_cents == kept.order.total_cents
    assert session.total_pix_cents == 0


def test_session_report_shape(db_session, cash_session, catalog):
    sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 1)], [("CASH", 500)]))
    report = cash_session_service.session_report(cash_session.id)
    assert report["expected_cash_in_drawer_cents"] == 10500
    assert report["by_channel"]["SALE"]["count"] == 1
    assert report["payment_breakdown"]["CASH"] == 500
    assert all(value == 0 for value in report["drift"].values())


def test_current_session(db_session, cash_session):
    assert cash_session_service.current_session("T1").id == cash_session.id
    with pytest.raises(NotFoundError):
        cash_session_service.current_session("T9")

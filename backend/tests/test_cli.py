"""Flask CLI commands for cash sessions, finance and reward jobs."""

from datetime import timedelta

import pytest

from scoopdesk.extensions import db
from scoopdesk.models import CashSession, Customer
from scoopdesk.services import cash_session_service, payment_fee_service, sale_service
from scoopdesk.time_utils import utcnow
from conftest import CASHIER_ID, make_request


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def _invoke(runner, *args):
    db.session.commit()
    result = runner.invoke(args=list(args))
    db.session.expire_all()
    return result


def test_seed_categories_is_idempotent(runner, db_session):
    first = _invoke(runner, "finance", "seed-categories")
    assert first.exit_code == 0
    assert "10 categories ready." in first.output
    assert "Vendas" in first.output

    second = _invoke(runner, "finance", "seed-categories")
    assert "10 categories ready." in second.output


def test_cash_list(runner, db_session, cash_session):
    result = _invoke(runner, "cash", "list", "--status", "OPEN")
    assert result.exit_code == 0
    assert "T1" in result.output

    empty = _invoke(runner, "cash", "list", "--terminal", "T404")
    assert "No sessions found." in empty.output


def test_cash_recalc_repairs_drift(runner, db_session, cash_session, catalog):
    sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 2)], [("CASH", 1000)]))
    session = db.session.get(CashSession, cash_session.id)
    session.total_cash_cents = 1
    session.total_sales_cents = 1

    result = _invoke(runner, "cash", "recalc", str(cash_session.id))
    assert result.exit_code == 0
    assert "totals rebuilt" in result.output
    assert db.session.get(CashSession, cash_session.id).total_cash_cents == 1000

    again = _invoke(runner, "cash", "recalc", str(cash_session.id))
    assert "already consistent" in again.output


def test_cash_recalc_unknown_session(runner, db_session):
    result = _invoke(runner, "cash", "recalc", "999")
    assert result.exit_code != 0
    assert "Cash session not found" in result.output


def test_card_fees_command(runner, db_session, cash_session, catalog):
    payment_fee_service.upsert_payment_method_config("PIX", fee_bps=99)
    sale = sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("PIX", 2000)],
    )).order

    result = _invoke(runner, "finance", "card-fees", "sale", str(sale.id))
    assert result.exit_code == 0
    assert "CREATED" in result.output
    assert f"CARD_FEE-SALE-{sale.id}-PIX" in result.output

    batch = _invoke(runner, "finance", "session-card-fees", str(cash_session.id))
    assert "skipped_existing=1" in batch.output


def test_backfill_dry_run_command(runner, db_session, cash_session, catalog):
    sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 1)], [("CASH", 500)]))
    cash_session_service.cashier_close(cash_session.id, 500, user_id=CASHIER_ID)

    preview = _invoke(runner, "finance", "backfill-session-revenue", "--dry-run")
    assert "[DRY RUN] scanned=1 created=1 skipped_existing=0" in preview.output

    real = _invoke(runner, "finance", "backfill-session-revenue")
    assert "scanned=1 created=1" in real.output
    assert f"CASHSESSION-{cash_session.id}" in real.output


def test_reconcile_statuses_command(runner, db_session):
    result = _invoke(runner, "finance", "reconcile-statuses", "--dry-run")
    assert result.exit_code == 0
    assert "[DRY RUN] payables: scanned=0" in result.output
    assert "receivables: scanned=0" in result.output


def test_expire_points_command(runner, db_session, cash_session, catalog, customer, rewards_on):
    sale_service.create_sale(make_request(
        cash_session.id, [(catalog["picole"], 4)], [("CASH", 2000)], customer_id=customer.id,
    ))
    as_of = (utcnow() + timedelta(days=400)).strftime("%Y-%m-%d")

    preview = _invoke(runner, "rewards", "expire-points", "--dry-run", "--as-of", as_of)
    assert "[DRY RUN] points:" in preview.output
    assert "expired=1" in preview.output
    assert db.session.get(Customer, customer.id).loyalty_points == 20

    real = _invoke(runner, "rewards", "expire-points", "--as-of", as_of)
    assert "expired=1 skipped_existing=0 total=20" in real.output
    assert "EXPIRE-POINTS-" in real.output

    again = _invoke(runner, "rewards", "expire-points", "--as-of", as_of)
    assert "expired=0 skipped_existing=1" in again.output


def test_expire_cashback_command_defaults_to_now(runner, db_session):
    result = _invoke(runner, "rewards", "expire-cashback")
    assert result.exit_code == 0
    assert "cashback: as_of=" in result.output
    assert "scanned=0" in result.output

# Overview: Flask CLI command groups for cash-session inspection and financial maintenance jobs.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Cash sessions:
# - python -m flask cash list [--status OPEN] [--terminal T1]
#   List recent cash sessions with running totals.
# - python -m flask cash recalc 12
#   Rebuild a session's running totals from its settled orders' payment rows.
#
# Financial jobs (all idempotent, keyed by reference number):
# - python -m flask finance card-fees SALE 42
#   Post card-fee expenses for one settled order (SALE, COMANDA or DELIVERY).
# - python -m flask finance session-card-fees 12
#   Same, for every settled order of one cash session.
# - python -m flask finance backfill-session-revenue [--dry-run] [--session-id 12]
#   Post one CASHSESSION-{id} revenue row per closed session that lacks one.
# - python -m flask finance reconcile-statuses [--dry-run] [--cancel-duplicates]
#   Sync ledger rows of PAID/CANCELLED payables and receivables.
# - python -m flask finance seed-categories
#   Create the default financial categories.
#
# Reward expiry (idempotent, one EXPIRE row per lapsed EARN row):
# - python -m flask rewards expire-points [--dry-run] [--as-of 2026-10-19]
# - python -m flask rewards expire-cashback [--dry-run] [--as-of 2026-10-19]
#   Write off loyalty points or cashback whose expiry date has passed.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .services import (
    cash_session_service,
    financial_service,
    payment_fee_service,
    reconciliation_service,
    reward_service,
)
from .services.outcomes import summarize


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"R${cents / 100:,.2f}"


def _echo_outcomes(outcomes) -> None:
    for outcome in outcomes:
        amount = _money(outcome.amount_cents) if outcome.amount_cents is not None else ""
        click.echo(f"  {outcome.kind:<18} {outcome.reference_number:<40} {amount}")


# =============================================================================
# CASH
# =============================================================================

@click.group('cash')
def cash_group():
    """Cash session inspection and repair."""


@cash_group.command('list')
@click.option('--status', type=click.Choice(['OPEN', 'CASHIER_CLOSED', 'MANAGER_CLOSED']), help='Filter by status')
@click.option('--terminal', 'terminal_id', help='Filter by terminal id')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(status, terminal_id, limit):
    """
    List cash sessions.

    Example:
        flask cash list
        flask cash list --status OPEN --terminal T1
    """
    sessions = cash_session_service.list_sessions(terminal_id=terminal_id, status=status, limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Terminal':<12} {'Status':<16} {'Opened':<20} {'Sales':>14} {'Cash':>14} {'Difference':>14}")
    click.echo("="*110)

    for session in sessions:
        click.echo(
            f"{session.id:<5} {session.terminal_id:<12} {session.status:<16} "
            f"{str(session.opened_at)[:19]:<20} {_money(session.total_sales_cents):>14} "
            f"{_money(session.total_cash_cents):>14} {_money(session.cashier_difference_cents):>14}"
        )

    click.echo("="*110 + "\n")


@cash_group.command('recalc')
@click.argument('session_id', type=int)
@with_appcontext
def recalc_session_cli(session_id):
    """Recompute a session's totals from settled payment rows."""
    try:
        before = cash_session_service.get_session(session_id).totals()
        session = cash_session_service.recalculate_totals(session_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    after = session.totals()
    changed = {key: (before[key], after[key]) for key in after if before.get(key) != after[key]}
    if not changed:
        click.echo(f"Session {session_id}: totals already consistent.")
        return
    click.echo(f"Session {session_id}: totals rebuilt.")
    for key, (old, new) in changed.items():
        click.echo(f"  {key:<22} {_money(old):>14} -> {_money(new)}")


# =============================================================================
# FINANCE
# =============================================================================

@click.group('finance')
def finance_group():
    """Financial reconciliation jobs."""


@finance_group.command('card-fees')
@click.argument('source', type=click.Choice(['SALE', 'COMANDA', 'DELIVERY'], case_sensitive=False))
@click.argument('order_id', type=int)
@with_appcontext
def card_fees_cli(source, order_id):
    """Post card-fee expenses for one settled order."""
    try:
        outcomes = payment_fee_service.generate_card_fees(source, order_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    if not outcomes:
        click.echo("No fees apply to this order.")
        return
    _echo_outcomes(outcomes)


@finance_group.command('session-card-fees')
@click.argument('session_id', type=int)
@with_appcontext
def session_card_fees_cli(session_id):
    """Post card-fee expenses for every settled order of a cash session."""
    outcomes = payment_fee_service.generate_card_fees_for_session(session_id)
    counts = summarize(outcomes)
    click.echo(f"Session {session_id}: " + " ".join(f"{k.lower()}={v}" for k, v in counts.items()))
    _echo_outcomes(outcomes)


@finance_group.command('backfill-session-revenue')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@click.option('--session-id', type=int, help='Only this session')
@with_appcontext
def backfill_session_revenue_cli(dry_run, session_id):
    """Post CASHSESSION-{id} revenue rows for closed sessions."""
    try:
        report = reconciliation_service.backfill_session_revenue(dry_run=dry_run, session_id=session_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    prefix = "[DRY RUN] " if dry_run else ""
    click.echo(
        f"{prefix}scanned={report['scanned']} created={report['created']} "
        f"skipped_existing={report['skipped_existing']}"
    )
    _echo_outcomes(report["outcomes"])


@finance_group.command('reconcile-statuses')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@click.option('--cancel-duplicates', is_flag=True, help='Cancel legacy rows when a primary row exists')
@with_appcontext
def reconcile_statuses_cli(dry_run, cancel_duplicates):
    """Sync ledger rows with PAID/CANCELLED payables and receivables."""
    report = reconciliation_service.reconcile_account_statuses(dry_run=dry_run, cancel_duplicates=cancel_duplicates)

    prefix = "[DRY RUN] " if dry_run else ""
    for key in ("payables", "receivables"):
        section = report[key]
        counts = summarize(section["outcomes"])
        click.echo(f"{prefix}{key}: scanned={section['scanned']} " + " ".join(f"{k.lower()}={v}" for k, v in counts.items()))
        _echo_outcomes(section["outcomes"])


@finance_group.command('seed-categories')
@with_appcontext
def seed_categories_cli():
    """Create the default financial categories (idempotent)."""
    categories = financial_service.seed_default_categories()
    for category in categories:
        click.echo(f"  {category.category_type:<8} {category.dre_group:<20} {category.name}")
    click.echo(f"{len(categories)} categories ready.")


# =============================================================================
# REWARDS
# =============================================================================

@click.group('rewards')
def rewards_group():
    """Loyalty point and cashback maintenance."""


def _run_expiry(job, label, dry_run, as_of):
    try:
        report = job(as_of=as_of, dry_run=dry_run)
    except DomainError as e:
        raise click.ClickException(e.message)

    prefix = "[DRY RUN] " if dry_run else ""
    click.echo(
        f"{prefix}{label}: as_of={report['as_of']} scanned={report['scanned']} expired={report['expired']} "
        f"skipped_existing={report['skipped_existing']} total={report['total_expired']} "
        f"customers={report['customers_affected']}"
    )
    for outcome in report["outcomes"]:
        amount = outcome.amount_cents if outcome.amount_cents is not None else ""
        click.echo(f"  {outcome.kind:<18} {outcome.reference_number:<40} {amount}")


@rewards_group.command('expire-points')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@click.option('--as-of', type=click.DateTime(), help='Expire rows lapsed before this moment (default: now, UTC)')
@with_appcontext
def expire_points_cli(dry_run, as_of):
    """Write off loyalty points past their expiry date."""
    _run_expiry(reward_service.expire_points, "points", dry_run, as_of)


@rewards_group.command('expire-cashback')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@click.option('--as-of', type=click.DateTime(), help='Expire rows lapsed before this moment (default: now, UTC)')
@with_appcontext
def expire_cashback_cli(dry_run, as_of):
    """Write off cashback past its expiry date."""
    _run_expiry(reward_service.expire_cashback, "cashback", dry_run, as_of)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(cash_group)
    app.cli.add_command(finance_group)
    app.cli.add_command(rewards_group)

"""
Financial reconciliation jobs

Both jobs are safe to re-run: every row they write or touch is found by a
reference number first.

- backfill_session_revenue: one PAID revenue entry per closed cash session
  (CASHSESSION-{id}) so revenue exists in the ledger for sessions closed
  before automatic posting.
- reconcile_account_statuses: brings the ledger row of a PAID/CANCELLED
  payable or receivable in line with the account. Older data was written
  with PAYMENT-{id} / RECEIPT-{id} references; those are the legacy rows.

Both accept dry_run, in which case outcomes describe what would happen and
the transaction is rolled back.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import InvalidStateError
from ..models import AccountPayable, AccountReceivable, CashSession
from scoopdesk.time_utils import start_of_day
from . import financial_service
from .account_service import payable_reference, receivable_reference
from .concurrency import run_with_retry
from .outcomes import CREATED, SKIPPED_AMBIGUOUS, SKIPPED_EXISTING, UPDATED, Outcome, summarize


logger = logging.getLogger(__name__)


def session_revenue_reference(session_id: int) -> str:
    return f"CASHSESSION-{session_id}"


# =============================================================================
# CASH-SESSION REVENUE BACKFILL
# =============================================================================

def backfill_session_revenue(dry_run: bool = False, session_id: int | None = None) -> dict:
    """
    Post missing revenue rows for CASHIER_CLOSED / MANAGER_CLOSED sessions
    with sales.

    Returns:
        {"dry_run", "session_id", "scanned", "created", "skipped_existing", "outcomes"}
    """
    def _op():
        category = financial_service.ensure_category(*financial_service.SALES_CATEGORY)
        if not category.is_active or category.category_type != "REVENUE":
            raise InvalidStateError('Category "Vendas" is inactive or not a revenue category')

        query = db.session.query(CashSession).filter(
            CashSession.status.in_(("CASHIER_CLOSED", "MANAGER_CLOSED")),
            CashSession.total_sales_cents > 0,
        )
        if session_id is not None:
            query = query.filter(CashSession.id == session_id)
        sessions = query.order_by(CashSession.opened_at.desc(), CashSession.id.desc()).all()

        outcomes = []
        for session in sessions:
            reference = session_revenue_reference(session.id)
            existing = financial_service.find_by_reference(reference)
            if existing:
                outcomes.append(Outcome(SKIPPED_EXISTING, reference, existing[0].id, existing[0].amount_cents))
                continue

            closed_at = session.cashier_closed_at or session.manager_closed_at or session.opened_at
            if dry_run:
                outcomes.append(Outcome(CREATED, reference, None, session.total_sales_cents, {"dry_run": True}))
                continue

            txn = financial_service.create_transaction(
                category_id=category.id,
                transaction_type="REVENUE",
                description=f"Fechamento de Caixa #{session.id} ({session.terminal_id or 'Terminal'})",
                amount_cents=session.total_sales_cents,
                transaction_date=start_of_day(closed_at),
                due_date=start_of_day(closed_at),
                status="PAID",
                reference_number=reference,
                user_id=session.cashier_closed_by_user_id or session.manager_closed_by_user_id or session.opened_by_user_id,
                commit=False,
                cash_session_id=session.id,
            )
            txn.paid_at = closed_at
            outcomes.append(Outcome(CREATED, reference, txn.id, txn.amount_cents))

        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()

        counts = summarize(outcomes)
        logger.info(
            "Session revenue backfill: scanned=%s created=%s skipped=%s dry_run=%s",
            len(sessions), counts[CREATED], counts[SKIPPED_EXISTING], dry_run,
        )
        return {
            "dry_run": dry_run,
            "session_id": session_id,
            "scanned": len(sessions),
            "created": counts[CREATED],
            "skipped_existing": counts[SKIPPED_EXISTING],
            "outcomes": outcomes,
        }

    return run_with_retry(_op)


# =============================================================================
# AP/AR STATUS RECONCILER
# =============================================================================

def _needs_sync(txn, status: str, paid_at) -> bool:
    if txn.status != status:
        return True
    if status == "PAID":
        return txn.paid_at is None and paid_at is not None
    return txn.paid_at is not None


def _sync(txn, status: str, paid_at) -> None:
    txn.status = status
    if status == "PAID":
        txn.paid_at = paid_at
        if paid_at:
            txn.transaction_date = start_of_day(paid_at)
    else:
        txn.paid_at = None


def _reconcile_account(primary_ref: str, legacy_ref: str, status: str, paid_at, *, cancel_duplicates: bool) -> list[Outcome]:
    primary = financial_service.find_by_reference(primary_ref)
    legacy = financial_service.find_by_reference(legacy_ref)

    if len(primary) > 1:
        return [Outcome(SKIPPED_AMBIGUOUS, primary_ref, None, None, {"reason": "multiple primary rows", "ids": [t.id for t in primary]})]
    if not primary and not legacy:
        return [Outcome(SKIPPED_AMBIGUOUS, primary_ref, None, None, {"reason": "no ledger row"})]

    outcomes = []
    targets = primary or legacy
    for txn in targets:
        if _needs_sync(txn, status, paid_at):
            _sync(txn, status, paid_at)
            outcomes.append(Outcome(UPDATED, txn.reference_number, txn.id, txn.amount_cents, {"status": status}))
        else:
            outcomes.append(Outcome(SKIPPED_EXISTING, txn.reference_number, txn.id, txn.amount_cents))

    if primary and cancel_duplicates:
        for dup in legacy:
            if dup.status == "CANCELLED":
                continue
            dup.status = "CANCELLED"
            dup.paid_at = None
            outcomes.append(Outcome(UPDATED, dup.reference_number, dup.id, dup.amount_cents, {"status": "CANCELLED", "duplicate_of": primary[0].id}))
    return outcomes


def reconcile_account_statuses(dry_run: bool = False, cancel_duplicates: bool = False) -> dict:
    """
    Sync ledger rows of PAID/CANCELLED payables and receivables.

    Returns:
        {"dry_run", "payables": {"scanned", "outcomes"}, "receivables": {...}, "summary"}
    """
    def _op():
        result = {"dry_run": dry_run}
        all_outcomes = []
        for key, model, primary_ref, legacy_prefix, paid_attr in (
            ("payables", AccountPayable, payable_reference, "PAYMENT", "paid_at"),
            ("receivables", AccountReceivable, receivable_reference, "RECEIPT", "received_at"),
        ):
            accounts = (
                db.session.query(model)
                .filter(model.status.in_(("PAID", "CANCELLED")))
                .order_by(model.id)
                .all()
            )
            outcomes = []
            for account in accounts:
                paid_at = getattr(account, paid_attr) if account.status == "PAID" else None
                outcomes.extend(_reconcile_account(
                    primary_ref(account.id),
                    f"{legacy_prefix}-{account.id}",
                    account.status,
                    paid_at,
                    cancel_duplicates=cancel_duplicates,
                ))
            result[key] = {"scanned": len(accounts), "outcomes": outcomes}
            all_outcomes.extend(outcomes)

        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()

        result["summary"] = summarize(all_outcomes)
        logger.info("Account status reconcile: %s dry_run=%s", result["summary"], dry_run)
        return result

    return run_with_retry(_op)

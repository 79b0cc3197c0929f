"""
Cash Session Manager

WHY: A terminal's drawer is accountable per session. Settlements only land
on an OPEN session, and closing is a two-person control: the cashier's
physical count is recorded first, then a manager validates it.

LIFECYCLE:
    OPEN -> CASHIER_CLOSED -> MANAGER_CLOSED (terminal)
Any other transition fails with InvalidStateError.

DESIGN PRINCIPLES:
- At most one OPEN session per terminal
- Running totals move only by atomic increments from settlement and its
  reversals (_apply_totals); recalculate_totals is the one explicit,
  idempotent overwrite used for drift correction
- session_report recomputes from payment rows so it can cross-check the
  incrementally maintained totals
"""

from __future__ import annotations

import logging
from collections import defaultdict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..models import CashSession, CashSessionPayment, PAYMENT_METHODS, PAYMENT_METHOD_TOTAL_COLUMNS
from scoopdesk.time_utils import utcnow
from .channels import CHANNELS
from .concurrency import begin_write, lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("OPEN", "CASHIER_CLOSED")


# =============================================================================
# LOOKUPS
# =============================================================================

def get_session(session_id: int) -> CashSession:
    session = db.session.get(CashSession, session_id)
    if not session:
        raise NotFoundError("Cash session not found", {"cash_session_id": session_id})
    return session


def _lock_session(session_id: int) -> CashSession:
    session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError("Cash session not found", {"cash_session_id": session_id})
    return session


def current_session(terminal_id: str) -> CashSession:
    """Most recent session on the terminal that is OPEN or CASHIER_CLOSED."""
    session = (
        db.session.query(CashSession)
        .filter(CashSession.terminal_id == terminal_id, CashSession.status.in_(ACTIVE_STATUSES))
        .order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        .first()
    )
    if not session:
        raise NotFoundError("No active cash session for terminal", {"terminal_id": terminal_id})
    return session


def list_sessions(terminal_id: str | None = None, status: str | None = None, limit: int = 50) -> list[CashSession]:
    query = db.session.query(CashSession)
    if terminal_id:
        query = query.filter_by(terminal_id=terminal_id)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(CashSession.id.desc()).limit(limit).all()


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_session(terminal_id: str, initial_cash_cents: int, opener_id: int) -> CashSession:
    """
    Open a new session on a terminal.

    Raises:
        ConflictError: the terminal already has an OPEN session (checked
            up front, and backed by the partial unique index on terminal_id)
    """
    if not terminal_id:
        raise ValidationError("terminal_id is required")
    if not isinstance(initial_cash_cents, int) or isinstance(initial_cash_cents, bool) or initial_cash_cents < 0:
        raise ValidationError("initial_cash_cents must be a non-negative integer")

    def _op():
        begin_write()
        existing = (
            db.session.query(CashSession)
            .filter_by(terminal_id=terminal_id, status="OPEN")
            .first()
        )
        if existing:
            raise ConflictError(
                f"Terminal already has an open cash session (session {existing.id})",
                {"terminal_id": terminal_id, "cash_session_id": existing.id},
            )

        session = CashSession(
            terminal_id=terminal_id,
            opened_by_user_id=opener_id,
            status="OPEN",
            initial_cash_cents=initial_cash_cents,
            opened_at=utcnow(),
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # A concurrent open won the race past the check above
            db.session.rollback()
            raise ConflictError(
                "Terminal already has an open cash session",
                {"terminal_id": terminal_id},
            )
        db.session.commit()
        logger.info("Cash session %s opened on terminal %s", session.id, terminal_id)
        return session

    return run_with_retry(_op)


def cashier_close(
    session_id: int,
    counted_cash_cents: int,
    breakdown: list[dict] | None = None,
    *,
    user_id: int,
    notes: str | None = None,
) -> CashSession:
    """
    Record the cashier's count and move OPEN -> CASHIER_CLOSED.

    difference = counted - total_cash. The initial float is a separate
    concept and is not part of the expected amount.

    breakdown: optional [{"method", "counted_cents"}]; replaces any prior
    rows. Each row's expected amount is the session's running total for
    that method.
    """
    if not isinstance(counted_cash_cents, int) or counted_cash_cents < 0:
        raise ValidationError("counted_cash_cents must be a non-negative integer")

    def _op():
        begin_write()
        session = _lock_session(session_id)
        if session.status != "OPEN":
            raise InvalidStateError(
                f"Cannot cashier-close a session in status {session.status}",
                {"cash_session_id": session_id, "status": session.status},
            )

        if breakdown is not None:
            for row in list(session.breakdown):
                session.breakdown.remove(row)
            db.session.flush()
            seen = set()
            for entry in breakdown:
                method = (entry.get("method") or "").upper()
                if method not in PAYMENT_METHODS or method in seen:
                    raise ValidationError(f"Invalid or duplicate breakdown method '{method}'")
                seen.add(method)
                counted = entry.get("counted_cents", 0)
                if not isinstance(counted, int) or isinstance(counted, bool) or counted < 0:
                    raise ValidationError("counted_cents must be a non-negative integer", {"method": method})
                expected = getattr(session, PAYMENT_METHOD_TOTAL_COLUMNS[method])
                session.breakdown.append(CashSessionPayment(
                    method=method,
                    expected_cents=expected,
                    counted_cents=counted,
                    difference_cents=counted - expected,
                ))

        session.counted_cash_cents = counted_cash_cents
        session.cashier_difference_cents = counted_cash_cents - session.total_cash_cents
        session.cashier_closed_at = utcnow()
        session.cashier_closed_by_user_id = user_id
        session.cashier_notes = notes
        session.status = "CASHIER_CLOSED"
        db.session.commit()
        logger.info(
            "Cash session %s cashier-closed (difference %s cents)",
            session.id, session.cashier_difference_cents,
        )
        return session

    return run_with_retry(_op)


def manager_close(session_id: int, *, manager_id: int, notes: str | None = None) -> CashSession:
    """
    Validate a cashier-closed session: CASHIER_CLOSED -> MANAGER_CLOSED.

    Raises:
        InvalidStateError: session is not CASHIER_CLOSED, or the same user
            closed both steps while CASH_SESSION_REQUIRE_DISTINCT_MANAGER is on
    """
    def _op():
        begin_write()
        session = _lock_session(session_id)
        if session.status != "CASHIER_CLOSED":
            raise InvalidStateError(
                f"Cannot manager-close a session in status {session.status}",
                {"cash_session_id": session_id, "status": session.status},
            )
        if (
            current_app.config.get("CASH_SESSION_REQUIRE_DISTINCT_MANAGER")
            and session.cashier_closed_by_user_id == manager_id
        ):
            raise InvalidStateError("Manager close must be performed by a different user than the cashier")

        session.manager_validated = True
        session.manager_closed_at = utcnow()
        session.manager_closed_by_user_id = manager_id
        session.manager_notes = notes
        session.status = "MANAGER_CLOSED"
        db.session.commit()
        logger.info("Cash session %s manager-closed by user %s", session.id, manager_id)
        return session

    return run_with_retry(_op)


# =============================================================================
# TOTALS
# =============================================================================

def _apply_totals(session: CashSession, total_delta: int, method_deltas: dict[str, int]) -> None:
    """
    Atomically move the running totals (caller's transaction).

    Emits UPDATE ... SET col = col + :delta, so concurrent writers never
    overwrite each other's increments.
    """
    if total_delta:
        session.total_sales_cents = CashSession.total_sales_cents + total_delta
    for method, amount in method_deltas.items():
        if not amount:
            continue
        column = PAYMENT_METHOD_TOTAL_COLUMNS[method]
        setattr(session, column, getattr(CashSession, column) + amount)


def _settled_sums(session_id: int) -> dict:
    """Recompute totals from committed settlements of every channel."""
    by_method = defaultdict(int)
    by_channel = {}
    total_sales = 0

    for channel in CHANNELS:
        order = channel.order_model
        payment = channel.payment_model

        count, sales = (
            db.session.query(db.func.count(order.id), db.func.coalesce(db.func.sum(order.total_cents), 0))
            .filter(order.cash_session_id == session_id, channel.settled_clause())
            .one()
        )
        rows = (
            db.session.query(payment.method, db.func.coalesce(db.func.sum(payment.amount_cents), 0))
            .join(order, channel.payment_order_column == order.id)
            .filter(order.cash_session_id == session_id, channel.settled_clause())
            .group_by(payment.method)
            .all()
        )
        channel_methods = {method: int(amount) for method, amount in rows}
        for method, amount in channel_methods.items():
            by_method[method] += amount
        total_sales += int(sales)
        by_channel[channel.name] = {
            "count": int(count),
            "total_cents": int(sales),
            "by_method": channel_methods,
        }

    return {"total_sales_cents": total_sales, "by_method": dict(by_method), "by_channel": by_channel}


def recalculate_totals(session_id: int) -> CashSession:
    """
    Overwrite the running totals with values re-derived from settlements.

    Idempotent: running it twice yields the same totals.
    """
    def _op():
        begin_write()
        session = _lock_session(session_id)
        sums = _settled_sums(session_id)
        before = session.totals()

        session.total_sales_cents = sums["total_sales_cents"]
        for method in PAYMENT_METHODS:
            setattr(session, PAYMENT_METHOD_TOTAL_COLUMNS[method], sums["by_method"].get(method, 0))
        db.session.commit()

        if before != session.totals():
            logger.warning("Cash session %s totals drifted; recalculated from settlements", session_id)
        return session

    return run_with_retry(_op)


def session_report(session_id: int) -> dict:
    """
    Stored totals next to totals recomputed from payment rows.

    drift maps each stored total to (stored - recomputed); all zeros when
    the incremental bookkeeping is consistent.
    """
    session = get_session(session_id)
    sums = _settled_sums(session_id)

    recomputed = {"total_sales_cents": sums["total_sales_cents"]}
    for method in PAYMENT_METHODS:
        recomputed[PAYMENT_METHOD_TOTAL_COLUMNS[method]] = sums["by_method"].get(method, 0)
    stored = session.totals()

    return {
        "session": session.to_dict(),
        "totals": stored,
        "payment_breakdown": {method: sums["by_method"].get(method, 0) for method in PAYMENT_METHODS},
        "by_channel": sums["by_channel"],
        "expected_cash_in_drawer_cents": session.initial_cash_cents + session.total_cash_cents,
        "drift": {key: stored[key] - value for key, value in recomputed.items()},
    }

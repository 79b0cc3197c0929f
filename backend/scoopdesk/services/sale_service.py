"""
Walk-in sales: settle, cancel, reopen.

LIFECYCLE:
- COMPLETED: created by settlement
- COMPLETED/ADJUSTED -> CANCELLED: stock, session totals and rewards reversed
- CANCELLED -> ADJUSTED: reopen; the recorded effects are re-applied

Every transition writes a SaleAdjustment audit row.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import Sale, SaleAdjustment
from .channels import SALE
from .concurrency import begin_write, lock_for_update, run_with_retry
from .settlement_service import SettlementRequest, SettlementResult, reapply_settlement, reverse_settlement, settle


logger = logging.getLogger(__name__)


def create_sale(request: SettlementRequest) -> SettlementResult:
    request.channel = SALE.name
    return settle(request)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(cash_session_id: int | None = None, status: str | None = None, limit: int = 100) -> list[Sale]:
    query = db.session.query(Sale)
    if cash_session_id is not None:
        query = query.filter_by(cash_session_id=cash_session_id)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(Sale.id.desc()).limit(limit).all()


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def cancel_sale(sale_id: int, user_id: int, reason: str) -> Sale:
    """
    Cancel a settled sale and reverse its effects.

    Raises:
        InvalidStateError: sale already cancelled, or its session is no longer open
    """
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        if sale.status not in SALE.settled_statuses:
            raise InvalidStateError(
                f"Cannot cancel a sale in status {sale.status}",
                {"sale_id": sale_id, "status": sale.status},
            )
        previous = sale.status
        reverse_settlement(SALE, sale, user_id=user_id)
        sale.status = "CANCELLED"
        db.session.add(SaleAdjustment(
            sale_id=sale.id,
            adjustment_type="CANCEL",
            reason=reason,
            previous_status=previous,
            new_status="CANCELLED",
            user_id=user_id,
        ))
        db.session.commit()
        logger.info("Sale %s cancelled by user %s", sale_id, user_id)
        return sale

    return run_with_retry(_op)


def reopen_sale(sale_id: int, user_id: int, reason: str | None = None) -> Sale:
    """
    Reopen a cancelled sale: CANCELLED -> ADJUSTED, effects re-applied.

    Raises:
        InvalidStateError: sale is not cancelled, or its session is no longer open
        InsufficientStockError: stock sold in the meantime
    """
    def _op():
        begin_write()
        sale = _lock_sale(sale_id)
        if sale.status != "CANCELLED":
            raise InvalidStateError(
                f"Cannot reopen a sale in status {sale.status}",
                {"sale_id": sale_id, "status": sale.status},
            )
        reapply_settlement(SALE, sale, user_id=user_id)
        sale.status = "ADJUSTED"
        db.session.add(SaleAdjustment(
            sale_id=sale.id,
            adjustment_type="REOPEN",
            reason=reason,
            previous_status="CANCELLED",
            new_status="ADJUSTED",
            user_id=user_id,
        ))
        db.session.commit()
        logger.info("Sale %s reopened by user %s", sale_id, user_id)
        return sale

    return run_with_retry(_op)

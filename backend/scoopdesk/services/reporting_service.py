# Overview: Read-only report aggregators (sales by channel and payment method, DRE, card fees, cash flow).

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import func, or_

from ..extensions import db
from ..errors import ValidationError
from ..models import PAYMENT_METHODS, FinancialCategory, FinancialTransaction
from scoopdesk.time_utils import business_date, to_utc_z
from .channels import CHANNELS


# Ledger groups that enter the DRE from FinancialTransaction rows. Revenue,
# deductions and COGS come from the orders themselves; ledger rows in those
# groups (e.g. CASHSESSION-* revenue) would count the same sales twice.
LEDGER_DRE_GROUPS = ("OPERATING_EXPENSES", "FINANCIAL_RESULT", "OTHER", "TAXES")


def _check_range(start: datetime | None, end: datetime | None) -> None:
    if start and end and end <= start:
        raise ValidationError("end must be after start", {"start": to_utc_z(start), "end": to_utc_z(end)})


def _settled_orders(channel, start: datetime | None, end: datetime | None) -> list:
    query = db.session.query(channel.order_model).filter(channel.settled_clause())
    column = channel.settled_at_column
    if start:
        query = query.filter(column >= start)
    if end:
        query = query.filter(column < end)
    return query.order_by(channel.order_model.id).all()


def _order_discounts(order) -> int:
    return (
        (order.discount_cents or 0)
        + (order.coupon_discount_cents or 0)
        + (order.loyalty_discount_cents or 0)
        + (order.cashback_used_cents or 0)
    )


def _ratio_bps(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(round(part * 10000 / whole))


# =============================================================================
# SALES BY CHANNEL / PAYMENT METHOD
# =============================================================================

def sales_by_channel(start: datetime | None = None, end: datetime | None = None) -> dict:
    """Count, gross, discounts, net and average ticket per channel."""
    _check_range(start, end)
    rows = []
    totals = {"order_count": 0, "gross_cents": 0, "discount_cents": 0, "net_cents": 0}

    for channel in CHANNELS:
        orders = _settled_orders(channel, start, end)
        gross = sum(o.subtotal_cents + o.fees_cents for o in orders)
        discounts = sum(_order_discounts(o) for o in orders)
        net = sum(o.total_cents for o in orders)
        rows.append({
            "channel": channel.name,
            "order_count": len(orders),
            "gross_cents": gross,
            "discount_cents": discounts,
            "net_cents": net,
            "average_ticket_cents": net // len(orders) if orders else 0,
        })
        totals["order_count"] += len(orders)
        totals["gross_cents"] += gross
        totals["discount_cents"] += discounts
        totals["net_cents"] += net

    totals["average_ticket_cents"] = totals["net_cents"] // totals["order_count"] if totals["order_count"] else 0
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "channels": rows,
        "totals": totals,
    }


def sales_by_payment_method(start: datetime | None = None, end: datetime | None = None) -> dict:
    """Payment amounts per method across the three channels."""
    _check_range(start, end)
    amounts = defaultdict(int)
    counts = defaultdict(int)

    for channel in CHANNELS:
        payment = channel.payment_model
        query = (
            db.session.query(payment.method, func.count(payment.id), func.coalesce(func.sum(payment.amount_cents), 0))
            .join(channel.order_model, channel.payment_order_column == channel.order_model.id)
            .filter(channel.settled_clause())
        )
        if start:
            query = query.filter(channel.settled_at_column >= start)
        if end:
            query = query.filter(channel.settled_at_column < end)
        for method, count, amount in query.group_by(payment.method).all():
            amounts[method] += int(amount or 0)
            counts[method] += int(count or 0)

    total = sum(amounts.values())
    methods = [m for m in PAYMENT_METHODS if m in amounts] + sorted(m for m in amounts if m not in PAYMENT_METHODS)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "methods": [
            {
                "method": method,
                "payment_count": counts[method],
                "amount_cents": amounts[method],
                "share_bps": _ratio_bps(amounts[method], total),
            }
            for method in methods
        ],
        "total_cents": total,
    }


# =============================================================================
# DRE (income statement)
# =============================================================================

def _ledger_sums(start: datetime | None, end: datetime | None) -> dict[tuple[str, str], int]:
    """PAID ledger amounts keyed by (dre_group, transaction_type)."""
    query = (
        db.session.query(
            FinancialCategory.dre_group,
            FinancialTransaction.transaction_type,
            func.coalesce(func.sum(FinancialTransaction.amount_cents), 0),
        )
        .join(FinancialCategory, FinancialTransaction.category_id == FinancialCategory.id)
        .filter(
            FinancialTransaction.status == "PAID",
            FinancialCategory.dre_group.in_(LEDGER_DRE_GROUPS),
        )
    )
    if start:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end:
        query = query.filter(FinancialTransaction.transaction_date < end)
    rows = query.group_by(FinancialCategory.dre_group, FinancialTransaction.transaction_type).all()
    return {(group, txn_type): int(amount or 0) for group, txn_type, amount in rows}


def dre_report(start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Income statement for [start, end).

    Revenue, deductions and COGS are read from settled orders of every
    channel; expenses and financial/other results from PAID ledger rows.
    Margins are in basis points of net revenue.
    """
    _check_range(start, end)
    gross_revenue = 0
    deductions = 0
    cogs = 0

    for channel in CHANNELS:
        for order in _settled_orders(channel, start, end):
            gross_revenue += order.subtotal_cents + order.fees_cents
            deductions += _order_discounts(order)
            for item in order.items:
                if channel.name == "COMANDA" and item.status != "ACTIVE":
                    continue
                cogs += int(round((item.unit_cost_cents or 0) * item.quantity))

    ledger = _ledger_sums(start, end)
    operating_expenses = ledger.get(("OPERATING_EXPENSES", "EXPENSE"), 0)
    financial_income = ledger.get(("FINANCIAL_RESULT", "REVENUE"), 0)
    financial_expenses = ledger.get(("FINANCIAL_RESULT", "EXPENSE"), 0)
    other_income = ledger.get(("OTHER", "REVENUE"), 0)
    other_expenses = ledger.get(("OTHER", "EXPENSE"), 0)
    taxes = ledger.get(("TAXES", "EXPENSE"), 0)

    net_revenue = gross_revenue - deductions
    gross_profit = net_revenue - cogs
    operating_profit = gross_profit - operating_expenses
    financial_result = financial_income - financial_expenses
    profit_before_taxes = operating_profit + financial_result + other_income - other_expenses
    net_profit = profit_before_taxes - taxes

    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "gross_revenue_cents": gross_revenue,
        "deductions_cents": deductions,
        "net_revenue_cents": net_revenue,
        "cogs_cents": cogs,
        "gross_profit_cents": gross_profit,
        "gross_margin_bps": _ratio_bps(gross_profit, net_revenue),
        "operating_expenses_cents": operating_expenses,
        "operating_profit_cents": operating_profit,
        "operating_margin_bps": _ratio_bps(operating_profit, net_revenue),
        "financial_income_cents": financial_income,
        "financial_expenses_cents": financial_expenses,
        "financial_result_cents": financial_result,
        "other_income_cents": other_income,
        "other_expenses_cents": other_expenses,
        "profit_before_taxes_cents": profit_before_taxes,
        "taxes_cents": taxes,
        "net_profit_cents": net_profit,
        "net_margin_bps": _ratio_bps(net_profit, net_revenue),
    }


# =============================================================================
# CARD FEES / CASH FLOW
# =============================================================================

CARD_FEE_PREFIX = "CARD_FEE-"
SESSION_REVENUE_PREFIX = "CASHSESSION-"


def _method_from_fee_reference(reference: str) -> str:
    # CARD_FEE-{SOURCE}-{order_id}-{METHOD}
    return reference.rsplit("-", 1)[-1]


def card_fees_by_payment_method(start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    PAID card-fee expenses per method, next to the payments they were charged on.

    effective_bps is fees over card payments of the same method in the range;
    methods with payments but no fee rows are listed with zero fees.
    """
    _check_range(start, end)
    query = db.session.query(FinancialTransaction.reference_number, FinancialTransaction.amount_cents).filter(
        FinancialTransaction.transaction_type == "EXPENSE",
        FinancialTransaction.status == "PAID",
        FinancialTransaction.reference_number.like(f"{CARD_FEE_PREFIX}%"),
    )
    if start:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end:
        query = query.filter(FinancialTransaction.transaction_date < end)

    fees = defaultdict(int)
    counts = defaultdict(int)
    for reference, amount in query.all():
        method = _method_from_fee_reference(reference)
        fees[method] += amount
        counts[method] += 1

    payments = {row["method"]: row["amount_cents"] for row in sales_by_payment_method(start, end)["methods"]}
    methods = [m for m in PAYMENT_METHODS if m in fees or m in payments]
    methods += sorted(m for m in fees if m not in PAYMENT_METHODS)

    rows = [
        {
            "method": method,
            "fee_count": counts[method],
            "fee_cents": fees[method],
            "payment_amount_cents": payments.get(method, 0),
            "effective_bps": _ratio_bps(fees[method], payments.get(method, 0)),
        }
        for method in methods
    ]
    total_fees = sum(fees.values())
    total_payments = sum(payments.values())
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "methods": rows,
        "totals": {
            "fee_count": sum(counts.values()),
            "fee_cents": total_fees,
            "payment_amount_cents": total_payments,
            "effective_bps": _ratio_bps(total_fees, total_payments),
        },
    }


def _paid_ledger_rows(start: datetime | None, end: datetime | None):
    """PAID revenue/expense rows, minus session revenue rows that mirror settled orders."""
    query = db.session.query(
        FinancialTransaction.transaction_date,
        FinancialTransaction.transaction_type,
        FinancialTransaction.amount_cents,
    ).filter(
        FinancialTransaction.status == "PAID",
        FinancialTransaction.transaction_type.in_(("REVENUE", "EXPENSE")),
        or_(
            FinancialTransaction.reference_number.is_(None),
            ~FinancialTransaction.reference_number.like(f"{SESSION_REVENUE_PREFIX}%"),
        ),
    )
    if start:
        query = query.filter(FinancialTransaction.transaction_date >= start)
    if end:
        query = query.filter(FinancialTransaction.transaction_date < end)
    return query.all()


def _net_movement(start: datetime | None, end: datetime | None) -> int:
    net = 0
    for channel in CHANNELS:
        net += sum(o.total_cents for o in _settled_orders(channel, start, end))
    for _, txn_type, amount in _paid_ledger_rows(start, end):
        net += amount if txn_type == "REVENUE" else -amount
    return net


def cash_flow(start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Money in and out over [start, end), per UTC day.

    Inflows are settled order totals plus PAID revenue rows; outflows are
    PAID expense rows (card fees, paid payables, manual expenses). The
    opening balance is the same net movement before start.
    """
    _check_range(start, end)
    days = defaultdict(lambda: {"sales_cents": 0, "other_income_cents": 0, "expenses_cents": 0})

    for channel in CHANNELS:
        for order in _settled_orders(channel, start, end):
            settled_at = getattr(order, channel.settled_at_attr)
            days[business_date(settled_at)]["sales_cents"] += order.total_cents
    for moment, txn_type, amount in _paid_ledger_rows(start, end):
        key = "other_income_cents" if txn_type == "REVENUE" else "expenses_cents"
        days[business_date(moment)][key] += amount

    rows = []
    for day in sorted(days):
        row = days[day]
        inflow = row["sales_cents"] + row["other_income_cents"]
        rows.append({
            "date": day.isoformat(),
            **row,
            "inflow_cents": inflow,
            "outflow_cents": row["expenses_cents"],
            "net_cents": inflow - row["expenses_cents"],
        })

    opening = _net_movement(None, start) if start else 0
    inflows = sum(r["inflow_cents"] for r in rows)
    outflows = sum(r["outflow_cents"] for r in rows)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "opening_balance_cents": opening,
        "inflow_cents": inflows,
        "outflow_cents": outflows,
        "net_cash_flow_cents": inflows - outflows,
        "closing_balance_cents": opening + inflows - outflows,
        "days": rows,
    }

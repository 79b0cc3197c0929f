from flask import Blueprint, jsonify, request

from scoopdesk.decorators import MANAGER_ROLES, error_response, require_auth, require_role
from scoopdesk.errors import DomainError
from scoopdesk.services import reporting_service
from scoopdesk.validation import parse_datetime


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range():
    return (
        parse_datetime(request.args.get("start"), "start"),
        parse_datetime(request.args.get("end"), "end", inclusive_end=True),
    )


@reports_bp.get("/sales-by-channel")
@require_auth
@require_role(*MANAGER_ROLES)
def sales_by_channel_report():
    try:
        start, end = _range()
        return jsonify(reporting_service.sales_by_channel(start, end)), 200
    except DomainError as exc:
        return error_response(exc)


@reports_bp.get("/sales-by-payment-method")
@require_auth
@require_role(*MANAGER_ROLES)
def sales_by_payment_method_report():
    try:
        start, end = _range()
        return jsonify(reporting_service.sales_by_payment_method(start, end)), 200
    except DomainError as exc:
        return error_response(exc)


@reports_bp.get("/dre")
@require_auth
@require_role(*MANAGER_ROLES)
def dre_report():
    try:
        start, end = _range()
        return jsonify(reporting_service.dre_report(start, end)), 200
    except DomainError as exc:
        return error_response(exc)


@reports_bp.get("/card-fees")
@require_auth
@require_role(*MANAGER_ROLES)
def card_fees_report():
    try:
        start, end = _range()
        return jsonify(reporting_service.card_fees_by_payment_method(start, end)), 200
    except DomainError as exc:
        return error_response(exc)


@reports_bp.get("/cash-flow")
@require_auth
@require_role(*MANAGER_ROLES)
def cash_flow_report():
    try:
        start, end = _range()
        return jsonify(reporting_service.cash_flow(start, end)), 200
    except DomainError as exc:
        return error_response(exc)

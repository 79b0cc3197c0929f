# Overview: Flask API routes for the financial ledger, AP/AR, payment-method fees and reconciliation jobs.

"""
Finance API Routes

SECURITY: every endpoint is MANAGER/ADMIN only.

Reconciliation jobs return their tagged outcomes so a dry run can be
reviewed before the real run.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import account_service, financial_service, payment_fee_service, reconciliation_service
from ..validation import parse_cents, parse_datetime, require_int


finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")


def _outcomes(outcomes) -> list[dict]:
    return [o.to_dict() for o in outcomes]


# =============================================================================
# CATEGORIES & TRANSACTIONS
# =============================================================================

@finance_bp.get("/categories")
@require_auth
@require_role(*MANAGER_ROLES)
def list_categories_route():
    return jsonify({"categories": [c.to_dict() for c in financial_service.list_categories()]}), 200


@finance_bp.post("/categories")
@require_auth
@require_role(*MANAGER_ROLES)
def create_category_route():
    try:
        data = request.get_json() or {}
        category = financial_service.create_category(
            (data.get("name") or "").strip(),
            (data.get("category_type") or "").upper(),
            (data.get("dre_group") or "").upper(),
        )
        return jsonify({"category": category.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create financial category")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.get("/transactions")
@require_auth
@require_role(*MANAGER_ROLES)
def list_transactions_route():
    try:
        txns = financial_service.list_transactions(
            start=parse_datetime(request.args.get("start"), "start"),
            end=parse_datetime(request.args.get("end"), "end"),
            transaction_type=request.args.get("transaction_type"),
            status=request.args.get("status"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"transactions": [t.to_dict() for t in txns]}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.post("/transactions")
@require_auth
@require_role(*MANAGER_ROLES)
def create_transaction_route():
    try:
        data = request.get_json() or {}
        txn = financial_service.create_transaction(
            category_id=require_int(data.get("category_id"), "category_id"),
            transaction_type=(data.get("transaction_type") or "").upper(),
            description=data.get("description"),
            amount_cents=parse_cents(data.get("amount_cents"), "amount_cents"),
            transaction_date=parse_datetime(data.get("transaction_date"), "transaction_date"),
            due_date=parse_datetime(data.get("due_date"), "due_date"),
            status=(data.get("status") or "PENDING").upper(),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
            user_id=g.current_user_id,
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create financial transaction")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/transactions/<int:transaction_id>/pay")
@require_auth
@require_role(*MANAGER_ROLES)
def pay_transaction_route(transaction_id: int):
    try:
        txn = financial_service.mark_transaction_paid(transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.post("/transactions/<int:transaction_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_transaction_route(transaction_id: int):
    try:
        txn = financial_service.cancel_transaction(transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


# =============================================================================
# ACCOUNTS PAYABLE / RECEIVABLE
# =============================================================================

def _account_payload(data: dict) -> dict:
    return {
        "category_id": require_int(data.get("category_id"), "category_id"),
        "description": data.get("description"),
        "amount_cents": parse_cents(data.get("amount_cents"), "amount_cents"),
        "due_date": parse_datetime(data.get("due_date"), "due_date", allow_none=False),
        "notes": data.get("notes"),
    }


@finance_bp.get("/payables")
@require_auth
@require_role(*MANAGER_ROLES)
def list_payables_route():
    payables = account_service.list_payables(request.args.get("status"))
    return jsonify({"payables": [p.to_dict() for p in payables]}), 200


@finance_bp.post("/payables")
@require_auth
@require_role(*MANAGER_ROLES)
def create_payable_route():
    try:
        data = request.get_json() or {}
        payload = _account_payload(data)
        payload["supplier_name"] = data.get("supplier_name")
        payable = account_service.create_payable(payload, g.current_user_id)
        return jsonify({"payable": payable.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payable")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/payables/<int:payable_id>/pay")
@require_auth
@require_role(*MANAGER_ROLES)
def pay_payable_route(payable_id: int):
    try:
        data = request.get_json(silent=True) or {}
        payable = account_service.pay_payable(payable_id, parse_datetime(data.get("paid_at"), "paid_at"))
        return jsonify({"payable": payable.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.post("/payables/<int:payable_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_payable_route(payable_id: int):
    try:
        return jsonify({"payable": account_service.cancel_payable(payable_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.get("/receivables")
@require_auth
@require_role(*MANAGER_ROLES)
def list_receivables_route():
    receivables = account_service.list_receivables(request.args.get("status"))
    return jsonify({"receivables": [r.to_dict() for r in receivables]}), 200


@finance_bp.post("/receivables")
@require_auth
@require_role(*MANAGER_ROLES)
def create_receivable_route():
    try:
        data = request.get_json() or {}
        payload = _account_payload(data)
        payload["customer_id"] = require_int(data.get("customer_id"), "customer_id", allow_none=True)
        receivable = account_service.create_receivable(payload, g.current_user_id)
        return jsonify({"receivable": receivable.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create receivable")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/receivables/<int:receivable_id>/receive")
@require_auth
@require_role(*MANAGER_ROLES)
def receive_receivable_route(receivable_id: int):
    try:
        data = request.get_json(silent=True) or {}
        receivable = account_service.receive_receivable(
            receivable_id, parse_datetime(data.get("received_at"), "received_at"),
        )
        return jsonify({"receivable": receivable.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.post("/receivables/<int:receivable_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_receivable_route(receivable_id: int):
    try:
        return jsonify({"receivable": account_service.cancel_receivable(receivable_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)


# =============================================================================
# PAYMENT METHOD FEES
# =============================================================================

@finance_bp.get("/payment-methods")
@require_auth
@require_role(*MANAGER_ROLES)
def list_payment_methods_route():
    configs = payment_fee_service.list_payment_method_configs()
    return jsonify({"payment_methods": [c.to_dict() for c in configs]}), 200


@finance_bp.put("/payment-methods/<method>")
@require_auth
@require_role(*MANAGER_ROLES)
def upsert_payment_method_route(method: str):
    try:
        data = request.get_json() or {}
        config = payment_fee_service.upsert_payment_method_config(
            method,
            fee_bps=require_int(data.get("fee_bps"), "fee_bps", minimum=0),
            settlement_days=require_int(data.get("settlement_days", 0), "settlement_days", minimum=0),
            is_active=bool(data.get("is_active", True)),
        )
        return jsonify({"payment_method": config.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@finance_bp.post("/card-fees/<source>/<int:order_id>")
@require_auth
@require_role(*MANAGER_ROLES)
def generate_card_fees_route(source: str, order_id: int):
    try:
        outcomes = payment_fee_service.generate_card_fees(source, order_id)
        return jsonify({"outcomes": _outcomes(outcomes)}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate card fees")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/card-fees/sessions/<int:session_id>")
@require_auth
@require_role(*MANAGER_ROLES)
def generate_session_card_fees_route(session_id: int):
    try:
        outcomes = payment_fee_service.generate_card_fees_for_session(session_id)
        return jsonify({"outcomes": _outcomes(outcomes)}), 200
    except Exception:
        current_app.logger.exception("Failed to generate card fees for session")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECONCILIATION JOBS
# =============================================================================

@finance_bp.post("/jobs/backfill-session-revenue")
@require_auth
@require_role(*MANAGER_ROLES)
def backfill_session_revenue_route():
    try:
        data = request.get_json(silent=True) or {}
        report = reconciliation_service.backfill_session_revenue(
            dry_run=bool(data.get("dry_run", False)),
            session_id=require_int(data.get("session_id"), "session_id", allow_none=True),
        )
        report["outcomes"] = _outcomes(report["outcomes"])
        return jsonify(report), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to backfill session revenue")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/jobs/reconcile-statuses")
@require_auth
@require_role(*MANAGER_ROLES)
def reconcile_statuses_route():
    try:
        data = request.get_json(silent=True) or {}
        report = reconciliation_service.reconcile_account_statuses(
            dry_run=bool(data.get("dry_run", False)),
            cancel_duplicates=bool(data.get("cancel_duplicates", False)),
        )
        for key in ("payables", "receivables"):
            report[key]["outcomes"] = _outcomes(report[key]["outcomes"])
        return jsonify(report), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile account statuses")
        return jsonify({"error": "Internal server error"}), 500


@finance_bp.post("/jobs/mark-overdue")
@require_auth
@require_role(*MANAGER_ROLES)
def mark_overdue_route():
    try:
        data = request.get_json(silent=True) or {}
        return jsonify(account_service.mark_overdue(parse_datetime(data.get("as_of"), "as_of"))), 200
    except DomainError as e:
        return error_response(e)

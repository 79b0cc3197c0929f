# Overview: Flask API routes for walk-in sales; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import sale_service
from ..validation import parse_settlement_payload


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@sales_bp.post("/")
@require_auth
def create_sale_route():
    """
    Settle a walk-in sale.

    Body: cash_session_id, items[], payments[], customer_id?, coupon_code?,
    discount_cents?, loyalty_points_used?, cashback_used_cents?, notes?
    """
    try:
        settlement = parse_settlement_payload(request.get_json() or {}, "SALE", g.current_user_id)
        result = sale_service.create_sale(settlement)
        return jsonify(result.to_dict()), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@sales_bp.get("/")
@require_auth
def list_sales_route():
    try:
        sales = sale_service.list_sales(
            cash_session_id=request.args.get("cash_session_id", type=int),
            status=request.args.get("status"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sale_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(),
            "items": [item.to_dict() for item in sale.items],
            "payments": [payment.to_dict() for payment in sale.payments],
            "adjustments": [adj.to_dict() for adj in sale.adjustments],
        }), 200
    except DomainError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_sale_route(sale_id: int):
    """Cancel a settled sale and reverse its effects. Requires a reason."""
    try:
        data = request.get_json() or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400

        sale = sale_service.cancel_sale(sale_id, g.current_user_id, reason)
        return jsonify({"sale": sale.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reopen")
@require_auth
@require_role(*MANAGER_ROLES)
def reopen_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        sale = sale_service.reopen_sale(sale_id, g.current_user_id, data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reopen sale")
        return jsonify({"error": "Internal server error"}), 500

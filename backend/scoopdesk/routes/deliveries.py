# Overview: Flask API routes for delivery orders and the delivery-fee table.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import delivery_service
from ..validation import parse_cents, parse_settlement_payload


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.post("")
@deliveries_bp.post("/")
@require_auth
def create_delivery_route():
    """
    Settle a delivery order (status RECEIVED).

    Without delivery_fee_cents the fee comes from the neighborhood table.
    """
    try:
        settlement = parse_settlement_payload(request.get_json() or {}, "DELIVERY", g.current_user_id)
        result = delivery_service.create_delivery_order(settlement)
        return jsonify(result.to_dict()), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create delivery order")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("")
@deliveries_bp.get("/")
@require_auth
def list_deliveries_route():
    orders = delivery_service.list_delivery_orders(
        status=request.args.get("status"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@deliveries_bp.get("/<int:order_id>")
@require_auth
def get_delivery_route(order_id: int):
    try:
        order = delivery_service.get_delivery_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "items": [item.to_dict() for item in order.items],
            "payments": [payment.to_dict() for payment in order.payments],
        }), 200
    except DomainError as e:
        return error_response(e)


@deliveries_bp.post("/<int:order_id>/status")
@require_auth
def update_status_route(order_id: int):
    try:
        data = request.get_json() or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400
        order = delivery_service.update_delivery_status(order_id, status, g.current_user_id, data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update delivery status")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_delivery_route(order_id: int):
    try:
        data = request.get_json() or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400
        order = delivery_service.cancel_delivery_order(order_id, g.current_user_id, reason)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel delivery order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# FEE TABLE
# =============================================================================

@deliveries_bp.get("/fees")
@require_auth
def list_fees_route():
    return jsonify({"fees": [f.to_dict() for f in delivery_service.list_delivery_fees()]}), 200


@deliveries_bp.get("/fees/quote")
@require_auth
def quote_fee_route():
    try:
        fee = delivery_service.delivery_fee_for(
            request.args.get("neighborhood", ""),
            request.args.get("city", ""),
            parse_cents(request.args.get("order_value_cents", "0"), "order_value_cents"),
        )
        return jsonify({"delivery_fee_cents": fee}), 200
    except DomainError as e:
        return error_response(e)


@deliveries_bp.put("/fees")
@require_auth
@require_role(*MANAGER_ROLES)
def upsert_fee_route():
    try:
        fee = delivery_service.upsert_delivery_fee(request.get_json() or {})
        return jsonify({"fee": fee.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save delivery fee")
        return jsonify({"error": "Internal server error"}), 500

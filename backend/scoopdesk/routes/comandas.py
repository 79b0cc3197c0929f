# Overview: Flask API routes for comandas (in-store tabs); parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import comanda_service
from ..validation import parse_cents, parse_payments, require_int


comandas_bp = Blueprint("comandas", __name__, url_prefix="/api/comandas")


def _comanda_payload(comanda) -> dict:
    return {
        "comanda": comanda.to_dict(),
        "items": [item.to_dict() for item in comanda.items],
        "payments": [payment.to_dict() for payment in comanda.payments],
    }


@comandas_bp.post("")
@comandas_bp.post("/")
@require_auth
def open_comanda_route():
    try:
        data = request.get_json() or {}
        comanda = comanda_service.open_comanda(
            require_int(data.get("cash_session_id"), "cash_session_id"),
            g.current_user_id,
            table_number=data.get("table_number"),
            customer_name=data.get("customer_name"),
            customer_id=require_int(data.get("customer_id"), "customer_id", allow_none=True),
        )
        return jsonify(_comanda_payload(comanda)), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open comanda")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.get("/open")
@require_auth
def list_open_route():
    comandas = comanda_service.list_open_comandas(request.args.get("cash_session_id", type=int))
    return jsonify({"comandas": [c.to_dict() for c in comandas]}), 200


@comandas_bp.get("/<int:comanda_id>")
@require_auth
def get_comanda_route(comanda_id: int):
    try:
        return jsonify(_comanda_payload(comanda_service.get_comanda(comanda_id))), 200
    except DomainError as e:
        return error_response(e)


@comandas_bp.post("/<int:comanda_id>/items")
@require_auth
def add_item_route(comanda_id: int):
    try:
        data = request.get_json() or {}
        item = comanda_service.add_item(
            comanda_id,
            product_id=require_int(data.get("product_id"), "product_id"),
            quantity=data.get("quantity", 1),
            user_id=g.current_user_id,
            size_id=require_int(data.get("size_id"), "size_id", allow_none=True),
            flavor_count=require_int(data.get("flavor_count"), "flavor_count", allow_none=True),
            discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
            item_notes=data.get("item_notes"),
        )
        return jsonify({"item": item.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add comanda item")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.patch("/<int:comanda_id>/items/<int:item_id>")
@require_auth
def update_item_route(comanda_id: int, item_id: int):
    try:
        data = request.get_json() or {}
        item = comanda_service.update_item(
            comanda_id,
            item_id,
            quantity=data.get("quantity"),
            discount_cents=parse_cents(data.get("discount_cents"), "discount_cents", allow_none=True),
            item_notes=data.get("item_notes"),
        )
        return jsonify({"item": item.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update comanda item")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.delete("/<int:comanda_id>/items/<int:item_id>")
@require_auth
def cancel_item_route(comanda_id: int, item_id: int):
    try:
        item = comanda_service.cancel_item(comanda_id, item_id)
        return jsonify({"item": item.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel comanda item")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.post("/<int:comanda_id>/close")
@require_auth
def close_comanda_route(comanda_id: int):
    """
    Settle the tab.

    Body: payments[], customer_id?, coupon_code?, discount_cents?,
    additional_fee_cents?, loyalty_points_used?, cashback_used_cents?,
    cash_session_id?, notes?
    """
    try:
        data = request.get_json() or {}
        result = comanda_service.close_comanda(
            comanda_id,
            payments=parse_payments(data.get("payments")),
            user_id=g.current_user_id,
            customer_id=require_int(data.get("customer_id"), "customer_id", allow_none=True),
            coupon_code=data.get("coupon_code") or None,
            discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
            additional_fee_cents=parse_cents(data.get("additional_fee_cents"), "additional_fee_cents", allow_none=True),
            loyalty_points_used=require_int(data.get("loyalty_points_used", 0), "loyalty_points_used", minimum=0),
            cashback_used_cents=parse_cents(data.get("cashback_used_cents", 0), "cashback_used_cents"),
            cash_session_id=require_int(data.get("cash_session_id"), "cash_session_id", allow_none=True),
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict()), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close comanda")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.post("/<int:comanda_id>/reopen")
@require_auth
@require_role(*MANAGER_ROLES)
def reopen_comanda_route(comanda_id: int):
    try:
        comanda = comanda_service.reopen_comanda(comanda_id, g.current_user_id)
        return jsonify(_comanda_payload(comanda)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reopen comanda")
        return jsonify({"error": "Internal server error"}), 500


@comandas_bp.post("/<int:comanda_id>/cancel")
@require_auth
@require_role(*MANAGER_ROLES)
def cancel_comanda_route(comanda_id: int):
    try:
        data = request.get_json(silent=True) or {}
        comanda = comanda_service.cancel_comanda(comanda_id, g.current_user_id, data.get("reason"))
        return jsonify(_comanda_payload(comanda)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel comanda")
        return jsonify({"error": "Internal server error"}), 500

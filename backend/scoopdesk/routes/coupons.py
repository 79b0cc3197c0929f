# Overview: Flask API routes for coupons; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..models import Coupon
from ..services import coupon_service
from ..validation import ModelValidationPolicy, parse_cents, parse_datetime, require_int, validate_payload


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "discount_value", "min_purchase_cents",
        "max_discount_cents", "valid_from", "valid_to", "usage_limit",
    },
    required_on_create={"code", "discount_type", "discount_value", "valid_from", "valid_to"},
)

COUPON_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=set(coupon_service.UPDATABLE_FIELDS),
    required_on_create=set(),
)


@coupons_bp.post("")
@coupons_bp.post("/")
@require_auth
@require_role(*MANAGER_ROLES)
def create_coupon_route():
    try:
        data = validate_payload(model=Coupon, payload=request.get_json(), policy=COUPON_POLICY, partial=False)
        coupon = coupon_service.create_coupon(data, g.current_user_id)
        return jsonify({"coupon": coupon.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("")
@coupons_bp.get("/")
@require_auth
def list_coupons_route():
    active_only = request.args.get("active_only", "false").lower() == "true"
    return jsonify({"coupons": [c.to_dict() for c in coupon_service.list_coupons(active_only)]}), 200


@coupons_bp.post("/validate")
@require_auth
def validate_coupon_route():
    """Quote a code against a base amount without consuming a use."""
    try:
        data = request.get_json() or {}
        quote = coupon_service.validate_coupon(
            data.get("code"),
            parse_cents(data.get("base_cents"), "base_cents"),
            require_int(data.get("customer_id"), "customer_id", allow_none=True),
        )
        return jsonify({"coupon": quote.coupon.to_dict(), "discount_cents": quote.discount_cents}), 200
    except DomainError as e:
        return error_response(e)


@coupons_bp.post("/<int:coupon_id>/deactivate")
@require_auth
@require_role(*MANAGER_ROLES)
def deactivate_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.deactivate_coupon(coupon_id)
        return jsonify({"coupon": coupon.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.route("/<int:coupon_id>", methods=["PUT", "PATCH"])
@require_auth
@require_role(*MANAGER_ROLES)
def update_coupon_route(coupon_id: int):
    try:
        data = validate_payload(
            model=Coupon, payload=request.get_json() or {}, policy=COUPON_UPDATE_POLICY, partial=True,
        )
        coupon = coupon_service.update_coupon(coupon_id, data)
        return jsonify({"coupon": coupon.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("/<int:coupon_id>/activate")
@require_auth
@require_role(*MANAGER_ROLES)
def activate_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.reactivate_coupon(coupon_id)
        return jsonify({"coupon": coupon.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to activate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.delete("/<int:coupon_id>")
@require_auth
@require_role(*MANAGER_ROLES)
def delete_coupon_route(coupon_id: int):
    try:
        coupon_service.delete_coupon(coupon_id)
        return "", 204
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("/usages")
@require_auth
@require_role(*MANAGER_ROLES)
def coupon_usages_route():
    try:
        args = request.args
        history = coupon_service.usage_history(
            coupon_id=args.get("coupon_id", type=int),
            customer_id=args.get("customer_id", type=int),
            start=parse_datetime(args.get("start"), "start"),
            end=parse_datetime(args.get("end"), "end", inclusive_end=True),
            limit=min(args.get("limit", 100, type=int), 500),
        )
        return jsonify(history), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load coupon usage history")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for loyalty points and cashback balances and configuration.

from dataclasses import asdict

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import reward_service
from ..validation import parse_datetime, require_int


rewards_bp = Blueprint("rewards", __name__, url_prefix="/api/rewards")


# =============================================================================
# STATEMENTS
# =============================================================================

@rewards_bp.get("/customers/<int:customer_id>/points")
@require_auth
def points_statement_route(customer_id: int):
    try:
        return jsonify(reward_service.points_statement(customer_id, request.args.get("limit", 50, type=int))), 200
    except DomainError as e:
        return error_response(e)


@rewards_bp.get("/customers/<int:customer_id>/cashback")
@require_auth
def cashback_statement_route(customer_id: int):
    try:
        return jsonify(reward_service.cashback_statement(customer_id, request.args.get("limit", 50, type=int))), 200
    except DomainError as e:
        return error_response(e)


@rewards_bp.get("/customers/<int:customer_id>/verify")
@require_auth
@require_role(*MANAGER_ROLES)
def verify_ledger_route(customer_id: int):
    try:
        return jsonify(reward_service.verify_ledger(customer_id)), 200
    except DomainError as e:
        return error_response(e)


# =============================================================================
# BALANCE CHANGES OUTSIDE A SETTLEMENT
# =============================================================================

@rewards_bp.post("/customers/<int:customer_id>/points/redeem")
@require_auth
def redeem_points_route(customer_id: int):
    try:
        data = request.get_json() or {}
        entry = reward_service.redeem_points(
            customer_id,
            require_int(data.get("points"), "points", minimum=1),
            user_id=g.current_user_id,
            description=data.get("description"),
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem points")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.post("/customers/<int:customer_id>/cashback/redeem")
@require_auth
def redeem_cashback_route(customer_id: int):
    try:
        data = request.get_json() or {}
        entry = reward_service.redeem_cashback(
            customer_id,
            require_int(data.get("amount_cents"), "amount_cents", minimum=1),
            user_id=g.current_user_id,
            description=data.get("description"),
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem cashback")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.post("/customers/<int:customer_id>/points/adjust")
@require_auth
@require_role(*MANAGER_ROLES)
def adjust_points_route(customer_id: int):
    try:
        data = request.get_json() or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400
        entry = reward_service.adjust_points(
            customer_id, require_int(data.get("delta"), "delta"), reason, user_id=g.current_user_id,
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust points")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.post("/customers/<int:customer_id>/cashback/adjust")
@require_auth
@require_role(*MANAGER_ROLES)
def adjust_cashback_route(customer_id: int):
    try:
        data = request.get_json() or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400
        entry = reward_service.adjust_cashback(
            customer_id, require_int(data.get("delta_cents"), "delta_cents"), reason, user_id=g.current_user_id,
        )
        return jsonify({"transaction": entry.to_dict()}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust cashback")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CONFIGURATION
# =============================================================================

@rewards_bp.get("/config")
@require_auth
def get_config_route():
    loyalty = reward_service.load_loyalty_policy()
    cashback = reward_service.load_cashback_policy()
    return jsonify({"loyalty": asdict(loyalty), "cashback": asdict(cashback)}), 200


@rewards_bp.put("/config/loyalty")
@require_auth
@require_role(*MANAGER_ROLES)
def update_loyalty_config_route():
    try:
        config = reward_service.update_loyalty_config(request.get_json() or {})
        return jsonify({"config": config.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update loyalty config")
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.put("/config/cashback")
@require_auth
@require_role(*MANAGER_ROLES)
def update_cashback_config_route():
    try:
        config = reward_service.update_cashback_config(request.get_json() or {})
        return jsonify({"config": config.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cashback config")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# EXPIRY JOBS
# =============================================================================

def _run_expiry(job, label: str):
    try:
        data = request.get_json(silent=True) or {}
        report = job(
            parse_datetime(data.get("as_of"), "as_of"),
            dry_run=bool(data.get("dry_run", False)),
        )
        report["outcomes"] = [o.to_dict() for o in report["outcomes"]]
        return jsonify(report), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to expire %s", label)
        return jsonify({"error": "Internal server error"}), 500


@rewards_bp.post("/jobs/expire-points")
@require_auth
@require_role(*MANAGER_ROLES)
def expire_points_route():
    return _run_expiry(reward_service.expire_points, "points")


@rewards_bp.post("/jobs/expire-cashback")
@require_auth
@require_role(*MANAGER_ROLES)
def expire_cashback_route():
    return _run_expiry(reward_service.expire_cashback, "cashback")

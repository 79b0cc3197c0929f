# Overview: Flask API routes for cash sessions; parses input and returns JSON responses.

"""
Cash Session API Routes

WHY: A terminal's drawer is opened by a cashier, counted by the cashier at
the end of the shift and validated by a manager.

DESIGN:
- open / cashier-close: any authenticated operator
- manager-close / recalc: MANAGER or ADMIN
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import MANAGER_ROLES, error_response, require_auth, require_role
from ..errors import DomainError
from ..services import cash_session_service
from ..validation import parse_cents


cash_sessions_bp = Blueprint("cash_sessions", __name__, url_prefix="/api/cash-sessions")


@cash_sessions_bp.post("/open")
@require_auth
def open_session_route():
    try:
        data = request.get_json() or {}
        terminal_id = (data.get("terminal_id") or "").strip()
        if not terminal_id:
            return jsonify({"error": "terminal_id required"}), 400
        initial_cash = parse_cents(data.get("initial_cash_cents", 0), "initial_cash_cents")

        session = cash_session_service.open_session(terminal_id, initial_cash, g.current_user_id)
        return jsonify({"session": session.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.get("/current")
@require_auth
def current_session_route():
    terminal_id = request.args.get("terminal_id")
    if not terminal_id:
        return jsonify({"error": "terminal_id required"}), 400
    try:
        session = cash_session_service.current_session(terminal_id)
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@cash_sessions_bp.get("")
@cash_sessions_bp.get("/")
@require_auth
def list_sessions_route():
    sessions = cash_session_service.list_sessions(
        terminal_id=request.args.get("terminal_id"),
        status=request.args.get("status"),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@cash_sessions_bp.get("/<int:session_id>")
@require_auth
def get_session_route(session_id: int):
    try:
        return jsonify({"session": cash_session_service.get_session(session_id).to_dict()}), 200
    except DomainError as e:
        return error_response(e)


@cash_sessions_bp.get("/<int:session_id>/report")
@require_auth
def session_report_route(session_id: int):
    try:
        return jsonify(cash_session_service.session_report(session_id)), 200
    except DomainError as e:
        return error_response(e)


@cash_sessions_bp.post("/<int:session_id>/cashier-close")
@require_auth
def cashier_close_route(session_id: int):
    """
    Cashier counts the drawer.

    Body: {"counted_cash_cents": int, "breakdown": [{"method", "counted_cents"}]?, "notes"?}
    """
    try:
        data = request.get_json() or {}
        counted = parse_cents(data.get("counted_cash_cents"), "counted_cash_cents")
        session = cash_session_service.cashier_close(
            session_id,
            counted,
            data.get("breakdown"),
            user_id=g.current_user_id,
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash session (cashier)")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/<int:session_id>/manager-close")
@require_auth
@require_role(*MANAGER_ROLES)
def manager_close_route(session_id: int):
    try:
        data = request.get_json() or {}
        session = cash_session_service.manager_close(
            session_id,
            manager_id=g.current_user_id,
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash session (manager)")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/<int:session_id>/recalculate")
@require_auth
@require_role(*MANAGER_ROLES)
def recalculate_route(session_id: int):
    try:
        session = cash_session_service.recalculate_totals(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recalculate cash session totals")
        return jsonify({"error": "Internal server error"}), 500

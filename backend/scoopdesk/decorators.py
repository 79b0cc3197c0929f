# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import DomainError


ROLE_HEADER = "X-User-Role"
USER_HEADER = "X-User-Id"

# Roles allowed to close sessions, reverse orders and manage configuration
MANAGER_ROLES = ("MANAGER", "ADMIN")


def _is_authenticated() -> bool:
    return hasattr(g, "current_user_id")


def require_auth(f):
    """
    Require an authenticated caller.

    Authentication happens at the gateway; it forwards the user as headers.
    Sets on flask.g:
    - g.current_user_id: int from X-User-Id (required)
    - g.current_user_role: upper-cased X-User-Role (may be None)

    Returns 401 if the header is missing or not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user = (request.headers.get(USER_HEADER) or "").strip()
        if not raw_user:
            return jsonify({"error": "Authentication required"}), 401
        try:
            user_id = int(raw_user)
        except ValueError:
            return jsonify({"error": "Invalid user header"}), 401

        role = (request.headers.get(ROLE_HEADER) or "").strip().upper() or None
        g.current_user_id = user_id
        g.current_user_role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require one of the given roles (use after @require_auth)."""
    allowed = {r.upper() for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user_role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def error_response(exc: DomainError):
    return jsonify(exc.to_dict()), exc.http_status

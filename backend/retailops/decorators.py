# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models.auth import ROLE_ADMIN, STORE_ROLES
from .services import session_service
from .validation import EngineError


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user and g.auth_token. Returns 401 when the header is
    missing or the token is invalid, expired or revoked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.auth_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Allow only users whose role is in `roles`. Admins always pass."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role != ROLE_ADMIN and user.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def can_access_store(user, store_id: int) -> bool:
    if user.role == ROLE_ADMIN:
        return True
    return user.role in STORE_ROLES and user.store_id == store_id


def json_errors(f):
    """
    Map service errors to JSON responses.

    EngineError subclasses carry their own status code. Anything else is
    logged with traceback and returned as a generic 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except EngineError as e:
            return e.to_dict(), e.status_code
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return {"error": "Internal server error"}, 500

    return decorated_function

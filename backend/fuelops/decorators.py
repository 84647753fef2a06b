# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .permissions import get_role_permissions, validate_permission_code


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Resolve the acting user from the actor header.

    The console's session layer sits in front of this API and forwards the
    authenticated user's id. Sets:
    - g.current_user: The acting User object
    - g.actor_user_id: its id, passed explicitly to every service call

    Returns 401 if the header is missing, malformed, or names an unknown or
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config.get("ACTOR_HEADER", "X-User-Id")
        raw = (request.headers.get(header) or "").strip()

        if not raw:
            return jsonify({"error": "Authentication required"}), 401

        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": f"Invalid {header} header"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            current_app.logger.warning("Rejected request to %s for unknown/inactive user %s", request.path, user_id)
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        g.actor_user_id = user.id

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the acting user's role."""
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if permission_code not in get_role_permissions(user.role):
                current_app.logger.warning(
                    "Permission denied: user %s (%s) lacks %s for %s %s",
                    user.id, user.role, permission_code, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": f"Role '{user.role}' does not have {permission_code}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator

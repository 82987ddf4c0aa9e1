# Overview: Request decorators for API routes (bearer authentication and role checks).

from functools import wraps

from flask import request, jsonify, g

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_user: the authenticated User
    - g.session_key: hash of the session token, the key of the session's
      staged checkout and top-up
    - g.session_context: the full SessionContext

    Returns 401 when the header is missing, the token is invalid or expired,
    or the account has been deleted.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_key = context.session_key
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require ``g.current_user.role == role``; use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role != role:
                return jsonify({"error": "Access denied", "required_role": role}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator

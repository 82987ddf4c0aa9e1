# Overview: Flask API routes for login, logout and the current account.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import checkout_store
from ..errors import AuthenticationError, StorefrontError
from ..decorators import require_auth
from ..services import auth_service, session_service, cart_service, checkout_service, topup_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Log in with username or email plus password.

    Request body:
    {
        "username": "alice",          (or "email")
        "password": "Password123!",
        "cart": [{"product_id": 1, "quantity": 2}]   (optional anonymous cart to merge)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email")
        password = data.get("password")
        if not identifier or not password:
            return jsonify({"error": "username (or email) and password required"}), 400

        user = auth_service.authenticate(identifier, password)
        if user is None:
            raise AuthenticationError("Invalid credentials")

        _, token = session_service.create_session(user.id)

        merged = []
        if data.get("cart"):
            merged = [change.to_dict() for change in cart_service.merge_cart(user.id, data["cart"])]

        return jsonify({"token": token, "user": user.to_dict(), "merged_cart": merged}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session; any staged checkout or top-up for it is dropped."""
    try:
        session_key = session_service.revoke_session(g.session_token)
        if session_key:
            checkout_store.pop(checkout_service.NAMESPACE, session_key)
            checkout_store.pop(topup_service.NAMESPACE, session_key)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to log out")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200

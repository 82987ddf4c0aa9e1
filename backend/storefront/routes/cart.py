# Overview: Flask API routes for the persisted cart.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError, ValidationError
from ..decorators import require_auth
from ..services import cart_service
from ..validation import parse_quantity


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_payload(user_id: int) -> dict:
    lines = cart_service.get_cart(user_id)
    return {"items": lines, "total_cents": cart_service.cart_total_cents(lines)}


@cart_bp.get("")
@require_auth
def get_cart_route():
    try:
        return jsonify(_cart_payload(g.current_user.id)), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a product to the cart.

    Request body: {"product_id": 1, "quantity": 2}

    The quantity is capped at available stock; the response says so.
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        if product_id is None:
            raise ValidationError("product_id required")
        quantity = parse_quantity(data.get("quantity", 1))

        change = cart_service.add_item(g.current_user.id, int(product_id), quantity)
        payload = _cart_payload(g.current_user.id)
        payload["change"] = change.to_dict()
        return jsonify(payload), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:product_id>")
@require_auth
def update_item_route(product_id: int):
    """Request body: {"quantity": 3} (absolute) or {"delta": -1}."""
    try:
        data = request.get_json(silent=True) or {}
        quantity = data.get("quantity")
        delta = data.get("delta")
        change = cart_service.set_quantity(
            g.current_user.id,
            product_id,
            quantity=parse_quantity(quantity, allow_zero=True) if quantity is not None else None,
            delta=parse_quantity(delta, allow_negative=True) if delta is not None else None,
        )
        payload = _cart_payload(g.current_user.id)
        payload["change"] = change.to_dict()
        return jsonify(payload), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:product_id>")
@require_auth
def remove_item_route(product_id: int):
    try:
        cart_service.remove_item(g.current_user.id, product_id)
        return jsonify(_cart_payload(g.current_user.id)), 200
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    try:
        cart_service.clear_cart(g.current_user.id)
        return jsonify(_cart_payload(g.current_user.id)), 200
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/merge")
@require_auth
def merge_cart_route():
    """Request body: {"items": [{"product_id": 1, "quantity": 2}, ...]}"""
    try:
        data = request.get_json(silent=True) or {}
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        changes = cart_service.merge_cart(g.current_user.id, items)
        payload = _cart_payload(g.current_user.id)
        payload["changes"] = [c.to_dict() for c in changes]
        return jsonify(payload), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to merge cart")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for order history, reorder, and admin order management.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import cart_service, fraud_service, order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")
admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin")


@orders_bp.get("")
@require_auth
def list_orders_route():
    try:
        orders = order_service.list_orders_for_user(g.current_user.id)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_user(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reorder")
@require_auth
def reorder_route(order_id: int):
    """Copy a past order into the cart; lines are capped at current stock."""
    try:
        result = cart_service.reorder(g.current_user.id, order_id)
        return jsonify(result), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reorder")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_orders_bp.get("/orders")
@require_auth
@require_role(ROLE_ADMIN)
def admin_list_orders_route():
    try:
        return jsonify({"orders": order_service.admin_list_orders()}), 200
    except Exception:
        current_app.logger.exception("Failed to list orders for admin")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/orders/<int:order_id>/status")
@require_auth
@require_role(ROLE_ADMIN)
def admin_update_order_status_route(order_id: int):
    """Request body: {"status": "pending" | "processing" | "completed" | "cancelled" | "refunded"}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_status(order_id, data.get("status"))
        return jsonify({"order": order.to_dict(include_items=False)}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/orders/<int:order_id>/shipping-status")
@require_auth
@require_role(ROLE_ADMIN)
def admin_update_shipping_status_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_shipping_status(order_id, data.get("shipping_status"))
        return jsonify({"order": order.to_dict(include_items=False)}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update shipping status")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.get("/fraud")
@require_auth
@require_role(ROLE_ADMIN)
def admin_fraud_analysis_route():
    try:
        return jsonify(fraud_service.analysis()), 200
    except Exception:
        current_app.logger.exception("Failed to build fraud analysis")
        return jsonify({"error": "Internal server error"}), 500

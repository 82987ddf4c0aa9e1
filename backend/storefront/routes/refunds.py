# Overview: Flask API routes for refund requests and admin refund decisions.

# backend/storefront/routes/refunds.py
"""
Refund API Routes

Customers request refunds for their own orders; admins approve, process or
reject them. Approval restocks, refunds on the provider (destination
"original") or credits the wallet (destination "store_credit").
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import refund_service
from ..validation import parse_amount_cents


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/orders")
admin_refunds_bp = Blueprint("admin_refunds", __name__, url_prefix="/api/admin")


@refunds_bp.post("/<int:order_id>/refunds")
@require_auth
def request_refund_route(order_id: int):
    """
    Request body:
    {
        "reason": "Items arrived damaged",
        "destination": "store_credit" | "original"   (default store_credit)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        refund = refund_service.request_refund(
            g.current_user,
            order_id,
            data.get("reason"),
            data.get("destination"),
        )
        return jsonify({"refund": refund.to_dict()}), 201
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create refund request")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/<int:order_id>/refunds")
@require_auth
def list_order_refunds_route(order_id: int):
    try:
        refunds = refund_service.refunds_for_order(order_id, g.current_user)
        return jsonify({"refunds": [r.to_dict() for r in refunds]}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_refunds_bp.post("/orders/<int:order_id>/refunds")
@require_auth
@require_role(ROLE_ADMIN)
def admin_create_refund_route(order_id: int):
    """Request body: {"amount": "12.50", "reason": "...", "destination": "store_credit"}"""
    try:
        data = request.get_json(silent=True) or {}
        outcome = refund_service.admin_create_refund(
            g.current_user,
            order_id,
            parse_amount_cents(data.get("amount")),
            data.get("reason"),
            data.get("destination"),
        )
        return jsonify(outcome.to_dict()), 201
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create admin refund")
        return jsonify({"error": "Internal server error"}), 500


@admin_refunds_bp.get("/refunds")
@require_auth
@require_role(ROLE_ADMIN)
def admin_list_refunds_route():
    try:
        status = request.args.get("status")
        return jsonify({
            "refunds": refund_service.list_refunds(status),
            "pending_count": refund_service.pending_count(),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list refunds for admin")
        return jsonify({"error": "Internal server error"}), 500


@admin_refunds_bp.post("/refunds/<int:refund_id>/status")
@require_auth
@require_role(ROLE_ADMIN)
def admin_update_refund_status_route(refund_id: int):
    """
    Request body:
    {
        "status": "approved" | "processed" | "rejected",
        "amount": "10.00"   (optional override, capped at what the rail captured)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        override = data.get("amount")
        outcome = refund_service.update_status(
            refund_id,
            data.get("status"),
            actor_user_id=g.current_user.id,
            override_amount_cents=parse_amount_cents(override) if override not in (None, "") else None,
        )
        return jsonify(outcome.to_dict()), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update refund status")
        return jsonify({"error": "Internal server error"}), 500

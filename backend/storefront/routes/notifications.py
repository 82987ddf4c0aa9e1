# Overview: Flask API routes for in-app notifications.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    try:
        user_id = g.current_user.id
        return jsonify({
            "notifications": [n.to_dict() for n in notification_service.list_for_user(user_id)],
            "unread": notification_service.unread_count(user_id),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/read")
@require_auth
def mark_notifications_read_route():
    updated = notification_service.mark_all_read(g.current_user.id)
    return jsonify({"updated": updated}), 200

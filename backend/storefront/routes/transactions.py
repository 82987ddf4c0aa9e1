# Overview: Flask API route for the admin transaction log.

from flask import Blueprint, request, jsonify, current_app

from ..errors import StorefrontError, ValidationError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import transaction_service


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/admin/transactions")


@transactions_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_transactions_route():
    """
    Query params (all optional):
    - order_id
    - method: card | paynow | grabpay | paypal | nets | store_credit
    - status: COMPLETED | REFUNDED
    - payer: substring of payer id, payer email or username
    - from / to: ISO-8601 dates (a plain "to" date includes the whole day)
    """
    try:
        order_id = request.args.get("order_id")
        if order_id is not None and not order_id.isdigit():
            raise ValidationError("order_id must be an integer")

        txns = transaction_service.list_transactions(
            order_id=int(order_id) if order_id else None,
            method=request.args.get("method") or None,
            status=request.args.get("status") or None,
            payer=request.args.get("payer") or None,
            date_from=request.args.get("from") or None,
            date_to=request.args.get("to") or None,
        )
        return jsonify({
            "transactions": [t.to_dict() for t in txns],
            "count": len(txns),
        }), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500

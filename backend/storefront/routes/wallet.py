# Overview: Flask API routes for the store-credit wallet (balance, history, top-ups).

# backend/storefront/routes/wallet.py
"""
Wallet API Routes

Top-ups follow the same staged flow as checkout: stage an amount, pick a
rail, create the provider intent, then confirm server-side. A provider
reference credits the wallet at most once.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import checkout_store
from ..errors import StorefrontError, ValidationError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import topup_service, wallet_service
from ..validation import parse_amount_cents


wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")
admin_wallet_bp = Blueprint("admin_wallet", __name__, url_prefix="/api/admin")


@wallet_bp.get("")
@require_auth
def get_wallet_route():
    try:
        balance = wallet_service.get_balance(g.current_user.id)
        return jsonify({"balance_cents": balance}), 200
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/transactions")
@require_auth
def list_wallet_transactions_route():
    try:
        txns = wallet_service.list_transactions(g.current_user.id)
        return jsonify({"transactions": [t.to_dict() for t in txns]}), 200
    except Exception:
        current_app.logger.exception("Failed to list wallet transactions")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/transactions/<int:transaction_id>")
@require_auth
def get_wallet_transaction_route(transaction_id: int):
    try:
        txn = wallet_service.get_transaction(g.current_user.id, transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# TOP-UP
# =============================================================================

@wallet_bp.post("/topup")
@require_auth
def begin_topup_route():
    """Request body: {"amount": "20.00"}"""
    try:
        data = request.get_json(silent=True) or {}
        pending = topup_service.begin_topup(
            checkout_store, g.session_key, g.current_user, parse_amount_cents(data.get("amount"))
        )
        return jsonify({"topup": pending.to_dict()}), 201
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to begin top-up")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup/method")
@require_auth
def select_topup_method_route():
    try:
        data = request.get_json(silent=True) or {}
        pending = topup_service.select_topup_method(checkout_store, g.session_key, data.get("method"))
        return jsonify({"topup": pending.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code


def _start(method: str):
    intent = topup_service.start_topup_payment(checkout_store, g.session_key, method)
    return jsonify({"intent": intent.to_dict()}), 200


def _confirm(provider_ref: str | None):
    if not provider_ref:
        raise ValidationError("Missing payment reference")
    result = topup_service.confirm_topup_payment(checkout_store, g.session_key, g.current_user, provider_ref)
    return jsonify(result.to_dict()), 200


@wallet_bp.post("/topup/card/session")
@require_auth
def topup_card_session_route():
    try:
        data = request.get_json(silent=True) or {}
        method = data.get("method") or "card"
        if method not in ("card", "paynow", "grabpay"):
            raise ValidationError("method must be card, paynow or grabpay")
        return _start(method)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create top-up checkout session")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/topup/card/return")
@require_auth
def topup_card_return_route():
    try:
        return _confirm(request.args.get("session_id"))
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm card top-up")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup/paypal/order")
@require_auth
def topup_paypal_order_route():
    try:
        return _start("paypal")
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create PayPal top-up order")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup/paypal/capture")
@require_auth
def topup_paypal_capture_route():
    try:
        data = request.get_json(silent=True) or {}
        return _confirm(data.get("order_id") or data.get("orderId"))
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to capture PayPal top-up")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup/nets/qr")
@require_auth
def topup_nets_qr_route():
    try:
        return _start("nets")
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate NETS top-up QR")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup/nets/confirm")
@require_auth
def topup_nets_confirm_route():
    try:
        data = request.get_json(silent=True) or {}
        return _confirm(data.get("txn_retrieval_ref"))
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm NETS top-up")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ADMIN
# =============================================================================

@admin_wallet_bp.get("/wallets")
@require_auth
@require_role(ROLE_ADMIN)
def admin_list_wallets_route():
    try:
        return jsonify(wallet_service.list_wallets()), 200
    except Exception:
        current_app.logger.exception("Failed to list wallets")
        return jsonify({"error": "Internal server error"}), 500

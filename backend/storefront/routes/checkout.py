# Overview: Flask API routes for the staged checkout and every payment rail's confirmation step.

# backend/storefront/routes/checkout.py
"""
Checkout API Routes

DESIGN:
- A checkout is staged per login session (keyed by g.session_key)
- Each rail has a start step (create intent) and a confirm step that checks
  the provider server-side before money is applied to the checkout
- Store credit pays immediately and may cover only part of the total
- The QR rail streams provider status over server-sent events; the client
  then calls the confirm endpoint

Responses carrying ``order_id`` mean the checkout settled into an order.
"""

import json

from flask import Blueprint, Response, request, jsonify, g, current_app, stream_with_context

from ..extensions import checkout_store
from ..errors import StorefrontError, ValidationError, NotFoundError
from ..decorators import require_auth
from ..services import checkout_service
from ..services.payments import get_adapter
from ..services.payments.qr_status import QrStatusPoller


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _result_response(result):
    if result.order_id is not None:
        return jsonify(result.to_dict()), (200 if result.duplicate else 201)
    return jsonify(result.to_dict()), 200


# =============================================================================
# STAGING
# =============================================================================

@checkout_bp.post("")
@require_auth
def begin_checkout_route():
    """
    Stage a checkout.

    Request body:
    {
        "shipping": {"name": "...", "address": "...", "phone": "...", "notes": "..."}
    }

    Lines come from the persisted cart and are priced from the catalog. A
    second call while a checkout is staged returns the staged one (200)
    instead of creating (201).
    """
    try:
        data = request.get_json(silent=True) or {}
        pending, created = checkout_service.begin_from_cart(
            checkout_store, g.session_key, g.current_user, data.get("shipping") or {}
        )
        return jsonify({"checkout": pending.to_dict(), "created": created}), (201 if created else 200)

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to begin checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("")
@require_auth
def get_checkout_route():
    try:
        pending = checkout_service.get_pending(checkout_store, g.session_key)
        return jsonify({"checkout": pending.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code


@checkout_bp.post("/method")
@require_auth
def select_method_route():
    """Request body: {"method": "card" | "paynow" | "grabpay" | "paypal" | "nets" | "store_credit"}"""
    try:
        data = request.get_json(silent=True) or {}
        pending = checkout_service.select_method(checkout_store, g.session_key, data.get("method"))
        return jsonify({"success": True, "method": pending.payment_method}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to select payment method")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("")
@require_auth
def abandon_checkout_route():
    pending = checkout_service.abandon(checkout_store, g.session_key)
    return jsonify({
        "abandoned": pending is not None,
        "unrefunded_partial_payments": [p.to_dict() for p in pending.partial_payments] if pending else [],
    }), 200


@checkout_bp.post("/finalize")
@require_auth
def retry_finalize_route():
    """Retry order creation for a fully paid checkout after a stock conflict."""
    try:
        result = checkout_service.retry_finalize(checkout_store, g.session_key, g.current_user)
        return _result_response(result)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize checkout")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# HOSTED CHECKOUT (card / PayNow / GrabPay)
# =============================================================================

@checkout_bp.post("/card/session")
@require_auth
def create_card_session_route():
    """Request body: {"method": "card" | "paynow" | "grabpay"} (default card)."""
    try:
        data = request.get_json(silent=True) or {}
        method = data.get("method") or "card"
        if method not in ("card", "paynow", "grabpay"):
            raise ValidationError("method must be card, paynow or grabpay")
        intent = checkout_service.start_provider_payment(checkout_store, g.session_key, method)
        return jsonify({"intent": intent.to_dict(), "url": intent.redirect_url}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create checkout session")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/card/return")
@require_auth
def card_return_route():
    """Return URL target: ?session_id=<checkout session id>"""
    try:
        session_id = request.args.get("session_id")
        if not session_id:
            raise ValidationError("Missing session_id")
        result = checkout_service.confirm_provider_payment(
            checkout_store, g.session_key, g.current_user, None, session_id
        )
        return _result_response(result)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm card payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYPAL (create order / capture)
# =============================================================================

@checkout_bp.post("/paypal/order")
@require_auth
def create_paypal_order_route():
    try:
        intent = checkout_service.start_provider_payment(checkout_store, g.session_key, "paypal")
        return jsonify({"id": intent.provider_ref, "intent": intent.to_dict()}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create PayPal order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/paypal/capture")
@require_auth
def capture_paypal_order_route():
    """Request body: {"order_id": "<paypal order id>"}"""
    try:
        data = request.get_json(silent=True) or {}
        order_ref = data.get("order_id") or data.get("orderId")
        if not order_ref:
            raise ValidationError("Missing PayPal order id.")
        result = checkout_service.confirm_provider_payment(
            checkout_store, g.session_key, g.current_user, "paypal", order_ref
        )
        return _result_response(result)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to capture PayPal payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# NETS QR
# =============================================================================

@checkout_bp.post("/nets/qr")
@require_auth
def create_nets_qr_route():
    try:
        intent = checkout_service.start_provider_payment(checkout_store, g.session_key, "nets")
        return jsonify({
            "intent": intent.to_dict(),
            "qr_code_url": intent.qr_payload,
            "txn_retrieval_ref": intent.provider_ref,
            "timer": intent.raw.get("timer"),
        }), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate NETS QR code")
        return jsonify({"error": "Internal server error"}), 500


def qr_status_stream(poller: QrStatusPoller):
    """Server-sent events, one per poll; polling stops when the client leaves."""
    events = poller.events()
    try:
        for event in events:
            yield f"data: {json.dumps(event)}\n\n"
    finally:
        poller.cancel()
        events.close()


@checkout_bp.get("/nets/status/<string:txn_retrieval_ref>")
@require_auth
def nets_status_stream_route(txn_retrieval_ref: str):
    try:
        pending = checkout_service.get_pending(checkout_store, g.session_key)
        if txn_retrieval_ref not in pending.provider_refs and not pending.has_payment(txn_retrieval_ref):
            raise NotFoundError("Unknown QR transaction for this checkout")

        poller = QrStatusPoller(
            get_adapter("nets"),
            txn_retrieval_ref,
            interval=current_app.config.get("QR_POLL_INTERVAL_SECONDS", 5),
            max_attempts=current_app.config.get("QR_POLL_MAX_ATTEMPTS", 60),
        )
        return Response(
            stream_with_context(qr_status_stream(poller)),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open NETS status stream")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/nets/confirm")
@require_auth
def confirm_nets_route():
    """Request body: {"txn_retrieval_ref": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        ref = data.get("txn_retrieval_ref")
        if not ref:
            raise ValidationError("Missing txn_retrieval_ref")
        result = checkout_service.confirm_provider_payment(
            checkout_store, g.session_key, g.current_user, "nets", ref
        )
        return _result_response(result)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm NETS payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STORE CREDIT
# =============================================================================

@checkout_bp.post("/store-credit")
@require_auth
def pay_with_store_credit_route():
    """
    Request body: {"password": "<account password>"}

    Debits as much of the remaining balance as the wallet covers.
    """
    try:
        data = request.get_json(silent=True) or {}
        password = data.get("password")
        if not password:
            raise ValidationError("Password is required to use store credit")
        result = checkout_service.pay_with_store_credit(checkout_store, g.session_key, g.current_user, password)
        return _result_response(result)
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to pay with store credit")
        return jsonify({"error": "Internal server error"}), 500

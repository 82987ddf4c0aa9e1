# Overview: Hosted checkout-session rail (card, PayNow, GrabPay) through the Stripe SDK.

"""
Hosted checkout adapter.

Flow: create a checkout session -> redirect the customer to the hosted page
-> the customer returns with ``session_id`` -> the server retrieves the
session and trusts only ``payment_status == "paid"``.

One adapter instance per payment method type so card, PayNow and GrabPay
share this code and differ only in ``payment_method_types``.
"""

from __future__ import annotations

import logging

import stripe
from flask import current_app

from ...errors import ProviderError, ProviderUnavailable
from .base import (
    PaymentAdapter,
    PaymentIntent,
    PaymentStatus,
    RefundResult,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
)

logger = logging.getLogger(__name__)

SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"
ALREADY_REFUNDED_CODES = {"charge_already_refunded"}


def _with_session_placeholder(url: str) -> str:
    if SESSION_PLACEHOLDER in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={SESSION_PLACEHOLDER}"


class HostedCheckoutAdapter(PaymentAdapter):
    provider_name = "hosted checkout"

    def __init__(self, method: str, *, secret_key: str | None, success_url: str, cancel_url: str):
        self.method = method
        self.secret_key = secret_key
        self.success_url = _with_session_placeholder(success_url)
        self.cancel_url = cancel_url

    @classmethod
    def from_config(cls, method: str, *, success_url: str | None = None, cancel_url: str | None = None):
        config = current_app.config
        return cls(
            method,
            secret_key=config.get("STRIPE_SECRET_KEY"),
            success_url=success_url or config["STRIPE_SUCCESS_URL"],
            cancel_url=cancel_url or config["STRIPE_CANCEL_URL"],
        )

    def _api_key(self) -> str:
        if not self.secret_key:
            raise ProviderUnavailable("Card payments are not configured")
        return self.secret_key

    def _unavailable(self, action: str, exc: Exception) -> ProviderUnavailable:
        logger.warning("Stripe %s failed to connect: %s", action, exc)
        return ProviderUnavailable(f"{self.provider_name} is unreachable")

    def _failed(self, action: str, exc: stripe.StripeError, message: str) -> ProviderError:
        logger.warning("Stripe %s failed: %s", action, exc)
        return ProviderError(
            exc.user_message or message,
            details={"provider": self.provider_name, "code": exc.code},
        )

    def create_intent(self, amount_cents: int, currency: str, *, reference: str | None = None) -> PaymentIntent:
        api_key = self._api_key()
        params = {
            "mode": "payment",
            "payment_method_types": [self.method],
            "line_items": [{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": "Supermarket order"},
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }
        if reference:
            params["client_reference_id"] = reference
            params["metadata"] = {"reference": reference}

        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.APIConnectionError as exc:
            raise self._unavailable("session create", exc)
        except stripe.StripeError as exc:
            raise self._failed("session create", exc, "Unable to start card checkout")

        return PaymentIntent(
            method=self.method,
            provider_ref=session.id,
            amount_cents=amount_cents,
            currency=currency,
            redirect_url=session.url,
            raw={"id": session.id},
        )

    def check_status(self, provider_ref: str) -> PaymentStatus:
        api_key = self._api_key()
        try:
            session = stripe.checkout.Session.retrieve(provider_ref, api_key=api_key)
        except stripe.APIConnectionError as exc:
            raise self._unavailable("session retrieve", exc)
        except stripe.StripeError as exc:
            raise self._failed("session retrieve", exc, "Unable to verify card payment")

        if session.payment_status == "paid":
            state = STATE_COMPLETED
        elif session.status == "expired":
            state = STATE_FAILED
        else:
            state = STATE_PENDING

        customer = session.customer_details
        return PaymentStatus(
            state=state,
            provider_ref=provider_ref,
            amount_cents=session.amount_total,
            charge_ref=session.payment_intent,
            payer_id=session.customer,
            payer_email=customer.email if customer else None,
            raw={"payment_status": session.payment_status, "status": session.status},
        )

    def refund(self, charge_ref: str, amount_cents: int, currency: str) -> RefundResult:
        api_key = self._api_key()
        try:
            refund = stripe.Refund.create(api_key=api_key, payment_intent=charge_ref, amount=amount_cents)
        except stripe.InvalidRequestError as exc:
            if exc.code in ALREADY_REFUNDED_CODES:
                logger.warning("Payment %s already refunded; treating as success", charge_ref)
                return RefundResult(provider_refund_ref=None, already_refunded=True, raw={"code": exc.code})
            raise self._failed("refund", exc, "Card refund failed")
        except stripe.APIConnectionError as exc:
            raise self._unavailable("refund", exc)
        except stripe.StripeError as exc:
            raise self._failed("refund", exc, "Card refund failed")

        return RefundResult(provider_refund_ref=refund.id, raw={"id": refund.id})

# Overview: Create-order / capture-order rail for the peer-payment app.

from __future__ import annotations

import logging

from flask import current_app

from ...errors import ProviderError, ProviderUnavailable, PaymentNotCompleted
from ...validation import format_cents
from .base import (
    HttpProviderAdapter,
    PaymentIntent,
    PaymentStatus,
    RefundResult,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
)

logger = logging.getLogger(__name__)

ALREADY_REFUNDED_ISSUES = {"CAPTURE_FULLY_REFUNDED"}
ALREADY_CAPTURED_ISSUES = {"ORDER_ALREADY_CAPTURED"}


def _issues(data: dict) -> set[str]:
    return {str(d.get("issue")) for d in data.get("details") or [] if isinstance(d, dict)}


def _to_cents(value) -> int | None:
    if value in (None, ""):
        return None
    whole, _, frac = str(value).partition(".")
    return int(whole) * 100 + int((frac + "00")[:2])


class PayPalAdapter(HttpProviderAdapter):
    """
    Flow: create order (intent CAPTURE) -> customer approves in the app ->
    server captures by order id. Refunds go against the capture id.
    """

    method = "paypal"
    provider_name = "PayPal"

    def __init__(self, *, client_id: str | None, client_secret: str | None, base_url: str, **kwargs):
        super().__init__(base_url=base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret

    @classmethod
    def from_config(cls):
        config = current_app.config
        return cls(
            client_id=config.get("PAYPAL_CLIENT_ID"),
            client_secret=config.get("PAYPAL_CLIENT_SECRET"),
            base_url=config.get("PAYPAL_API_BASE", "https://api.sandbox.paypal.com"),
            **cls.client_options(),
        )

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise ProviderUnavailable("PayPal is not configured")
        response = self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        data = self._json(response)
        if response.status_code >= 400 or not data.get("access_token"):
            raise self._fail(response, data.get("error_description") or "Unable to fetch PayPal token")
        return data["access_token"]

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json"}

    def create_intent(self, amount_cents: int, currency: str, *, reference: str | None = None) -> PaymentIntent:
        unit = {"amount": {"currency_code": currency, "value": format_cents(amount_cents)}}
        if reference:
            unit["reference_id"] = reference
        response = self._send(
            "POST",
            "/v2/checkout/orders",
            headers=self._headers(),
            json={"intent": "CAPTURE", "purchase_units": [unit]},
        )
        data = self._json(response)
        if response.status_code >= 400 or not data.get("id"):
            raise self._fail(response, data.get("message") or "Unable to create PayPal order")

        approve = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return PaymentIntent(
            method=self.method,
            provider_ref=data["id"],
            amount_cents=amount_cents,
            currency=currency,
            redirect_url=approve,
            raw=data,
        )

    def _status_from_order(self, order_id: str, data: dict) -> PaymentStatus:
        status = str(data.get("status") or "").upper()
        if status == "COMPLETED":
            state = STATE_COMPLETED
        elif status == "VOIDED":
            state = STATE_FAILED
        else:
            state = STATE_PENDING

        capture = {}
        for unit in data.get("purchase_units") or []:
            captures = (unit.get("payments") or {}).get("captures") or []
            if captures:
                capture = captures[0]
                break
        amount = (capture.get("amount") or {}).get("value")
        payer = data.get("payer") or {}
        return PaymentStatus(
            state=state,
            provider_ref=order_id,
            amount_cents=_to_cents(amount),
            charge_ref=capture.get("id"),
            payer_id=payer.get("payer_id"),
            payer_email=payer.get("email_address"),
            raw=data,
        )

    def check_status(self, provider_ref: str) -> PaymentStatus:
        response = self._send("GET", f"/v2/checkout/orders/{provider_ref}", headers=self._headers())
        data = self._json(response)
        if response.status_code >= 400:
            raise self._fail(response, data.get("message") or "Unable to look up PayPal order")
        return self._status_from_order(provider_ref, data)

    def complete(self, provider_ref: str) -> PaymentStatus:
        """Capture an approved order; an already-captured order reports its capture."""
        response = self._send("POST", f"/v2/checkout/orders/{provider_ref}/capture", headers=self._headers())
        data = self._json(response)
        if response.status_code >= 400:
            if _issues(data) & ALREADY_CAPTURED_ISSUES:
                logger.warning("PayPal order %s already captured; reading its status", provider_ref)
                return self.check_status(provider_ref)
            raise self._fail(response, data.get("message") or "Unable to capture PayPal payment")

        status = self._status_from_order(provider_ref, data)
        if not status.completed:
            raise PaymentNotCompleted("Payment not completed")
        return status

    def refund(self, charge_ref: str, amount_cents: int, currency: str) -> RefundResult:
        response = self._send(
            "POST",
            f"/v2/payments/captures/{charge_ref}/refund",
            headers=self._headers(),
            json={"amount": {"value": format_cents(amount_cents), "currency_code": currency}},
        )
        data = self._json(response)
        if response.status_code < 400:
            return RefundResult(provider_refund_ref=data.get("id"), raw=data)
        if _issues(data) & ALREADY_REFUNDED_ISSUES:
            logger.warning("PayPal capture %s already refunded; treating as success", charge_ref)
            return RefundResult(provider_refund_ref=None, already_refunded=True, raw=data)
        raise ProviderError(
            data.get("message") or "PayPal refund failed",
            details={"provider": self.provider_name, "issues": sorted(_issues(data))},
        )

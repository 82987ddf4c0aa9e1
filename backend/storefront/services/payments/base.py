# Overview: Uniform payment adapter contract shared by every payment rail.

"""
Payment adapter contract.

Every rail (hosted checkout, create/capture order, QR code, store credit)
answers the same three questions:

- ``create_intent(amount_cents, currency)``: start a charge and return the
  provider correlation id plus whatever the client needs next (redirect URL
  or QR payload)
- ``check_status(provider_ref)``: pending / completed / failed
- ``refund(charge_ref, amount_cents, currency)``: reverse a prior charge;
  a provider "already refunded" answer is reported as success

``complete(provider_ref)`` is the server-side confirmation step run when the
customer comes back from the provider. For most rails it is a status check;
create/capture rails capture the approved order there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx
from flask import current_app

from ...errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT STATES (CONSTANTS)
# =============================================================================

STATE_PENDING = "pending"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"


@dataclass
class PaymentIntent:
    method: str
    provider_ref: str
    amount_cents: int
    currency: str
    redirect_url: str | None = None
    qr_payload: str | None = None
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "provider_ref": self.provider_ref,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "redirect_url": self.redirect_url,
            "qr_payload": self.qr_payload,
        }


@dataclass
class PaymentStatus:
    state: str
    provider_ref: str
    amount_cents: int | None = None
    # Reference the provider wants for refunds (payment intent, capture id)
    charge_ref: str | None = None
    payer_id: str | None = None
    payer_email: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.state == STATE_COMPLETED

    @property
    def failed(self) -> bool:
        return self.state == STATE_FAILED


@dataclass
class RefundResult:
    provider_refund_ref: str | None
    already_refunded: bool = False
    raw: dict = field(default_factory=dict)


class PaymentAdapter:
    """Base class for payment rails."""

    method: str = ""
    supports_partial = False

    def create_intent(self, amount_cents: int, currency: str, *, reference: str | None = None) -> PaymentIntent:
        raise NotImplementedError

    def check_status(self, provider_ref: str) -> PaymentStatus:
        raise NotImplementedError

    def complete(self, provider_ref: str) -> PaymentStatus:
        return self.check_status(provider_ref)

    def refund(self, charge_ref: str, amount_cents: int, currency: str) -> RefundResult:
        raise NotImplementedError


class HttpProviderAdapter(PaymentAdapter):
    """Shared httpx plumbing for rails reached over HTTP."""

    provider_name = "provider"

    def __init__(self, *, base_url: str, timeout: float = 25.0, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def client_options(cls) -> dict:
        config = current_app.config
        return {
            "timeout": config.get("PROVIDER_TIMEOUT_SECONDS", 25.0),
            "transport": config.get("PROVIDER_TRANSPORT"),
        }

    def _client(self, **kwargs) -> httpx.Client:
        options = {"base_url": self.base_url, "timeout": self.timeout}
        if self.transport is not None:
            options["transport"] = self.transport
        options.update(kwargs)
        return httpx.Client(**options)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        client_kwargs = {key: kwargs.pop(key) for key in ("auth", "headers") if key in kwargs}
        try:
            with self._client(**client_kwargs) as client:
                return client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s request %s %s failed: %s", self.provider_name, method, path, exc)
            raise ProviderUnavailable(f"{self.provider_name} is unreachable")

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _fail(self, response: httpx.Response, message: str) -> ProviderError:
        logger.warning("%s answered %s: %s", self.provider_name, response.status_code, response.text[:500])
        return ProviderError(message, details={"provider": self.provider_name, "status": response.status_code})

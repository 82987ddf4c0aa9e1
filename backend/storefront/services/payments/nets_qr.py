# Overview: QR-code payment rail: request a QR, then poll by retrieval reference.

from __future__ import annotations

import logging

from flask import current_app

from ...errors import ProviderError, ProviderUnavailable
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

RESPONSE_OK = "00"
TXN_STATUS_SUCCESS = 1
TXN_STATUS_FAILED = 2

# How long the customer is given to scan before the client gives up
QR_TIMER_SECONDS = 300


class NetsQrAdapter(HttpProviderAdapter):
    """
    Flow: request a QR for the amount -> customer scans with a banking app ->
    server polls ``query`` with the retrieval reference until success, failure
    or timeout. The last poll after timeout carries ``frontend_timeout_status=1``
    so the provider can close the transaction.

    The rail has no refund API: refunds to "original" for QR orders fail with
    a ProviderError and must be settled to store credit instead.
    """

    method = "nets"
    provider_name = "NETS"

    def __init__(self, *, api_key: str | None, project_id: str | None, txn_id: str, base_url: str, **kwargs):
        super().__init__(base_url=base_url, **kwargs)
        self.api_key = api_key
        self.project_id = project_id
        self.txn_id = txn_id

    @classmethod
    def from_config(cls):
        config = current_app.config
        return cls(
            api_key=config.get("NETS_API_KEY"),
            project_id=config.get("NETS_PROJECT_ID"),
            txn_id=config["NETS_TXN_ID"],
            base_url=config["NETS_API_BASE"],
            **cls.client_options(),
        )

    def _headers(self) -> dict:
        if not self.api_key or not self.project_id:
            raise ProviderUnavailable("NETS QR is not configured")
        return {"api-key": self.api_key, "project-id": self.project_id}

    @staticmethod
    def _result_data(data: dict) -> dict:
        result = data.get("result") or {}
        inner = result.get("data") if isinstance(result, dict) else None
        return inner if isinstance(inner, dict) else {}

    def create_intent(self, amount_cents: int, currency: str, *, reference: str | None = None) -> PaymentIntent:
        body = {
            "txn_id": self.txn_id,
            "amt_in_dollars": float(format_cents(amount_cents)),
            "notify_mobile": 0,
        }
        response = self._send("POST", "/request", headers=self._headers(), json=body)
        if response.status_code >= 400:
            raise self._fail(response, "Unable to generate NETS QR code")

        qr = self._result_data(self._json(response))
        ok = (
            qr.get("response_code") == RESPONSE_OK
            and qr.get("txn_status") == TXN_STATUS_SUCCESS
            and qr.get("qr_code")
            and qr.get("txn_retrieval_ref")
        )
        if not ok:
            message = "An error occurred while generating the QR code."
            if qr.get("network_status") not in (None, 0):
                message = qr.get("error_message") or "Transaction failed. Please try again."
            raise ProviderError(
                message,
                details={
                    "provider": self.provider_name,
                    "response_code": qr.get("response_code") or "N.A.",
                    "instructions": qr.get("instruction") or "",
                },
            )

        return PaymentIntent(
            method=self.method,
            provider_ref=qr["txn_retrieval_ref"],
            amount_cents=amount_cents,
            currency=currency,
            qr_payload=f"data:image/png;base64,{qr['qr_code']}",
            raw={"timer": QR_TIMER_SECONDS, "network_status": qr.get("network_status")},
        )

    def query(self, provider_ref: str, *, timed_out: bool = False) -> PaymentStatus:
        body = {"txn_retrieval_ref": provider_ref, "frontend_timeout_status": 1 if timed_out else 0}
        response = self._send("POST", "/query", headers=self._headers(), json=body)
        if response.status_code >= 400:
            raise self._fail(response, "Unable to query NETS payment status")

        raw = self._json(response)
        data = self._result_data(raw)
        txn_status = data.get("txn_status")
        if data.get("response_code") == RESPONSE_OK and txn_status == TXN_STATUS_SUCCESS:
            state = STATE_COMPLETED
        elif txn_status == TXN_STATUS_FAILED:
            state = STATE_FAILED
        else:
            state = STATE_PENDING
        return PaymentStatus(state=state, provider_ref=provider_ref, charge_ref=provider_ref, raw=raw)

    def check_status(self, provider_ref: str) -> PaymentStatus:
        return self.query(provider_ref)

    def refund(self, charge_ref: str, amount_cents: int, currency: str) -> RefundResult:
        raise ProviderError(
            "NETS QR payments cannot be refunded to the original method; use store credit",
            details={"provider": self.provider_name},
        )

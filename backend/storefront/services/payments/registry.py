# Overview: Maps a payment method tag to its adapter.

from __future__ import annotations

from flask import current_app

from ...errors import InvalidMethod
from .base import PaymentAdapter
from .hosted_checkout import HostedCheckoutAdapter
from .nets_qr import NetsQrAdapter
from .paypal import PayPalAdapter
from .store_credit import StoreCreditAdapter

HOSTED_CHECKOUT_METHODS = ("card", "paynow", "grabpay")


def _build(method: str, **kwargs) -> PaymentAdapter:
    if method in HOSTED_CHECKOUT_METHODS:
        return HostedCheckoutAdapter.from_config(method, **kwargs)
    if method == PayPalAdapter.method:
        return PayPalAdapter.from_config()
    if method == NetsQrAdapter.method:
        return NetsQrAdapter.from_config()
    if method == StoreCreditAdapter.method:
        return StoreCreditAdapter(**kwargs)
    raise InvalidMethod(f"Unsupported payment method: {method}")


def available_methods(purpose: str = "checkout") -> tuple[str, ...]:
    key = "TOPUP_METHODS" if purpose == "topup" else "CHECKOUT_METHODS"
    return tuple(current_app.config.get(key, ()))


def get_adapter(method: str, *, purpose: str = "checkout", **kwargs) -> PaymentAdapter:
    """
    Adapter for ``method``; ``purpose`` limits it to the checkout or top-up
    method allow-list. Extra keyword arguments go to the adapter (return URLs
    for hosted checkout, user/password for store credit).
    """
    method = (method or "").strip().lower()
    if method not in available_methods(purpose):
        raise InvalidMethod(f"Invalid payment method: {method or '(none)'}")
    return _build(method, **kwargs)


def get_refund_adapter(method: str) -> PaymentAdapter:
    """Adapter used to reverse a charge, regardless of current allow-lists."""
    return _build((method or "").strip().lower())

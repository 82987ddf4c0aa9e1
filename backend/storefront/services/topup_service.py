# Overview: Wallet top-up flow through the external payment rails, credited once per provider reference.

"""
Wallet Top-up

WHY: Store credit is bought with the same rails used at checkout. A provider
may confirm the same payment more than once (return redirect plus a
refresh, a replayed poll), so the credit is keyed on the provider reference
and written at most once.

FLOW:
    stage amount -> choose method -> create intent -> customer pays ->
    confirm (server-side status check) -> credit wallet + transaction log
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..errors import InvalidMethod, NoPendingCheckout, PaymentNotCompleted, ValidationError
from ..checkout_store import CheckoutStore
from .concurrency import run_with_retry
from .payments import get_adapter, available_methods
from .payments.base import PaymentIntent
from . import notification_service, transaction_service, wallet_service

logger = logging.getLogger(__name__)

NAMESPACE = "topup"


@dataclass
class PendingTopup:
    user_id: int
    amount_cents: int
    method: str | None = None
    provider_refs: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"amount_cents": self.amount_cents, "method": self.method}


@dataclass
class TopupResult:
    balance_cents: int
    credited_cents: int
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "balance_cents": self.balance_cents,
            "credited_cents": self.credited_cents,
            "duplicate": self.duplicate,
        }


def begin_topup(store: CheckoutStore, session_key: str, user: User, amount_cents: int) -> PendingTopup:
    if amount_cents <= 0:
        raise ValidationError("Top-up amount must be greater than zero")
    pending = PendingTopup(user_id=user.id, amount_cents=amount_cents)
    store.put(NAMESPACE, session_key, pending)
    return pending


def get_pending_topup(store: CheckoutStore, session_key: str) -> PendingTopup:
    pending = store.get(NAMESPACE, session_key)
    if pending is None:
        raise NoPendingCheckout("No pending top-up found.")
    return pending


def select_topup_method(store: CheckoutStore, session_key: str, method: str) -> PendingTopup:
    pending = get_pending_topup(store, session_key)
    method = (method or "").strip().lower()
    if method not in available_methods("topup"):
        raise InvalidMethod("Invalid top-up method.")
    pending.method = method
    store.put(NAMESPACE, session_key, pending)
    return pending


def start_topup_payment(store: CheckoutStore, session_key: str, method: str, **adapter_kwargs) -> PaymentIntent:
    pending = get_pending_topup(store, session_key)
    adapter = get_adapter(method, purpose="topup", **adapter_kwargs)
    intent = adapter.create_intent(
        pending.amount_cents,
        current_app.config.get("CURRENCY", "SGD"),
        reference=f"topup-{pending.user_id}",
    )
    pending.method = adapter.method
    pending.provider_refs[intent.provider_ref] = {"method": adapter.method, "amount_cents": intent.amount_cents}
    store.put(NAMESPACE, session_key, pending)
    return intent


def credit_topup(user: User, amount_cents: int, method: str, provider_ref: str, *, payer_email: str | None = None) -> TopupResult:
    """
    Credit a confirmed top-up exactly once per provider reference.

    The unique wallet_transactions.provider_ref makes this durable: a replay
    after a restart or from another session is still a no-op.
    """
    if wallet_service.provider_ref_used(provider_ref):
        return TopupResult(wallet_service.get_balance(user.id), 0, duplicate=True)

    def _op():
        balance = wallet_service.add_funds(user.id, amount_cents, method, provider_ref=provider_ref, commit=False)
        transaction_service.record(
            user_id=user.id,
            amount_cents=amount_cents,
            method=method,
            status=transaction_service.STATUS_COMPLETED,
            payer_id=str(user.id),
            payer_email=payer_email or user.email,
            provider_ref=provider_ref,
        )
        notification_service.notify(
            user.id,
            "Wallet top-up successful",
            f"${amount_cents / 100:.2f} has been added to your wallet.",
        )
        db.session.commit()
        return TopupResult(balance, amount_cents)

    try:
        return run_with_retry(_op)
    except IntegrityError:
        logger.warning("Duplicate top-up confirmation for %s ignored", provider_ref)
        return TopupResult(wallet_service.get_balance(user.id), 0, duplicate=True)


def confirm_topup_payment(store: CheckoutStore, session_key: str, user: User, provider_ref: str) -> TopupResult:
    """Verify the provider reports the payment complete, then credit."""
    if not provider_ref:
        raise ValidationError("Missing payment reference")
    if wallet_service.provider_ref_used(provider_ref):
        store.pop(NAMESPACE, session_key)
        return TopupResult(wallet_service.get_balance(user.id), 0, duplicate=True)

    pending = get_pending_topup(store, session_key)
    issued = pending.provider_refs.get(provider_ref)
    if issued is None:
        raise ValidationError("Unknown payment reference for this top-up")

    adapter = get_adapter(issued["method"], purpose="topup")
    status = adapter.complete(provider_ref)
    if not status.completed:
        raise PaymentNotCompleted("Top-up payment not completed.", details={"state": status.state})

    amount = status.amount_cents if status.amount_cents is not None else issued["amount_cents"]
    result = credit_topup(user, amount, adapter.method, provider_ref, payer_email=status.payer_email)
    store.pop(NAMESPACE, session_key)
    return result

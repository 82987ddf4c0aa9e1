# Overview: Pending checkout session; staging, method choice, partial payments and provider confirmation.

"""
Pending Checkout Session

WHY: Payment happens before an order exists. The staged checkout holds the
cart snapshot, shipping details and every partial payment collected so far,
and is the only input the settlement engine needs to create the order.

DESIGN PRINCIPLES:
- One slot per session key in the transient CheckoutStore; a second begin
  while a checkout is staged re-enters the existing one
- Partial payments are append-only; ``remaining`` drops by
  ``min(amount, remaining)`` so it never goes negative and
  ``paid + remaining == total`` always holds
- Reaching ``remaining == 0`` finalizes the order immediately
- Provider confirmations are idempotent: a reference already applied is a
  no-op, and a reference that already completed an order resolves to that
  order even if the session was lost
- Abandoning never refunds captured partial payments (they are logged)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from flask import current_app

from ..models import User
from ..errors import (
    AuthorizationError,
    EmptyCart,
    ItemRemoved,
    MissingShippingDetails,
    NoPendingCheckout,
    InvalidMethod,
    InvalidAmount,
    PaymentNotCompleted,
    ValidationError,
)
from ..checkout_store import CheckoutStore
from ..time_utils import utcnow, to_utc_z
from ..validation import clean_text
from .payments import get_adapter, available_methods
from .payments.base import PaymentIntent, PaymentStatus
from . import cart_service, catalog_service, order_service

logger = logging.getLogger(__name__)

NAMESPACE = "checkout"


# =============================================================================
# STAGED STATE
# =============================================================================

@dataclass
class PartialPayment:
    method: str
    amount_cents: int
    provider_ref: str | None = None
    meta: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "amount_cents": self.amount_cents,
            "provider_ref": self.provider_ref,
            "meta": dict(self.meta),
        }


@dataclass
class PendingCheckout:
    user_id: int
    lines: list[dict]
    total_cents: int
    remaining_cents: int
    shipping: dict
    payment_method: str | None = None
    partial_payments: list[PartialPayment] = field(default_factory=list)
    # provider_ref -> {"method", "amount_cents"} for intents created but not yet confirmed
    provider_refs: dict = field(default_factory=dict)
    reference: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: object = field(default_factory=utcnow)

    @property
    def paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.partial_payments)

    @property
    def is_paid(self) -> bool:
        return self.remaining_cents == 0

    def has_payment(self, provider_ref: str) -> bool:
        return any(p.provider_ref == provider_ref for p in self.partial_payments)

    def to_dict(self) -> dict:
        return {
            "lines": [dict(line) for line in self.lines],
            "total_cents": self.total_cents,
            "remaining_cents": self.remaining_cents,
            "paid_cents": self.paid_cents,
            "partial": bool(self.partial_payments) and self.remaining_cents > 0,
            "shipping": dict(self.shipping),
            "payment_method": self.payment_method,
            "partial_payments": [p.to_dict() for p in self.partial_payments],
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }


@dataclass
class CheckoutResult:
    pending: PendingCheckout | None
    order_id: int | None = None
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "duplicate": self.duplicate,
            "checkout": self.pending.to_dict() if self.pending and self.order_id is None else None,
        }


# =============================================================================
# LIFECYCLE
# =============================================================================

def get_pending(store: CheckoutStore, session_key: str) -> PendingCheckout:
    pending = store.get(NAMESPACE, session_key)
    if pending is None or not pending.lines:
        raise NoPendingCheckout("No pending checkout found.")
    return pending


def begin(store: CheckoutStore, session_key: str, user: User, cart_lines: list[dict], shipping: dict) -> tuple[PendingCheckout, bool]:
    """
    Stage a checkout from a cart snapshot.

    Only product ids and quantities are taken from ``cart_lines``; names and
    prices come from the catalog, so the staged total is never client-priced.

    Returns (pending, created). ``created`` is False when a checkout was
    already staged for this session; it is returned unchanged.

    Raises:
        EmptyCart: no cart lines
        ValidationError: a line with a non-positive quantity or an unpriced product
        ItemRemoved: a line for a product no longer in the catalog
        MissingShippingDetails: name or address missing
    """
    existing = store.get(NAMESPACE, session_key)
    if existing is not None and existing.lines:
        return existing, False

    wanted = []
    for line in cart_lines or []:
        product_id, quantity = int(line["product_id"]), int(line["quantity"])
        if quantity <= 0:
            raise ValidationError("Cart quantities must be at least 1", details={"product_id": product_id})
        wanted.append((product_id, quantity))
    if not wanted:
        raise EmptyCart("Cart is empty.")

    products = catalog_service.get_products_by_ids(pid for pid, _ in wanted)
    lines = []
    for product_id, quantity in wanted:
        product = products.get(product_id)
        if product is None:
            raise ItemRemoved("An item in your cart is no longer available", details={"product_id": product_id})
        if product.price_cents <= 0:
            raise ValidationError(f"{product.name} cannot be sold", details={"product_id": product_id})
        lines.append({
            "product_id": product.id,
            "quantity": quantity,
            "price_cents": product.price_cents,
            "name": product.name,
        })

    shipping = shipping or {}
    details = {
        key: clean_text(shipping.get(key), max_length=1000 if key == "notes" else 255)
        for key in ("name", "address", "phone", "notes")
    }
    if not details["name"] or not details["address"]:
        raise MissingShippingDetails("Name and address are required for delivery.")

    total = sum(line["price_cents"] * line["quantity"] for line in lines)
    pending = PendingCheckout(
        user_id=user.id,
        lines=lines,
        total_cents=total,
        remaining_cents=total,
        shipping=details,
    )
    store.put(NAMESPACE, session_key, pending)
    return pending, True


def begin_from_cart(store: CheckoutStore, session_key: str, user: User, shipping: dict) -> tuple[PendingCheckout, bool]:
    """Stage a checkout from the user's persisted cart."""
    existing = store.get(NAMESPACE, session_key)
    if existing is not None and existing.lines:
        return existing, False
    return begin(store, session_key, user, cart_service.get_cart(user.id), shipping)


def select_method(store: CheckoutStore, session_key: str, method: str) -> PendingCheckout:
    pending = get_pending(store, session_key)
    method = (method or "").strip().lower()
    if method not in available_methods("checkout"):
        raise InvalidMethod("Invalid payment method.")
    pending.payment_method = method
    store.put(NAMESPACE, session_key, pending)
    return pending


def abandon(store: CheckoutStore, session_key: str) -> PendingCheckout | None:
    pending = store.pop(NAMESPACE, session_key)
    if pending is not None and pending.partial_payments:
        logger.warning(
            "Checkout %s abandoned with %s cents already captured by %s",
            pending.reference,
            pending.paid_cents,
            ", ".join(p.method for p in pending.partial_payments),
        )
    return pending


# =============================================================================
# PAYMENTS
# =============================================================================

def _replayed_order(provider_ref: str, user: User) -> CheckoutResult | None:
    """Resolve a reference that already completed an order; only its owner may."""
    existing = order_service.find_order_by_provider_ref(provider_ref)
    if existing is None:
        return None
    if existing.user_id != user.id:
        logger.warning("User %s replayed payment reference %s owned by another account", user.id, provider_ref)
        raise AuthorizationError("This payment reference belongs to another account")
    return CheckoutResult(pending=None, order_id=existing.id, duplicate=True)


def apply_partial_payment(
    store: CheckoutStore,
    session_key: str,
    user: User,
    method: str,
    amount_cents: int,
    *,
    provider_ref: str | None = None,
    meta: dict | None = None,
) -> CheckoutResult:
    """
    Record a captured payment against the staged checkout.

    When the payment brings ``remaining`` to zero the order is finalized and
    the staged checkout cleared. A stock conflict during finalization leaves
    the (fully paid) checkout staged so the customer can retry.
    """
    if amount_cents <= 0:
        raise InvalidAmount("Payment amount must be positive")

    if provider_ref:
        replay = _replayed_order(provider_ref, user)
        if replay is not None:
            return replay

    pending = get_pending(store, session_key)
    if provider_ref and pending.has_payment(provider_ref):
        return CheckoutResult(pending=pending, duplicate=True)
    if pending.is_paid:
        raise ValidationError("Checkout is already fully paid")

    applied = min(amount_cents, pending.remaining_cents)
    payment_meta = dict(meta or {})
    if applied != amount_cents:
        payment_meta["charged_cents"] = amount_cents
    pending.partial_payments.append(
        PartialPayment(method=method, amount_cents=applied, provider_ref=provider_ref, meta=payment_meta)
    )
    pending.remaining_cents -= applied
    pending.payment_method = method
    if provider_ref:
        pending.provider_refs.pop(provider_ref, None)
    store.put(NAMESPACE, session_key, pending)

    if not pending.is_paid:
        return CheckoutResult(pending=pending)
    return _finalize(store, session_key, user, pending, provider_ref)


def _finalize(store, session_key, user, pending, provider_ref) -> CheckoutResult:
    order_id = order_service.finalize(user, pending, pending.payment_method, provider_ref=provider_ref)
    store.pop(NAMESPACE, session_key)
    return CheckoutResult(pending=None, order_id=order_id)


def retry_finalize(store: CheckoutStore, session_key: str, user: User) -> CheckoutResult:
    """Re-run finalization for a fully paid checkout after a stock conflict."""
    pending = get_pending(store, session_key)
    if not pending.is_paid:
        raise PaymentNotCompleted("Payment is not complete yet")
    last = pending.partial_payments[-1] if pending.partial_payments else None
    return _finalize(store, session_key, user, pending, last.provider_ref if last else None)


def start_provider_payment(store: CheckoutStore, session_key: str, method: str, **adapter_kwargs) -> PaymentIntent:
    """Create a provider intent for the full remaining balance."""
    pending = get_pending(store, session_key)
    if pending.is_paid:
        raise ValidationError("Checkout is already fully paid")
    adapter = get_adapter(method, **adapter_kwargs)
    intent = adapter.create_intent(
        pending.remaining_cents,
        current_app.config.get("CURRENCY", "SGD"),
        reference=pending.reference,
    )
    pending.payment_method = adapter.method
    pending.provider_refs[intent.provider_ref] = {"method": adapter.method, "amount_cents": intent.amount_cents}
    store.put(NAMESPACE, session_key, pending)
    return intent


def _payment_meta(status: PaymentStatus) -> dict:
    meta = {}
    if status.charge_ref:
        meta["charge_ref"] = status.charge_ref
    if status.payer_id:
        meta["payer_id"] = status.payer_id
    if status.payer_email:
        meta["payer_email"] = status.payer_email
    return meta


def confirm_provider_payment(store: CheckoutStore, session_key: str, user: User, method: str, provider_ref: str) -> CheckoutResult:
    """
    Server-side confirmation after the customer returns from a provider.

    Replays resolve to the existing order. The amount applied is the amount
    the intent was created for in this checkout; a reference that this
    checkout never issued is rejected.
    """
    if not provider_ref:
        raise ValidationError("Missing payment reference")

    replay = _replayed_order(provider_ref, user)
    if replay is not None:
        return replay

    pending = get_pending(store, session_key)
    if pending.has_payment(provider_ref):
        return CheckoutResult(pending=pending, duplicate=True)

    issued = pending.provider_refs.get(provider_ref)
    if issued is None:
        raise ValidationError("Unknown payment reference for this checkout")

    adapter = get_adapter(issued["method"])
    if method and adapter.method != method:
        raise InvalidMethod("Payment reference does not match the selected method")

    status = adapter.complete(provider_ref)
    if not status.completed:
        raise PaymentNotCompleted("Payment not completed.", details={"state": status.state})

    amount = issued["amount_cents"]
    if status.amount_cents is not None and status.amount_cents != amount:
        logger.warning(
            "Provider reported %s cents for %s, intent was %s cents",
            status.amount_cents, provider_ref, amount,
        )
        amount = status.amount_cents

    return apply_partial_payment(
        store,
        session_key,
        user,
        adapter.method,
        amount,
        provider_ref=provider_ref,
        meta=_payment_meta(status),
    )


def pay_with_store_credit(store: CheckoutStore, session_key: str, user: User, password: str) -> CheckoutResult:
    """
    Debit as much of the remaining balance as the wallet covers.

    Leaves ``remaining`` positive when the wallet falls short so another
    method can pay the rest.
    """
    pending = get_pending(store, session_key)
    if pending.is_paid:
        raise ValidationError("Checkout is already fully paid")

    adapter = get_adapter("store_credit", user=user, password=password)
    reference = f"{pending.reference}:{len(pending.partial_payments) + 1}"
    intent = adapter.create_intent(
        pending.remaining_cents,
        current_app.config.get("CURRENCY", "SGD"),
        reference=reference,
    )
    return apply_partial_payment(
        store,
        session_key,
        user,
        adapter.method,
        intent.amount_cents,
        provider_ref=intent.provider_ref,
        meta={
            "charge_ref": intent.provider_ref,
            "balance_before_cents": intent.raw.get("balance_before_cents"),
        },
    )

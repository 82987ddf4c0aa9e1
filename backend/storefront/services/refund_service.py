# Overview: Refund settlement engine; approval, restock and settlement to store credit or the original rail.

"""
Refund Settlement Engine

WHY: A refund moves money back and puts goods back on the shelf. Both must
happen exactly once no matter how often an admin clicks approve.

STATES:
    pending -> approved | processed | rejected
    approved/processed carry two one-time sub-steps recorded on the row:
    restocked_at and settled_at

APPROVAL ORDER:
1. Load refund + order; reject if the order owner was deleted
2. final = min(override or requested, order total), must be > 0
3. destination "original": cap to what was captured on the order's rail;
   no capture reference -> OriginalPaymentMissing
4. Persist approved_amount (committed before any provider call so a
   crashed provider call can be retried with the same amount)
5. Provider refund for "original" ("already refunded" counts as success;
   any other provider error aborts before the status changes)
6. Status update
7. Restock every line, first approval only
8. Settle once: wallet credit for store_credit, negative transaction log
   entry for original; notify the customer

A restock pass with failures skips settlement for that call; approving
again settles without restocking a second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order, Refund, User
from ..errors import (
    AuthorizationError,
    InvalidAmount,
    InvalidTransition,
    NotFoundError,
    OrderOwnerDeleted,
    OriginalPaymentMissing,
    RefundAlreadyPending,
    ValidationError,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .payments.registry import get_refund_adapter
from . import notification_service, stock_service, transaction_service, wallet_service

logger = logging.getLogger(__name__)


# =============================================================================
# REFUND STATUS / DESTINATION (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_PROCESSED = "processed"
STATUS_REJECTED = "rejected"

APPROVAL_STATUSES = (STATUS_APPROVED, STATUS_PROCESSED)
VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_PROCESSED, STATUS_REJECTED)

DEST_STORE_CREDIT = "store_credit"
DEST_ORIGINAL = "original"
VALID_DESTINATIONS = (DEST_STORE_CREDIT, DEST_ORIGINAL)

PARTIAL_RESTOCK_MESSAGE = "Refund approved, but some items failed to restock."


@dataclass
class RefundOutcome:
    refund: Refund
    message: str
    restocked: bool = False
    settled: bool = False
    restock_failures: list | None = None

    def to_dict(self) -> dict:
        return {
            "refund": self.refund.to_dict(),
            "message": self.message,
            "restocked": self.restocked,
            "settled": self.settled,
            "restock_failures": self.restock_failures or [],
        }


def _normalize_destination(destination: str | None) -> str:
    value = (destination or DEST_STORE_CREDIT).strip().lower()
    if value not in VALID_DESTINATIONS:
        raise ValidationError(f"Invalid refund destination: {value}")
    return value


def _pending_exists(order_id: int) -> bool:
    return db.session.query(Refund.id).filter_by(order_id=order_id, status=STATUS_PENDING).first() is not None


def _original_methods() -> tuple:
    return tuple(current_app.config.get("REFUND_ORIGINAL_METHODS", ()))


def _check_destination(order: Order, destination: str) -> None:
    if destination == DEST_ORIGINAL and order.payment_method not in _original_methods():
        raise ValidationError("This order's payment method cannot be refunded to the original method")


# =============================================================================
# REQUESTS
# =============================================================================

def request_refund(user: User, order_id: int, reason: str, destination: str | None = None) -> Refund:
    """
    Customer refund request for the full order total.

    Raises:
        NotFoundError / AuthorizationError: not the customer's order
        ValidationError: no reason, or "original" on a rail that cannot refund
        RefundAlreadyPending: an earlier request is still open
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please provide a reason for the refund request.")
    destination = _normalize_destination(destination)

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.user_id != user.id:
            raise AuthorizationError("You can only request refunds for your own orders")
        _check_destination(order, destination)
        if _pending_exists(order.id):
            raise RefundAlreadyPending("A refund request is already pending for this order.")

        refund = Refund(
            order_id=order.id,
            amount_cents=order.total_cents,
            reason=reason,
            destination=destination,
            status=STATUS_PENDING,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.commit()
        return refund

    return run_with_retry(_op)


def admin_create_refund(
    admin: User,
    order_id: int,
    amount_cents: int,
    reason: str,
    destination: str | None = None,
) -> RefundOutcome:
    """
    Admin-recorded refund. Created and immediately approved: admin-recorded
    refunds are treated as pre-approved.

    The checks approval would fail on run before the row is written, so a
    refused refund leaves no pending request behind.
    """
    reason = (reason or "").strip() or "Admin refund"
    destination = _normalize_destination(destination)
    if amount_cents <= 0:
        raise InvalidAmount("Refund amount must be greater than zero")

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        owner = db.session.get(User, order.user_id)
        if owner is None or owner.is_deleted:
            raise OrderOwnerDeleted("This order belongs to a deleted account and is read-only")
        _check_destination(order, destination)
        if destination == DEST_ORIGINAL and not captured_on_rail(order):
            raise OriginalPaymentMissing("No original payment reference recorded for this order")
        if _pending_exists(order.id):
            raise RefundAlreadyPending("A refund request is already pending for this order.")
        refund = Refund(
            order_id=order.id,
            amount_cents=min(amount_cents, order.total_cents),
            reason=reason,
            destination=destination,
            status=STATUS_PENDING,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.commit()
        return refund.id

    refund_id = run_with_retry(_op)
    return approve(refund_id, status=STATUS_APPROVED, actor_user_id=admin.id)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def update_status(refund_id: int, status: str, *, actor_user_id: int | None = None, override_amount_cents: int | None = None) -> RefundOutcome:
    status = (status or "").strip().lower()
    if status in APPROVAL_STATUSES:
        return approve(refund_id, status=status, override_amount_cents=override_amount_cents, actor_user_id=actor_user_id)
    if status == STATUS_REJECTED:
        return reject(refund_id, actor_user_id=actor_user_id)
    raise ValidationError(f"Invalid refund status: {status or '(none)'}")


def reject(refund_id: int, *, actor_user_id: int | None = None) -> RefundOutcome:
    def _op():
        refund = lock_for_update(db.session.query(Refund).filter_by(id=refund_id)).first()
        if refund is None:
            raise NotFoundError(f"Refund {refund_id} not found")
        if refund.status in APPROVAL_STATUSES:
            raise InvalidTransition("An approved refund cannot be rejected")
        if refund.status != STATUS_REJECTED:
            refund.status = STATUS_REJECTED
            refund.processed_by_user_id = actor_user_id
            db.session.commit()
        return RefundOutcome(refund, f"Refund #{refund.id} rejected.")

    return run_with_retry(_op)


def _load_for_approval(refund_id: int) -> tuple[Refund, Order]:
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise NotFoundError(f"Refund {refund_id} not found")
    order = db.session.get(Order, refund.order_id)
    if order is None:
        raise NotFoundError(f"Order {refund.order_id} not found")
    owner = db.session.get(User, order.user_id)
    if owner is None or owner.is_deleted:
        raise OrderOwnerDeleted("This order belongs to a deleted account and is read-only")
    return refund, order


def captured_on_rail(order: Order) -> list[dict]:
    """Partial payments captured on the order's recorded payment method."""
    rail = order.payment_method
    captures = []
    for payment in order.summary.get("partial_payments") or []:
        if payment.get("method") != rail:
            continue
        meta = payment.get("meta") or {}
        charge_ref = meta.get("charge_ref") or payment.get("provider_ref")
        if charge_ref and int(payment.get("amount_cents") or 0) > 0:
            captures.append({"charge_ref": charge_ref, "amount_cents": int(payment["amount_cents"])})
    return captures


def _compute_amount(refund: Refund, order: Order, override_amount_cents: int | None) -> tuple[int, list[dict]]:
    requested = override_amount_cents if override_amount_cents is not None else refund.amount_cents
    final = min(requested, order.total_cents)
    if final <= 0:
        raise InvalidAmount("Refund amount must be greater than zero")

    captures = []
    if refund.destination == DEST_ORIGINAL:
        captures = captured_on_rail(order)
        if not captures:
            raise OriginalPaymentMissing("No original payment reference recorded for this order")
        final = min(final, sum(c["amount_cents"] for c in captures))
    return final, captures


def _refund_on_rail(order: Order, captures: list[dict], amount_cents: int) -> str | None:
    adapter = get_refund_adapter(order.payment_method)
    currency = current_app.config.get("CURRENCY", "SGD")
    refs = []
    remaining = amount_cents
    for capture in captures:
        if remaining <= 0:
            break
        part = min(remaining, capture["amount_cents"])
        result = adapter.refund(capture["charge_ref"], part, currency)
        if result.provider_refund_ref:
            refs.append(result.provider_refund_ref)
        remaining -= part
    return ",".join(refs) or None


def _restock(order: Order) -> list[dict]:
    failures = []
    for item in order.items:
        try:
            stock_service.restock(item.product_id, item.quantity)
        except ValidationError as exc:
            logger.warning("Restock of product %s for order %s failed: %s", item.product_id, order.id, exc)
            failures.append({"product_id": item.product_id, "quantity": item.quantity, "error": str(exc)})
    return failures


def _settle(refund: Refund, order: Order) -> None:
    amount = refund.approved_amount_cents
    if refund.destination == DEST_STORE_CREDIT:
        wallet_service.add_funds(
            order.user_id,
            amount,
            wallet_service.METHOD_REFUND_CREDIT,
            provider_ref=f"refund:{refund.id}",
            commit=False,
        )
        message = f"Refund for order #{order.id} approved. ${amount / 100:.2f} has been added to your store credit."
    else:
        transaction_service.record(
            order_id=order.id,
            refund_id=refund.id,
            user_id=order.user_id,
            amount_cents=-amount,
            method=order.payment_method,
            status=transaction_service.STATUS_REFUNDED,
            provider_ref=refund.provider_refund_ref,
        )
        message = f"Refund for order #{order.id} approved. ${amount / 100:.2f} will be returned to your original payment method."
    notification_service.notify(order.user_id, "Refund approved", message)
    refund.settled_at = utcnow()


def approve(
    refund_id: int,
    *,
    status: str = STATUS_APPROVED,
    override_amount_cents: int | None = None,
    actor_user_id: int | None = None,
) -> RefundOutcome:
    """
    Approve (or mark processed) a refund; see module docstring for ordering.

    Repeated calls never restock or credit twice.
    """
    if status not in APPROVAL_STATUSES:
        raise ValidationError(f"Invalid approval status: {status}")

    refund, order = _load_for_approval(refund_id)
    if refund.status == STATUS_REJECTED:
        raise InvalidTransition("A rejected refund cannot be approved")

    already_approved = refund.status in APPROVAL_STATUSES
    if already_approved and refund.settled_at is not None:
        if status == STATUS_PROCESSED and refund.status != STATUS_PROCESSED:
            refund.status = STATUS_PROCESSED
            db.session.commit()
        return RefundOutcome(refund, f"Refund #{refund.id} is already {refund.status}.")

    provider_refund_ref = None
    if not already_approved:
        final, captures = _compute_amount(refund, order, override_amount_cents)

        def _record_intent():
            refund.approved_amount_cents = final
            refund.processed_by_user_id = actor_user_id
            db.session.commit()

        run_with_retry(_record_intent)

        if refund.destination == DEST_ORIGINAL:
            provider_refund_ref = _refund_on_rail(order, captures, final)

    def _op():
        locked = lock_for_update(db.session.query(Refund).filter_by(id=refund.id).populate_existing()).first()
        previous = locked.status
        locked.status = status if previous not in APPROVAL_STATUSES or status == STATUS_PROCESSED else previous
        locked.processed_by_user_id = actor_user_id or locked.processed_by_user_id
        if provider_refund_ref:
            locked.provider_refund_ref = provider_refund_ref

        failures = []
        restocked = False
        if previous not in APPROVAL_STATUSES and locked.restocked_at is None:
            failures = _restock(order)
            locked.restocked_at = utcnow()
            restocked = True

        settled = False
        if not failures and locked.settled_at is None:
            _settle(locked, order)
            settled = True

        db.session.commit()

        if failures:
            message = PARTIAL_RESTOCK_MESSAGE
        elif settled:
            message = f"Refund #{locked.id} {locked.status} and settled."
        else:
            message = f"Refund #{locked.id} is already {locked.status}."
        return RefundOutcome(locked, message, restocked=restocked, settled=settled, restock_failures=failures)

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def refunds_for_order(order_id: int, user: User) -> list[Refund]:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != user.id and not user.is_admin:
        raise AuthorizationError("You do not have access to this order")
    return (
        db.session.query(Refund)
        .filter_by(order_id=order_id)
        .order_by(Refund.created_at.desc(), Refund.id.desc())
        .all()
    )


def list_refunds(status: str | None = None) -> list[dict]:
    query = (
        db.session.query(Refund, Order, User)
        .join(Order, Order.id == Refund.order_id)
        .outerjoin(User, User.id == Order.user_id)
    )
    if status:
        query = query.filter(Refund.status == status)
    rows = query.order_by(Refund.created_at.desc(), Refund.id.desc()).all()
    result = []
    for refund, order, owner in rows:
        data = refund.to_dict()
        data["order_total_cents"] = order.total_cents
        data["payment_method"] = order.payment_method
        data["username"] = owner.username if owner and not owner.is_deleted else "Deleted user"
        result.append(data)
    return result


def pending_count() -> int:
    return db.session.query(Refund).filter_by(status=STATUS_PENDING).count()

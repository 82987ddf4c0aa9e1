# Overview: Order settlement engine; turns a fully paid checkout into an order with stock decremented.

"""
Order Settlement Engine

WHY: This is where money turns into goods. A paid checkout becomes an order
only if every line can still be fulfilled, and the order row, its items and
the stock decrements either all commit or none do.

STATES:
    STAGED  (checkout staged, remaining > 0)
    PAID    (remaining == 0)
    SETTLED (order + items + stock decrement committed)

A stock conflict at PAID -> SETTLED corrects the cart, leaves the paid
checkout staged and surfaces a StockConflict. Captured payments are not
voided (known gap; see DESIGN.md).

DESIGN PRINCIPLES:
- Authoritative product rows are re-read at finalize; staged prices are
  never trusted
- Each stock decrement is conditional (quantity >= requested); a lost race
  rolls back the whole order with InsufficientStock
- ``provider_ref`` is unique on orders: replaying the callback that
  completed an order returns that order's id
"""

from __future__ import annotations

import json
import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, User
from ..errors import (
    AuthorizationError,
    InsufficientStock,
    ItemRemoved,
    NotFoundError,
    OutOfStock,
    PaymentNotCompleted,
    ValidationError,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry
from . import cart_service, catalog_service, fraud_service, notification_service, stock_service, transaction_service

logger = logging.getLogger(__name__)


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_STATUS_PENDING = "pending"
ORDER_STATUSES = ("pending", "processing", "completed", "cancelled", "refunded")

SHIPPING_STATUS_PROCESSING = "processing"
SHIPPING_STATUSES = ("processing", "packed", "shipped", "delivered", "returned")


def find_order_by_provider_ref(provider_ref: str | None) -> Order | None:
    if not provider_ref:
        return None
    return db.session.query(Order).filter_by(provider_ref=provider_ref).first()


def build_notes(shipping: dict) -> str:
    parts = [
        f"Name: {shipping.get('name') or ''}",
        f"Address: {shipping.get('address') or ''}",
    ]
    if shipping.get("phone"):
        parts.append(f"Phone: {shipping['phone']}")
    if shipping.get("notes"):
        parts.append(f"Notes: {shipping['notes']}")
    return "\n".join(parts)


# =============================================================================
# STOCK RE-VALIDATION
# =============================================================================

def _revalidate(user_id: int, pending) -> list[dict]:
    """
    Check every staged line against authoritative product rows.

    On any conflict every offending line is corrected (removed or capped) in
    both the persisted cart and the staged checkout, then the first conflict
    is raised. Returns priced lines when everything is still available.
    """
    products = catalog_service.get_products_by_ids(line["product_id"] for line in pending.lines)
    conflicts = []
    priced = []
    for line in pending.lines:
        product = products.get(line["product_id"])
        requested = line["quantity"]
        if product is None:
            conflicts.append((ItemRemoved, line, 0, f"{line.get('name') or 'An item'} is no longer available"))
        elif product.quantity <= 0:
            conflicts.append((OutOfStock, line, 0, f"{product.name} is out of stock"))
        elif requested > product.quantity:
            conflicts.append((
                InsufficientStock, line, product.quantity,
                f"Only {product.quantity} of {product.name} left in stock",
            ))
        else:
            priced.append({
                "product_id": product.id,
                "name": product.name,
                "quantity": requested,
                "price_cents": product.price_cents,
            })

    if not conflicts:
        return priced

    for _, line, available, _ in conflicts:
        cart_service.apply_correction(user_id, line["product_id"], available)
        line["quantity"] = available
    pending.lines = [line for line in pending.lines if line["quantity"] > 0]

    error_cls, line, available, message = conflicts[0]
    logger.warning("Checkout %s stock conflict on product %s: %s", pending.reference, line["product_id"], message)
    raise error_cls(
        message,
        details={
            "product_id": line["product_id"],
            "available": available,
            "conflicts": [
                {"product_id": c_line["product_id"], "available": c_available, "reason": c_cls.__name__}
                for c_cls, c_line, c_available, _ in conflicts
            ],
            "cart": cart_service.get_cart(user_id),
        },
    )


# =============================================================================
# FINALIZE
# =============================================================================

def finalize(user: User, pending, payment_method: str | None, *, provider_ref: str | None = None) -> int:
    """
    Create the order for a fully paid checkout.

    Steps:
    1. Re-read products and reject removed / sold-out / short lines
    2. Price every line from the catalog
    3. In one transaction: order, items, conditional stock decrements,
       payment summary, cart clear, transaction log entry, notification

    Returns:
        The new (or, for a replayed provider_ref, the existing) order id

    Raises:
        ItemRemoved / OutOfStock / InsufficientStock (cart corrected)
        PaymentNotCompleted: nothing has been captured for a priced checkout
        AuthorizationError: provider_ref completed another customer's order
    """
    existing = find_order_by_provider_ref(provider_ref)
    if existing is not None:
        if existing.user_id != user.id:
            raise AuthorizationError("This payment reference belongs to another account")
        return existing.id

    priced = _revalidate(user.id, pending)
    total = sum(line["price_cents"] * line["quantity"] for line in priced)
    if total > 0 and pending.paid_cents <= 0:
        raise PaymentNotCompleted("No payment has been captured for this checkout")
    if total != pending.total_cents:
        logger.warning(
            "Checkout %s catalog total %s cents differs from staged %s cents",
            pending.reference, total, pending.total_cents,
        )
    method =payment_method or "unpaid"
    partials = [p.to_dict() for p in pending.partial_payments]
    fraud = fraud_service.score_checkout(user, priced, total, partials)
    last_meta = partials[-1]["meta"] if partials else {}

    def _op():
        order = Order(
            user_id=user.id,
            total_cents=total,
            notes=build_notes(pending.shipping),
            status=ORDER_STATUS_PENDING,
            shipping_status=SHIPPING_STATUS_PROCESSING,
            payment_method=method,
            provider_ref=provider_ref,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        for line in priced:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line["product_id"],
                price_cents=line["price_cents"],
                quantity=line["quantity"],
            ))
        db.session.flush()

        for line in priced:
            stock_service.decrement(line["product_id"], line["quantity"])

        order.payment_summary = json.dumps({
            "partial_payments": partials,
            "fraud": fraud,
            "provider": {
                "method": method,
                "provider_ref": provider_ref,
                "checkout_reference": pending.reference,
            },
            "checkout_total_cents": pending.total_cents,
            "paid_cents": pending.paid_cents,
        })

        cart_service.clear_cart(user.id, commit=False)

        transaction_service.record(
            order_id=order.id,
            user_id=user.id,
            amount_cents=pending.paid_cents,
            method=method,
            status=transaction_service.STATUS_COMPLETED,
            payer_id=last_meta.get("payer_id") or str(user.id),
            payer_email=last_meta.get("payer_email") or user.email,
            provider_ref=provider_ref,
        )
        notification_service.notify(
            user.id,
            "Order placed",
            f"Your order #{order.id} has been placed and is being processed.",
        )
        db.session.commit()
        return order.id

    try:
        return run_with_retry(_op)
    except InsufficientStock as exc:
        # Lost a race for the last units after re-validation
        product_id = exc.details.get("product_id")
        if product_id is not None:
            available = stock_service.available(product_id)
            cart_service.apply_correction(user.id, product_id, available)
            for line in pending.lines:
                if line["product_id"] == product_id:
                    line["quantity"] = min(line["quantity"], available)
            pending.lines = [line for line in pending.lines if line["quantity"] > 0]
            exc.details["available"] = available
            exc.details["cart"] = cart_service.get_cart(user.id)
        raise
    except IntegrityError:
        existing = find_order_by_provider_ref(provider_ref)
        if existing is not None:
            logger.warning("Duplicate settlement for %s resolved to order %s", provider_ref, existing.id)
            return existing.id
        raise


# =============================================================================
# QUERIES & ADMIN UPDATES
# =============================================================================

def list_orders_for_user(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def get_order_for_user(order_id: int, user: User) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != user.id and not user.is_admin:
        raise AuthorizationError("You do not have access to this order")
    return order


def admin_list_orders() -> list[dict]:
    rows = (
        db.session.query(Order, User)
        .outerjoin(User, User.id == Order.user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    result = []
    for order, owner in rows:
        data = order.to_dict(include_items=False)
        data["username"] = owner.username if owner and not owner.is_deleted else "Deleted user"
        result.append(data)
    return result


def update_status(order_id: int, status: str) -> Order:
    status = (status or "").strip().lower()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status or '(none)'}")

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        order.status = status
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_shipping_status(order_id: int, shipping_status: str) -> Order:
    shipping_status = (shipping_status or "").strip().lower()
    if shipping_status not in SHIPPING_STATUSES:
        raise ValidationError(f"Invalid shipping status: {shipping_status or '(none)'}")

    def _op():
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        order.shipping_status = shipping_status
        notification_service.notify(
            order.user_id,
            "Shipping update",
            f"Order #{order.id} is now {shipping_status}.",
        )
        db.session.commit()
        return order

    return run_with_retry(_op)

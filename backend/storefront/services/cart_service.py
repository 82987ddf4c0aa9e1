# Overview: Persisted per-user cart with stock-capped quantities, merge and reorder.

"""
Cart Store

WHY: The cart is a wish list, not a reservation. Quantities are capped at the
stock visible when the line is written, prices are looked up from the
catalog at read time and re-validated again at checkout.

DESIGN:
- One row per (user, product); quantity 0 deletes the row
- Adding more than is available caps the line and reports the cap
- An anonymous (pre-login) cart merges into the persisted cart on login
- Stock conflicts found during checkout correct the cart through
  ``apply_correction`` so the customer can retry immediately
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import CartItem, Order
from ..errors import NotFoundError, OutOfStock, ValidationError, AuthorizationError
from .concurrency import run_with_retry
from . import catalog_service


@dataclass
class CartChange:
    product_id: int
    quantity: int
    capped: bool = False
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "capped": self.capped,
            "message": self.message,
        }


def get_cart(user_id: int) -> list[dict]:
    """Cart lines denormalised with current catalog name, price and stock."""
    rows = (
        db.session.query(CartItem)
        .filter_by(user_id=user_id)
        .order_by(CartItem.id.asc())
        .all()
    )
    lines = []
    for row in rows:
        product = row.product
        if product is None:
            lines.append({
                "product_id": row.product_id,
                "name": None,
                "price_cents": 0,
                "quantity": row.quantity,
                "image": None,
                "available": 0,
                "line_total_cents": 0,
            })
            continue
        lines.append({
            "product_id": product.id,
            "name": product.name,
            "price_cents": product.price_cents,
            "quantity": row.quantity,
            "image": product.image,
            "available": product.quantity,
            "line_total_cents": product.price_cents * row.quantity,
        })
    return lines


def cart_total_cents(lines: list[dict]) -> int:
    return sum(line["price_cents"] * line["quantity"] for line in lines)


def _get_row(user_id: int, product_id: int) -> CartItem | None:
    return db.session.query(CartItem).filter_by(user_id=user_id, product_id=product_id).first()


def _write_quantity(user_id: int, product_id: int, quantity: int) -> None:
    row = _get_row(user_id, product_id)
    if quantity <= 0:
        if row is not None:
            db.session.delete(row)
        return
    if row is None:
        db.session.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
    else:
        row.quantity = quantity


def add_item(user_id: int, product_id: int, quantity: int) -> CartChange:
    """
    Add ``quantity`` units to the cart, capped at available stock.

    Raises:
        NotFoundError: product does not exist
        OutOfStock: product has no stock at all
    """
    if quantity <= 0:
        raise ValidationError("quantity must be at least 1")

    def _op():
        product = catalog_service.require_product(product_id)
        if product.quantity <= 0:
            raise OutOfStock(f"{product.name} is out of stock", details={"product_id": product_id})

        row = _get_row(user_id, product_id)
        current = row.quantity if row else 0
        wanted = current + quantity
        final = min(wanted, product.quantity)
        _write_quantity(user_id, product_id, final)
        db.session.commit()

        if final < wanted:
            return CartChange(
                product_id, final, capped=True,
                message=f"Only {product.quantity} of {product.name} available; quantity adjusted",
            )
        return CartChange(product_id, final)

    return run_with_retry(_op)


def set_quantity(user_id: int, product_id: int, *, quantity: int | None = None, delta: int | None = None) -> CartChange:
    """Set an absolute quantity or apply a delta; zero or below removes the line."""
    if (quantity is None) == (delta is None):
        raise ValidationError("Provide exactly one of quantity or delta")

    def _op():
        row = _get_row(user_id, product_id)
        if row is None and delta is not None:
            raise NotFoundError("Item not in cart")
        target = quantity if quantity is not None else row.quantity + delta

        if target <= 0:
            _write_quantity(user_id, product_id, 0)
            db.session.commit()
            return CartChange(product_id, 0, message="Item removed from cart")

        product = catalog_service.require_product(product_id)
        final = min(target, product.quantity)
        _write_quantity(user_id, product_id, final)
        db.session.commit()
        if final < target:
            message = (
                f"{product.name} is out of stock; item removed" if final == 0
                else f"Only {product.quantity} of {product.name} available; quantity adjusted"
            )
            return CartChange(product_id, final, capped=True, message=message)
        return CartChange(product_id, final)

    return run_with_retry(_op)


def remove_item(user_id: int, product_id: int) -> bool:
    def _op():
        deleted = db.session.query(CartItem).filter_by(user_id=user_id, product_id=product_id).delete()
        db.session.commit()
        return bool(deleted)

    return run_with_retry(_op)


def clear_cart(user_id: int, *, commit: bool = True) -> None:
    db.session.query(CartItem).filter_by(user_id=user_id).delete()
    if commit:
        db.session.commit()


def merge_cart(user_id: int, anonymous_lines: list[dict]) -> list[CartChange]:
    """
    Merge a session-held anonymous cart into the persisted cart.

    Quantities for the same product are summed and capped at stock; lines
    for missing or sold-out products are dropped.
    """
    def _op():
        wanted: dict[int, int] = {}
        for line in anonymous_lines or []:
            try:
                pid = int(line["product_id"])
                qty = int(line["quantity"])
            except (KeyError, TypeError, ValueError):
                raise ValidationError("Each cart line needs product_id and quantity")
            if qty > 0:
                wanted[pid] = wanted.get(pid, 0) + qty

        products = catalog_service.get_products_by_ids(wanted.keys())
        changes = []
        for pid, qty in wanted.items():
            product = products.get(pid)
            if product is None or product.quantity <= 0:
                changes.append(CartChange(pid, 0, capped=True, message="Item unavailable; skipped"))
                continue
            row = _get_row(user_id, pid)
            target = (row.quantity if row else 0) + qty
            final = min(target, product.quantity)
            _write_quantity(user_id, pid, final)
            changes.append(CartChange(pid, final, capped=final < target))
        db.session.commit()
        return changes

    return run_with_retry(_op)


def apply_correction(user_id: int, product_id: int, available: int) -> None:
    """Cap an existing cart line at ``available`` (0 removes it) and commit."""
    row = _get_row(user_id, product_id)
    if row is None or row.quantity <= available:
        return
    _write_quantity(user_id, product_id, max(available, 0))
    db.session.commit()


def reorder(user_id: int, order_id: int) -> dict:
    """
    Copy a past order's lines into the cart, capped at current stock.

    Returns ``{"added": [...], "skipped": [...]}`` where skipped entries carry
    a reason (removed from catalog / out of stock).
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != user_id:
        raise AuthorizationError("You can only reorder your own orders")

    def _op():
        products = catalog_service.get_products_by_ids(item.product_id for item in order.items)
        added, skipped = [], []
        for item in order.items:
            product = products.get(item.product_id)
            if product is None:
                skipped.append({"product_id": item.product_id, "reason": "no longer available"})
                continue
            if product.quantity <= 0:
                skipped.append({"product_id": product.id, "reason": f"{product.name} is out of stock"})
                continue
            row = _get_row(user_id, product.id)
            target = (row.quantity if row else 0) + item.quantity
            final = min(target, product.quantity)
            _write_quantity(user_id, product.id, final)
            added.append(CartChange(product.id, final, capped=final < target).to_dict())
        db.session.commit()
        return {"added": added, "skipped": skipped}

    return run_with_retry(_op)

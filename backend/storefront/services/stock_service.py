# Overview: Stock ledger; conditional decrement on sale and unconditional restock on refund.

"""
Stock Ledger

WHY: Product.quantity is one of the two contended resources of the shop.
Two checkouts racing for the last unit must never both succeed.

DESIGN:
- Decrement is a single conditional UPDATE (``quantity >= requested``) so the
  database arbitrates concurrent orders; zero affected rows means the stock
  was not there and the caller's transaction must roll back
- Restock mirrors a prior decrement, so it has no upper bound check
- Neither function commits; they run inside the caller's transaction
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..errors import InsufficientStock, ValidationError


def try_decrement(product_id: int, quantity: int) -> bool:
    """Conditionally remove ``quantity`` units; False when stock is short."""
    if quantity <= 0:
        raise ValidationError("Decrement quantity must be positive")
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity >= quantity)
        .values(quantity=Product.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def decrement(product_id: int, quantity: int) -> None:
    if not try_decrement(product_id, quantity):
        raise InsufficientStock(
            "Insufficient stock, please review your cart and try again",
            details={"product_id": product_id, "requested": quantity},
        )


def restock(product_id: int, quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError("Restock quantity must be positive")
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError(f"Product {product_id} no longer exists")


def available(product_id: int) -> int:
    value = db.session.query(Product.quantity).filter(Product.id == product_id).scalar()
    return int(value or 0)

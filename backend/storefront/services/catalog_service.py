# Overview: Catalog lookups used by cart, checkout and settlement, plus product creation for the CLI.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..errors import NotFoundError, ValidationError


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def require_product(product_id: int) -> Product:
    product = get_product(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_products_by_ids(product_ids) -> dict[int, Product]:
    """Authoritative rows for a set of ids; missing ids are simply absent."""
    ids = {int(pid) for pid in product_ids}
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
    return {p.id: p for p in rows}


def list_products(category: str | None = None, search: str | None = None, in_stock_only: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if category:
        query = query.filter(Product.category == category)
    if search:
        query = query.filter(Product.name.ilike(f"%{search.strip()}%"))
    if in_stock_only:
        query = query.filter(Product.quantity > 0)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_categories() -> list[str]:
    rows = (
        db.session.query(Product.category)
        .filter(Product.category.isnot(None))
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [row[0] for row in rows]


def create_product(
    name: str,
    price_cents: int,
    quantity: int = 0,
    *,
    category: str | None = None,
    image: str | None = None,
) -> Product:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Product name is required")
    if price_cents < 0 or quantity < 0:
        raise ValidationError("Price and quantity cannot be negative")
    product = Product(
        name=name,
        price_cents=price_cents,
        quantity=quantity,
        category=(category or "").strip() or None,
        image=image,
    )
    db.session.add(product)
    db.session.commit()
    return product

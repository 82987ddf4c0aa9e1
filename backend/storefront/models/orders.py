from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order created by checkout settlement.

    WHY: Line items and prices are frozen at sale time; later catalog price
    changes never touch an existing order. ``provider_ref`` holds the provider
    correlation id (checkout session, capture id, QR retrieval ref) that
    completed the order and is unique, so a replayed provider callback resolves
    to the existing order instead of creating a second one.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("provider_ref", name="uq_orders_provider_ref"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    shipping_status = db.Column(db.String(32), nullable=False, default="processing")

    payment_method = db.Column(db.String(32), nullable=False, default="unpaid")
    # JSON: {"partial_payments": [...], "fraud": {...}, "provider": {...}}
    payment_summary = db.Column(db.Text, nullable=True)
    provider_ref = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
    )

    @property
    def summary(self) -> dict:
        if not self.payment_summary:
            return {}
        try:
            return json.loads(self.payment_summary)
        except ValueError:
            return {}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "status": self.status,
            "shipping_status": self.shipping_status,
            "payment_method": self.payment_method,
            "payment_summary": self.summary,
            "provider_ref": self.provider_ref,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Unit price locked at sale time
    price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class Refund(db.Model):
    """
    Refund request against an order.

    WHY: status moves forward only (pending -> approved/processed/rejected).
    ``restocked_at`` and ``settled_at`` record that the one-time side effects
    of approval already happened, so a repeated approval is a no-op.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.Index("ix_refunds_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    approved_amount_cents = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.Text, nullable=False)

    destination = db.Column(db.String(16), nullable=False, default="store_credit")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    provider_refund_ref = db.Column(db.String(255), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("refunds", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "approved_amount_cents": self.approved_amount_cents,
            "reason": self.reason,
            "destination": self.destination,
            "status": self.status,
            "provider_refund_ref": self.provider_refund_ref,
            "processed_by_user_id": self.processed_by_user_id,
            "restocked_at": to_utc_z(self.restocked_at) if self.restocked_at else None,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "created_at": to_utc_z(self.created_at),
        }

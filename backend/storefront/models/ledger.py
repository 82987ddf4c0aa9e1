from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Transaction(db.Model):
    """
    Append-only money movement log used for reconciliation.

    WHY: Order and refund statuses change over time; this table never does.
    Charges are positive, refunds negative, so the sum per order is the net
    amount the store kept.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_order", "order_id"),
        db.Index("ix_transactions_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    payer_id = db.Column(db.String(255), nullable=True)
    payer_email = db.Column(db.String(255), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    status = db.Column(db.String(32), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    provider_ref = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "refund_id": self.refund_id,
            "user_id": self.user_id,
            "payer_id": self.payer_id,
            "payer_email": self.payer_email,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "method": self.method,
            "provider_ref": self.provider_ref,
            "occurred_at": to_utc_z(self.occurred_at),
        }

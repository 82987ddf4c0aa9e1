from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Wallet(db.Model):
    """Store-credit balance, one row per user, created lazily."""
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("balance_cents >= 0", name="ck_wallets_balance_nonnegative"),
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("wallet", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Append-only wallet movement.

    Positive amounts add store credit (top-up, refund credit), negative amounts
    spend it (store-credit payment). ``provider_ref`` is unique so a top-up
    confirmed twice by the provider credits once.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.UniqueConstraint("provider_ref", name="uq_wallet_transactions_provider_ref"),
        db.Index("ix_wallet_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed")
    provider_ref = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "provider_ref": self.provider_ref,
            "created_at": to_utc_z(self.created_at),
        }

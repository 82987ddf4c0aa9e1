from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"
ROLE_DELETED = "deleted"

VALID_ROLES = (ROLE_CUSTOMER, ROLE_ADMIN, ROLE_DELETED)


class User(db.Model):
    """
    Storefront account.

    WHY: Orders, carts, wallets and refunds are all owned by a user. Accounts
    are soft-deleted by switching role to "deleted" so past orders keep their
    owner row; a deleted account can no longer log in and its orders become
    read-only for refund purposes.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    address = db.Column(db.String(255), nullable=True)
    contact = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_deleted(self) -> bool:
        return self.role == ROLE_DELETED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "address": self.address,
            "contact": self.contact,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Bearer session token (stored as SHA-256 hash only).

    The ``token_hash`` doubles as the key of the user's transient checkout
    slot, so each login session has at most one pending checkout.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_revoked", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

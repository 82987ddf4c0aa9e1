# Overview: Bearer session tokens with absolute and idle timeouts.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

The token hash is also the key of the session's transient checkout slot
(see checkout_store), so logging out abandons any staged checkout.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout (SESSION_ABSOLUTE_HOURS) and idle timeout (SESSION_IDLE_HOURS)
- Revoked on logout or when the account is soft-deleted
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    user: User
    session: SessionToken

    @property
    def session_key(self) -> str:
        return self.session.token_hash


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session for the user.

    Returns (session_record, plaintext_token); only the hash is stored.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if user.is_deleted:
        raise ValueError("Account has been deleted")

    plaintext_token = generate_token()
    now = utcnow()
    hours = current_app.config.get("SESSION_ABSOLUTE_HOURS", 24)

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a token, or None when the token is
    unknown, revoked, expired, idle too long, or its account was deleted.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    idle_limit = timedelta(hours=current_app.config.get("SESSION_IDLE_HOURS", 2))
    if now - session.last_used_at > idle_limit:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if user is None or user.is_deleted:
        _revoke(session, "Account deleted")
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "Logout") -> str | None:
    """Revoke by plaintext token; returns the token hash when one was revoked."""
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token), is_revoked=False).first()
    if session is None:
        return None
    _revoke(session, reason)
    return session.token_hash

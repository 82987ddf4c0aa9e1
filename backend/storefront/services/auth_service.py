# Overview: Password hashing and user account operations.

"""
Authentication Service

WHY: Every order, refund and wallet movement is owned by an account, and
store credit is spent only after the account password is re-entered.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
- Deleted accounts (role "deleted") cannot authenticate
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CUSTOMER, ROLE_DELETED, VALID_ROLES
from ..errors import ValidationError, NotFoundError
from ..time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt at the configured cost."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_CUSTOMER,
    address: str | None = None,
    contact: str | None = None,
) -> User:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("username and email are required")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}")

    if db.session.query(User).filter_by(username=username).first():
        raise ValidationError(f"Username '{username}' already exists")
    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError(f"Email '{email}' already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        address=address,
        contact=contact,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """Look up by username or email and verify the password."""
    identifier = (identifier or "").strip()
    if not identifier:
        return None
    user = (
        db.session.query(User)
        .filter(db.or_(User.username == identifier, User.email == identifier.lower()))
        .first()
    )
    if user is None or user.is_deleted:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def soft_delete_user(user_id: int) -> User:
    """Mark an account deleted; its sessions stop validating immediately."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    user.role = ROLE_DELETED
    db.session.commit()
    return user

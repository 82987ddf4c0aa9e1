# Overview: Store-credit wallet ledger with atomic add/deduct and an append-only movement log.

"""
Wallet Ledger

WHY: Store credit is money. The balance must never go negative and every
change must be explainable from wallet_transactions.

DESIGN PRINCIPLES:
- One wallet row per user, created lazily on first access
- add_funds is an upsert-increment, deduct_funds a conditional decrement
  (``balance >= amount``); both are single UPDATE statements so concurrent
  requests are arbitrated by the database
- Every mutation appends a WalletTransaction (signed amount) in the same
  transaction as the balance change
- ``commit=False`` lets settlement code fold a wallet movement into a larger
  unit of work (refund settlement, order finalize)
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Wallet, WalletTransaction, User
from ..errors import InsufficientFunds, InvalidAmount, NotFoundError
from ..time_utils import utcnow
from .concurrency import run_with_retry


# =============================================================================
# WALLET METHODS (CONSTANTS)
# =============================================================================

METHOD_STORE_CREDIT = "store_credit"
METHOD_REFUND_CREDIT = "refund"
METHOD_ADMIN_CREDIT = "admin"


def _ensure_wallet(user_id: int) -> None:
    if db.session.get(Wallet, user_id) is None:
        db.session.add(Wallet(user_id=user_id, balance_cents=0, updated_at=utcnow()))
        db.session.flush()


def _read_balance(user_id: int) -> int:
    value = db.session.query(Wallet.balance_cents).filter(Wallet.user_id == user_id).scalar()
    return int(value or 0)


def get_balance(user_id: int) -> int:
    """Current balance in cents; creates a zero wallet if the user has none."""
    if db.session.get(Wallet, user_id) is None:
        def _op():
            _ensure_wallet(user_id)
            db.session.commit()
        run_with_retry(_op)
    return _read_balance(user_id)


def _log(user_id: int, amount_cents: int, method: str, provider_ref: str | None, status: str) -> WalletTransaction:
    txn = WalletTransaction(
        user_id=user_id,
        amount_cents=amount_cents,
        method=method,
        status=status,
        provider_ref=provider_ref,
        created_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def add_funds(
    user_id: int,
    amount_cents: int,
    method: str,
    *,
    provider_ref: str | None = None,
    status: str = "completed",
    commit: bool = True,
) -> int:
    """
    Credit the wallet and log a positive WalletTransaction.

    Returns:
        New balance in cents
    """
    if amount_cents <= 0:
        raise InvalidAmount("Credit amount must be positive")

    def _op():
        _ensure_wallet(user_id)
        db.session.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(balance_cents=Wallet.balance_cents + amount_cents, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        _log(user_id, amount_cents, method, provider_ref, status)
        balance = _read_balance(user_id)
        if commit:
            db.session.commit()
        return balance

    return run_with_retry(_op) if commit else _op()


def deduct_funds(
    user_id: int,
    amount_cents: int,
    method: str = METHOD_STORE_CREDIT,
    *,
    provider_ref: str | None = None,
    commit: bool = True,
) -> int:
    """
    Debit the wallet only if the balance covers ``amount_cents``.

    Raises:
        InsufficientFunds: balance lower than amount (nothing is changed)

    Returns:
        New balance in cents
    """
    if amount_cents <= 0:
        raise InvalidAmount("Debit amount must be positive")

    def _op():
        _ensure_wallet(user_id)
        result = db.session.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.balance_cents >= amount_cents)
            .values(balance_cents=Wallet.balance_cents - amount_cents, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFunds(
                "Insufficient store credit",
                details={"balance_cents": _read_balance(user_id), "requested_cents": amount_cents},
            )
        _log(user_id, -amount_cents, method, provider_ref, "completed")
        balance = _read_balance(user_id)
        if commit:
            db.session.commit()
        return balance

    return run_with_retry(_op) if commit else _op()


def provider_ref_used(provider_ref: str) -> bool:
    return db.session.query(WalletTransaction.id).filter_by(provider_ref=provider_ref).first() is not None


# =============================================================================
# QUERIES
# =============================================================================

def list_transactions(user_id: int, limit: int = 100) -> list[WalletTransaction]:
    return (
        db.session.query(WalletTransaction)
        .filter_by(user_id=user_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )


def get_transaction(user_id: int, transaction_id: int) -> WalletTransaction:
    txn = db.session.query(WalletTransaction).filter_by(id=transaction_id, user_id=user_id).first()
    if txn is None:
        raise NotFoundError("Wallet transaction not found")
    return txn


def list_wallets() -> dict:
    """Admin view: every user's balance plus the total store credit outstanding."""
    rows = (
        db.session.query(User, Wallet.balance_cents)
        .outerjoin(Wallet, Wallet.user_id == User.id)
        .order_by(User.username.asc())
        .all()
    )
    wallets = [
        {
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role,
            "balance_cents": int(balance or 0),
        }
        for user, balance in rows
    ]
    return {
        "wallets": wallets,
        "total_balance_cents": sum(w["balance_cents"] for w in wallets),
    }

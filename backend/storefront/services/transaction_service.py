# Overview: Append-only money movement log and its admin reconciliation queries.

"""
Transaction Log

WHY: Order and refund rows change status over time. Reconciliation needs a
record of every charge and refund that never changes after it is written.

DESIGN:
- Charges are written with a positive amount, refunds with a negative one
- Rows are only ever inserted (no update/delete API exists)
- ``record`` flushes but does not commit: it always runs inside the
  settlement transaction that moved the money
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Transaction, User
from ..time_utils import utcnow, parse_iso_datetime
from ..errors import ValidationError


STATUS_COMPLETED = "COMPLETED"
STATUS_REFUNDED = "REFUNDED"


def record(
    *,
    amount_cents: int,
    method: str,
    status: str,
    order_id: int | None = None,
    refund_id: int | None = None,
    user_id: int | None = None,
    payer_id: str | None = None,
    payer_email: str | None = None,
    provider_ref: str | None = None,
    currency: str | None = None,
) -> Transaction:
    txn = Transaction(
        order_id=order_id,
        refund_id=refund_id,
        user_id=user_id,
        payer_id=payer_id,
        payer_email=payer_email,
        amount_cents=amount_cents,
        currency=currency or current_app.config.get("CURRENCY", "SGD"),
        status=status,
        method=method,
        provider_ref=provider_ref,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def list_transactions(
    *,
    order_id: int | None = None,
    method: str | None = None,
    status: str | None = None,
    payer: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = 500,
) -> list[Transaction]:
    """
    Admin listing with optional filters.

    ``payer`` matches the provider payer id, the payer email or the
    customer's username (substring, case-insensitive). ``date_to`` is
    inclusive of the whole day when given as a plain date.
    """
    query = db.session.query(Transaction).outerjoin(User, User.id == Transaction.user_id)

    if order_id is not None:
        query = query.filter(Transaction.order_id == order_id)
    if method:
        query = query.filter(Transaction.method == method)
    if status:
        query = query.filter(db.func.upper(Transaction.status) == status.upper())
    if payer:
        pattern = f"%{payer.strip()}%"
        query = query.filter(
            db.or_(
                Transaction.payer_id.ilike(pattern),
                Transaction.payer_email.ilike(pattern),
                User.username.ilike(pattern),
            )
        )

    try:
        start = parse_iso_datetime(date_from)
        end = parse_iso_datetime(date_to)
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    if start is not None:
        query = query.filter(Transaction.occurred_at >= start)
    if end is not None:
        if date_to and len(date_to.strip()) == 10:
            end = end + timedelta(days=1)
            query = query.filter(Transaction.occurred_at < end)
        else:
            query = query.filter(Transaction.occurred_at <= end)

    return query.order_by(Transaction.occurred_at.desc(), Transaction.id.desc()).limit(limit).all()

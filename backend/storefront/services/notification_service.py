# Overview: In-app user notifications written alongside orders, refunds and top-ups.

from __future__ import annotations

from ..extensions import db
from ..models import Notification
from ..time_utils import utcnow


def notify(user_id: int, title: str, message: str) -> Notification:
    """Queue a notification in the caller's transaction (no commit)."""
    note = Notification(user_id=user_id, title=title, message=message, status="unread", created_at=utcnow())
    db.session.add(note)
    db.session.flush()
    return note


def list_for_user(user_id: int, limit: int = 50) -> list[Notification]:
    return (
        db.session.query(Notification)
        .filter_by(user_id=user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(user_id: int) -> int:
    return db.session.query(Notification).filter_by(user_id=user_id, status="unread").count()


def mark_all_read(user_id: int) -> int:
    updated = (
        db.session.query(Notification)
        .filter_by(user_id=user_id, status="unread")
        .update({"status": "read"}, synchronize_session=False)
    )
    db.session.commit()
    return updated

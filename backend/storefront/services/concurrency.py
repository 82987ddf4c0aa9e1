# Overview: Transaction helpers shared by every stock- or wallet-mutating service operation.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work as one transaction.

    Any exception rolls the session back before it propagates, so a failed
    step never leaves half of the work pending in the session. Lock and
    deadlock failures (OperationalError, StaleDataError) are retried with
    exponential backoff.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying transaction after lock conflict (attempt %s)", attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

# Overview: Bounded polling state machine behind the QR payment status stream.

"""
QR status poller.

WHY: A QR payment completes on the customer's phone, out of band. The
browser holds one long-lived connection while the server re-polls the
provider on a fixed cadence and forwards each raw answer.

States:
    awaiting_provider -> confirmed   (provider reports success)
    awaiting_provider -> failed      (provider reports a terminal failure)
    awaiting_provider -> timed_out   (attempts exhausted; one final
                                      timeout-flagged poll did not succeed)
    awaiting_provider -> cancelled   (client disconnected)

``events()`` is a generator; closing it (what the WSGI server does when the
client goes away) or calling ``cancel()`` wakes any pending wait and stops
polling, so no timer outlives the connection.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator

from ...errors import ProviderError
from .base import PaymentStatus

logger = logging.getLogger(__name__)

AWAITING_PROVIDER = "awaiting_provider"
CONFIRMED = "confirmed"
FAILED = "failed"
TIMED_OUT = "timed_out"
CANCELLED = "cancelled"

TERMINAL_STATES = {CONFIRMED, FAILED, TIMED_OUT, CANCELLED}


class QrStatusPoller:
    def __init__(
        self,
        adapter,
        provider_ref: str,
        *,
        interval: float = 5.0,
        max_attempts: int = 60,
        wait: Callable[[float], bool] | None = None,
    ):
        self.adapter = adapter
        self.provider_ref = provider_ref
        self.interval = interval
        self.max_attempts = max_attempts
        self.state = AWAITING_PROVIDER
        self.attempts = 0
        self._cancelled = threading.Event()
        # Returns True when woken by cancel()
        self._wait = wait or self._cancelled.wait

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> None:
        self._cancelled.set()
        if not self.done:
            self.state = CANCELLED

    def _event(self, status: PaymentStatus | None, error: str | None = None) -> dict:
        return {
            "attempt": self.attempts,
            "state": self.state,
            "provider_ref": self.provider_ref,
            "status": status.state if status else None,
            "raw": status.raw if status else None,
            "error": error,
        }

    def _poll(self, *, timed_out: bool = False) -> PaymentStatus | None:
        try:
            if timed_out:
                return self.adapter.query(self.provider_ref, timed_out=True)
            return self.adapter.check_status(self.provider_ref)
        except ProviderError as exc:
            # A single failed poll is not terminal; the next attempt may succeed
            logger.warning("QR status poll %s for %s failed: %s", self.attempts, self.provider_ref, exc)
            return None

    def events(self) -> Iterator[dict]:
        try:
            while self.attempts < self.max_attempts and not self._cancelled.is_set():
                self.attempts += 1
                status = self._poll()
                if status is not None and status.completed:
                    self.state = CONFIRMED
                elif status is not None and status.failed:
                    self.state = FAILED
                yield self._event(status, None if status else "Provider unreachable")
                if self.done:
                    return
                if self.attempts < self.max_attempts and self._wait(self.interval):
                    self.cancel()
                    return

            if self._cancelled.is_set():
                return

            status = self._poll(timed_out=True)
            self.state = CONFIRMED if status is not None and status.completed else TIMED_OUT
            if self.state == TIMED_OUT:
                logger.warning("QR payment %s timed out after %s polls", self.provider_ref, self.attempts)
            yield self._event(status)
        finally:
            if not self.done:
                self.cancel()

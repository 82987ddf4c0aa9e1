# Overview: Server-side transient store for staged checkouts and wallet top-ups, keyed by session.

"""
Transient checkout store.

WHY: A pending checkout must never be persisted as an order before payment is
complete, yet it has to survive between the requests that make up a payment
flow (begin -> choose method -> provider redirect -> return). Entries live
here, keyed explicitly by ``(namespace, session_key)``, and are handed to the
settlement services as arguments instead of being read from ambient request
state.

DESIGN:
- One slot per (namespace, session_key): "checkout" and "topup" namespaces
- Entries expire after a TTL; an expired entry behaves as if it never existed
- Writes sweep out expired entries at most once per sweep interval, so
  sessions that time out without logging out do not accumulate
- A process restart loses in-flight entries (no order exists yet, so nothing
  durable is lost)
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable


class CheckoutStore:
    def __init__(
        self,
        ttl_seconds: float = 7200,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._next_sweep = clock() + sweep_interval
        self._entries: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def init_app(self, app) -> None:
        self.ttl_seconds = app.config.get("CHECKOUT_TTL_SECONDS", self.ttl_seconds)
        self.sweep_interval = app.config.get("CHECKOUT_SWEEP_SECONDS", self.sweep_interval)
        app.extensions["checkout_store"] = self

    def get(self, namespace: str, session_key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get((namespace, session_key))
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[(namespace, session_key)]
                return None
            return value

    def put(self, namespace: str, session_key: str, value: Any) -> None:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._purge_locked(now)
                self._next_sweep = now + self.sweep_interval
            self._entries[(namespace, session_key)] = (now + self.ttl_seconds, value)

    def pop(self, namespace: str, session_key: str) -> Any | None:
        with self._lock:
            entry = self._entries.pop((namespace, session_key), None)
        if entry is None:
            return None
        expires_at, value = entry
        return value if expires_at > self._clock() else None

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

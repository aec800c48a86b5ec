"""Correlation between issued AuthnRequests and returning responses.

Each outbound request is remembered under the opaque ``state`` token the
browser carries through the IdP as RelayState. A state is consumed by the
first response that presents it, so it can be accepted at most once.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class PendingRequest:
    """An AuthnRequest awaiting its response."""

    request_id: str
    issued_at: float


class PendingRequestStore:
    """Thread-safe ``state -> request ID`` map with atomic consumption.

    Entries older than ``ttl_seconds`` are treated as absent and are swept
    lazily whenever a new entry is stored. A TTL of ``0`` (or less) keeps
    entries until they are consumed.
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    def _is_expired(self, entry: PendingRequest, now: float) -> bool:
        return self._ttl > 0 and now - entry.issued_at > self._ttl

    def put(self, state: str, request_id: str) -> None:
        """Remember ``request_id`` under ``state``, replacing any previous entry."""
        with self._lock:
            now = self._clock()
            if self._ttl > 0:
                expired = [s for s, e in self._entries.items() if self._is_expired(e, now)]
                for s in expired:
                    del self._entries[s]
            self._entries[state] = PendingRequest(request_id=request_id, issued_at=now)

    def pop(self, state: str) -> str | None:
        """Atomically remove ``state`` and return its request ID.

        Returns:
            The request ID, or None if the state is unknown, already
            consumed, or expired.
        """
        with self._lock:
            entry = self._entries.pop(state, None)
            if entry is None or self._is_expired(entry, self._clock()):
                return None
            return entry.request_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._entries

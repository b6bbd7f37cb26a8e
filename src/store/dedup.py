"""Idempotency store for inbound webhook deliveries."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable

from src.errors import StoreError

logger = logging.getLogger(__name__)


class DedupStore:
    """Bounded ``id -> first_seen_at`` map with a retention horizon.

    ``accept`` is an atomic check-and-insert. Entries are swept lazily, oldest
    first, and only once they are older than the horizon; a full store of live
    entries raises ``StoreError`` rather than forgetting one.
    """

    def __init__(
        self,
        retention_seconds: float,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retention = retention_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        with self._lock:
            self._sweep(self._clock())
            return event_id in self._seen

    def _sweep(self, now: float) -> None:
        # Insertion order is first-seen order, so expired entries are at the front.
        while self._seen:
            event_id, first_seen = next(iter(self._seen.items()))
            if now - first_seen < self._retention:
                break
            del self._seen[event_id]

    def accept(self, event_id: str) -> bool:
        """Return True exactly once per ``event_id`` within the horizon."""
        with self._lock:
            now = self._clock()
            self._sweep(now)
            if event_id in self._seen:
                return False
            if len(self._seen) >= self._max_entries:
                logger.error("Dedup store full (%d live entries)", len(self._seen))
                raise StoreError("dedup store is full")
            self._seen[event_id] = now
            return True

    def forget(self, event_id: str) -> None:
        """Drop an id whose processing never started."""
        with self._lock:
            self._seen.pop(event_id, None)

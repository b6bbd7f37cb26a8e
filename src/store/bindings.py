"""Incident to Twist thread bindings."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from src.delivery.task import ThreadHandle


@dataclass
class ThreadBinding:
    handle: ThreadHandle
    created_at: float
    closed_at: float | None = None

    @property
    def closed(self) -> bool:
        return self.closed_at is not None


class ThreadBindingTable:
    """Lock-guarded ``incident_key -> ThreadBinding`` table.

    Callers hold ``lock(incident_key)`` around a lookup-then-bind sequence.
    Locks are per key; nothing serializes unrelated incidents. A key's lock
    lives only while someone holds or waits on it, or a binding exists.
    Closed bindings are kept for ``grace_seconds`` and then evicted.
    """

    def __init__(self, grace_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._grace = grace_seconds
        self._clock = clock
        self._bindings: dict[str, ThreadBinding] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(self, incident_key: str) -> AsyncIterator[None]:
        lock = self._locks.get(incident_key)
        if lock is None:
            lock = self._locks[incident_key] = asyncio.Lock()
        self._lock_users[incident_key] = self._lock_users.get(incident_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[incident_key] -= 1
            if not self._lock_users[incident_key]:
                del self._lock_users[incident_key]
                if incident_key not in self._bindings:
                    del self._locks[incident_key]

    def get(self, incident_key: str) -> ThreadBinding | None:
        binding = self._bindings.get(incident_key)
        if binding is None:
            return None
        if binding.closed and self._clock() - binding.closed_at >= self._grace:
            self._evict(incident_key)
            return None
        return binding

    def bind(self, incident_key: str, handle: ThreadHandle) -> ThreadBinding:
        existing = self.get(incident_key)
        if existing is not None and existing.handle != handle:
            raise ValueError(f"incident {incident_key} is already bound to {existing.handle}")
        binding = ThreadBinding(handle=handle, created_at=self._clock())
        self._bindings[incident_key] = binding
        return binding

    def close(self, incident_key: str) -> bool:
        binding = self._bindings.get(incident_key)
        if binding is None:
            return False
        if binding.closed_at is None:
            binding.closed_at = self._clock()
        return True

    def sweep(self) -> int:
        """Evict every closed binding past its grace period."""
        now = self._clock()
        expired = [
            key for key, b in self._bindings.items()
            if b.closed and now - b.closed_at >= self._grace
        ]
        for key in expired:
            self._evict(key)
        return len(expired)

    def _evict(self, incident_key: str) -> None:
        self._bindings.pop(incident_key, None)
        if incident_key not in self._lock_users:
            self._locks.pop(incident_key, None)

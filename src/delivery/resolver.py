"""Resolve incidents to Twist threads, creating them on first sight."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from src.delivery.retry import RetryPolicy, compute_backoff_delay
from src.delivery.task import ThreadHandle
from src.errors import RemoteCreateFailed, SinkError
from src.schemas.events import AlertState
from src.store.bindings import ThreadBindingTable
from src.templates.twist_templates import build_context_missing_note

logger = logging.getLogger(__name__)


class ThreadSink(Protocol):
    async def create_thread(self, channel_id: str, title: str, content: str) -> ThreadHandle: ...

    async def post_message(self, handle: ThreadHandle, body: str) -> None: ...


class ThreadResolver:
    def __init__(
        self,
        sink: ThreadSink,
        bindings: ThreadBindingTable,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sink = sink
        self._bindings = bindings
        self._policy = policy
        self._sleep = sleep

    async def resolve(
        self,
        incident_key: str,
        state: AlertState,
        *,
        title: str,
        channel_id: str,
        opening: str = "",
    ) -> ThreadHandle:
        """Return the incident's thread, creating it if none is bound.

        A thread created for an event other than ``Opened`` is seeded with a
        context-missing note so the alert still lands somewhere. An existing
        binding is returned as is, closed or not; a late ``Opened`` retry does
        not reopen a resolved incident.
        """
        async with self._bindings.lock(incident_key):
            binding = self._bindings.get(incident_key)
            if binding is not None:
                return binding.handle

            if state is AlertState.OPENED:
                content = opening or title
            else:
                logger.warning(
                    "No thread bound for incident %s on %s event; creating one", incident_key, state.value
                )
                content = build_context_missing_note(state)

            handle = await self._create(incident_key, channel_id, title, content)
            self._bindings.bind(incident_key, handle)
            return handle

    async def _create(self, incident_key: str, channel_id: str, title: str, content: str) -> ThreadHandle:
        attempts = self._policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._sink.create_thread(channel_id, title, content)
            except SinkError as exc:
                if not exc.retryable or attempt == attempts:
                    logger.error("Thread creation failed for incident %s: %s", incident_key, exc)
                    raise RemoteCreateFailed(incident_key, exc) from exc
                retry_after = getattr(exc, "retry_after", None)
                delay = compute_backoff_delay(attempt, self._policy, retry_after)
                logger.info(
                    "Thread creation for %s failed (attempt %d/%d), retrying in %.1fs",
                    incident_key, attempt, attempts, delay,
                )
                await self._sleep(delay)
        raise RemoteCreateFailed(incident_key)

    def close(self, incident_key: str) -> None:
        """Mark the binding closed once a ``Resolved`` message is delivered."""
        if self._bindings.close(incident_key):
            logger.info("Incident %s resolved; thread binding closed", incident_key)
        evicted = self._bindings.sweep()
        if evicted:
            logger.debug("Evicted %d expired thread bindings", evicted)

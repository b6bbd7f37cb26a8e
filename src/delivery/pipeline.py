"""Ordered, retrying delivery of alert messages to Twist threads.

Tasks are queued per incident. A bounded pool of workers picks up incidents
that have pending work and drains each incident's queue one task at a time,
so messages for one incident reach Twist in the order they were accepted
while different incidents are delivered concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from src.delivery.dead_letter import DeadLetterLog
from src.delivery.resolver import ThreadResolver, ThreadSink
from src.delivery.retry import RetryPolicy, compute_backoff_delay
from src.delivery.task import DeliveryTask, TaskState
from src.errors import PipelineClosed, ResolveError, SinkError, StoreError, is_retryable
from src.schemas.events import AlertState

logger = logging.getLogger(__name__)


class DeliveryPipeline:
    def __init__(
        self,
        sink: ThreadSink,
        resolver: ThreadResolver,
        dead_letters: DeadLetterLog,
        policy: RetryPolicy,
        workers: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sink = sink
        self._resolver = resolver
        self._dead_letters = dead_letters
        self._policy = policy
        self._worker_count = workers
        self._sleep = sleep

        # incident_key -> pending tasks; a key is present while it is queued or draining
        self._queues: dict[str, deque[DeliveryTask]] = {}
        self._ready: asyncio.Queue[str | None] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._closing = False
        self._closed = asyncio.Event()

        self.delivered = 0
        self.dead_lettered = 0

    @property
    def closing(self) -> bool:
        return self._closing

    def start(self) -> None:
        if self._workers or self._closing:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"delivery-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.info("Delivery pipeline started with %d workers", self._worker_count)

    def enqueue(self, task: DeliveryTask) -> None:
        if self._closing:
            raise PipelineClosed("delivery pipeline is shutting down")
        self.start()
        queue = self._queues.get(task.incident_key)
        if queue is None:
            queue = self._queues[task.incident_key] = deque()
            self._ready.put_nowait(task.incident_key)
        task.status = TaskState.PENDING
        queue.append(task)
        logger.debug("Queued %s for incident %s (%d pending)", task.event_id, task.incident_key, len(queue))

    async def join(self) -> None:
        """Wait until every queued task has reached a terminal state."""
        await self._ready.join()

    async def close(self) -> None:
        """Stop accepting tasks and wind down the workers.

        In-flight tasks get at most one more attempt, without waiting out their
        backoff. Tasks that never started are dead-lettered.
        """
        if self._closing:
            return
        self._closing = True
        self._closed.set()
        for _ in self._workers:
            self._ready.put_nowait(None)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info(
            "Delivery pipeline stopped (delivered=%d, dead_lettered=%d)", self.delivered, self.dead_lettered
        )

    async def _worker(self, n: int) -> None:
        while True:
            key = await self._ready.get()
            try:
                if key is None:
                    return
                await self._drain(key)
            finally:
                self._ready.task_done()

    async def _drain(self, key: str) -> None:
        queue = self._queues[key]
        try:
            while queue:
                task = queue.popleft()
                if self._closing:
                    await self._dead_letter(task, "shutdown before delivery started")
                    continue
                try:
                    await self._process(task)
                except Exception as exc:
                    logger.exception("Unexpected error delivering %s", task.event_id)
                    await self._dead_letter(task, f"unexpected error: {exc!r}")
        finally:
            del self._queues[key]

    async def _process(self, task: DeliveryTask) -> None:
        final_attempt = False
        while True:
            if self._closing:
                final_attempt = True
            task.attempt_count += 1
            task.status = TaskState.SENDING
            try:
                if task.thread_handle is None:
                    task.thread_handle = await self._resolver.resolve(
                        task.incident_key,
                        task.state,
                        title=task.thread_title,
                        channel_id=task.channel_id,
                        opening=task.thread_opening,
                    )
                await self._sink.post_message(task.thread_handle, task.message_body)
            except (SinkError, ResolveError, StoreError) as exc:
                task.last_error = str(exc)
                if not is_retryable(exc):
                    logger.warning("Non-retryable failure for %s: %s", task.event_id, exc)
                    await self._dead_letter(task, task.last_error)
                    return
                if task.attempt_count >= self._policy.max_attempts:
                    await self._dead_letter(task, f"retries exhausted: {task.last_error}")
                    return
                if final_attempt:
                    await self._dead_letter(task, f"shutdown during retry: {task.last_error}")
                    return
                task.status = TaskState.RETRYING
                if self._closing:
                    continue
                delay = compute_backoff_delay(
                    task.attempt_count, self._policy, getattr(exc, "retry_after", None)
                )
                logger.info(
                    "Delivery of %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    task.event_id, task.attempt_count, self._policy.max_attempts, exc, delay,
                )
                await self._backoff(delay)
                continue

            task.status = TaskState.DELIVERED
            self.delivered += 1
            logger.info(
                "Delivered %s to thread %s (attempt %d)",
                task.event_id, task.thread_handle.thread_id, task.attempt_count,
            )
            if task.state is AlertState.RESOLVED:
                self._resolver.close(task.incident_key)
            return

    async def _backoff(self, delay: float) -> None:
        """Sleep for ``delay``, waking early when shutdown begins."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({sleeper, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, closer):
                if not fut.done():
                    fut.cancel()

    async def _dead_letter(self, task: DeliveryTask, reason: str) -> None:
        self.dead_lettered += 1
        try:
            await self._dead_letters.record(task, reason)
            return
        except StoreError as exc:
            logger.warning("Dead letter for %s not persisted, retrying: %s", task.event_id, exc)
        for attempt in range(1, self._policy.max_attempts + 1):
            if self._closing:
                logger.error("Dead letter for %s not persisted before shutdown", task.event_id)
                return
            await self._backoff(compute_backoff_delay(attempt, self._policy))
            try:
                await self._dead_letters.persist(task, reason)
                return
            except StoreError as exc:
                if attempt == self._policy.max_attempts:
                    logger.error("Dead letter for %s not persisted: %s", task.event_id, exc)

"""Long-lived service state shared by the routes."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Awaitable, Callable

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.clients.twist_client import TwistClient
from src.config import Settings, settings as default_settings
from src.database import async_session
from src.delivery.dead_letter import DeadLetterLog
from src.delivery.pipeline import DeliveryPipeline
from src.delivery.resolver import ThreadResolver
from src.delivery.retry import RetryPolicy
from src.store.bindings import ThreadBindingTable
from src.store.dedup import DedupStore

logger = logging.getLogger(__name__)


class Bridge:
    """Owns the dedup store, thread bindings, Twist client and pipeline."""

    def __init__(
        self,
        config: Settings | None = None,
        client=None,
        session_factory: async_sessionmaker[AsyncSession] | None = async_session,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = config or default_settings
        self.client = client or TwistClient(self.settings)
        self.dedup = DedupStore(
            self.settings.dedup_retention_seconds, self.settings.dedup_max_entries, clock
        )
        self.bindings = ThreadBindingTable(self.settings.binding_grace_seconds, clock)

        policy = RetryPolicy.from_settings(self.settings)
        self.resolver = ThreadResolver(
            self.client,
            self.bindings,
            dataclasses.replace(policy, max_attempts=self.settings.thread_create_attempts),
            sleep,
        )
        self.dead_letters = DeadLetterLog(session_factory)
        self.pipeline = DeliveryPipeline(
            self.client,
            self.resolver,
            self.dead_letters,
            policy,
            workers=self.settings.worker_pool_size,
            sleep=sleep,
        )

    def start(self) -> None:
        self.pipeline.start()

    async def close(self) -> None:
        await self.pipeline.close()
        await self.client.close()
        logger.info("Bridge closed")


def get_bridge(request: Request) -> Bridge:
    return request.app.state.bridge

"""Dead-letter record for tasks that could not be delivered."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.delivery.task import DeliveryTask, TaskState
from src.errors import StoreError
from src.models.dead_letter import DeadLetter

# One structured line per dead letter, for operators grepping logs.
dead_letter_logger = logging.getLogger("dead_letter")

logger = logging.getLogger(__name__)


class DeadLetterLog:
    """Append-only record: a log line always, a database row when possible."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def record(self, task: DeliveryTask, last_error: str) -> None:
        task.status = TaskState.DEAD_LETTERED
        task.last_error = last_error
        dead_letter_logger.error(
            "dead_letter incident_key=%s id=%s attempt_count=%d last_error=%r timestamp=%s",
            task.incident_key,
            task.event_id,
            task.attempt_count,
            last_error,
            datetime.now(timezone.utc).isoformat(),
        )
        await self.persist(task, last_error)

    async def persist(self, task: DeliveryTask, last_error: str) -> None:
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as db:
                db.add(DeadLetter(
                    incident_key=task.incident_key,
                    event_id=task.event_id,
                    last_error=last_error[:2000],
                    attempt_count=task.attempt_count,
                    message_body=task.message_body,
                ))
                await db.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"could not persist dead letter: {exc}") from exc

    async def recent(self, limit: int = 100) -> list[DeadLetter]:
        if self._session_factory is None:
            return []
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(DeadLetter).order_by(DeadLetter.id.desc()).limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(f"could not read dead letters: {exc}") from exc

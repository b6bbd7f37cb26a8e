"""Delivery task and thread handle types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from src.schemas.events import AlertState


@dataclass(frozen=True)
class ThreadHandle:
    channel_id: str
    thread_id: str


class TaskState(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class DeliveryTask:
    """One message on its way to an incident thread.

    ``thread_handle`` stays None until the resolver has bound the incident.
    """

    incident_key: str
    event_id: str
    state: AlertState
    message_body: str
    thread_title: str
    channel_id: str
    thread_opening: str = ""
    thread_handle: ThreadHandle | None = None
    attempt_count: int = 0
    status: TaskState = TaskState.PENDING
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

"""Tests for ordered, retrying delivery."""

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from conftest import make_settings, no_sleep
from src.bridge import Bridge
from src.database import async_session
from src.delivery.task import DeliveryTask, TaskState
from src.errors import ClientError, NetworkError, PipelineClosed, RateLimited, ServerError
from src.models.dead_letter import DeadLetter
from src.schemas.events import AlertState


def _task(incident_key: str, body: str, state: AlertState = AlertState.OPENED, event_id: str | None = None) -> DeliveryTask:
    return DeliveryTask(
        incident_key=incident_key,
        event_id=event_id or f"{incident_key}:{body}",
        state=state,
        message_body=body,
        thread_title=f"title {incident_key}",
        channel_id="chan-1",
    )


async def test_rate_limited_twice_then_delivered_once(bridge, twist):
    twist.post_failures = [RateLimited("slow down"), RateLimited("slow down")]
    task = _task("inc-1", "hello")

    bridge.pipeline.enqueue(task)
    await bridge.pipeline.join()

    assert task.status is TaskState.DELIVERED
    assert task.attempt_count == 3
    assert twist.messages == [("t1", "hello")]


async def test_client_error_dead_lettered_after_one_attempt(bridge, twist):
    twist.post_failures = [ClientError("bad request", 400)] * 5
    task = _task("inc-2", "hello")

    bridge.pipeline.enqueue(task)
    await bridge.pipeline.join()

    assert task.status is TaskState.DEAD_LETTERED
    assert task.attempt_count == 1
    assert twist.post_calls == 1
    async with async_session() as db:
        row = (await db.execute(select(DeadLetter))).scalar_one()
    assert row.incident_key == "inc-2"
    assert row.attempt_count == 1
    assert "bad request" in row.last_error


async def test_retries_exhausted_dead_letters(bridge, twist):
    twist.post_failures = [ServerError("down", 502), NetworkError("reset")] * 5
    task = _task("inc-3", "hello")

    bridge.pipeline.enqueue(task)
    await bridge.pipeline.join()

    assert task.status is TaskState.DEAD_LETTERED
    assert task.attempt_count == 5
    assert twist.messages == []
    assert bridge.pipeline.dead_lettered == 1
    rows = await bridge.dead_letters.recent()
    assert rows[0].last_error.startswith("retries exhausted")


async def test_per_incident_order_preserved_under_concurrency(bridge, twist):
    rng = random.Random(7)
    twist.delay = lambda body: rng.random() / 100

    expected: dict[str, list[str]] = {}
    for n in range(10):
        for key in ("a", "b", "c", "d", "e"):
            body = f"{key}-{n}"
            expected.setdefault(key, []).append(body)
            bridge.pipeline.enqueue(_task(key, body))
    await bridge.pipeline.join()

    assert len(twist.messages) == 50
    for key, bodies in expected.items():
        delivered = [body for _, body in twist.messages if body.startswith(f"{key}-")]
        assert delivered == bodies
    assert len(twist.threads) == 5


async def test_order_preserved_across_retries(bridge, twist):
    twist.post_failures = [ServerError("down", 500)]
    first = _task("inc-4", "first")
    second = _task("inc-4", "second", state=AlertState.RESOLVED)

    bridge.pipeline.enqueue(first)
    bridge.pipeline.enqueue(second)
    await bridge.pipeline.join()

    assert [body for _, body in twist.messages] == ["first", "second"]


async def test_resolved_without_binding_produces_one_thread_and_message(bridge, twist):
    task = _task("inc-5", "resolved", state=AlertState.RESOLVED)

    bridge.pipeline.enqueue(task)
    await bridge.pipeline.join()

    assert len(twist.threads) == 1
    assert twist.messages == [("t1", "resolved")]
    assert bridge.bindings.get("inc-5").closed


async def test_thread_reused_for_later_events(bridge, twist):
    bridge.pipeline.enqueue(_task("inc-6", "opened"))
    await bridge.pipeline.join()
    bridge.pipeline.enqueue(_task("inc-6", "escalated", state=AlertState.ESCALATED))
    await bridge.pipeline.join()

    assert len(twist.threads) == 1
    assert [thread for thread, _ in twist.messages] == ["t1", "t1"]


async def test_thread_creation_failure_requeues_task(bridge, twist):
    # resolver budget is 3 attempts per delivery attempt
    twist.create_failures = [ServerError("down", 503)] * 3
    task = _task("inc-7", "hello")

    bridge.pipeline.enqueue(task)
    await bridge.pipeline.join()

    assert task.status is TaskState.DELIVERED
    assert task.attempt_count == 2
    assert len(twist.threads) == 1


async def test_close_dead_letters_tasks_not_started(twist):
    gate = asyncio.Event()

    async def blocked_post(handle, body):
        await gate.wait()
        twist.messages.append((handle.thread_id, body))

    twist.post_message = blocked_post
    bridge = Bridge(make_settings(worker_pool_size=1), client=twist, session_factory=async_session, sleep=no_sleep)
    in_flight = _task("inc-8", "in flight")
    queued = _task("inc-8", "queued")
    bridge.pipeline.enqueue(in_flight)
    bridge.pipeline.enqueue(queued)
    await asyncio.sleep(0.01)

    closing = asyncio.create_task(bridge.close())
    await asyncio.sleep(0.01)
    gate.set()
    await closing

    assert in_flight.status is TaskState.DELIVERED
    assert queued.status is TaskState.DEAD_LETTERED
    assert queued.last_error == "shutdown before delivery started"
    assert twist.closed


async def test_close_gives_retrying_task_one_more_attempt(twist):
    slept = asyncio.Event()

    async def long_sleep(_delay):
        slept.set()
        await asyncio.sleep(3600)

    twist.post_failures = [ServerError("down", 500)] * 10
    bridge = Bridge(make_settings(), client=twist, session_factory=async_session, sleep=long_sleep)
    task = _task("inc-9", "hello")
    bridge.pipeline.enqueue(task)
    await slept.wait()

    await bridge.close()

    assert task.status is TaskState.DEAD_LETTERED
    assert task.attempt_count == 2
    assert task.last_error.startswith("shutdown during retry")


async def test_enqueue_after_close_rejected(bridge):
    await bridge.pipeline.close()

    with pytest.raises(PipelineClosed):
        bridge.pipeline.enqueue(_task("inc-10", "late"))


async def test_late_opened_after_resolved_does_not_reopen_binding(twist):
    now = [1000.0]
    bridge = Bridge(
        make_settings(binding_grace_seconds=10),
        client=twist,
        session_factory=async_session,
        sleep=no_sleep,
        clock=lambda: now[0],
    )
    bridge.pipeline.enqueue(_task("inst/0.x", "resolved", state=AlertState.RESOLVED))
    bridge.pipeline.enqueue(_task("inst/0.x", "late open", state=AlertState.OPENED))
    await bridge.pipeline.join()

    assert [body for _, body in twist.messages] == ["resolved", "late open"]
    assert bridge.bindings.get("inst/0.x").closed

    now[0] += 10_000
    assert bridge.bindings.get("inst/0.x") is None
    assert bridge.bindings.lock_count == 0
    await bridge.close()


async def test_dead_letter_log_line_stamped_when_dead_lettered(bridge, twist, caplog):
    twist.post_failures = [ClientError("bad request", 400)]
    task = _task("inc-11", "hello")
    task.created_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
    before = datetime.now(timezone.utc)

    with caplog.at_level(logging.ERROR, logger="dead_letter"):
        bridge.pipeline.enqueue(task)
        await bridge.pipeline.join()

    [record] = [r for r in caplog.records if r.name == "dead_letter"]
    line = record.getMessage()
    assert "incident_key=inc-11" in line
    stamped = datetime.fromisoformat(line.rsplit("timestamp=", 1)[1])
    assert stamped >= before - timedelta(seconds=1)

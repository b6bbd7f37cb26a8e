"""Shared test configuration; must be loaded before src modules."""

import asyncio
import os

# Override database URL before any src modules are imported.
os.environ["BRIDGE_DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest

import src.models.dead_letter  # noqa: F401
import src.models.integration  # noqa: F401
from src.bridge import Bridge
from src.config import Settings
from src.database import async_session, engine, Base
from src.delivery.task import ThreadHandle
from src.main import app


class FakeTwist:
    """In-memory Twist: records threads and comments.

    Queue exceptions on ``create_failures`` / ``post_failures`` to make the
    next calls fail; ``delay`` may return a per-message sleep.
    """

    def __init__(self) -> None:
        self.threads: list[tuple[str, str, str]] = []
        self.messages: list[tuple[str, str]] = []
        self.integration_posts: list[tuple[str, str]] = []
        self.create_failures: list[Exception] = []
        self.post_failures: list[Exception] = []
        self.post_calls = 0
        self.delay = None
        self.closed = False

    async def create_thread(self, channel_id: str, title: str, content: str) -> ThreadHandle:
        if self.create_failures:
            raise self.create_failures.pop(0)
        self.threads.append((channel_id, title, content))
        return ThreadHandle(channel_id=channel_id, thread_id=f"t{len(self.threads)}")

    async def post_message(self, handle: ThreadHandle, body: str) -> None:
        self.post_calls += 1
        if self.delay is not None:
            await asyncio.sleep(self.delay(body))
        if self.post_failures:
            raise self.post_failures.pop(0)
        self.messages.append((handle.thread_id, body))

    async def post_to_integration(self, post_data_url: str, content: str) -> None:
        self.integration_posts.append((post_data_url, content))

    async def close(self) -> None:
        self.closed = True


async def no_sleep(_delay: float) -> None:
    await asyncio.sleep(0)


def make_settings(**overrides) -> Settings:
    values = {
        "retry_base_delay": 0.0,
        "retry_max_delay": 0.0,
        "retry_jitter": 0.0,
        "twist_default_channel_id": "chan-default",
        "worker_pool_size": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def twist() -> FakeTwist:
    return FakeTwist()


@pytest.fixture
async def bridge(twist):
    """A started Bridge wired to FakeTwist and installed on the app."""
    b = Bridge(make_settings(), client=twist, session_factory=async_session, sleep=no_sleep)
    b.start()
    app.state.bridge = b
    yield b
    await b.close()
    del app.state.bridge

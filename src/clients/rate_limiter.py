"""Client-side throttle for the Twist API.

Twist limits requests per token. Calls pass through a burst bucket and a
sustained bucket, and a 429 with ``Retry-After`` holds back every call made
through the same limiter until the server's window has passed, not just the
one that was rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Holds up to ``capacity`` tokens, refilled at ``rate`` per second."""

    def __init__(self, rate: float, capacity: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self._clock = clock
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self._last_refill) * self.rate)
        self._last_refill = now

    def take(self) -> bool:
        self._refill()
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    def give_back(self) -> None:
        self.tokens = min(self.capacity, self.tokens + 1.0)

    def wait_time(self) -> float:
        self._refill()
        return max(0.0, (1.0 - self.tokens) / self.rate)

    def drain(self) -> None:
        self._refill()
        self.tokens = 0.0


class RateLimiter:
    """Burst + sustained limiter shared by every call on one Twist token.

    ``acquire()`` waits out any server-imposed pause, then until both buckets
    have a token. ``pause(seconds)`` is called on a 429; it is capped at
    ``max_pause`` so a bogus ``Retry-After`` cannot stall the bridge.
    """

    def __init__(
        self,
        burst: int = 10,
        per_sec: int = 5,
        max_pause: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._burst = TokenBucket(float(burst), float(burst), clock)
        self._sustained = TokenBucket(float(per_sec), float(per_sec), clock)
        self._max_pause = max_pause
        self._clock = clock
        self._sleep = sleep
        self._resume_at = 0.0

    @property
    def paused_for(self) -> float:
        return max(0.0, self._resume_at - self._clock())

    def pause(self, seconds: float) -> None:
        seconds = min(max(seconds, 0.0), self._max_pause)
        resume_at = self._clock() + seconds
        if resume_at > self._resume_at:
            self._resume_at = resume_at
            # the server's window is spent; start it again from empty
            self._burst.drain()
            self._sustained.drain()
            logger.warning("Twist asked us to back off; holding requests for %.1fs", seconds)

    async def acquire(self) -> None:
        while True:
            wait = self.paused_for
            if not wait:
                if self._burst.take():
                    if self._sustained.take():
                        return
                    self._burst.give_back()
                wait = max(self._burst.wait_time(), self._sustained.wait_time())
            await self._sleep(max(wait, 0.001))

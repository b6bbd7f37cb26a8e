"""Retry policy: capped exponential backoff with jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass

from src.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    jitter: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff_base=settings.retry_base_delay,
            backoff_cap=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )


def compute_backoff_delay(attempt: int, policy: RetryPolicy, retry_after: float | None = None) -> float:
    """Delay before the attempt following ``attempt`` (1-based)."""
    attempt_index = max(1, int(attempt))
    exponential = policy.backoff_base * (2 ** (attempt_index - 1))
    jitter = random.random() * policy.jitter if policy.jitter > 0 else 0.0
    delay = exponential + jitter
    if retry_after is not None:
        delay = max(delay, retry_after)
    return max(0.0, min(policy.backoff_cap, delay))

"""Retry helpers for IO-bound operations."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

R = TypeVar("R")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration controlling retry behaviour."""

    attempts: int = 3
    base_delay: float = 0.2
    backoff: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.1


@dataclass
class RetryState:
    """Captures the state of an individual retry loop."""

    attempt: int
    last_exception: Exception | None = None
    delay: float = 0.0


def next_delay(config: RetryConfig, attempt: int) -> float:
    """Return the jittered exponential delay to wait after ``attempt``."""

    delay = min(config.base_delay * (config.backoff ** (attempt - 1)), config.max_delay)
    if config.jitter:
        delay += random.uniform(0, config.jitter)
    return delay


async def call_with_retry(
    operation: Callable[[], Awaitable[R]],
    *,
    config: RetryConfig | None = None,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    before_sleep: Callable[[RetryState], None] | None = None,
) -> R:
    """Await ``operation()`` until it succeeds or the attempts are exhausted.

    The last exception is re-raised once ``config.attempts`` calls have failed.
    """

    retry_config = config or RetryConfig()
    state = RetryState(attempt=1)

    while True:
        try:
            return await operation()
        except exceptions as exc:
            state.last_exception = exc
            if state.attempt >= retry_config.attempts:
                raise

            state.delay = next_delay(retry_config, state.attempt)
            if before_sleep is not None:
                before_sleep(state)
            await asyncio.sleep(state.delay)
            state.attempt += 1

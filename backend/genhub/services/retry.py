"""Retry-with-backoff for idempotent operations (media download, URL fetches)."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from genhub.services.errors import is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. ``max_attempts`` counts the first try."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


def get_retry_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_delay``.

    Jitter spreads the delay by ±25% but never past the cap.
    """
    delay = config.initial_delay * (config.backoff_multiplier ** (attempt - 1))
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay = min(delay * random.uniform(0.75, 1.25), config.max_delay)
    return max(delay, 0.0)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    operation_name: str = "operation",
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    Non-retryable errors (per the error taxonomy) are re-raised immediately.
    The last error is re-raised once attempts are exhausted.
    """
    config = config or RetryConfig()
    attempts = max(config.max_attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt >= attempts or not is_retryable_error(e):
                if attempt > 1:
                    logger.error(
                        "%s failed after %d/%d attempts: %s",
                        operation_name, attempt, attempts, e,
                    )
                raise
            delay = get_retry_delay(attempt, config)
            logger.warning(
                "%s attempt %d/%d failed: %s, retrying in %.1fs",
                operation_name, attempt, attempts, e, delay,
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover

"""Task polling state machine shared by every poll-based adapter.

A task enters the loop in PROCESSING and leaves it exactly once:

    PROCESSING --success-------------------> SUCCESS
    PROCESSING --failed--------------------> FAILED
    PROCESSING --processing|unknown|error--> PROCESSING (sleep, re-check)
    PROCESSING --deadline------------------> FAILED (synthetic timeout)

The deadline is a wall-clock bound enforced by ``asyncio.wait_for``; the
provider-side job is never cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from genhub.schemas.generation import TaskStatus, TaskStatusResponse

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
StatusCheck = Callable[[str], Awaitable[TaskStatusResponse]]

POLL_TIMEOUT_MESSAGE = "Task polling timeout"
MAX_BACKOFF_INTERVAL = 300.0
BACKOFF_FACTOR = 1.5


# ---------------------------------------------------------------------------
# Provider status normalisation
# ---------------------------------------------------------------------------

_SUCCESS_STATES = frozenset({
    "success", "succeeded", "succeed", "finished", "completed", "complete", "done", "ok",
})
_PROCESSING_STATES = frozenset({
    "pending", "processing", "running", "queued", "submitted", "waiting",
    "starting", "in_progress", "generating", "not_start",
})
_FAILED_STATES = frozenset({
    "failed", "failure", "fail", "error", "timeout", "canceled", "cancelled",
    "rejected", "create_task_failed", "generate_failed",
})


def normalize_task_state(raw: Any) -> TaskStatus:
    """Map a provider status string to SUCCESS / PROCESSING / FAILED.

    Unrecognised values are treated as PROCESSING so the poller keeps going
    until the deadline rather than failing a task that may still finish.
    """
    value = str(raw or "").strip().lower()
    if value in _SUCCESS_STATES:
        return "SUCCESS"
    if value in _FAILED_STATES:
        return "FAILED"
    if value not in _PROCESSING_STATES:
        logger.debug("Unrecognised task status %r, treating as PROCESSING", raw)
    return "PROCESSING"


def parse_progress(raw: Any) -> float | None:
    """Parse ``0.42``, ``"0.42"``, ``42`` or ``"42%"`` into a 0..1 fraction."""
    if raw is None or raw == "":
        return None
    text = str(raw).strip()
    percent = text.endswith("%")
    try:
        value = float(text.rstrip("%").strip())
    except ValueError:
        return None
    if percent or value > 1.0:
        value /= 100.0
    return min(max(value, 0.0), 1.0)


# ---------------------------------------------------------------------------
# Poll loop
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PollOptions:
    """Deadline and cadence for one polling run (seconds)."""
    max_duration: float = 600.0
    poll_interval: float = 60.0
    exponential_backoff: bool = False


@dataclass
class PollOutcome:
    """Terminal status plus observability counters."""
    result: TaskStatusResponse
    attempts: int
    elapsed: float
    timed_out: bool = False


def next_interval(attempt: int, options: PollOptions) -> float:
    """Sleep after the ``attempt``-th PROCESSING check (1-based)."""
    if not options.exponential_backoff:
        return options.poll_interval
    return min(
        options.poll_interval * (BACKOFF_FACTOR ** (attempt - 1)),
        MAX_BACKOFF_INTERVAL,
    )


class TaskPoller:
    """Polls a status-check callable until the task is terminal or the deadline passes."""

    def __init__(self, sleep: SleepFn = asyncio.sleep) -> None:
        self._sleep = sleep

    async def poll(
        self,
        check_status: StatusCheck,
        task_id: str,
        options: PollOptions | None = None,
    ) -> PollOutcome:
        options = options or PollOptions()
        start = time.monotonic()
        counter = {"attempts": 0}

        logger.info(
            "Polling task %s (max %.0fs, every %.0fs%s)",
            task_id, options.max_duration, options.poll_interval,
            ", backoff" if options.exponential_backoff else "",
        )

        try:
            result = await asyncio.wait_for(
                self._loop(check_status, task_id, options, counter),
                timeout=options.max_duration,
            )
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start
            logger.warning(
                "Task %s polling timed out after %.1fs (%d checks)",
                task_id, elapsed, counter["attempts"],
            )
            return PollOutcome(
                result=TaskStatusResponse(status="FAILED", error=POLL_TIMEOUT_MESSAGE),
                attempts=counter["attempts"],
                elapsed=elapsed,
                timed_out=True,
            )

        elapsed = time.monotonic() - start
        logger.info(
            "Task %s finished %s after %d checks in %.1fs",
            task_id, result.status, counter["attempts"], elapsed,
        )
        return PollOutcome(result=result, attempts=counter["attempts"], elapsed=elapsed)

    async def _loop(
        self,
        check_status: StatusCheck,
        task_id: str,
        options: PollOptions,
        counter: dict[str, int],
    ) -> TaskStatusResponse:
        while True:
            counter["attempts"] += 1
            attempt = counter["attempts"]
            try:
                status = await check_status(task_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Transient: a failed check never ends the task by itself
                logger.warning("Task %s status check %d failed: %s", task_id, attempt, e)
                await self._sleep(options.poll_interval)
                continue

            if status.status in ("SUCCESS", "FAILED"):
                return status

            delay = next_interval(attempt, options)
            logger.debug(
                "Task %s still processing (check %d, progress=%s), next check in %.1fs",
                task_id, attempt, status.progress, delay,
            )
            await self._sleep(delay)

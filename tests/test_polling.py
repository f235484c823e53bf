from __future__ import annotations

import asyncio
import time

import pytest

from conftest import RecordingSleep
from genhub.schemas.generation import TaskStatusResponse
from genhub.services.polling import (
    MAX_BACKOFF_INTERVAL,
    POLL_TIMEOUT_MESSAGE,
    PollOptions,
    TaskPoller,
    next_interval,
    normalize_task_state,
    parse_progress,
)


def scripted(*statuses):
    """Status check returning each item in turn; exceptions are raised."""
    queue = list(statuses)
    calls = []

    async def check(task_id: str) -> TaskStatusResponse:
        calls.append(task_id)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    check.calls = calls
    return check


PROCESSING = TaskStatusResponse(status="PROCESSING")
DONE = TaskStatusResponse(status="SUCCESS", output=["https://cdn.test/out.png"])


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [
    ("SUCCEEDED", "SUCCESS"),
    ("completed", "SUCCESS"),
    ("succeed", "SUCCESS"),
    ("FAILURE", "FAILED"),
    ("canceled", "FAILED"),
    ("GENERATE_FAILED", "FAILED"),
    ("IN_PROGRESS", "PROCESSING"),
    ("queued", "PROCESSING"),
    ("something-new", "PROCESSING"),
    (None, "PROCESSING"),
])
def test_normalize_task_state(raw, expected):
    assert normalize_task_state(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("0.42", 0.42),
    (0.42, 0.42),
    ("45%", 0.45),
    (80, 0.8),
    ("250%", 1.0),
    (-3, 0.0),
])
def test_parse_progress(raw, expected):
    assert parse_progress(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["n/a", "", None])
def test_parse_progress_unparseable(raw):
    assert parse_progress(raw) is None


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_poll_sleeps_between_processing_checks(poller: TaskPoller, sleep: RecordingSleep):
    check = scripted(PROCESSING, PROCESSING, DONE)

    outcome = await poller.poll(check, "task-1", PollOptions(max_duration=600, poll_interval=20))

    assert outcome.result.status == "SUCCESS"
    assert outcome.result.output == ["https://cdn.test/out.png"]
    assert outcome.attempts == 3
    assert not outcome.timed_out
    assert check.calls == ["task-1"] * 3
    assert sleep.calls == [20, 20]


@pytest.mark.asyncio
async def test_poll_elapsed_covers_real_sleeps():
    interval = 0.1
    sleeps = []

    async def timed_sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(delay)

    outcome = await TaskPoller(sleep=timed_sleep).poll(
        scripted(PROCESSING, PROCESSING, DONE), "task-1", PollOptions(max_duration=5, poll_interval=interval)
    )

    assert outcome.result.status == "SUCCESS"
    assert len(sleeps) == 2
    # Loop timers may fire up to one clock tick early
    assert outcome.elapsed >= 2 * interval - 0.005
    assert outcome.elapsed < 2


@pytest.mark.asyncio
async def test_first_check_happens_before_any_sleep(poller: TaskPoller, sleep: RecordingSleep):
    outcome = await poller.poll(scripted(DONE), "task-1", PollOptions(poll_interval=60))
    assert outcome.attempts == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_failed_status_ends_the_loop(poller: TaskPoller):
    failed = TaskStatusResponse(status="FAILED", error="content policy")
    outcome = await poller.poll(scripted(PROCESSING, failed), "task-1", PollOptions(poll_interval=1))
    assert outcome.result.status == "FAILED"
    assert outcome.result.error == "content policy"
    assert not outcome.timed_out


@pytest.mark.asyncio
async def test_check_errors_are_transient(poller: TaskPoller, sleep: RecordingSleep):
    check = scripted(RuntimeError("connection reset"), ValueError("bad json"), DONE)
    outcome = await poller.poll(check, "task-1", PollOptions(poll_interval=15))
    assert outcome.result.status == "SUCCESS"
    assert outcome.attempts == 3
    assert sleep.calls == [15, 15]


@pytest.mark.asyncio
async def test_deadline_yields_synthetic_timeout():
    poller = TaskPoller()  # real sleep
    start = time.monotonic()

    outcome = await poller.poll(scripted(PROCESSING), "task-1", PollOptions(max_duration=0.2, poll_interval=5))

    assert time.monotonic() - start < 2
    assert outcome.timed_out
    assert outcome.result.status == "FAILED"
    assert outcome.result.error == POLL_TIMEOUT_MESSAGE
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_cancellation_propagates():
    async def check(task_id: str) -> TaskStatusResponse:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await TaskPoller().poll(check, "task-1", PollOptions(max_duration=5, poll_interval=1))


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

def test_fixed_interval_without_backoff():
    options = PollOptions(poll_interval=30)
    assert [next_interval(n, options) for n in (1, 2, 5)] == [30, 30, 30]


def test_backoff_grows_and_caps():
    options = PollOptions(poll_interval=60, exponential_backoff=True)
    assert next_interval(1, options) == 60
    assert next_interval(2, options) == pytest.approx(90)
    assert next_interval(3, options) == pytest.approx(135)
    assert next_interval(10, options) == MAX_BACKOFF_INTERVAL


@pytest.mark.asyncio
async def test_poll_uses_backoff_schedule(poller: TaskPoller, sleep: RecordingSleep):
    options = PollOptions(poll_interval=10, exponential_backoff=True)
    await poller.poll(scripted(PROCESSING, PROCESSING, PROCESSING, DONE), "task-1", options)
    assert sleep.calls == pytest.approx([10, 15, 22.5])

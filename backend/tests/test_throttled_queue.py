import asyncio
from datetime import date

import httpx
import pytest
from unittest.mock import MagicMock

from transcript_hub.services.throttled_queue import (
    QueueClosedError,
    QueuePolicy,
    QuotaExhaustedError,
    RateLimitError,
    ThrottleRetriesExhausted,
    ThrottledTaskQueue,
    is_daily_quota_error,
    is_throttle_error,
)


PER_MINUTE_429_BODY = (
    "Gemini returned 429 Too Many Requests: {\"error\": {\"code\": 429, \"message\": \"You exceeded your current quota, "
    "please check your plan and billing details.\", \"status\": \"RESOURCE_EXHAUSTED\", \"details\": [{\"violations\": "
    "[{\"quotaMetric\": \"generativelanguage.googleapis.com/generate_content_free_tier_requests\", "
    "\"quotaId\": \"GenerateRequestsPerMinutePerProjectPerModel-FreeTier\"}]}]}}"
)
DAILY_429_BODY = PER_MINUTE_429_BODY.replace("PerMinute", "PerDay")


class FakeClock:
    """Virtual time: sleeping advances the clock instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_queue(clock: FakeClock, **policy) -> ThrottledTaskQueue:
    return ThrottledTaskQueue(QueuePolicy(**policy), clock=clock, sleep=clock.sleep)


def recording_task(name, log, clock, result=None, errors=None):
    """Task that logs (name, time) on each dispatch and raises queued errors first."""
    errors = list(errors or [])

    async def task():
        log.append((name, clock.now))
        if errors:
            raise errors.pop(0)
        return result if result is not None else name

    return task


# --- Throttle detection ---

def test_is_throttle_error_variants():
    assert is_throttle_error(RateLimitError())
    assert is_throttle_error(RuntimeError("HTTP 429 from upstream"))
    assert is_throttle_error(RuntimeError("Too Many Requests"))
    assert is_throttle_error(RuntimeError("You hit the rate limit"))
    response = httpx.Response(429, request=httpx.Request("POST", "http://llm"))
    assert is_throttle_error(httpx.HTTPStatusError("boom", request=response.request, response=response))
    assert not is_throttle_error(ValueError("bad input"))


def test_is_daily_quota_error():
    assert is_daily_quota_error(RuntimeError("limit: 1000 requests per day"))
    assert is_daily_quota_error(RuntimeError(DAILY_429_BODY))
    assert not is_daily_quota_error(RuntimeError("429 Too Many Requests"))
    assert not is_daily_quota_error(RuntimeError(PER_MINUTE_429_BODY))
    assert is_throttle_error(RuntimeError(PER_MINUTE_429_BODY))


def test_policy_validation():
    with pytest.raises(ValueError):
        QueuePolicy(max_requests=0)
    with pytest.raises(ValueError):
        QueuePolicy(request_delay=0)


def test_policy_from_settings():
    settings = MagicMock(
        TITLE_QUEUE_MAX_REQUESTS=10,
        TITLE_QUEUE_WINDOW_SECONDS=30.0,
        TITLE_QUEUE_REQUEST_DELAY_SECONDS=2.0,
        TITLE_QUEUE_THROTTLE_BACKOFF_SECONDS=5.0,
        TITLE_QUEUE_MAX_THROTTLE_RETRIES=None,
        TITLE_QUEUE_MAX_REQUESTS_PER_DAY=500,
    )
    policy = QueuePolicy.from_settings(settings)
    assert policy == QueuePolicy(10, 30.0, 2.0, 5.0, None, 500)


# --- Ordering and results ---

@pytest.mark.asyncio
async def test_results_delivered_in_fifo_order():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    futures = [queue.enqueue(recording_task(n, log, clock)) for n in "ABC"]
    results = await asyncio.gather(*futures)

    assert results == ["A", "B", "C"]
    assert [name for name, _ in log] == ["A", "B", "C"]
    # spacing only between tasks, not after the last one
    assert clock.sleeps == [4.0, 4.0]
    assert queue.is_idle


@pytest.mark.asyncio
async def test_throttled_task_retried_before_later_tasks():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    futures = [
        queue.enqueue(recording_task("A", log, clock, errors=[RateLimitError()])),
        queue.enqueue(recording_task("B", log, clock)),
        queue.enqueue(recording_task("C", log, clock)),
    ]
    assert await asyncio.gather(*futures) == ["A", "B", "C"]
    assert [name for name, _ in log] == ["A", "A", "B", "C"]
    assert clock.sleeps[0] == 10.0


@pytest.mark.asyncio
async def test_third_of_five_throttled_with_429_scenario():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    tasks = [
        recording_task(i, log, clock, errors=[RuntimeError("429 Too Many Requests")] if i == 3 else None)
        for i in range(1, 6)
    ]
    futures = [queue.enqueue(t) for t in tasks]
    assert await asyncio.gather(*futures) == [1, 2, 3, 4, 5]

    assert [name for name, _ in log] == [1, 2, 3, 3, 4, 5]
    first_try, retry = [t for name, t in log if name == 3]
    assert retry - first_try >= 10.0
    retry_index = [n for n, _ in log].index(3) + 1
    assert all(name in (4, 5) for name, _ in log[retry_index + 1:])
    assert queue.get_status().throttle_retries == 1


@pytest.mark.asyncio
async def test_non_throttle_error_is_terminal():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []
    calls = []

    async def failing():
        calls.append(clock.now)
        raise ValueError("bad transcript")

    failed = queue.enqueue(failing)
    ok = queue.enqueue(recording_task("next", log, clock))

    with pytest.raises(ValueError, match="bad transcript"):
        await failed
    assert await ok == "next"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_enqueue_while_draining_does_not_duplicate_dispatch():
    clock = FakeClock()
    queue = make_queue(clock)
    dispatched = []
    release = asyncio.Event()

    async def slow():
        dispatched.append("slow")
        await release.wait()
        return "slow"

    first = queue.enqueue(slow)
    await asyncio.sleep(0)
    assert queue.get_status().is_draining

    async def fast():
        dispatched.append("fast")
        return "fast"

    second = queue.enqueue(fast)
    third = queue.enqueue(fast)
    release.set()

    assert await asyncio.gather(first, second, third) == ["slow", "fast", "fast"]
    assert dispatched == ["slow", "fast", "fast"]


@pytest.mark.asyncio
async def test_drain_restarts_after_queue_empties():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    assert await queue.enqueue(recording_task("first", log, clock)) == "first"
    await queue.join()
    assert queue.is_idle
    assert await queue.enqueue(recording_task("second", log, clock)) == "second"


# --- Rolling window ---

@pytest.mark.asyncio
async def test_sixteenth_task_waits_for_window():
    clock = FakeClock()
    queue = make_queue(clock, max_requests=15, window_seconds=60, request_delay=1)
    log = []

    futures = [queue.enqueue(recording_task(i, log, clock)) for i in range(16)]
    await asyncio.gather(*futures)

    times = [t for _, t in log]
    assert times[15] >= times[0] + 60
    for t in times:
        in_window = [x for x in times if t - 60 < x <= t]
        assert len(in_window) <= 15


@pytest.mark.asyncio
async def test_window_never_exceeded_with_throttling():
    clock = FakeClock()
    queue = make_queue(clock, max_requests=3, window_seconds=10, request_delay=0.5, throttle_backoff=0.5)
    log = []

    futures = [
        queue.enqueue(recording_task(i, log, clock, errors=[RateLimitError()] if i % 2 else None))
        for i in range(8)
    ]
    await asyncio.gather(*futures)

    times = [t for _, t in log]
    assert len(times) == 12
    for t in times:
        assert len([x for x in times if t - 10 < x <= t]) <= 3


@pytest.mark.asyncio
async def test_status_snapshot_is_non_mutating():
    clock = FakeClock()
    queue = make_queue(clock, max_requests=2, window_seconds=60)
    log = []

    await asyncio.gather(*(queue.enqueue(recording_task(i, log, clock)) for i in range(2)))
    status = queue.get_status()
    assert status.pending_count == 0
    assert status.is_draining is False
    assert status.requests_in_window == 2
    assert status.remaining_capacity == 0

    clock.now += 61
    status = queue.get_status()
    assert status.requests_in_window == 0
    assert status.remaining_capacity == 2
    assert status.as_dict()["policy"]["max_requests"] == 2


# --- Supplemented policy knobs ---

@pytest.mark.asyncio
async def test_throttle_retry_ceiling():
    clock = FakeClock()
    queue = make_queue(clock, max_throttle_retries=2)

    async def always_throttled():
        raise RateLimitError()

    with pytest.raises(ThrottleRetriesExhausted) as excinfo:
        await queue.enqueue(always_throttled)
    assert excinfo.value.attempts == 3
    assert clock.sleeps.count(10.0) == 2


@pytest.mark.asyncio
async def test_daily_limit_fails_remaining_tasks():
    clock = FakeClock()
    queue = ThrottledTaskQueue(
        QueuePolicy(max_requests_per_day=2), clock=clock, sleep=clock.sleep, today=lambda: date(2026, 1, 1)
    )
    log = []

    futures = [queue.enqueue(recording_task(i, log, clock)) for i in range(4)]
    results = await asyncio.gather(*futures, return_exceptions=True)

    assert results[:2] == [0, 1]
    assert all(isinstance(r, QuotaExhaustedError) for r in results[2:])
    status = queue.get_status()
    assert status.quota_exhausted is True
    assert status.daily_remaining == 0


@pytest.mark.asyncio
async def test_daily_quota_resets_on_new_day():
    clock = FakeClock()
    day = {"value": date(2026, 1, 1)}
    queue = ThrottledTaskQueue(
        QueuePolicy(max_requests_per_day=1), clock=clock, sleep=clock.sleep, today=lambda: day["value"]
    )
    log = []

    assert await queue.enqueue(recording_task("a", log, clock)) == "a"
    with pytest.raises(QuotaExhaustedError):
        await queue.enqueue(recording_task("b", log, clock))

    day["value"] = date(2026, 1, 2)
    assert await queue.enqueue(recording_task("c", log, clock)) == "c"


@pytest.mark.asyncio
async def test_daily_quota_error_from_api_is_not_retried():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    failing = queue.enqueue(
        recording_task("a", log, clock, errors=[RateLimitError(DAILY_429_BODY)])
    )
    queued = queue.enqueue(recording_task("b", log, clock))

    with pytest.raises(QuotaExhaustedError):
        await failing
    with pytest.raises(QuotaExhaustedError):
        await queued
    assert [name for name, _ in log] == ["a"]


@pytest.mark.asyncio
async def test_per_minute_quota_refusal_is_retried():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    first = queue.enqueue(recording_task("a", log, clock, errors=[RateLimitError(PER_MINUTE_429_BODY)]))
    second = queue.enqueue(recording_task("b", log, clock))

    assert await asyncio.gather(first, second) == ["a", "b"]
    assert [name for name, _ in log] == ["a", "a", "b"]
    assert clock.sleeps[0] == 10.0
    status = queue.get_status()
    assert status.quota_exhausted is False
    assert status.throttle_retries == 1

    # later tasks on the same day still run
    assert await queue.enqueue(recording_task("c", log, clock)) == "c"


@pytest.mark.asyncio
async def test_retry_after_stretches_backoff():
    clock = FakeClock()
    queue = make_queue(clock)
    log = []

    result = await queue.enqueue(
        recording_task("a", log, clock, errors=[RateLimitError(retry_after=25), RateLimitError(retry_after=3)])
    )

    assert result == "a"
    # the longer of the server hint and the configured backoff wins
    assert clock.sleeps == [25, 10.0]
    first, second, third = [t for _, t in log]
    assert second - first == 25
    assert third - second == 10


@pytest.mark.asyncio
async def test_status_read_on_new_day_does_not_reset_counters():
    clock = FakeClock()
    day = {"value": date(2026, 1, 1)}
    queue = ThrottledTaskQueue(
        QueuePolicy(max_requests_per_day=1), clock=clock, sleep=clock.sleep, today=lambda: day["value"]
    )
    log = []

    assert await queue.enqueue(recording_task("a", log, clock)) == "a"
    assert queue.get_status().daily_remaining == 0

    day["value"] = date(2026, 1, 2)
    status = queue.get_status()
    assert status.daily_usage == 0
    assert status.daily_remaining == 1
    assert status.quota_exhausted is False

    # the snapshot left the stored counters untouched
    assert queue._day == date(2026, 1, 1)
    assert queue._daily_count == 1


@pytest.mark.asyncio
async def test_close_fails_pending_tasks():
    clock = FakeClock()
    queue = make_queue(clock)
    started = asyncio.Event()

    async def blocking():
        started.set()
        await asyncio.Event().wait()

    running = queue.enqueue(blocking)
    waiting = queue.enqueue(blocking)
    await started.wait()
    await queue.close()

    for fut in (running, waiting):
        with pytest.raises(QueueClosedError):
            await fut
    with pytest.raises(QueueClosedError):
        queue.enqueue(blocking)

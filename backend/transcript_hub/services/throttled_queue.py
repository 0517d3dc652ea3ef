"""Rate-limited asynchronous task queue for calls to a throttled external API.

Every title-generation request goes through one :class:`ThrottledTaskQueue`
so that otherwise uncoordinated callers (webhooks, batch endpoints, the resync
worker) share a single request quota:

* tasks run one at a time, in submission order;
* at most ``max_requests`` dispatch attempts happen in any rolling window of
  ``window_seconds``;
* a task that fails with a throttle error is put back at the *head* of the
  queue and retried after ``throttle_backoff`` seconds;
* any other failure is handed to the caller untouched.

Scheduling is cooperative (asyncio).  The pending list and the timestamp
window are only touched from the event loop thread, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Deque, Optional

import httpx

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]

THROTTLE_MARKERS = ("429", "too many requests", "rate limit", "quota")
# Gemini words per-minute and per-day refusals alike ("You exceeded your
# current quota"); only the quota id / limit name tells them apart.
DAILY_QUOTA_MARKERS = ("per day", "perday")


class RateLimitError(Exception):
    """Raised by API clients when the remote side refuses with a throttle response."""

    def __init__(self, message: str = "Too Many Requests", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExhaustedError(Exception):
    """The daily request budget is spent; no further dispatches until tomorrow."""


class ThrottleRetriesExhausted(Exception):
    """A task kept being throttled beyond ``max_throttle_retries``."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Still throttled after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class QueueClosedError(Exception):
    """The queue was closed before the task could run."""


def is_throttle_error(exc: BaseException) -> bool:
    """Return ``True`` if *exc* looks like a rate-limit refusal from the remote API."""
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        if exc.response.status_code == 429:
            return True
    text = str(exc).lower()
    return any(marker in text for marker in THROTTLE_MARKERS)


def is_daily_quota_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in DAILY_QUOTA_MARKERS)


@dataclass(frozen=True)
class QueuePolicy:
    """Rate-limit policy. Defaults match the Gemini free tier."""

    max_requests: int = 15
    window_seconds: float = 60.0
    request_delay: float = 4.0
    throttle_backoff: float = 10.0
    max_throttle_retries: Optional[int] = None
    max_requests_per_day: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.request_delay <= 0:
            # the capacity wait re-checks every request_delay seconds
            raise ValueError("request_delay must be positive")
        if self.throttle_backoff < 0:
            raise ValueError("throttle_backoff must not be negative")

    @classmethod
    def from_settings(cls, settings) -> "QueuePolicy":
        return cls(
            max_requests=settings.TITLE_QUEUE_MAX_REQUESTS,
            window_seconds=settings.TITLE_QUEUE_WINDOW_SECONDS,
            request_delay=settings.TITLE_QUEUE_REQUEST_DELAY_SECONDS,
            throttle_backoff=settings.TITLE_QUEUE_THROTTLE_BACKOFF_SECONDS,
            max_throttle_retries=settings.TITLE_QUEUE_MAX_THROTTLE_RETRIES,
            max_requests_per_day=settings.TITLE_QUEUE_MAX_REQUESTS_PER_DAY,
        )


@dataclass
class QueueEntry:
    """One pending unit of work and the future its caller is awaiting."""

    task: Task
    outcome: asyncio.Future
    throttled: int = 0

    def resolve(self, result: Any) -> None:
        if not self.outcome.done():
            self.outcome.set_result(result)

    def reject(self, exc: BaseException) -> None:
        if not self.outcome.done():
            self.outcome.set_exception(exc)


@dataclass
class QueueStatus:
    pending_count: int
    is_draining: bool
    requests_in_window: int
    remaining_capacity: int
    daily_usage: int = 0
    daily_remaining: Optional[int] = None
    quota_exhausted: bool = False
    throttle_retries: int = 0
    policy: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return asdict(self)


class ThrottledTaskQueue:
    """Serialises awaitable tasks against one external request quota.

    ``clock``, ``sleep`` and ``today`` are injectable so tests can run the
    queue on virtual time.
    """

    def __init__(
        self,
        policy: QueuePolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
        throttle_check: Callable[[BaseException], bool] = is_throttle_error,
    ) -> None:
        self.policy = policy or QueuePolicy()
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._throttle_check = throttle_check

        self._pending: Deque[QueueEntry] = deque()
        self._timestamps: Deque[float] = deque()
        self._current: QueueEntry | None = None
        self._drain_task: asyncio.Task | None = None
        self._draining = False
        self._closed = False

        self._day = today()
        self._daily_count = 0
        self._quota_exhausted = False
        self._throttle_retries = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, task: Task) -> asyncio.Future:
        """Queue *task* and return a future for its result.

        Must be called from inside a running event loop.
        """
        if self._closed:
            raise QueueClosedError("Queue is closed")
        loop = asyncio.get_running_loop()
        entry = QueueEntry(task=task, outcome=loop.create_future())
        self._pending.append(entry)
        logger.debug("Task queued (%d pending)", len(self._pending))
        if not self._draining:
            self._draining = True
            self._drain_task = loop.create_task(self._drain())
        return entry.outcome

    def get_status(self) -> QueueStatus:
        """Snapshot for observability.

        Read-only: neither the timestamp window nor the daily counters are
        touched. A day rollover is reflected in the returned values only; the
        drain loop performs the actual reset.
        """
        cutoff = self._clock() - self.policy.window_seconds
        in_window = sum(1 for ts in self._timestamps if ts > cutoff)
        new_day = self._today() != self._day
        daily_count = 0 if new_day else self._daily_count
        daily_limit = self.policy.max_requests_per_day
        return QueueStatus(
            pending_count=len(self._pending),
            is_draining=self._draining,
            requests_in_window=in_window,
            remaining_capacity=max(self.policy.max_requests - in_window, 0),
            daily_usage=daily_count,
            daily_remaining=None if daily_limit is None else max(daily_limit - daily_count, 0),
            quota_exhausted=False if new_day else self._quota_exhausted,
            throttle_retries=self._throttle_retries,
            policy=asdict(self.policy),
        )

    @property
    def is_idle(self) -> bool:
        return not self._pending and not self._draining

    async def join(self) -> None:
        """Wait until the current drain (if any) has finished."""
        while self._drain_task is not None:
            await asyncio.shield(self._drain_task)

    async def close(self) -> None:
        """Stop draining and fail every pending task with :class:`QueueClosedError`."""
        self._closed = True
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        error = QueueClosedError("Queue closed before the task could run")
        if self._current is not None:
            self._current.reject(error)
            self._current = None
        self._fail_pending(error)

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    def remaining_capacity(self) -> int:
        """Drop timestamps that left the window and return the free slots."""
        cutoff = self._clock() - self.policy.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
        return self.policy.max_requests - len(self._timestamps)

    async def _drain(self) -> None:
        logger.debug("Queue drain started")
        try:
            while self._pending:
                self._check_daily_reset()
                if self._daily_limit_reached():
                    self._quota_exhausted = True
                if self._quota_exhausted:
                    logger.warning(
                        "Daily quota exhausted (%d requests). Failing %d queued tasks.",
                        self._daily_count,
                        len(self._pending),
                    )
                    self._fail_pending(QuotaExhaustedError("Daily request quota exhausted"))
                    break

                if self.remaining_capacity() <= 0:
                    await self._sleep(self.policy.request_delay)
                    continue

                entry = self._pending.popleft()
                if entry.outcome.done():
                    # caller cancelled while waiting
                    continue

                self._timestamps.append(self._clock())
                self._daily_count += 1
                self._current = entry
                try:
                    result = await entry.task()
                except Exception as exc:
                    self._current = None
                    await self._handle_failure(entry, exc)
                    continue

                self._current = None
                entry.resolve(result)
                if self._pending:
                    await self._sleep(self.policy.request_delay)
        finally:
            self._draining = False
            self._drain_task = None
            logger.debug("Queue drain finished")

    async def _handle_failure(self, entry: QueueEntry, exc: Exception) -> None:
        if is_daily_quota_error(exc):
            logger.warning("Daily quota error from remote API: %s", exc)
            self._quota_exhausted = True
            entry.reject(QuotaExhaustedError(str(exc)))
            return

        if not self._throttle_check(exc):
            logger.error("Queued task failed: %s", exc)
            entry.reject(exc)
            return

        entry.throttled += 1
        limit = self.policy.max_throttle_retries
        if limit is not None and entry.throttled > limit:
            logger.error("Giving up on task after %d throttled attempts", entry.throttled)
            entry.reject(ThrottleRetriesExhausted(entry.throttled, exc))
            return

        self._throttle_retries += 1
        logger.warning(
            "Rate limited (attempt %d). Retrying in %ss: %s",
            entry.throttled,
            self._backoff_for(exc),
            exc,
        )
        self._pending.appendleft(entry)
        await self._sleep(self._backoff_for(exc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _backoff_for(self, exc: BaseException) -> float:
        """Fixed backoff, stretched to the server's ``Retry-After`` when it asks for longer."""
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is None:
            return self.policy.throttle_backoff
        return max(self.policy.throttle_backoff, retry_after)

    def _check_daily_reset(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info("New day detected. Resetting daily quota (previous usage: %d)", self._daily_count)
            self._day = today
            self._daily_count = 0
            self._quota_exhausted = False

    def _daily_limit_reached(self) -> bool:
        limit = self.policy.max_requests_per_day
        return limit is not None and self._daily_count >= limit

    def _fail_pending(self, exc: BaseException) -> None:
        while self._pending:
            self._pending.popleft().reject(exc)

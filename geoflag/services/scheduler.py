"""
RequestScheduler - Paced, concurrency-limited dispatch of lookups.

When several callers ask for the same handle while it is queued or being
fetched, they all share one future and only one upstream request is made.

Per-handle states:
- UNQUEUED: not known to the scheduler
- QUEUED: waiting in the FIFO queue
- DISPATCHED: fetch executor running
- RESOLVED / FAILED: outcome delivered, handle leaves the in-flight set
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger

from geoflag.services.cache import LocationCache
from geoflag.services.errors import QueueFullError
from geoflag.services.fetcher import FetchExecutor, FetchOutcome, OutcomeKind
from geoflag.services.rate_limit import RateLimitMonitor


class HandleState(str, Enum):
    """Lifecycle of one handle inside the scheduler."""

    UNQUEUED = "UNQUEUED"
    QUEUED = "QUEUED"
    DISPATCHED = "DISPATCHED"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"


@dataclass
class SchedulerConfig:
    """Pacing and concurrency limits."""

    max_concurrent: int = 2
    min_request_interval: float = 2.0  # seconds between dispatch starts
    max_recheck_interval: float = 60.0  # cap on paused re-check timer
    max_queue_size: int = 1000


class RequestScheduler:
    """
    Owns the request queue and the single dispatch loop.

    Usage:
        scheduler = RequestScheduler(executor, cache, monitor)
        location = await scheduler.enqueue("alice")
    """

    def __init__(
        self,
        executor: FetchExecutor,
        cache: LocationCache,
        monitor: RateLimitMonitor,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._executor = executor
        self._cache = cache
        self._monitor = monitor
        self.config = config or SchedulerConfig()
        self._clock = clock
        self._debug = debug

        self._queue: deque[str] = deque()
        self._in_flight: dict[str, asyncio.Future[str | None]] = {}
        self._states: dict[str, HandleState] = {}
        self._tasks: set[asyncio.Task[None]] = set()

        self._active = 0
        self._processing = False
        self._last_dispatch_at: float | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._recheck: asyncio.TimerHandle | None = None
        self._closed = False
        self._stats = SchedulerStats()

    def enqueue(self, handle: str) -> "asyncio.Future[str | None]":
        """
        Queue a lookup, or attach to the one already in flight.

        Raises:
            QueueFullError: If the queue is at its ceiling
        """
        if self._closed:
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
            return future

        existing = self._in_flight.get(handle)
        if existing is not None:
            self._stats.coalesced += 1
            self._log(f"COALESCE: {handle} already {self.state(handle).value}")
            return existing

        if len(self._queue) >= self.config.max_queue_size:
            self._stats.rejected += 1
            raise QueueFullError(handle, self.config.max_queue_size)

        future: asyncio.Future[str | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._in_flight[handle] = future
        self._states[handle] = HandleState.QUEUED
        self._queue.append(handle)
        self._stats.enqueued += 1
        self._log(f"QUEUED: {handle} (queue length {len(self._queue)})")

        self._kick()
        return future

    def state(self, handle: str) -> HandleState:
        return self._states.get(handle, HandleState.UNQUEUED)

    @property
    def active(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def _kick(self) -> None:
        """Start the dispatch loop unless it is already running."""
        if self._closed or self._processing or not self._queue:
            return
        self._processing = True
        self._loop_task = asyncio.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        try:
            while self._queue and self._active < self.config.max_concurrent:
                if self._monitor.is_paused():
                    self._schedule_recheck()
                    return

                if self._last_dispatch_at is not None:
                    elapsed = self._clock() - self._last_dispatch_at
                    if elapsed < self.config.min_request_interval:
                        await asyncio.sleep(self.config.min_request_interval - elapsed)
                        # A 429 may have arrived while we were pacing
                        continue

                handle = self._queue.popleft()
                self._dispatch(handle)
        finally:
            self._processing = False

    def _schedule_recheck(self) -> None:
        """Re-arm the single paused re-check timer."""
        delay = min(self._monitor.remaining(), self.config.max_recheck_interval)
        logger.info(
            f"Rate limited, {len(self._queue)} requests waiting; "
            f"re-checking in {delay:.1f}s"
        )
        if self._recheck is not None:
            self._recheck.cancel()
        self._recheck = asyncio.get_running_loop().call_later(delay, self._on_recheck)

    def _on_recheck(self) -> None:
        self._recheck = None
        self._kick()

    def _dispatch(self, handle: str) -> None:
        self._active += 1
        self._last_dispatch_at = self._clock()
        self._states[handle] = HandleState.DISPATCHED
        self._stats.dispatched += 1
        self._stats.peak_active = max(self._stats.peak_active, self._active)
        self._log(f"DISPATCH: {handle} (active {self._active})")

        task = asyncio.create_task(self._run(handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, handle: str) -> None:
        try:
            outcome = await self._executor.attempt(handle)
        except asyncio.CancelledError:
            self._active -= 1
            self._finish(handle, None, HandleState.FAILED)
            raise
        except Exception as e:
            logger.error(f"Unexpected error resolving {handle}: {e}")
            outcome = FetchOutcome.permanent(handle, str(e))

        self._active -= 1
        self._complete(handle, outcome)
        self._kick()

    def _complete(self, handle: str, outcome: FetchOutcome) -> None:
        if outcome.kind == OutcomeKind.RESOLVED:
            self._cache.record(handle, outcome.location)
            self._stats.resolved += 1
            self._finish(handle, outcome.location, HandleState.RESOLVED)
            return

        if outcome.kind == OutcomeKind.RATE_LIMITED:
            self._stats.rate_limited += 1
            logger.info(f"Not caching result for {handle} due to rate limit")
            self._monitor.observe(outcome.reset_at)
        else:
            self._stats.failed += 1
            self._log(f"FAILED: {handle} ({outcome.kind.value}: {outcome.reason})")

        self._finish(handle, None, HandleState.FAILED)

    def _finish(self, handle: str, location: str | None, state: HandleState) -> None:
        """Fulfil every waiter, then release the handle."""
        self._states[handle] = state
        future = self._in_flight.get(handle)
        if future is not None and not future.done():
            future.set_result(location)
        self._in_flight.pop(handle, None)
        self._states.pop(handle, None)

    async def close(self) -> None:
        """Stop dispatching and release every waiter with None."""
        self._closed = True
        if self._recheck is not None:
            self._recheck.cancel()
            self._recheck = None

        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._queue.clear()
        for handle in list(self._in_flight):
            self._finish(handle, None, HandleState.FAILED)

        logger.debug("RequestScheduler closed")

    def reopen(self) -> None:
        """Accept lookups again after ``close()``."""
        if not self._closed:
            return
        self._closed = False
        self._processing = False
        self._loop_task = None
        logger.debug("RequestScheduler reopened")

    def get_stats(self) -> "SchedulerStats":
        """Get scheduler statistics."""
        self._stats.queue_length = len(self._queue)
        self._stats.active = self._active
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RequestScheduler] {message}")


@dataclass
class SchedulerStats:
    """Statistics for request scheduling."""

    enqueued: int = 0
    coalesced: int = 0
    rejected: int = 0
    dispatched: int = 0
    resolved: int = 0
    failed: int = 0
    rate_limited: int = 0
    peak_active: int = 0
    queue_length: int = 0
    active: int = 0
    in_flight: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enqueued": self.enqueued,
            "coalesced": self.coalesced,
            "rejected": self.rejected,
            "dispatched": self.dispatched,
            "resolved": self.resolved,
            "failed": self.failed,
            "rate_limited": self.rate_limited,
            "peak_active": self.peak_active,
            "queue_length": self.queue_length,
            "active": self.active,
            "in_flight": self.in_flight,
        }

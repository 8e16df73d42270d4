from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

from .errors import QueueClearedError, ThrottleTimeoutError

logger = logging.getLogger(__name__)

MIN_RATE = 1
MAX_RATE = 20

Operation = Callable[[], Awaitable[Any]]


def clamp_rate(rate: float) -> float:
    return max(MIN_RATE, min(MAX_RATE, rate))


class RequestThrottle:
    """FIFO dispatcher that runs one operation at a time under a requests/sec budget.

    At least ``1 / rate`` seconds separate the *start* of consecutive
    operations. The rate may change at runtime; queued items are left
    untouched. This serializes work for backpressure, it never runs two
    operations concurrently."""

    def __init__(
        self,
        rate: float = 10,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rate = clamp_rate(rate)
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[Tuple[Operation, asyncio.Future, float]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._active = False
        self._last_start: Optional[float] = None
        self._idle: Optional[asyncio.Event] = None
        self._request_count = 0
        self._total_requests = 0

    @property
    def interval(self) -> float:
        return 1.0 / self._rate

    def get_rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> None:
        self._rate = clamp_rate(rate)
        logger.info("Throttle rate updated to %s req/sec", self._rate)

    def enqueue(self, operation: Operation) -> asyncio.Future:
        """Queue ``operation`` and return a future for its result.

        Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append((operation, future, self._clock()))
        self._idle_event().clear()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        try:
            while self._queue:
                if self._last_start is not None:
                    wait = self._last_start + self.interval - self._clock()
                    if wait > 0:
                        await self._sleep(wait)
                if not self._queue:
                    break
                operation, future, enqueued_at = self._queue.popleft()
                if future.done():
                    continue
                self._active = True
                self._last_start = self._clock()
                try:
                    result = await operation()
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Throttled operation failed: %s", exc)
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
                finally:
                    self._active = False
                self._request_count += 1
                self._total_requests += 1
                if self._request_count % 10 == 0:
                    logger.debug(
                        "%d requests processed (queue time %.0fms)",
                        self._request_count,
                        (self._last_start - enqueued_at) * 1000,
                    )
        finally:
            self._worker = None
            if not self._queue:
                self._idle_event().set()

    def clear(self) -> int:
        """Reject every queued, not-yet-started operation.

        The operation currently executing, if any, is not affected.
        Returns the number of rejected items."""
        rejected = 0
        while self._queue:
            _, future, _ = self._queue.popleft()
            if not future.done():
                future.set_exception(QueueClearedError("Queue cleared"))
                rejected += 1
        self._request_count = 0
        if not self._active:
            self._idle_event().set()
        logger.info("Throttle queue cleared (%d pending rejected)", rejected)
        return rejected

    def is_idle(self) -> bool:
        return not self._queue and not self._active

    async def wait_until_idle(self, timeout: float = 30.0) -> None:
        if self.is_idle():
            return
        try:
            await asyncio.wait_for(self._idle_event().wait(), timeout)
        except asyncio.TimeoutError as exc:
            raise ThrottleTimeoutError(f"Throttle not idle after {timeout}s") from exc

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            self._idle.set()
        return self._idle

    def estimate_time(self, request_count: int) -> float:
        """Seconds needed to dispatch ``request_count`` operations at the current rate."""
        return request_count * self.interval

    def stats(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "active": self._active,
            "requests_per_second": self._rate,
            "interval_secs": self.interval,
            "request_count": self._request_count,
            "total_requests": self._total_requests,
        }


def format_duration(seconds: float) -> str:
    """Render ``seconds`` as ``1h 2m``, ``3m 4s`` or ``5s``."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"

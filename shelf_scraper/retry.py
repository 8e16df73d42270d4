from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .backoff import BackoffStrategy
from .errors import (
    RETRYABLE_STATUSES,
    HttpStatusError,
    RateLimitError,
    RetriesExhaustedError,
    ScraperError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_COOLDOWN_SECS = 30.0

_NETWORK_KEYWORDS = ("network error", "timeout", "timed out", "econnreset", "enotfound", "connection reset")

RetryHook = Callable[[int, float, BaseException], Any]


def error_status(error: BaseException) -> Optional[int]:
    """Return the HTTP status an error carries, if any."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limit_error(error: BaseException) -> bool:
    return isinstance(error, RateLimitError) or error_status(error) == 429


def default_should_retry(error: BaseException) -> bool:
    """Decide whether ``error`` is worth another attempt.

    Retryable: HTTP 408/429/5xx-gateway statuses, transport timeouts and
    resets, and errors that carry neither a status nor a message."""
    status = error_status(error)
    if status is not None:
        return status in RETRYABLE_STATUSES
    if isinstance(error, (TransientNetworkError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, ScraperError) and not isinstance(error, HttpStatusError):
        return False
    message = str(error).strip().lower()
    if message:
        return any(keyword in message for keyword in _NETWORK_KEYWORDS)
    return True


@dataclass
class RetryPolicy:
    max_retries: Optional[int] = None
    base_delay: Optional[float] = None
    should_retry: Optional[Callable[[BaseException], bool]] = None
    on_retry: Optional[RetryHook] = None


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class RetryCoordinator:
    """Runs an async operation with bounded exponential backoff.

    Default schedule is three retries at 1s, 2s and 4s. Every retry calls
    ``on_retry(attempt, delay, error)`` before sleeping."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN_SECS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limit_cooldown = rate_limit_cooldown
        self._sleep = sleep
        self.retry_count = 0
        self.success_count = 0
        self.failure_count = 0

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: Optional[RetryPolicy] = None,
        context: str = "Request",
    ) -> Any:
        policy = policy or RetryPolicy()
        max_retries = self.max_retries if policy.max_retries is None else policy.max_retries
        base_delay = self.base_delay if policy.base_delay is None else policy.base_delay
        should_retry = policy.should_retry or default_should_retry
        backoff = BackoffStrategy(base_seconds=base_delay)

        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as exc:  # noqa: BLE001
                if not should_retry(exc):
                    self.failure_count += 1
                    logger.debug("%s failed with non-retryable error: %s", context, exc)
                    raise
                if attempt >= max_retries:
                    self.failure_count += 1
                    logger.warning("%s failed after %d retries: %s", context, max_retries, exc)
                    raise RetriesExhaustedError(attempt + 1, exc) from exc

                delay = backoff.get_sleep(attempt)
                self.retry_count += 1
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    context,
                    attempt + 1,
                    max_retries + 1,
                    delay,
                    exc,
                )
                await _call_hook(policy.on_retry, attempt, delay, exc)
                await self._sleep(delay)
                attempt += 1
            else:
                self.success_count += 1
                if attempt > 0:
                    logger.info("%s succeeded after %d retries", context, attempt)
                return result

    async def execute_with_429_handling(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_rate_limit_detected: Optional[Callable[[], Any]] = None,
        policy: Optional[RetryPolicy] = None,
        context: str = "Request",
    ) -> Any:
        """Like :meth:`execute`, but a 429 forces a fixed cooldown first.

        On a rate-limit failure the coordinator pauses for
        ``rate_limit_cooldown`` seconds and then calls
        ``on_rate_limit_detected()`` before the regular backoff sleep."""
        policy = policy or RetryPolicy()
        base_should_retry = policy.should_retry or default_should_retry

        def should_retry(error: BaseException) -> bool:
            return is_rate_limit_error(error) or base_should_retry(error)

        async def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            if is_rate_limit_error(error):
                logger.warning(
                    "%s rate limited - pausing for %.0f seconds", context, self.rate_limit_cooldown
                )
                await self._sleep(self.rate_limit_cooldown)
                await _call_hook(on_rate_limit_detected)
            await _call_hook(policy.on_retry, attempt, delay, error)

        return await self.execute(
            operation,
            RetryPolicy(
                max_retries=policy.max_retries,
                base_delay=policy.base_delay,
                should_retry=should_retry,
                on_retry=on_retry,
            ),
            context=context,
        )

    def stats(self) -> Dict[str, Any]:
        finished = self.success_count + self.failure_count
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "retry_count": self.retry_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": (self.success_count / finished * 100) if finished else 0.0,
        }

    def reset_stats(self) -> None:
        self.retry_count = 0
        self.success_count = 0
        self.failure_count = 0

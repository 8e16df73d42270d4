"""Tests for the RetryCoordinator class."""

import unittest

from shelf_scraper.errors import (
    ExtractionError,
    HttpStatusError,
    NonRetryableHttpError,
    RateLimitError,
    RetriesExhaustedError,
    TransientNetworkError,
)
from shelf_scraper.retry import RetryCoordinator, RetryPolicy, default_should_retry


class FlakyOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RetryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.sleeps = []

        async def sleep(seconds):
            self.sleeps.append(seconds)

        self.retry = RetryCoordinator(sleep=sleep)


class TestExecute(RetryTestCase):
    """Verify the backoff schedule and stop conditions."""

    async def test_recovers_after_transient_errors(self):
        """Two network errors then success sleeps 1s and 2s."""
        op = FlakyOperation([TransientNetworkError("reset"), TransientNetworkError("reset")])
        attempts = []
        policy = RetryPolicy(on_retry=lambda attempt, delay, exc: attempts.append((attempt, delay)))

        self.assertEqual(await self.retry.execute(op, policy), "ok")
        self.assertEqual(self.sleeps, [1.0, 2.0])
        self.assertEqual(attempts, [(0, 1.0), (1, 2.0)])
        self.assertEqual(self.retry.stats()["retry_count"], 2)

    async def test_exhaustion_wraps_last_error(self):
        """Four failures exhaust three retries and report four attempts."""
        last = HttpStatusError(503, "https://x")
        op = FlakyOperation([HttpStatusError(503)] * 3 + [last])

        with self.assertRaises(RetriesExhaustedError) as ctx:
            await self.retry.execute(op)
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertIs(ctx.exception.last_error, last)
        self.assertIn("Failed after 4 attempts", str(ctx.exception))
        self.assertEqual(self.sleeps, [1.0, 2.0, 4.0])

    async def test_non_retryable_raises_immediately(self):
        """A 404 propagates unchanged without sleeping."""
        op = FlakyOperation([NonRetryableHttpError(404, "https://x")])
        with self.assertRaises(NonRetryableHttpError):
            await self.retry.execute(op)
        self.assertEqual(op.calls, 1)
        self.assertEqual(self.sleeps, [])

    async def test_policy_overrides(self):
        """Per-call policy replaces retries, base delay and predicate."""
        op = FlakyOperation([ValueError("x"), ValueError("x")])
        policy = RetryPolicy(max_retries=5, base_delay=0.25, should_retry=lambda exc: True)
        await self.retry.execute(op, policy)
        self.assertEqual(self.sleeps, [0.25, 0.5])


class TestRateLimitHandling(RetryTestCase):
    """Verify the 429 cooldown path."""

    async def test_cooldown_then_backoff_and_callback(self):
        """A single 429 waits 30s, fires the callback once, then backs off 1s."""
        op = FlakyOperation([RateLimitError(429, "https://x")])
        detected = []

        result = await self.retry.execute_with_429_handling(op, on_rate_limit_detected=lambda: detected.append(1))
        self.assertEqual(result, "ok")
        self.assertEqual(self.sleeps, [30.0, 1.0])
        self.assertEqual(detected, [1])

    async def test_async_callback_is_awaited(self):
        """An async rate-limit callback is awaited before the backoff sleep."""
        op = FlakyOperation([RateLimitError(429)])
        order = []

        async def on_limit():
            order.append(("callback", list(self.sleeps)))

        await self.retry.execute_with_429_handling(op, on_rate_limit_detected=on_limit)
        self.assertEqual(order, [("callback", [30.0])])

    async def test_other_errors_skip_cooldown(self):
        """Non-429 retryable errors use plain backoff."""
        op = FlakyOperation([HttpStatusError(502)])
        await self.retry.execute_with_429_handling(op)
        self.assertEqual(self.sleeps, [1.0])


class TestDefaultShouldRetry(unittest.TestCase):
    """Verify error classification."""

    def test_statuses(self):
        self.assertTrue(default_should_retry(HttpStatusError(503)))
        self.assertTrue(default_should_retry(HttpStatusError(408)))
        self.assertFalse(default_should_retry(NonRetryableHttpError(404)))

    def test_messages(self):
        self.assertTrue(default_should_retry(RuntimeError("socket timed out")))
        self.assertTrue(default_should_retry(RuntimeError("Network error while loading")))
        self.assertFalse(default_should_retry(RuntimeError("bad selector")))
        self.assertTrue(default_should_retry(Exception()))

    def test_pipeline_errors(self):
        self.assertTrue(default_should_retry(TransientNetworkError("reset")))
        self.assertFalse(default_should_retry(ExtractionError("no rows")))


if __name__ == "__main__":
    unittest.main()

"""Tests for the RequestThrottle class."""

import asyncio
import time
import unittest

from shelf_scraper.errors import QueueClearedError, ThrottleTimeoutError
from shelf_scraper.rate_limiter import MAX_RATE, MIN_RATE, RequestThrottle, format_duration


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.waits = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.waits.append(seconds)
        self.now += seconds


class TestRequestThrottle(unittest.IsolatedAsyncioTestCase):
    """Verify pacing, ordering and queue control."""

    async def test_spacing_between_operation_starts(self):
        """Consecutive starts are at least 1/rate seconds apart."""
        clock = FakeClock()
        throttle = RequestThrottle(rate=2, clock=clock, sleep=clock.sleep)
        starts = []

        async def op():
            starts.append(clock())

        await asyncio.gather(*(throttle.enqueue(op) for _ in range(3)))
        self.assertEqual(starts, [0.0, 0.5, 1.0])
        self.assertEqual(clock.waits, [0.5, 0.5])

    async def test_real_time_lower_bound(self):
        """N operations at rate R take at least (N-1)/R seconds."""
        throttle = RequestThrottle(rate=20)

        async def op():
            return None

        start = time.monotonic()
        await asyncio.gather(*(throttle.enqueue(op) for _ in range(5)))
        elapsed = time.monotonic() - start
        # 4 intervals of 50ms, small allowance for timer granularity
        self.assertGreaterEqual(elapsed, 0.19)

    async def test_fifo_order_and_results(self):
        """Operations run in enqueue order and each future gets its own result."""
        clock = FakeClock()
        throttle = RequestThrottle(rate=20, clock=clock, sleep=clock.sleep)
        order = []

        def make(n):
            async def op():
                order.append(n)
                return n * 10
            return op

        results = await asyncio.gather(*(throttle.enqueue(make(n)) for n in range(5)))
        self.assertEqual(order, [0, 1, 2, 3, 4])
        self.assertEqual(results, [0, 10, 20, 30, 40])

    async def test_failure_does_not_stop_the_queue(self):
        """A failing operation rejects only its own future."""
        clock = FakeClock()
        throttle = RequestThrottle(rate=10, clock=clock, sleep=clock.sleep)

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        failing = throttle.enqueue(boom)
        passing = throttle.enqueue(ok)
        with self.assertRaises(RuntimeError):
            await failing
        self.assertEqual(await passing, "ok")

    async def test_clear_rejects_pending(self):
        """clear() rejects queued work with QueueClearedError and reports the count."""
        throttle = RequestThrottle(rate=10)

        async def op():
            return 1

        futures = [throttle.enqueue(op) for _ in range(3)]
        self.assertEqual(throttle.clear(), 3)
        for future in futures:
            with self.assertRaises(QueueClearedError):
                await future
        self.assertEqual(throttle.stats()["request_count"], 0)
        await throttle.wait_until_idle(timeout=1)
        self.assertTrue(throttle.is_idle())

    async def test_wait_until_idle_times_out(self):
        """A throttle still busy after the timeout raises ThrottleTimeoutError."""
        throttle = RequestThrottle(rate=10)
        release = asyncio.Event()

        async def op():
            await release.wait()

        future = throttle.enqueue(op)
        await asyncio.sleep(0)
        with self.assertRaises(ThrottleTimeoutError):
            await throttle.wait_until_idle(timeout=0.05)
        release.set()
        await future
        await throttle.wait_until_idle(timeout=1)

    async def test_set_rate_clamps(self):
        """Rates are clamped to the supported range."""
        throttle = RequestThrottle(rate=10)
        throttle.set_rate(500)
        self.assertEqual(throttle.get_rate(), MAX_RATE)
        throttle.set_rate(0)
        self.assertEqual(throttle.get_rate(), MIN_RATE)

    async def test_estimate_time(self):
        """estimate_time is count divided by rate."""
        throttle = RequestThrottle(rate=5)
        self.assertAlmostEqual(throttle.estimate_time(10), 2.0)


class TestFormatDuration(unittest.TestCase):
    def test_formats(self):
        self.assertEqual(format_duration(3725), "1h 2m")
        self.assertEqual(format_duration(184), "3m 4s")
        self.assertEqual(format_duration(5), "5s")


if __name__ == "__main__":
    unittest.main()

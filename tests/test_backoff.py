"""Tests for the BackoffStrategy class."""

import unittest

from shelf_scraper.backoff import BackoffStrategy


class TestBackoffStrategy(unittest.TestCase):
    """Verify exponential backoff produces correct sleep durations."""

    def test_first_retry_returns_base(self):
        """Attempt 0 should sleep exactly the base duration."""
        backoff = BackoffStrategy(base_seconds=1.0)
        self.assertEqual(backoff.get_sleep(0), 1.0)

    def test_exponential_growth(self):
        """Each attempt doubles the previous delay."""
        backoff = BackoffStrategy(base_seconds=0.5)
        self.assertEqual([backoff.get_sleep(n) for n in range(4)], [0.5, 1.0, 2.0, 4.0])

    def test_respects_max_seconds(self):
        """Delays are capped at max_seconds."""
        backoff = BackoffStrategy(base_seconds=1.0, max_seconds=5.0)
        self.assertEqual(backoff.get_sleep(20), 5.0)

    def test_jitter_stays_in_range(self):
        """Jitter only widens the delay, by at most the given fraction."""
        backoff = BackoffStrategy(base_seconds=1.0, jitter=0.1)
        for _ in range(20):
            sleep = backoff.get_sleep(1)
            self.assertGreaterEqual(sleep, 2.0)
            self.assertLessEqual(sleep, 2.2)


if __name__ == "__main__":
    unittest.main()

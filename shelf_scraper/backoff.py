from __future__ import annotations

import random
from typing import Optional


class BackoffStrategy:
    """Exponential backoff for retry delays.

    The delay before retry ``attempt`` (0-indexed) is ``base * 2^attempt``,
    optionally capped and optionally widened by a random jitter fraction."""

    def __init__(
        self,
        base_seconds: float = 1.0,
        max_seconds: Optional[float] = None,
        jitter: float = 0.0,
    ) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._jitter = jitter

    @property
    def base_seconds(self) -> float:
        return self._base

    def get_sleep(self, attempt: int) -> float:
        """Calculate the backoff sleep duration in seconds for a given retry attempt."""
        delay = self._base * (2 ** max(attempt, 0))
        if self._max is not None:
            delay = min(self._max, delay)
        if self._jitter > 0:
            delay += random.uniform(0, delay * self._jitter)
        return delay

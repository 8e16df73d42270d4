from __future__ import annotations

from typing import Optional


class ScraperError(Exception):
    """Base class for every error raised by the scraping pipeline."""


class TransientNetworkError(ScraperError):
    """Timeouts, connection resets and other failures worth retrying."""


class HttpStatusError(ScraperError):
    """A response arrived with a non-2xx status code."""

    def __init__(self, status: int, url: str = "", message: Optional[str] = None) -> None:
        self.status = status
        self.url = url
        if message is None:
            message = f"HTTP {status} for {url}" if url else f"HTTP {status}"
        super().__init__(message)


class RateLimitError(HttpStatusError):
    """HTTP 429 from the origin."""


class NonRetryableHttpError(HttpStatusError):
    """4xx responses other than 408 and 429."""


class ExtractionError(ScraperError):
    """A row or page did not have a recognizable shape."""


class ValidationError(ScraperError):
    """A normalized entry violates the output schema."""


class FatalOrchestrationError(ScraperError):
    """Raised when a scrape cannot continue at any smaller granularity."""


class QueueClearedError(ScraperError):
    """A queued operation was rejected because the throttle was cleared."""


class ThrottleTimeoutError(ScraperError):
    """The throttle did not drain within the requested time."""


class RetriesExhaustedError(ScraperError):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def http_error_for_status(status: int, url: str = "") -> HttpStatusError:
    """Map a response status onto the error taxonomy."""
    if status == 429:
        return RateLimitError(status, url)
    if 400 <= status < 500 and status != 408:
        return NonRetryableHttpError(status, url)
    return HttpStatusError(status, url)

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import requests
from curl_cffi import CurlError
from curl_cffi import requests as curl_requests

from .document import SoupNode, parse_document
from .errors import TransientNetworkError, http_error_for_status
from .metrics import MetricsCollector
from .models import FetchResult

logger = logging.getLogger(__name__)

DEFAULT_IMPERSONATE = "chrome120"


def _error_type(exc: BaseException) -> str:
    message = str(exc).lower()
    if isinstance(exc, TimeoutError) or "timed out" in message or "timeout" in message:
        return "Timeout"
    if isinstance(exc, (TransientNetworkError, ConnectionError)):
        return "ConnectionError"
    return type(exc).__name__


class DocumentFetcher(ABC):
    """Common fetch pipeline: request off the event loop, classify, record.

    - Any 2xx status is success; other statuses raise through
      ``http_error_for_status`` (429 becomes RateLimitError).
    - Transport failures surface as TransientNetworkError.
    - Every attempt is recorded in the metrics collector when one is given.
    """

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        timeout: int = 20,
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
    ) -> None:
        self._metrics = metrics
        self._timeout = timeout
        self._headers = dict(headers or {})
        self._cookies = dict(cookies or {})

    async def fetch(self, url: str) -> str:
        if not url:
            raise ValueError("url is required")
        start_ms = self._now_ms()
        try:
            status_code, text = await asyncio.to_thread(self.request, url)
        except Exception as exc:  # noqa: BLE001
            self._record(url, False, None, start_ms, _error_type(exc))
            raise

        success = 200 <= int(status_code) < 300
        self._record(url, success, status_code, start_ms, None if success else f"HTTP_{status_code}")
        if not success:
            raise http_error_for_status(int(status_code), url)
        return text

    async def fetch_document(self, url: str) -> SoupNode:
        return parse_document(await self.fetch(url))

    @abstractmethod
    def request(self, url: str) -> Tuple[int, str]:
        """Blocking GET returning ``(status_code, body)``."""

    def _record(
        self,
        url: str,
        success: bool,
        status_code: Optional[int],
        start_ms: int,
        error_type: Optional[str],
    ) -> None:
        if self._metrics is None:
            return
        self._metrics.record_result(
            FetchResult(
                url=url,
                success=success,
                status_code=status_code,
                latency_ms=self._now_ms() - start_ms,
                error_type=error_type,
            )
        )

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)


class CurlDocumentFetcher(DocumentFetcher):
    """Fetches with curl_cffi, impersonating a browser TLS fingerprint."""

    def __init__(self, *args, impersonate: str = DEFAULT_IMPERSONATE, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._impersonate = impersonate

    def request(self, url: str) -> Tuple[int, str]:
        try:
            with curl_requests.Session() as session:
                response = session.request(
                    method="GET",
                    url=url,
                    headers=self._headers or None,
                    cookies=self._cookies or None,
                    impersonate=self._impersonate,
                    timeout=self._timeout,
                )
        except CurlError as exc:
            raise TransientNetworkError(f"Network error fetching {url}: {exc}") from exc
        return response.status_code, response.text


class RequestsDocumentFetcher(DocumentFetcher):
    """Plain requests backend, for origins that do not need impersonation."""

    def request(self, url: str) -> Tuple[int, str]:
        try:
            response = requests.get(
                url,
                headers=self._headers or None,
                cookies=self._cookies or None,
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise TransientNetworkError(f"Request timeout fetching {url}: {exc}") from exc
        except requests.ConnectionError as exc:
            raise TransientNetworkError(f"Network error fetching {url}: {exc}") from exc
        return response.status_code, response.text

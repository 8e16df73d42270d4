from __future__ import annotations

from typing import Dict, Optional

from .fetcher import CurlDocumentFetcher, DocumentFetcher, RequestsDocumentFetcher
from .metrics import MetricsCollector

BACKENDS = ("curl", "requests")


class FetcherFactory:
    """Creates the document fetcher for a configured backend.

    Instances are cached per backend so listing and detail fetches share
    headers, cookies and the metrics collector."""

    def __init__(
        self,
        metrics: MetricsCollector,
        timeout: int = 20,
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
        impersonate: str = "chrome120",
    ) -> None:
        self._metrics = metrics
        self._timeout = timeout
        self._headers = headers
        self._cookies = cookies
        self._impersonate = impersonate
        self._cache: Dict[str, DocumentFetcher] = {}

    def create_fetcher(self, backend: str = "curl") -> DocumentFetcher:
        if backend in self._cache:
            return self._cache[backend]

        common = dict(
            metrics=self._metrics,
            timeout=self._timeout,
            headers=self._headers,
            cookies=self._cookies,
        )
        if backend == "curl":
            fetcher: DocumentFetcher = CurlDocumentFetcher(impersonate=self._impersonate, **common)
        elif backend == "requests":
            fetcher = RequestsDocumentFetcher(**common)
        else:
            raise ValueError(f"Unknown fetch backend: {backend}")

        self._cache[backend] = fetcher
        return fetcher

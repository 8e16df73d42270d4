from __future__ import annotations

import logging
import math
import re
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .document import Node
from .models import PaginationPlan

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
PAGE_PARAM = "page"
PAGE_SIZE_PARAM = "pageSize"

# Lighter listing markup and no geo redirects.
LISTING_PARAMS: Dict[str, str] = {
    "ale": "true",
    "bp_ua": "yes",
    "ipRedirectOverride": "true",
    "overrideBaseCountry": "true",
}

_RESULT_COUNT_RE = re.compile(r"of\s+([\d,]+)", re.IGNORECASE)


def with_query(url: str, **params: str) -> str:
    """Return ``url`` with ``params`` set in its query string, other parameters kept in order."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def read_max_page_size(doc: Optional[Node], default: int = DEFAULT_PAGE_SIZE) -> int:
    """Largest option of the listing's page-size dropdown."""
    if doc is None:
        return default
    select = doc.select_one(f'select[name="{PAGE_SIZE_PARAM}"]')
    if select is None:
        return default
    sizes = []
    for option in select.select("option"):
        try:
            sizes.append(int(option.attr("value") or option.text()))
        except ValueError:
            continue
    return max(sizes) if sizes else default


def parse_result_count(doc: Node) -> Optional[int]:
    """Total results from the ``1-50 of 247 results`` summary, if present."""
    container = doc.select_one(".pagingElements")
    if container is None:
        return None
    match = _RESULT_COUNT_RE.search(container.text())
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def max_page_number(doc: Node) -> Optional[int]:
    numbers: List[int] = []
    for node in doc.select(".pageNumberElement"):
        text = node.text().strip()
        if text.isdigit():
            numbers.append(int(text))
    return max(numbers) if numbers else None


class PaginationDiscovery:
    """Works out how many pages a listing has and where they live.

    ``fetch_document`` is the only I/O dependency; it is called once, for
    the first page at the largest page size."""

    def __init__(
        self,
        fetch_document: Callable[[str], Awaitable[Node]],
        default_page_size: int = DEFAULT_PAGE_SIZE,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> None:
        self._fetch_document = fetch_document
        self._default_page_size = default_page_size
        self._extra_params = dict(LISTING_PARAMS if extra_params is None else extra_params)

    async def discover(self, listing_url: str, current_document: Optional[Node] = None) -> PaginationPlan:
        """Build the plan for ``listing_url``.

        ``current_document`` is the listing as already loaded; its page-size
        control is read and it backs the single-page fallback. Any failure
        degrades to that fallback instead of propagating."""
        try:
            return await self._discover(listing_url, current_document)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Pagination detection failed for %s: %s", listing_url, exc)
            return self.single_page_plan(listing_url, current_document)

    async def _discover(self, listing_url: str, current_document: Optional[Node]) -> PaginationPlan:
        page_size = read_max_page_size(current_document, self._default_page_size)
        logger.info("Max page size: %d", page_size)

        first_url = with_query(
            listing_url,
            **{PAGE_SIZE_PARAM: str(page_size), PAGE_PARAM: "1"},
            **self._extra_params,
        )
        first_page = await self._fetch_document(first_url)

        total_pages = 1
        total_count = parse_result_count(first_page)
        if total_count is not None:
            total_pages = max(1, math.ceil(total_count / page_size))
            logger.info("Total titles: %d, pages: %d (%d per page)", total_count, total_pages, page_size)
        else:
            highest = max_page_number(first_page)
            if highest is not None:
                total_pages = highest
                logger.info("Total pages from page elements: %d", total_pages)
            else:
                logger.info("No pagination found - single page listing")

        locators = tuple(with_query(first_url, **{PAGE_PARAM: str(n)}) for n in range(1, total_pages + 1))
        return PaginationPlan(
            total_pages=total_pages,
            page_size=page_size,
            page_locators=locators,
            cached_first_page=first_page,
            total_count=total_count,
        )

    def single_page_plan(self, listing_url: str, current_document: Optional[Node] = None) -> PaginationPlan:
        return PaginationPlan(
            total_pages=1,
            page_size=self._default_page_size,
            page_locators=(listing_url,),
            cached_first_page=current_document,
        )

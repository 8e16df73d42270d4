from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from .document import Node, text_of, texts_of
from .errors import ExtractionError
from .models import (
    FINISHED,
    IN_PROGRESS,
    LIBRARY,
    NOT_STARTED,
    WISHLIST,
    BasicTitleRecord,
    SeriesInfo,
    UserStatusRecord,
    prune,
)
from .strategies import (
    ExtractionContext,
    FieldStrategy,
    MarkupStrategy,
    StructuredDataStrategy,
    first_non_empty,
)

logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = "https://www.audible.com"

LISTING_CONTAINER = "div.adbl-main"
LISTING_ROWS = "#adbl-library-content-main > .adbl-library-content-row"

LIBRARY_TITLE_SELECTORS = (
    ":scope > div > div > div > div > span > ul > li:nth-child(1)",
    ".bc-list-item-title",
)
LIBRARY_LINK_SELECTORS = (
    ":scope > div > div > div > div > span > ul > li:nth-child(1) > a",
    ".bc-list-item-title a",
    'a[href*="/pd/"]',
)
WISHLIST_TITLE_SELECTORS = (".bc-list-item-title", LIBRARY_TITLE_SELECTORS[0])
COVER_SELECTORS = ("a > img.bc-image-inset-border", "img.bc-image-inset-border")

JSON_LD_SELECTORS = (
    '#bottom-0 script[type="application/ld+json"]',
    'adbl-product-hero adbl-product-metadata > script[type="application/ld+json"]',
    'adbl-product-details adbl-product-metadata > script[type="application/ld+json"]',
)
JSON_LD_ANY = 'script[type="application/ld+json"]'

FLYOUT_PREFIX = "product-list-flyout-"
UNKNOWN_TITLE = "Unknown Title"

_DETAIL_LINK_RE = re.compile(r"/pd/(?:[^/?#]+/)?([A-Z0-9]{10,13})(?:[/?#]|$)")
_SERIES_RE = re.compile(r"(.+?),\s*Book\s+(.+)", re.IGNORECASE)
_ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?", re.IGNORECASE)
_RUNTIME_HOURS_RE = re.compile(r"(\d+)\s*(?:hrs?|hours?|h)\b", re.IGNORECASE)
_RUNTIME_MINS_RE = re.compile(r"(\d+)\s*(?:mins?|minutes?|m)\b", re.IGNORECASE)
_TIME_LEFT_RE = re.compile(
    r"(?:(\d+)\s*h(?:rs?|ours?)?)?\s*(?:(\d+)\s*m(?:ins?|inutes?)?)?\s+left",
    re.IGNORECASE,
)
_LABEL_PREFIX_RE = re.compile(r"^[A-Za-z ]+:\s*")


def parse_duration(value: Any) -> Optional[int]:
    """Convert an ISO-8601 duration such as ``PT12H34M`` to minutes."""
    if not isinstance(value, str):
        return None
    match = _ISO_DURATION_RE.search(value)
    if not match or (match.group(1) is None and match.group(2) is None):
        return None
    return int(match.group(1) or 0) * 60 + int(match.group(2) or 0)


def parse_runtime_label(text: Optional[str]) -> Optional[int]:
    """Convert ``Length: 12 hrs and 34 mins`` to minutes."""
    if not text:
        return None
    hours = _RUNTIME_HOURS_RE.search(text)
    minutes = _RUNTIME_MINS_RE.search(text)
    if not hours and not minutes:
        return None
    return int(hours.group(1) if hours else 0) * 60 + int(minutes.group(1) if minutes else 0)


def parse_time_left(text: Optional[str]) -> Optional[str]:
    """Normalize ``11h 4m left`` style text to ``<h>h <m>m left``."""
    if not text:
        return None
    for match in _TIME_LEFT_RE.finditer(text):
        hours, minutes = match.group(1), match.group(2)
        if hours is None and minutes is None:
            continue
        return f"{int(hours or 0)}h {int(minutes or 0)}m left"
    return None


def parse_series_text(text: Optional[str]) -> Optional[SeriesInfo]:
    """Parse ``Series Name, Book 3``."""
    if not text:
        return None
    match = _SERIES_RE.match(text.strip())
    if not match:
        return None
    return SeriesInfo(name=match.group(1).strip(), position=match.group(2).strip())


def normalize_creators(creators: Any) -> List[str]:
    """Turn JSON-LD ``author``/``readBy`` values into a list of names."""
    if not creators:
        return []
    if not isinstance(creators, list):
        creators = [creators]
    names = []
    for creator in creators:
        name = creator if isinstance(creator, str) else (creator or {}).get("name")
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


def _series_from_structured(value: Any) -> Optional[SeriesInfo]:
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list) or not value:
        return None
    first = value[0]
    if not isinstance(first, dict) or not first.get("name"):
        return None
    position = first.get("part") or first.get("position") or "1"
    return SeriesInfo(name=str(first["name"]).strip(), position=str(position))


def _publisher_name(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name")
    return value.strip() if isinstance(value, str) else None


def _breadcrumb_names(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    names = []
    for item in value:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or (item.get("item") or {}).get("name")
        if name:
            names.append(str(name).strip())
    return names


def _image_url(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url")
    return value if isinstance(value, str) else None


def _rating_value(value: Any) -> Optional[float]:
    if isinstance(value, dict) and value.get("ratingValue") not in (None, ""):
        return float(value["ratingValue"])
    return None


def _rating_count(value: Any) -> Optional[int]:
    if isinstance(value, dict) and value.get("ratingCount") not in (None, ""):
        return int(str(value["ratingCount"]).replace(",", ""))
    return None


def _label_text(doc: Node, selector: str) -> Optional[str]:
    text = text_of(doc, selector)
    if text is None:
        return None
    return _LABEL_PREFIX_RE.sub("", text).strip() or None


def _whispersync_from_markup(doc: Node) -> Optional[str]:
    label = doc.select_one(".ws4vLabel")
    if label is None:
        return None
    return "owned" if "owned" in label.text().lower() else "available"


def _first_text(root: Node, selectors: Sequence[str]) -> Optional[str]:
    for selector in selectors:
        text = text_of(root, selector)
        if text:
            return text
    return None


def _attr_of(root: Node, selector: str, name: str) -> Optional[str]:
    node = root.select_one(selector)
    return node.attr(name) if node is not None else None


def _is_hidden(node: Node) -> bool:
    return "bc-pub-hidden" in (node.attr("class") or "").split()


class MetadataExtractor:
    """Turns listing rows and detail pages into typed records.

    Listing rows yield :class:`BasicTitleRecord` (or ``None`` when no
    identifier can be found). Detail pages yield a pruned dict of detail
    fields after an identity check, preferring JSON-LD over markup per
    field."""

    def __init__(self, origin: str = DEFAULT_ORIGIN) -> None:
        self.origin = origin.rstrip("/")
        self._detail_strategies = self._build_detail_strategies()

    # -- listing pages ---------------------------------------------------

    def extract_rows(self, doc: Node) -> List[Node]:
        container = doc.select_one(LISTING_CONTAINER)
        if container is None:
            raise ExtractionError("Listing container not found")
        return container.select(LISTING_ROWS)

    def has_listing(self, doc: Node) -> bool:
        return doc.select_one(LISTING_CONTAINER) is not None

    def extract_listing_page(self, doc: Node, source: str) -> List[BasicTitleRecord]:
        """Extract every row of a listing page, skipping rows without an identifier."""
        rows = self.extract_rows(doc)
        records: List[BasicTitleRecord] = []
        for index, row in enumerate(rows):
            try:
                record = self.extract_row(row, source)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to extract %s row %d: %s", source.lower(), index, exc)
                continue
            if record is None:
                logger.warning("No identifier found in %s row %d", source.lower(), index)
                continue
            records.append(record)
        logger.debug("Extracted %d of %d %s rows", len(records), len(rows), source.lower())
        return records

    def extract_row(self, row: Node, source: str) -> Optional[BasicTitleRecord]:
        if source == WISHLIST:
            return self.extract_wishlist_row(row)
        return self.extract_library_row(row)

    def extract_library_row(self, row: Node) -> Optional[BasicTitleRecord]:
        identifier = self.extract_identifier(row)
        if not identifier:
            return None
        return BasicTitleRecord(
            id=identifier,
            title=_first_text(row, LIBRARY_TITLE_SELECTORS) or UNKNOWN_TITLE,
            source=LIBRARY,
            authors=texts_of(row, ".authorLabel a"),
            narrators=texts_of(row, ".narratorLabel a"),
            cover_image_url=self._cover_url(row),
            series=self.extract_row_series(row),
            detail_url=self._detail_url(row, identifier),
            user_status=self.extract_user_status(row),
        )

    def extract_wishlist_row(self, row: Node) -> Optional[BasicTitleRecord]:
        identifier = self.extract_identifier(row)
        if not identifier:
            return None
        return BasicTitleRecord(
            id=identifier,
            title=_first_text(row, WISHLIST_TITLE_SELECTORS) or UNKNOWN_TITLE,
            source=WISHLIST,
            authors=texts_of(row, ".authorLabel a"),
            narrators=texts_of(row, ".narratorLabel a"),
            cover_image_url=self._cover_url(row),
            series=self.extract_row_series(row),
            detail_url=f"{self.origin}/pd/{identifier}",
            user_status=self.extract_user_status(row),
        )

    def extract_identifier(self, row: Node) -> Optional[str]:
        """Find the row's catalog identifier.

        Tries ``data-asin`` on the row and its descendants, then the
        ``product-list-flyout-<id>`` element id, then the detail link."""
        identifier = row.attr("data-asin")
        if not identifier:
            node = row.select_one("[data-asin]")
            identifier = node.attr("data-asin") if node is not None else None
        if not identifier:
            node = row.select_one(f'[id^="{FLYOUT_PREFIX}"]')
            if node is not None:
                identifier = (node.attr("id") or "")[len(FLYOUT_PREFIX):]
        if not identifier:
            for link in row.select('a[href*="/pd/"]'):
                match = _DETAIL_LINK_RE.search(link.attr("href") or "")
                if match:
                    identifier = match.group(1)
                    break
        identifier = (identifier or "").strip()
        return identifier or None

    def extract_row_series(self, row: Node) -> Optional[SeriesInfo]:
        series = parse_series_text(text_of(row, ".seriesLabel > span"))
        if series is None:
            name = text_of(row, ".seriesLabel a")
            if name:
                series = SeriesInfo(name=name)
        return series

    def extract_user_status(self, row: Node) -> UserStatusRecord:
        status, progress, time_left = self.extract_listening_status(row)
        return UserStatusRecord(
            personal_rating=self.extract_user_rating(row),
            listening_status=status,
            progress_percent=progress,
            time_left_text=time_left,
        )

    def extract_user_rating(self, row: Node) -> int:
        node = row.select_one("[data-star-count]")
        if node is None:
            return 0
        try:
            rating = int(float(node.attr("data-star-count") or 0))
        except ValueError:
            return 0
        return max(0, min(5, rating))

    def extract_listening_status(self, row: Node) -> Tuple[str, int, Optional[str]]:
        """Return ``(status, progress_percent, time_left_text)`` for a row."""
        progress = 0
        bar = row.select_one('[role="progressbar"]')
        if bar is not None:
            try:
                progress = max(0, min(100, int(float(bar.attr("aria-valuenow") or 0))))
            except ValueError:
                progress = 0

        for node in row.select('[id^="time-remaining-finished"]'):
            if not _is_hidden(node) and "finished" in node.text().lower():
                return FINISHED, 100, None
        if progress >= 100:
            return FINISHED, 100, None

        time_left = None
        for node in row.select('[id^="time-remaining-display"]'):
            if not _is_hidden(node):
                time_left = parse_time_left(node.text())
                if time_left:
                    break
        if time_left:
            return time_left, progress, time_left
        if progress > 0:
            return IN_PROGRESS, progress, None
        return NOT_STARTED, 0, None

    def _cover_url(self, row: Node) -> str:
        for selector in COVER_SELECTORS:
            node = row.select_one(selector)
            if node is not None and node.attr("src"):
                return node.attr("src")
        return ""

    def _detail_url(self, row: Node, identifier: str) -> str:
        for selector in LIBRARY_LINK_SELECTORS:
            node = row.select_one(selector)
            href = node.attr("href") if node is not None else None
            if href:
                return urljoin(self.origin + "/", href)
        return f"{self.origin}/pd/{identifier}"

    # -- detail pages ----------------------------------------------------

    def extract_json_ld(self, doc: Node) -> Dict[str, Any]:
        """Merge all JSON-LD blocks of a page; later blocks override earlier keys."""
        scripts: List[Node] = []
        for selector in JSON_LD_SELECTORS:
            scripts.extend(doc.select(selector))
        if not scripts:
            scripts = doc.select(JSON_LD_ANY)

        combined: Dict[str, Any] = {}
        for script in scripts:
            try:
                data = json.loads(script.text())
            except ValueError as exc:
                logger.warning("Failed to parse JSON-LD block: %s", exc)
                continue
            for obj in self._json_ld_objects(data):
                combined.update(obj)
        return combined

    @staticmethod
    def _json_ld_objects(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return [d for d in data if isinstance(d, dict)]
        if isinstance(data, dict):
            graph = data.get("@graph")
            if isinstance(graph, list):
                return [d for d in graph if isinstance(d, dict)]
            return [data]
        return []

    def verify_identity(self, doc: Node, identifier: str) -> bool:
        """Check that a detail page belongs to ``identifier`` before trusting it."""
        for node in doc.select('[id^="sample-player-"]'):
            if node.attr("id") == f"sample-player-{identifier}":
                return True
        for node in doc.select("#jpp-sample-button"):
            if node.attr("data-asin") == identifier:
                return True
        return False

    def extract_detail_page(self, doc: Node, identifier: str) -> Optional[Dict[str, Any]]:
        """Extract detail fields for ``identifier``, or None if the page is not its page.

        The result uses record field names and has empty values pruned,
        except list fields, which are kept even when empty."""
        if not self.verify_identity(doc, identifier):
            logger.warning("Detail page validation failed for %s - no sample player", identifier)
            return None

        context = ExtractionContext(
            document=doc,
            structured=self.extract_json_ld(doc),
            identifier=identifier,
        )
        fields: Dict[str, Any] = {"id": identifier}
        for name, strategies in self._detail_strategies.items():
            default: Any = [] if name in ("authors", "narrators", "categories") else None
            fields[name] = first_non_empty(strategies, context, default=default)
        fields["plus_catalog"] = self.detect_plus_catalog(doc)
        fields["detail_page_missing"] = False
        return prune(fields)

    def detect_plus_catalog(self, doc: Node) -> bool:
        return doc.select_one('[data-testid="plus-catalog-badge"]') is not None

    def _build_detail_strategies(self) -> Dict[str, List[FieldStrategy]]:
        sd = StructuredDataStrategy
        return {
            "title": [
                sd("name", lambda v: str(v).strip()),
                MarkupStrategy(lambda d: text_of(d, '[slot="title"]'), "slot=title"),
                MarkupStrategy(lambda d: text_of(d, "h1"), "h1"),
            ],
            "subtitle": [MarkupStrategy(lambda d: text_of(d, '[slot="subtitle"]'), "slot=subtitle")],
            "authors": [
                sd("author", normalize_creators),
                MarkupStrategy(lambda d: texts_of(d, ".authorLabel a"), ".authorLabel"),
            ],
            "narrators": [
                sd("readBy", normalize_creators),
                MarkupStrategy(lambda d: texts_of(d, ".narratorLabel a"), ".narratorLabel"),
            ],
            "series": [
                sd("series", _series_from_structured),
                MarkupStrategy(lambda d: parse_series_text(text_of(d, ".seriesLabel > span")), ".seriesLabel"),
            ],
            "duration_minutes": [
                sd("duration", parse_duration),
                MarkupStrategy(lambda d: parse_runtime_label(text_of(d, ".runtimeLabel")), ".runtimeLabel"),
            ],
            "publisher": [
                sd("publisher", _publisher_name),
                MarkupStrategy(lambda d: text_of(d, ".publisherLabel > a"), ".publisherLabel"),
            ],
            "release_date": [
                sd("datePublished", str),
                MarkupStrategy(lambda d: _label_text(d, ".releaseDateLabel"), ".releaseDateLabel"),
            ],
            "categories": [
                sd("itemListElement", _breadcrumb_names),
                MarkupStrategy(lambda d: texts_of(d, ".categoriesLabel > a"), ".categoriesLabel"),
            ],
            "language": [
                sd("inLanguage", str),
                MarkupStrategy(lambda d: _label_text(d, ".languageLabel"), ".languageLabel"),
            ],
            "summary": [
                sd("description", lambda v: str(v).strip()),
                MarkupStrategy(lambda d: text_of(d, ".productPublisherSummary > span"), "summary"),
            ],
            "cover_image_url": [
                sd("image", _image_url),
                MarkupStrategy(lambda d: _attr_of(d, ".bc-image-inset-border", "src"), "cover"),
            ],
            "rating": [sd("aggregateRating", _rating_value)],
            "rating_count": [sd("aggregateRating", _rating_count)],
            "whispersync_status": [
                sd("listeningEnhancements", lambda v: "available" if v else None),
                MarkupStrategy(_whispersync_from_markup, ".ws4vLabel"),
            ],
        }

    # -- page state ------------------------------------------------------

    def is_logged_in(self, doc: Node) -> bool:
        sign_in = doc.select_one('a[href*="signin"]')
        account_nav = doc.select_one(".accountNav")
        return sign_in is None or account_nav is not None

    def detect_captcha(self, doc: Node) -> bool:
        if doc.select_one('form[action*="captcha"], #captchacharacters, [name="captcha"]'):
            return True
        alert = doc.select_one(".a-box-inner.a-alert-container")
        return alert is not None and "Enter the characters" in alert.text()

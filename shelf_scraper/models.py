from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple

LIBRARY = "LIBRARY"
WISHLIST = "WISHLIST"
SOURCES = (LIBRARY, WISHLIST)

FINISHED = "Finished"
IN_PROGRESS = "In Progress"
NOT_STARTED = "Not Started"
LISTENING_STATUSES = (FINISHED, IN_PROGRESS, NOT_STARTED)

SESSION_IN_PROGRESS = "in_progress"
SESSION_PAUSED = "paused"
SESSION_COMPLETED = "completed"
SESSION_FAILED = "failed"

_CAMEL_RE = re.compile(r"_([a-z])")


def _camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def is_empty(value: Any) -> bool:
    """Empty means None, a blank string or an empty collection."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def prune(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None and empty-string values, keeping lists even when empty."""
    return {k: v for k, v in data.items() if v is not None and v != ""}


@dataclass(frozen=True)
class SeriesInfo:
    name: str
    position: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return prune({"name": self.name, "position": self.position})


@dataclass
class UserStatusRecord:
    personal_rating: int = 0
    listening_status: str = NOT_STARTED
    progress_percent: int = 0
    time_left_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return prune(
            {
                "personalRating": self.personal_rating,
                "listeningStatus": self.listening_status,
                "progressPercent": self.progress_percent,
                "timeLeftText": self.time_left_text,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserStatusRecord":
        return cls(
            personal_rating=data.get("personalRating", 0),
            listening_status=data.get("listeningStatus", NOT_STARTED),
            progress_percent=data.get("progressPercent", 0),
            time_left_text=data.get("timeLeftText"),
        )


@dataclass
class BasicTitleRecord:
    """One title as seen on a library or wishlist listing row."""

    id: str
    title: str
    source: str
    authors: List[str] = field(default_factory=list)
    narrators: List[str] = field(default_factory=list)
    cover_image_url: str = ""
    series: Optional[SeriesInfo] = None
    detail_url: str = ""
    user_status: UserStatusRecord = field(default_factory=UserStatusRecord)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (SeriesInfo, UserStatusRecord)):
                value = value.to_dict()
            elif isinstance(value, list):
                value = list(value)
            data[_camel(f.name)] = value
        return prune(data)


@dataclass
class DetailedTitleRecord(BasicTitleRecord):
    """Listing record enriched with the title's detail page."""

    subtitle: Optional[str] = None
    duration_minutes: Optional[int] = None
    publisher: Optional[str] = None
    release_date: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    language: Optional[str] = None
    summary: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    plus_catalog: bool = False
    whispersync_status: Optional[str] = None
    detail_page_missing: bool = False


_BASIC_FIELDS = {f.name for f in fields(BasicTitleRecord)}
_DETAILED_FIELDS = {f.name for f in fields(DetailedTitleRecord)}
_SNAKE_BY_CAMEL = {_camel(name): name for name in _DETAILED_FIELDS}


def record_from_dict(data: Dict[str, Any]) -> BasicTitleRecord:
    """Rebuild a record from its ``to_dict`` form (checkpoint payloads)."""
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        name = _SNAKE_BY_CAMEL.get(key)
        if name is None:
            continue
        if name == "series" and isinstance(value, dict):
            value = SeriesInfo(name=value.get("name", ""), position=value.get("position"))
        elif name == "user_status" and isinstance(value, dict):
            value = UserStatusRecord.from_dict(value)
        kwargs[name] = value
    kwargs.setdefault("title", "")
    kwargs.setdefault("source", LIBRARY)
    if set(kwargs) - _BASIC_FIELDS:
        return DetailedTitleRecord(**kwargs)
    return BasicTitleRecord(**kwargs)


def merge_records(basic: BasicTitleRecord, detail: Dict[str, Any]) -> DetailedTitleRecord:
    """Merge detail-page fields over a listing record.

    Field by field, a non-empty detail value wins; otherwise the listing
    value is kept. Identity, source and user status always come from the
    listing record.
    """
    merged: Dict[str, Any] = {}
    for name in _DETAILED_FIELDS:
        listed = getattr(basic, name, None)
        found = detail.get(name)
        if name in ("id", "source", "user_status"):
            merged[name] = listed
        elif not is_empty(found):
            merged[name] = found
        elif listed is not None:
            merged[name] = listed
    return DetailedTitleRecord(**merged)


def mark_detail_missing(record: BasicTitleRecord) -> DetailedTitleRecord:
    if isinstance(record, DetailedTitleRecord):
        return replace(record, detail_page_missing=True)
    base = {f.name: getattr(record, f.name) for f in fields(BasicTitleRecord)}
    return DetailedTitleRecord(**base, detail_page_missing=True)


@dataclass(frozen=True)
class NormalizedCatalogEntry:
    id: str
    title: str
    user_rating: int
    status: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "userRating": self.user_rating,
            "status": self.status,
            "source": self.source,
        }


@dataclass(frozen=True)
class CatalogSummary:
    library_count: int
    wishlist_count: int
    scrape_duration_ms: int
    scraped_at: str
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "libraryCount": self.library_count,
            "wishlistCount": self.wishlist_count,
            "scrapeDurationMs": self.scrape_duration_ms,
            "scrapedAt": self.scraped_at,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class NormalizedPayload:
    title_catalog: Tuple[NormalizedCatalogEntry, ...]
    summary: CatalogSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "titleCatalog": [entry.to_dict() for entry in self.title_catalog],
            "summary": self.summary.to_dict(),
        }


@dataclass
class ScrapeSession:
    """Mutable state of one scrape run, owned by the orchestrator."""

    session_id: str
    status: str = SESSION_IN_PROGRESS
    start_time: float = field(default_factory=time.time)
    collected_titles: List[BasicTitleRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    completed_pages: Dict[str, List[int]] = field(default_factory=dict)
    enriched_ids: List[str] = field(default_factory=list)

    def add_titles(self, records: List[BasicTitleRecord]) -> None:
        self.collected_titles.extend(records)

    def mark_page_done(self, listing: str, page_number: int) -> None:
        pages = self.completed_pages.setdefault(listing, [])
        if page_number not in pages:
            pages.append(page_number)

    def is_page_done(self, listing: str, page_number: int) -> bool:
        return page_number in self.completed_pages.get(listing, [])

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.status,
            "startTime": self.start_time,
            "lastUpdate": time.time(),
            "scrapedCount": len(self.collected_titles),
            "collectedTitles": [record.to_dict() for record in self.collected_titles],
            "warnings": list(self.warnings),
            "completedPages": {k: list(v) for k, v in self.completed_pages.items()},
            "enrichedIds": list(self.enriched_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScrapeSession":
        return cls(
            session_id=data["sessionId"],
            status=data.get("status", SESSION_IN_PROGRESS),
            start_time=data.get("startTime", time.time()),
            collected_titles=[record_from_dict(r) for r in data.get("collectedTitles", [])],
            warnings=list(data.get("warnings", [])),
            completed_pages={k: list(v) for k, v in (data.get("completedPages") or {}).items()},
            enriched_ids=list(data.get("enrichedIds", [])),
        )


@dataclass(frozen=True)
class PaginationPlan:
    total_pages: int
    page_size: int
    page_locators: Tuple[str, ...]
    cached_first_page: Optional[Any] = field(default=None, compare=False, repr=False)
    total_count: Optional[int] = None


@dataclass(frozen=True)
class ProgressEvent:
    phase: str
    progress_percent: float
    collected: int
    total: int
    page_index: Optional[int] = None
    total_pages: Optional[int] = None
    new_records: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return prune(
            {
                "phase": self.phase,
                "progressPercent": round(self.progress_percent, 1),
                "collected": self.collected,
                "total": self.total,
                "pageIndex": self.page_index,
                "totalPages": self.total_pages,
                "newRecords": self.new_records,
            }
        )


@dataclass(frozen=True)
class FetchResult:
    url: str
    success: bool
    status_code: Optional[int]
    latency_ms: int
    error_type: Optional[str]


@dataclass(frozen=True)
class MetricsSnapshot:
    window_secs: int
    total_requests: int
    success_count: int
    timeout_count: int
    conn_error_count: int
    http_429_count: int
    http_403_count: int
    avg_latency_ms: float
    timestamp: float

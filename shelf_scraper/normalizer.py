from __future__ import annotations

import logging
import math
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ValidationError
from .models import (
    LIBRARY,
    LISTENING_STATUSES,
    NOT_STARTED,
    SOURCES,
    WISHLIST,
    BasicTitleRecord,
    CatalogSummary,
    NormalizedCatalogEntry,
    NormalizedPayload,
    ScrapeSession,
)

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERNS = (
    re.compile(r"^B[0-9A-Z]{9}$"),  # ASIN
    re.compile(r"^\d{10}$"),  # ISBN-10
    re.compile(r"^\d{13}$"),  # ISBN-13
)
TIME_LEFT_PATTERN = re.compile(r"^\d+h \d+m left$")


def is_valid_identifier(identifier: Any) -> bool:
    return isinstance(identifier, str) and any(p.match(identifier) for p in IDENTIFIER_PATTERNS)


def clamp_rating(value: Any) -> int:
    """Coerce a personal rating into 0..5; anything non-numeric becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return max(0, min(5, int(round(number))))


def normalize_status(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return NOT_STARTED
    return value.strip()


@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_title_entry(entry: Union[NormalizedCatalogEntry, Mapping[str, Any]]) -> None:
    """Raise ValidationError if ``entry`` violates the output schema."""
    data = entry.to_dict() if isinstance(entry, NormalizedCatalogEntry) else entry

    identifier = data.get("id")
    if not identifier:
        raise ValidationError("Missing required field: id")
    if not is_valid_identifier(identifier):
        raise ValidationError(f"Invalid identifier format: {identifier}")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError(f"Missing required field: title ({identifier})")

    rating = data.get("userRating")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5:
        raise ValidationError(f"Invalid userRating for {identifier}: must be integer 0-5, got {rating!r}")

    status = data.get("status")
    if status not in LISTENING_STATUSES and not (
        isinstance(status, str) and TIME_LEFT_PATTERN.match(status)
    ):
        raise ValidationError(f"Invalid status for {identifier}: {status!r}")

    source = data.get("source")
    if source not in SOURCES:
        raise ValidationError(f"Invalid source for {identifier}: must be LIBRARY or WISHLIST, got {source!r}")


class Normalizer:
    """Dedup, coerce and summarize collected records into the output payload."""

    def deduplicate(self, records: Iterable[BasicTitleRecord]) -> List[BasicTitleRecord]:
        """Keep one record per identifier.

        First occurrence wins, except that a LIBRARY record replaces an
        earlier WISHLIST record for the same identifier. Order of first
        appearance is preserved."""
        by_id: Dict[str, BasicTitleRecord] = {}
        for record in records:
            existing = by_id.get(record.id)
            if existing is None:
                by_id[record.id] = record
            elif record.source == LIBRARY and existing.source == WISHLIST:
                by_id[record.id] = record
        return list(by_id.values())

    def to_entry(self, record: BasicTitleRecord) -> NormalizedCatalogEntry:
        status = getattr(record, "user_status", None)
        return NormalizedCatalogEntry(
            id=record.id,
            title=(record.title or "").strip(),
            user_rating=clamp_rating(getattr(status, "personal_rating", None)),
            status=normalize_status(getattr(status, "listening_status", None)),
            source=record.source,
        )

    def normalize(
        self,
        session: ScrapeSession,
        finished_at: Optional[float] = None,
    ) -> NormalizedPayload:
        finished_at = time.time() if finished_at is None else finished_at
        entries = tuple(self.to_entry(r) for r in self.deduplicate(session.collected_titles))
        summary = CatalogSummary(
            library_count=sum(1 for e in entries if e.source == LIBRARY),
            wishlist_count=sum(1 for e in entries if e.source == WISHLIST),
            scrape_duration_ms=max(0, int((finished_at - session.start_time) * 1000)),
            scraped_at=datetime.fromtimestamp(finished_at, tz=timezone.utc).isoformat(),
            warnings=tuple(w for w in session.warnings if w),
        )
        return NormalizedPayload(title_catalog=entries, summary=summary)

    def validate_payload(self, payload: NormalizedPayload) -> ValidationReport:
        """Check every entry and cross-check the summary counts.

        Entry violations become errors; count mismatches and duplicate
        identifiers become warnings. Nothing is raised."""
        report = ValidationReport()
        for index, entry in enumerate(payload.title_catalog):
            try:
                validate_title_entry(entry)
            except ValidationError as exc:
                report.errors.append(f"Title catalog entry {index} ({entry.id}): {exc}")

        library_count = sum(1 for e in payload.title_catalog if e.source == LIBRARY)
        wishlist_count = sum(1 for e in payload.title_catalog if e.source == WISHLIST)
        if library_count != payload.summary.library_count:
            report.warnings.append(
                f"Summary libraryCount ({payload.summary.library_count}) doesn't match catalog ({library_count})"
            )
        if wishlist_count != payload.summary.wishlist_count:
            report.warnings.append(
                f"Summary wishlistCount ({payload.summary.wishlist_count}) doesn't match catalog ({wishlist_count})"
            )

        duplicates = [i for i, n in Counter(e.id for e in payload.title_catalog).items() if n > 1]
        for identifier in duplicates:
            report.warnings.append(f"Duplicate identifier after dedup: {identifier}")

        if report.errors:
            logger.warning("Payload validation found %d errors", len(report.errors))
        return report

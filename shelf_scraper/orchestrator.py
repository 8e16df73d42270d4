from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .config import ScraperConfig
from .document import Node
from .errors import (
    ExtractionError,
    FatalOrchestrationError,
    HttpStatusError,
    QueueClearedError,
    ThrottleTimeoutError,
)
from .extractor import MetadataExtractor
from .fetcher import DocumentFetcher
from .metrics import MetricsCollector
from .models import (
    LIBRARY,
    SESSION_COMPLETED,
    SESSION_FAILED,
    SESSION_IN_PROGRESS,
    SESSION_PAUSED,
    WISHLIST,
    BasicTitleRecord,
    MetricsSnapshot,
    NormalizedPayload,
    ProgressEvent,
    ScrapeSession,
    mark_detail_missing,
    merge_records,
)
from .normalizer import Normalizer, ValidationReport
from .pagination import PaginationDiscovery
from .rate_limiter import RequestThrottle, format_duration
from .retry import RetryCoordinator
from .storage import CURRENT_SESSION, SCRAPED_DATA, SESSION_HISTORY, KeyValueStore

logger = logging.getLogger(__name__)

IDLE = "Idle"
DISCOVERING_PAGINATION = "DiscoveringPagination"
SCRAPING_PRIMARY = "ScrapingPrimaryListing"
SCRAPING_SECONDARY = "ScrapingSecondaryListing"
ENRICHING = "EnrichingDetailPages"
NORMALIZING = "Normalizing"
COMPLETE = "Complete"
ERROR = "Error"
PAUSED = "Paused"

HISTORY_LIMIT = 10
METRICS_WINDOW_SECS = 300

Checkpoint = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class ListingPhase:
    name: str
    source: str
    state: str
    url: str
    progress_start: float
    progress_end: float


class ProgressChannel:
    """Single-consumer stream of progress events.

    ``publish`` never blocks; iteration ends once the channel is closed."""

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, event: ProgressEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


@dataclass
class ScrapeOutcome:
    status: str
    session: ScrapeSession
    payload: Optional[NormalizedPayload] = None
    error: Optional[str] = None
    report: Optional[ValidationReport] = None
    metrics: Optional[MetricsSnapshot] = None

    @property
    def warnings(self) -> List[str]:
        return list(self.session.warnings)


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ScrapeOrchestrator:
    """Drives a scrape run through its phases.

    Idle -> DiscoveringPagination -> ScrapingPrimaryListing ->
    ScrapingSecondaryListing -> EnrichingDetailPages -> Normalizing ->
    Complete, with Error and Paused reachable from any working phase.

    Per-page and per-title failures are recorded as session warnings and
    never abort the run. Only an unusable landing page (CAPTCHA, signed
    out, unreachable) is fatal."""

    def __init__(
        self,
        fetcher: DocumentFetcher,
        config: Optional[ScraperConfig] = None,
        extractor: Optional[MetadataExtractor] = None,
        throttle: Optional[RequestThrottle] = None,
        retry: Optional[RetryCoordinator] = None,
        pagination: Optional[PaginationDiscovery] = None,
        normalizer: Optional[Normalizer] = None,
        store: Optional[KeyValueStore] = None,
        checkpoint: Optional[Checkpoint] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.config = config or ScraperConfig()
        self._fetcher = fetcher
        self._extractor = extractor or MetadataExtractor(origin=self.config.origin)
        self._throttle = throttle or RequestThrottle(rate=self.config.requests_per_second, sleep=sleep)
        self._retry = retry or RetryCoordinator(
            max_retries=self.config.max_retries,
            base_delay=self.config.base_delay,
            rate_limit_cooldown=self.config.rate_limit_cooldown,
            sleep=sleep,
        )
        self._pagination = pagination or PaginationDiscovery(self._fetch_document)
        self._normalizer = normalizer or Normalizer()
        self._store = store
        self._checkpoint = checkpoint
        self._metrics = metrics
        self._sleep = sleep

        self.events = ProgressChannel()
        self.state = IDLE
        self.session: Optional[ScrapeSession] = None
        self._pause_requested = False

    @property
    def throttle(self) -> RequestThrottle:
        return self._throttle

    def pause(self) -> None:
        """Stop after the current page or title; queued detail fetches are rejected."""
        if self._pause_requested:
            return
        logger.info("Pause requested in state %s", self.state)
        self._pause_requested = True
        self._throttle.clear()

    async def run(self, resume: Optional[ScrapeSession] = None) -> ScrapeOutcome:
        """Run (or resume) a scrape and return its outcome.

        Never raises for scrape failures: a fatal error ends in state
        Error with ``outcome.error`` set and the session checkpointed."""
        if self.events.closed:
            self.events = ProgressChannel()
        session = resume or ScrapeSession(session_id=new_session_id())
        session.status = SESSION_IN_PROGRESS
        self.session = session
        self._pause_requested = False
        if resume is not None:
            logger.info(
                "Resuming session %s with %d titles collected",
                session.session_id,
                len(session.collected_titles),
            )
        try:
            outcome = await self._run(session)
        except Exception as exc:  # noqa: BLE001
            message = f"Sync failed: {exc}"
            logger.error(message)
            self._set_state(ERROR)
            session.status = SESSION_FAILED
            await self._save_checkpoint(session)
            outcome = ScrapeOutcome(status=ERROR, session=session, error=message)
        finally:
            self.events.close()
        outcome.metrics = self._metrics_snapshot()
        return outcome

    async def _run(self, session: ScrapeSession) -> ScrapeOutcome:
        landing = await self._open_landing()

        library = ListingPhase("library", LIBRARY, SCRAPING_PRIMARY, self.config.library_url, 0, 40)
        await self._scrape_listing(session, library, landing)
        if self._pause_requested:
            return await self._finish_paused(session)

        if self.config.include_wishlist:
            await self._scrape_secondary(session)
            if self._pause_requested:
                return await self._finish_paused(session)

        if self.config.enrich_details:
            await self._enrich(session)
            if self._pause_requested:
                return await self._finish_paused(session)

        return await self._finish(session)

    async def _fetch_document(self, url: str) -> Node:
        return await self._fetcher.fetch_document(url)

    async def _open_landing(self) -> Node:
        url = self.config.library_url
        try:
            doc = await self._retry.execute(
                functools.partial(self._fetch_document, url), context="Library landing page"
            )
        except Exception as exc:  # noqa: BLE001
            raise FatalOrchestrationError(f"Could not load {url}: {exc}") from exc
        if self._extractor.detect_captcha(doc):
            raise FatalOrchestrationError("CAPTCHA detected. Solve it in a browser, then try again.")
        if not self._extractor.is_logged_in(doc):
            raise FatalOrchestrationError("Not signed in. Export fresh cookies and try again.")
        return doc

    async def _scrape_listing(self, session: ScrapeSession, phase: ListingPhase, landing: Optional[Node]) -> None:
        self._set_state(DISCOVERING_PAGINATION)
        self._emit(f"Detecting {phase.name} pagination", phase.progress_start, session)
        plan = await self._pagination.discover(phase.url, landing)
        self._set_state(phase.state)

        total = plan.total_pages
        logger.info("Scraping %s: %d page(s)", phase.name, total)
        for page_number, locator in enumerate(plan.page_locators, start=1):
            if self._pause_requested:
                return
            if session.is_page_done(phase.name, page_number):
                logger.info("Skipping %s page %d (already scraped)", phase.name, page_number)
                continue
            try:
                if page_number == 1 and plan.cached_first_page is not None:
                    doc = plan.cached_first_page
                else:
                    doc = await self._fetch_document(locator)
                records = self._extractor.extract_listing_page(doc, phase.source)
            except Exception as exc:  # noqa: BLE001
                message = f"Failed to scrape {phase.name} page {page_number}/{total}: {exc}"
                logger.warning(message)
                session.warn(message)
            else:
                session.add_titles(records)
                session.mark_page_done(phase.name, page_number)
                span = phase.progress_end - phase.progress_start
                self._emit(
                    f"Scraping {phase.name} page {page_number} of {total}",
                    phase.progress_start + span * page_number / total,
                    session,
                    total=max(plan.total_count or 0, len(session.collected_titles)),
                    page_index=page_number,
                    total_pages=total,
                    new_records=len(records),
                )
                await self._save_checkpoint(session)

            if page_number < total:
                await self._sleep(self.config.page_delay)

    async def _scrape_secondary(self, session: ScrapeSession) -> None:
        wishlist = ListingPhase("wishlist", WISHLIST, SCRAPING_SECONDARY, self.config.wishlist_url, 40, 50)
        self._set_state(SCRAPING_SECONDARY)
        try:
            landing = await self._fetch_document(wishlist.url)
        except HttpStatusError as exc:
            if exc.status in (403, 404):
                logger.info("Wishlist not available (HTTP %d), skipping", exc.status)
            else:
                self._warn(session, f"Wishlist scraping failed (non-fatal): {exc}")
            return
        except Exception as exc:  # noqa: BLE001
            self._warn(session, f"Wishlist scraping failed (non-fatal): {exc}")
            return

        if not self._extractor.has_listing(landing):
            logger.info("Wishlist not accessible or empty, skipping")
            return

        try:
            await self._scrape_listing(session, wishlist, landing)
        except Exception as exc:  # noqa: BLE001
            self._warn(session, f"Wishlist scraping failed (non-fatal): {exc}")

    async def _enrich(self, session: ScrapeSession) -> None:
        self._set_state(ENRICHING)
        done_ids = set(session.enriched_ids)
        pending = [
            (index, record)
            for index, record in enumerate(session.collected_titles)
            if record.id not in done_ids
        ]
        total = len(pending)
        logger.info(
            "Enriching %d titles (est. %s at %s req/sec)",
            total,
            format_duration(self._throttle.estimate_time(total)),
            self._throttle.get_rate(),
        )
        self._emit("Fetching detail pages", 50, session, total=total)

        futures = [
            self._throttle.enqueue(functools.partial(self._enrich_one, record))
            for _, record in pending
        ]
        completed = 0
        try:
            for (index, record), future in zip(pending, futures):
                try:
                    detail = await future
                except QueueClearedError:
                    logger.info("Detail fetching stopped with %d of %d titles enriched", completed, total)
                    break
                except Exception as exc:  # noqa: BLE001
                    self._warn(session, f'Failed to fetch detail page for {record.id} - "{record.title}": {exc}')
                    session.collected_titles[index] = mark_detail_missing(record)
                else:
                    session.collected_titles[index] = merge_records(record, detail)

                session.enriched_ids.append(record.id)
                completed += 1
                self._emit(
                    f"Fetching details {completed} of {total}",
                    50 + 45 * completed / total,
                    session,
                    total=total,
                )
                if completed % self.config.checkpoint_interval == 0:
                    await self._save_checkpoint(session)
        finally:
            if not self._throttle.is_idle():
                self._throttle.clear()
            for future in futures:
                if future.done() and not future.cancelled():
                    future.exception()

        try:
            await self._throttle.wait_until_idle(self.config.idle_timeout)
        except ThrottleTimeoutError as exc:
            logger.warning("%s", exc)
        await self._save_checkpoint(session)

    async def _enrich_one(self, record: BasicTitleRecord) -> Dict[str, Any]:
        return await self._retry.execute_with_429_handling(
            functools.partial(self._fetch_detail, record),
            on_rate_limit_detected=self._reduce_rate,
            context=f"Detail page {record.id}",
        )

    async def _fetch_detail(self, record: BasicTitleRecord) -> Dict[str, Any]:
        url = record.detail_url or f"{self.config.origin}/pd/{record.id}"
        doc = await self._fetch_document(url)
        detail = self._extractor.extract_detail_page(doc, record.id)
        if detail is None:
            raise ExtractionError(f"Detail page did not match {record.id}")
        return detail

    def _reduce_rate(self) -> None:
        old_rate = self._throttle.get_rate()
        new_rate = max(1, math.floor(old_rate / 2))
        self._throttle.set_rate(new_rate)
        log = {
            "timestamp": time.time(),
            "event": "rate_reduced",
            "old_rate": old_rate,
            "new_rate": self._throttle.get_rate(),
            "reason": "http_429",
        }
        logger.warning(json.dumps(log, ensure_ascii=False))

    async def _finish(self, session: ScrapeSession) -> ScrapeOutcome:
        self._set_state(NORMALIZING)
        self._emit("Normalizing", 95, session)

        payload = self._normalizer.normalize(session)
        report = self._normalizer.validate_payload(payload)
        for message in report.errors + report.warnings:
            session.warn(message)
        if report.errors or report.warnings:
            payload = replace(payload, summary=replace(payload.summary, warnings=tuple(session.warnings)))

        session.status = SESSION_COMPLETED
        self._persist_result(session, payload)
        self._set_state(COMPLETE)
        self._emit("Complete", 100, session, total=len(payload.title_catalog))
        logger.info(
            "Scrape complete: %d library, %d wishlist, %d warnings",
            payload.summary.library_count,
            payload.summary.wishlist_count,
            len(payload.summary.warnings),
        )
        return ScrapeOutcome(status=COMPLETE, session=session, payload=payload, report=report)

    async def _finish_paused(self, session: ScrapeSession) -> ScrapeOutcome:
        self._set_state(PAUSED)
        session.status = SESSION_PAUSED
        await self._save_checkpoint(session)
        logger.info("Scrape paused with %d titles collected", len(session.collected_titles))
        return ScrapeOutcome(status=PAUSED, session=session)

    async def _save_checkpoint(self, session: ScrapeSession) -> None:
        snapshot = session.to_dict()
        try:
            if self._checkpoint is not None:
                result = self._checkpoint(snapshot)
                if inspect.isawaitable(result):
                    await result
            if self._store is not None:
                self._store.save(CURRENT_SESSION, snapshot)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to save progress: %s", exc)

    def _persist_result(self, session: ScrapeSession, payload: NormalizedPayload) -> None:
        if self._store is None:
            return
        try:
            self._store.save(SCRAPED_DATA, payload.to_dict())
            history = self._store.load(SESSION_HISTORY) or []
            history.append(
                {
                    "sessionId": session.session_id,
                    "status": session.status,
                    "startTime": session.start_time,
                    "endTime": time.time(),
                    "scrapedCount": len(session.collected_titles),
                    "libraryCount": payload.summary.library_count,
                    "wishlistCount": payload.summary.wishlist_count,
                    "warningCount": len(payload.summary.warnings),
                }
            )
            self._store.save(SESSION_HISTORY, history[-HISTORY_LIMIT:])
            self._store.delete(CURRENT_SESSION)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist scrape result: %s", exc)

    def _metrics_snapshot(self) -> Optional[MetricsSnapshot]:
        if self._metrics is None:
            return None
        snapshot = self._metrics.snapshot(METRICS_WINDOW_SECS)
        logger.info(
            "Fetch metrics: %d requests, %d ok, %d timeouts, %d http_429, avg %.0fms",
            snapshot.total_requests,
            snapshot.success_count,
            snapshot.timeout_count,
            snapshot.http_429_count,
            snapshot.avg_latency_ms,
        )
        return snapshot

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.debug("State %s -> %s", self.state, state)
            self.state = state

    def _warn(self, session: ScrapeSession, message: str) -> None:
        logger.warning(message)
        session.warn(message)

    def _emit(
        self,
        phase: str,
        progress: float,
        session: ScrapeSession,
        total: Optional[int] = None,
        **extra: Any,
    ) -> None:
        collected = len(session.collected_titles)
        event = ProgressEvent(
            phase=phase,
            progress_percent=min(100.0, max(0.0, progress)),
            collected=collected,
            total=collected if total is None else total,
            **extra,
        )
        self.events.publish(event)

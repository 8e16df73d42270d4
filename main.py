from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Optional

from shelf_scraper.config import ScraperConfig
from shelf_scraper.curl_config import load_curl_config
from shelf_scraper.factory import BACKENDS, FetcherFactory
from shelf_scraper.metrics import MetricsCollector
from shelf_scraper.models import SESSION_COMPLETED, ScrapeSession
from shelf_scraper.orchestrator import COMPLETE, ScrapeOrchestrator
from shelf_scraper.storage import CURRENT_SESSION, SETTINGS, JsonFileStore

DEFAULT_CURL_CONFIG_PATH = "curl_config.txt"
DEFAULT_STATE_DIR = ".shelf_scraper"


def _load_resume(store: JsonFileStore) -> Optional[ScrapeSession]:
    data = store.load(CURRENT_SESSION)
    if not data or data.get("status") == SESSION_COMPLETED:
        return None
    return ScrapeSession.from_dict(data)


async def _print_events(orchestrator: ScrapeOrchestrator) -> None:
    async for event in orchestrator.events:
        print(
            f"[{event.progress_percent:5.1f}%] {event.phase} "
            f"collected={event.collected} total={event.total}"
        )


async def run_scrape(config: ScraperConfig, args: argparse.Namespace) -> int:
    store = JsonFileStore(args.state_dir)
    metrics = MetricsCollector()

    headers, cookies = {}, {}
    try:
        fields = load_curl_config(args.curl_config)
        headers, cookies = fields.headers, fields.cookies
    except FileNotFoundError:
        logging.getLogger(__name__).warning("No curl config at %s; requests will be anonymous", args.curl_config)

    factory = FetcherFactory(
        metrics=metrics,
        timeout=config.request_timeout,
        headers=headers,
        cookies=cookies,
        impersonate=config.impersonate,
    )
    orchestrator = ScrapeOrchestrator(
        fetcher=factory.create_fetcher(config.backend),
        config=config,
        store=store,
        metrics=metrics,
    )

    resume = _load_resume(store) if args.resume else None
    printer = asyncio.create_task(_print_events(orchestrator))
    outcome = await orchestrator.run(resume=resume)
    await printer

    if outcome.payload is not None:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(outcome.payload.to_dict(), f, ensure_ascii=False, indent=2)

    for warning in outcome.warnings:
        print(f"warning: {warning}")
    if outcome.metrics is not None:
        print(f"requests={outcome.metrics.total_requests} http_429={outcome.metrics.http_429_count}")

    if outcome.status != COMPLETE:
        print(f"\nSTOPPED: state={outcome.status} error={outcome.error}")
        return 1
    summary = outcome.payload.summary
    print(
        f"\nDONE: library={summary.library_count} wishlist={summary.wishlist_count} "
        f"warnings={len(summary.warnings)} output={args.output}"
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--run", action="store_true", help="Scrape the library and wishlist")
    parser.add_argument("--resume", action="store_true", help="Resume the last unfinished session")

    parser.add_argument("--origin", default=None, help="Storefront origin, e.g. https://www.audible.com")
    parser.add_argument("--rate", type=float, default=None, help="Detail page requests per second (1-20)")
    parser.add_argument("--no-wishlist", action="store_true", help="Skip the wishlist")
    parser.add_argument("--no-details", action="store_true", help="Skip detail page enrichment")
    parser.add_argument("--backend", choices=BACKENDS, default=None, help="HTTP backend")

    parser.add_argument("--state-dir", default=DEFAULT_STATE_DIR, help="Directory for settings and checkpoints")
    parser.add_argument("--curl-config", default=DEFAULT_CURL_CONFIG_PATH, help="Path to curl config (curl_config.txt)")
    parser.add_argument("--output", default="catalog.json", help="Output JSON file path")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.run:
        print("Nothing to do. Use --run to scrape.")
        return

    settings = JsonFileStore(args.state_dir).load(SETTINGS) or {}
    config = ScraperConfig.from_mapping(settings).merged(
        {
            "origin": args.origin,
            "requests_per_second": args.rate,
            "include_wishlist": False if args.no_wishlist else None,
            "enrich_details": False if args.no_details else None,
            "backend": args.backend,
        }
    )
    raise SystemExit(asyncio.run(run_scrape(config, args)))


if __name__ == "__main__":
    main()

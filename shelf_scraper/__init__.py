"""Audiobook library and wishlist scraper.

Collects the titles a signed-in user owns or has wishlisted, enriches them
from each title's detail page, and normalizes the result into a catalog.

Key modules:
    orchestrator    -- ScrapeOrchestrator state machine and ProgressChannel
    pagination      -- PaginationDiscovery for listing page plans
    extractor       -- MetadataExtractor for listing rows and detail pages
    strategies      -- FieldStrategy chain used per detail field
    normalizer      -- Normalizer, dedup and output validation
    rate_limiter    -- RequestThrottle, a FIFO requests/sec dispatcher
    retry           -- RetryCoordinator with 429 cooldown handling
    backoff         -- BackoffStrategy for exponential retry delays
    fetcher         -- DocumentFetcher backends (curl_cffi, requests)
    factory         -- FetcherFactory for creating fetchers
    curl_config     -- auth headers and cookies from a copied curl command
    document        -- Node wrapper over BeautifulSoup
    metrics         -- MetricsCollector for fetch telemetry
    storage         -- KeyValueStore, JsonFileStore and MemoryStore
    config          -- ScraperConfig settings
    models          -- records, session, payload and event dataclasses
    errors          -- exception hierarchy
"""

"""Tests for PaginationDiscovery and its page helpers."""

import unittest
from urllib.parse import parse_qs, urlsplit

from shelf_scraper.document import parse_document
from shelf_scraper.pagination import (
    PaginationDiscovery,
    parse_result_count,
    read_max_page_size,
    with_query,
)

from sample_pages import asin, library_row, listing_page

LISTING_URL = "https://www.audible.com/library/titles"


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestDiscover(unittest.IsolatedAsyncioTestCase):
    """Verify page count detection and locator generation."""

    def discovery(self, markup=None, error=None):
        self.fetched = []

        async def fetch(url):
            self.fetched.append(url)
            if error is not None:
                raise error
            return parse_document(markup)

        return PaginationDiscovery(fetch)

    async def test_page_count_from_result_summary(self):
        """'1-50 of 247 results' at 50 per page is 5 pages."""
        rows = [library_row(asin(n), f"T{n}") for n in range(50)]
        landing = parse_document(listing_page(rows, page_sizes=(20, 50)))
        discovery = self.discovery(listing_page(rows, total=247, page_sizes=(20, 50)))

        plan = await discovery.discover(LISTING_URL, landing)
        self.assertEqual(plan.total_pages, 5)
        self.assertEqual(plan.page_size, 50)
        self.assertEqual(plan.total_count, 247)
        self.assertEqual([_query(u)["page"] for u in plan.page_locators], ["1", "2", "3", "4", "5"])
        self.assertTrue(all(_query(u)["pageSize"] == "50" for u in plan.page_locators))
        self.assertEqual(len(self.fetched), 1)
        self.assertIsNotNone(plan.cached_first_page)

    async def test_no_summary_is_single_page(self):
        """Without a result summary or page links there is one page."""
        discovery = self.discovery(listing_page([library_row(asin(1), "Only")]))
        plan = await discovery.discover(LISTING_URL)
        self.assertEqual(plan.total_pages, 1)
        self.assertEqual(len(plan.page_locators), 1)

    async def test_page_number_elements(self):
        """The highest page link is used when the summary is missing."""
        discovery = self.discovery(listing_page([], page_numbers=3))
        plan = await discovery.discover(LISTING_URL)
        self.assertEqual(plan.total_pages, 3)

    async def test_empty_listing_still_has_one_page(self):
        """Zero results still yields a one-page plan."""
        discovery = self.discovery(listing_page([], total=0))
        plan = await discovery.discover(LISTING_URL)
        self.assertEqual(plan.total_pages, 1)

    async def test_fetch_failure_falls_back_to_single_page(self):
        """Any discovery failure degrades to the current document."""
        landing = parse_document(listing_page([library_row(asin(1), "Here")]))
        discovery = self.discovery(error=RuntimeError("connection reset"))

        plan = await discovery.discover(LISTING_URL, landing)
        self.assertEqual(plan.total_pages, 1)
        self.assertEqual(plan.page_locators, (LISTING_URL,))
        self.assertIs(plan.cached_first_page, landing)

    async def test_listing_params_are_added(self):
        """Locators carry the lighter-markup listing parameters."""
        discovery = self.discovery(listing_page([]))
        plan = await discovery.discover(LISTING_URL)
        self.assertEqual(_query(plan.page_locators[0])["ipRedirectOverride"], "true")


class TestHelpers(unittest.TestCase):
    def test_read_max_page_size(self):
        doc = parse_document(listing_page([], page_sizes=(20, 30, 50)))
        self.assertEqual(read_max_page_size(doc), 50)
        self.assertEqual(read_max_page_size(parse_document("<p></p>"), default=25), 25)

    def test_parse_result_count_with_thousands(self):
        doc = parse_document(listing_page([], total=1234))
        self.assertEqual(parse_result_count(doc), 1234)

    def test_with_query_keeps_existing_params(self):
        url = with_query("https://x.test/library?sort=title", page="2")
        self.assertEqual(_query(url), {"sort": "title", "page": "2"})


if __name__ == "__main__":
    unittest.main()

"""Tests for the detail field strategy classes."""

import unittest

from shelf_scraper.document import parse_document, text_of
from shelf_scraper.strategies import (
    ExtractionContext,
    MarkupStrategy,
    StructuredDataStrategy,
    first_non_empty,
)


def _context(markup="<h1>Markup Title</h1>", structured=None):
    return ExtractionContext(document=parse_document(markup), structured=structured or {}, identifier="B000000001")


class TestStructuredDataStrategy(unittest.TestCase):
    def test_reads_and_transforms(self):
        strategy = StructuredDataStrategy("name", str.upper)
        self.assertEqual(strategy.extract(_context(structured={"name": "dune"})), "DUNE")

    def test_missing_key(self):
        self.assertIsNone(StructuredDataStrategy("name").extract(_context()))


class TestFirstNonEmpty(unittest.TestCase):
    """Verify priority ordering and fallthrough."""

    def setUp(self):
        self.strategies = [
            StructuredDataStrategy("name"),
            MarkupStrategy(lambda d: text_of(d, "h1"), "h1"),
        ]

    def test_structured_data_preferred(self):
        context = _context(structured={"name": "Structured Title"})
        self.assertEqual(first_non_empty(self.strategies, context), "Structured Title")

    def test_blank_value_falls_through(self):
        context = _context(structured={"name": "   "})
        self.assertEqual(first_non_empty(self.strategies, context), "Markup Title")

    def test_failing_strategy_is_skipped(self):
        strategies = [StructuredDataStrategy("duration", int)] + self.strategies
        context = _context(structured={"duration": "PT1H"})
        self.assertEqual(first_non_empty(strategies, context), "Markup Title")

    def test_default_when_nothing_found(self):
        context = _context(markup="<p></p>")
        self.assertEqual(first_non_empty(self.strategies, context, default=[]), [])


if __name__ == "__main__":
    unittest.main()

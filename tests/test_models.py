"""Tests for data model classes."""

import unittest

from shelf_scraper.models import (
    IN_PROGRESS,
    LIBRARY,
    WISHLIST,
    BasicTitleRecord,
    DetailedTitleRecord,
    PaginationPlan,
    ProgressEvent,
    ScrapeSession,
    SeriesInfo,
    UserStatusRecord,
    mark_detail_missing,
    merge_records,
    record_from_dict,
)


def _basic(**overrides):
    values = dict(
        id="B000000001",
        title="Listing Title",
        source=WISHLIST,
        authors=["Listed Author"],
        cover_image_url="https://img/listing.jpg",
        user_status=UserStatusRecord(personal_rating=4, listening_status=IN_PROGRESS, progress_percent=30),
    )
    values.update(overrides)
    return BasicTitleRecord(**values)


class TestMergeRecords(unittest.TestCase):
    """Verify detail-over-listing precedence."""

    def test_non_empty_detail_values_win(self):
        merged = merge_records(_basic(), {"title": "Detail Title", "publisher": "House", "authors": ["A", "B"]})
        self.assertIsInstance(merged, DetailedTitleRecord)
        self.assertEqual(merged.title, "Detail Title")
        self.assertEqual(merged.publisher, "House")
        self.assertEqual(merged.authors, ["A", "B"])

    def test_empty_detail_values_keep_listing(self):
        merged = merge_records(_basic(), {"title": "  ", "authors": [], "cover_image_url": None})
        self.assertEqual(merged.title, "Listing Title")
        self.assertEqual(merged.authors, ["Listed Author"])
        self.assertEqual(merged.cover_image_url, "https://img/listing.jpg")

    def test_identity_source_and_status_come_from_listing(self):
        merged = merge_records(
            _basic(),
            {"id": "B999999999", "source": LIBRARY, "user_status": UserStatusRecord(personal_rating=1)},
        )
        self.assertEqual(merged.id, "B000000001")
        self.assertEqual(merged.source, WISHLIST)
        self.assertEqual(merged.user_status.personal_rating, 4)

    def test_mark_detail_missing(self):
        missing = mark_detail_missing(_basic())
        self.assertTrue(missing.detail_page_missing)
        self.assertEqual(missing.title, "Listing Title")


class TestScrapeSession(unittest.TestCase):
    """Verify checkpoint serialization used for resume."""

    def test_checkpoint_restores_progress(self):
        session = ScrapeSession(session_id="session_1", start_time=10.0)
        session.add_titles([
            _basic(series=SeriesInfo("Saga", "2")),
            merge_records(_basic(id="B000000002"), {"publisher": "House"}),
        ])
        session.mark_page_done("library", 1)
        session.mark_page_done("library", 1)
        session.enriched_ids.append("B000000002")
        session.warn("page 2 failed")

        restored = ScrapeSession.from_dict(session.to_dict())
        self.assertEqual(restored.session_id, "session_1")
        self.assertEqual(restored.completed_pages, {"library": [1]})
        self.assertTrue(restored.is_page_done("library", 1))
        self.assertFalse(restored.is_page_done("wishlist", 1))
        self.assertEqual(restored.enriched_ids, ["B000000002"])
        self.assertEqual(restored.warnings, ["page 2 failed"])
        first, second = restored.collected_titles
        self.assertEqual(first.series, SeriesInfo("Saga", "2"))
        self.assertEqual(first.user_status.listening_status, IN_PROGRESS)
        self.assertNotIsInstance(first, DetailedTitleRecord)
        self.assertIsInstance(second, DetailedTitleRecord)
        self.assertEqual(second.publisher, "House")

    def test_to_dict_uses_camel_case(self):
        data = _basic().to_dict()
        self.assertEqual(data["coverImageUrl"], "https://img/listing.jpg")
        self.assertEqual(data["userStatus"]["personalRating"], 4)
        self.assertNotIn("series", data)

    def test_record_from_dict_defaults(self):
        record = record_from_dict({"id": "B000000003"})
        self.assertEqual(record.source, LIBRARY)
        self.assertEqual(record.title, "")


class TestFrozenModels(unittest.TestCase):
    def test_plan_is_immutable(self):
        plan = PaginationPlan(total_pages=1, page_size=50, page_locators=("u",))
        with self.assertRaises(AttributeError):
            plan.total_pages = 2

    def test_progress_event_drops_unset_fields(self):
        data = ProgressEvent(phase="Normalizing", progress_percent=95, collected=3, total=3).to_dict()
        self.assertEqual(data, {"phase": "Normalizing", "progressPercent": 95, "collected": 3, "total": 3})


if __name__ == "__main__":
    unittest.main()

"""Tests for the key-value stores."""

import os
import tempfile
import unittest

from shelf_scraper.storage import CURRENT_SESSION, JsonFileStore, MemoryStore


class StoreContract:
    """Behaviour shared by every KeyValueStore."""

    def make_store(self):
        raise NotImplementedError

    def test_save_load_delete(self):
        store = self.make_store()
        store.save(CURRENT_SESSION, {"sessionId": "s1", "pages": [1, 2]})
        self.assertEqual(store.load(CURRENT_SESSION), {"sessionId": "s1", "pages": [1, 2]})
        store.delete(CURRENT_SESSION)
        self.assertIsNone(store.load(CURRENT_SESSION))

    def test_missing_key(self):
        store = self.make_store()
        self.assertIsNone(store.load("nothing"))
        store.delete("nothing")

    def test_saved_value_is_a_copy(self):
        store = self.make_store()
        value = {"warnings": []}
        store.save("k", value)
        value["warnings"].append("later")
        self.assertEqual(store.load("k"), {"warnings": []})


class TestMemoryStore(StoreContract, unittest.TestCase):
    def make_store(self):
        return MemoryStore()


class TestJsonFileStore(StoreContract, unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def make_store(self):
        return JsonFileStore(self._tmp.name)

    def test_one_file_per_key(self):
        store = self.make_store()
        store.save("settings", {"rate": 5})
        self.assertEqual(sorted(os.listdir(self._tmp.name)), ["settings.json"])

    def test_rejects_path_like_keys(self):
        with self.assertRaises(ValueError):
            self.make_store().save("../escape", {})


if __name__ == "__main__":
    unittest.main()

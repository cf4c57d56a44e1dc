import unittest

from partsmanager.exports import UnsupportedCollection, export_collection
from partsmanager.storage import InMemoryStorageClient
from partsmanager.store import InMemoryDocumentStore


class ExportTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.storage = InMemoryStorageClient()
        self.store.set("products/a", {"userId": "u1", "name": "Belt", "isDeleted": False})
        self.store.set("products/b", {"userId": "u1", "name": "Old", "isDeleted": True})
        self.store.set("products/c", {"userId": "u2", "name": "Other"})

    def test_export_active_documents(self):
        result = export_collection(self.store, self.storage, "products", "u1", now=1700000000.0)
        self.assertEqual(result.count, 1)
        self.assertEqual(result.key, "exports/u1/products-1700000000.json")
        self.assertIn(result.key, result.url)

        payload = self.storage.read_json(result.key)
        self.assertEqual(payload["count"], 1)
        self.assertEqual(payload["items"][0]["id"], "a")
        self.assertGreater(result.size_bytes, 0)

    def test_export_including_deleted(self):
        result = export_collection(
            self.store, self.storage, "products", "u1", include_deleted=True
        )
        self.assertEqual(result.count, 2)

    def test_unknown_collection_rejected(self):
        with self.assertRaises(UnsupportedCollection):
            export_collection(self.store, self.storage, "users", "u1")


if __name__ == "__main__":
    unittest.main()

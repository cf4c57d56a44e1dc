import unittest

from partsmanager.stock import (
    InsufficientStock,
    StockUpdateError,
    add_product_or_update_stock,
    adjust_stock,
    import_products,
)
from partsmanager.store import DocumentNotFound, InMemoryDocumentStore


class BrokenTransactionStore(InMemoryDocumentStore):
    def run_transaction(self, fn):
        raise RuntimeError("permission denied")


class StockTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()

    def test_new_reference_creates_product(self):
        product_id, created = add_product_or_update_stock(
            self.store,
            {"name": "Oil filter", "reference": "OF-1", "stock": 4, "price": 12.0},
            "u1",
        )
        self.assertTrue(created)
        doc = self.store.get(f"products/{product_id}")
        self.assertEqual(doc.get("version"), 1)
        self.assertFalse(doc.get("isDeleted"))
        self.assertEqual(doc.get("userId"), "u1")
        self.assertEqual(doc.get("stock"), 4)

    def test_existing_reference_increments_stock(self):
        first_id, _ = add_product_or_update_stock(
            self.store,
            {"name": "Oil filter", "reference": "OF-1", "stock": 4, "purchasePrice": 5.0, "price": 8.0},
            "u1",
        )
        second_id, created = add_product_or_update_stock(
            self.store,
            {"name": "Oil filter", "reference": "OF-1", "stock": 6, "purchasePrice": 6.0, "price": 9.0},
            "u1",
        )
        self.assertFalse(created)
        self.assertEqual(first_id, second_id)
        doc = self.store.get(f"products/{first_id}")
        self.assertEqual(doc.get("stock"), 10)
        self.assertEqual(doc.get("purchasePrice"), 6.0)
        self.assertEqual(doc.get("price"), 9.0)
        self.assertEqual(doc.get("version"), 2)
        self.assertEqual(len(self.store.query("products")), 1)

    def test_increment_without_prices_keeps_stored_prices(self):
        product_id, _ = add_product_or_update_stock(
            self.store,
            {"reference": "F1", "stock": 5, "purchasePrice": 10.0, "price": 15.0},
            "u1",
        )
        add_product_or_update_stock(self.store, {"reference": "F1", "stock": 3}, "u1")
        doc = self.store.get(f"products/{product_id}")
        self.assertEqual(doc.get("stock"), 8)
        self.assertEqual(doc.get("purchasePrice"), 10.0)
        self.assertEqual(doc.get("price"), 15.0)

    def test_blank_reference_always_creates(self):
        add_product_or_update_stock(self.store, {"name": "A", "reference": "  ", "stock": 1}, "u1")
        add_product_or_update_stock(self.store, {"name": "A", "reference": "  ", "stock": 1}, "u1")
        self.assertEqual(len(self.store.query("products")), 2)

    def test_reference_match_is_per_user(self):
        add_product_or_update_stock(self.store, {"reference": "R", "stock": 1}, "u1")
        _, created = add_product_or_update_stock(self.store, {"reference": "R", "stock": 1}, "u2")
        self.assertTrue(created)

    def test_transaction_failure_is_wrapped(self):
        store = BrokenTransactionStore()
        with self.assertRaises(StockUpdateError) as ctx:
            add_product_or_update_stock(store, {"reference": "R", "stock": 1}, "u1")
        self.assertEqual(ctx.exception.operation, "create")
        self.assertIsInstance(ctx.exception.cause, RuntimeError)

    def test_adjust_stock(self):
        self.store.set("products/p1", {"stock": 5, "version": 3})
        result = adjust_stock(self.store, "p1", -2)
        self.assertEqual(result["stock"], 3)
        self.assertEqual(self.store.get("products/p1").get("version"), 4)

        with self.assertRaises(InsufficientStock):
            adjust_stock(self.store, "p1", -10)
        self.assertEqual(self.store.get("products/p1").get("stock"), 3)

        with self.assertRaises(DocumentNotFound):
            adjust_stock(self.store, "missing", 1)

    def test_import_counts_created_and_updated(self):
        add_product_or_update_stock(self.store, {"reference": "A", "stock": 1}, "u1")
        summary = import_products(
            self.store,
            [
                {"reference": "A", "stock": 2},
                {"reference": "B", "stock": 3},
                {"name": "No ref", "stock": 1},
            ],
            "u1",
        )
        self.assertEqual(summary["total"], 3)
        self.assertEqual(summary["created"], 2)
        self.assertEqual(summary["updated"], 1)
        self.assertEqual(summary["errors"], [])
        existing = self.store.query("products", [("reference", "==", "A")])
        self.assertEqual(existing[0].get("stock"), 3)


if __name__ == "__main__":
    unittest.main()

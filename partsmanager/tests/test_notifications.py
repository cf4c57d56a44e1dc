import unittest

from partsmanager.notifications import (
    LOW_STOCK_ALERT_TYPE,
    create_grouped_low_stock_notification,
    detect_low_stock_products,
    get_low_stock_alerts,
    send_low_stock_notification_for_user,
    send_low_stock_notifications,
)
from partsmanager.store import InMemoryDocumentStore


class LowStockNotificationTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.store.set("products/a", {"userId": "u1", "name": "Belt", "stock": 2, "isDeleted": False})
        self.store.set("products/b", {"userId": "u1", "name": "Pad", "stock": 50, "isDeleted": False})
        self.store.set("products/c", {"userId": "u1", "name": "Gone", "stock": 0, "isDeleted": True})
        self.store.set("products/d", {"userId": "u2", "stock": 1, "isDeleted": False})

    def test_detect_ignores_deleted_and_other_users(self):
        products = detect_low_stock_products(self.store, user_id="u1")
        self.assertEqual([p.productId for p in products], ["a"])
        self.assertEqual(products[0].productName, "Belt")
        self.assertEqual(products[0].threshold, 10)

        everyone = detect_low_stock_products(self.store, threshold=100)
        self.assertEqual(sorted(p.productId for p in everyone), ["a", "b", "d"])
        self.assertEqual(
            [p.productName for p in everyone if p.productId == "d"], ["Unknown Product"]
        )

    def test_grouped_notification_is_reused_while_unread(self):
        products = detect_low_stock_products(self.store, user_id="u1")
        first = create_grouped_low_stock_notification(self.store, "u1", products, now=1.0)
        second = create_grouped_low_stock_notification(self.store, "u1", products, now=2.0)
        self.assertEqual(first, second)
        doc = self.store.get(f"notifications/{first}")
        self.assertEqual(doc.get("type"), LOW_STOCK_ALERT_TYPE)
        self.assertEqual(doc.get("productCount"), 1)
        self.assertEqual(doc.get("createdAt"), 1.0)
        self.assertEqual(doc.get("updatedAt"), 2.0)

        self.store.update(f"notifications/{first}", {"read": True})
        third = create_grouped_low_stock_notification(self.store, "u1", products, now=3.0)
        self.assertNotEqual(third, first)

    def test_empty_product_list_creates_nothing(self):
        self.assertIsNone(create_grouped_low_stock_notification(self.store, "u1", []))
        self.assertEqual(self.store.query("notifications"), [])

    def test_send_for_user(self):
        result = send_low_stock_notification_for_user(self.store, "u1")
        self.assertEqual(result, {"lowStockProducts": 1, "notificationCreated": True, "error": None})
        alerts = get_low_stock_alerts(self.store, "u1")
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0]["products"][0]["productId"], "a")

        result = send_low_stock_notification_for_user(self.store, "u3")
        self.assertFalse(result["notificationCreated"])

    def test_send_to_all_users_groups_by_owner(self):
        stats = send_low_stock_notifications(self.store)
        self.assertEqual(stats["lowStockProducts"], 2)
        self.assertEqual(stats["usersNotified"], 2)
        self.assertEqual(stats["errors"], 0)
        u2_alerts = get_low_stock_alerts(self.store, "u2")
        self.assertEqual([p["productId"] for p in u2_alerts[0]["products"]], ["d"])


if __name__ == "__main__":
    unittest.main()

"""
Low-stock alerts.

Each user has at most one unread grouped ``low-stock-alert`` notification
listing their products under the stock threshold; reruns refresh it instead
of stacking new ones.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from partsmanager.config import get_settings
from partsmanager.store import DocumentStore, doc_path
from partsmanager.types import NOTIFICATIONS_COLLECTION, PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)

LOW_STOCK_ALERT_TYPE = "low-stock-alert"


@dataclass
class LowStockProduct:
    productId: str
    productName: str
    currentStock: float
    threshold: int
    userId: Optional[str] = None


def detect_low_stock_products(
    store: DocumentStore,
    threshold: Optional[int] = None,
    user_id: Optional[str] = None,
) -> List[LowStockProduct]:
    threshold = threshold if threshold is not None else get_settings().low_stock_threshold
    filters = [("stock", "<", threshold)]
    if user_id:
        filters.insert(0, ("userId", "==", user_id))
    return [
        LowStockProduct(
            productId=doc.id,
            productName=doc.get("name") or "Unknown Product",
            currentStock=doc.get("stock") or 0,
            threshold=threshold,
            userId=doc.get("userId"),
        )
        for doc in store.query(PRODUCTS_COLLECTION, filters)
        if not doc.get("isDeleted")
    ]


def create_grouped_low_stock_notification(
    store: DocumentStore,
    user_id: str,
    products: List[LowStockProduct],
    now: Optional[float] = None,
) -> Optional[str]:
    """Create or refresh the user's unread low-stock notification; returns its id."""
    if not products:
        return None
    now = now if now is not None else time.time()
    data = {
        "userId": user_id,
        "title": "Low Stock Alert",
        "message": f"You have {len(products)} product(s) with low stock levels.",
        "type": LOW_STOCK_ALERT_TYPE,
        "products": [
            {k: v for k, v in asdict(p).items() if k != "userId"} for p in products
        ],
        "productCount": len(products),
        "read": False,
        "updatedAt": now,
        "actionLink": "/dashboard/products",
        "actionLabel": "View Products",
    }

    existing = store.query(
        NOTIFICATIONS_COLLECTION,
        [
            ("userId", "==", user_id),
            ("type", "==", LOW_STOCK_ALERT_TYPE),
            ("read", "==", False),
        ],
        limit=1,
    )
    if existing:
        notification_id = existing[0].id
        store.update(doc_path(NOTIFICATIONS_COLLECTION, notification_id), data)
        logger.info("Updated low stock notification for user %s: %s", user_id, notification_id)
        return notification_id

    data["createdAt"] = now
    doc = store.add(NOTIFICATIONS_COLLECTION, data)
    logger.info("Created grouped low stock notification for user %s: %s", user_id, doc.id)
    return doc.id


def send_low_stock_notification_for_user(
    store: DocumentStore, user_id: str, threshold: Optional[int] = None
) -> dict:
    try:
        products = detect_low_stock_products(store, threshold, user_id)
        if not products:
            logger.info("No low stock products for user %s", user_id)
            return {"lowStockProducts": 0, "notificationCreated": False, "error": None}
        notification_id = create_grouped_low_stock_notification(store, user_id, products)
        return {
            "lowStockProducts": len(products),
            "notificationCreated": bool(notification_id),
            "error": None,
        }
    except Exception as exc:
        logger.exception("Error sending low stock notification for user %s", user_id)
        return {"lowStockProducts": 0, "notificationCreated": False, "error": str(exc)}


def send_low_stock_notifications(store: DocumentStore, threshold: Optional[int] = None) -> dict:
    """Notify every product owner about their own low-stock products."""
    products = detect_low_stock_products(store, threshold)
    stats = {
        "lowStockProducts": len(products),
        "notificationsCreated": 0,
        "usersNotified": 0,
        "errors": 0,
    }
    if not products:
        logger.info("No low stock products detected")
        return stats

    by_user: Dict[str, List[LowStockProduct]] = defaultdict(list)
    for product in products:
        if product.userId:
            by_user[product.userId].append(product)

    for user_id, user_products in by_user.items():
        try:
            if create_grouped_low_stock_notification(store, user_id, user_products):
                stats["notificationsCreated"] += 1
                stats["usersNotified"] += 1
        except Exception:
            logger.exception("Error creating grouped notification for user %s", user_id)
            stats["errors"] += 1

    logger.info("Low stock notifications sent: %s", stats)
    return stats


def get_low_stock_alerts(store: DocumentStore, user_id: str) -> List[dict]:
    docs = store.query(
        NOTIFICATIONS_COLLECTION,
        [
            ("userId", "==", user_id),
            ("type", "==", LOW_STOCK_ALERT_TYPE),
            ("read", "==", False),
        ],
    )
    alerts = []
    for doc in docs:
        alert = doc.as_dict()
        if not isinstance(alert.get("products"), list):
            alert["products"] = []
        alerts.append(alert)
    return alerts

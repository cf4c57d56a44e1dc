"""
Optimistic stock updates.

Adding a product whose reference already exists increments that product's
stock instead of creating a duplicate. Every change bumps ``version`` so
concurrent writers can detect it.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from partsmanager.store import Document, DocumentNotFound, DocumentStore, Transaction, doc_path
from partsmanager.types import PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)


class StockUpdateError(Exception):
    def __init__(self, path: str, operation: str, cause: Exception):
        super().__init__(f"Stock {operation} failed for {path}: {cause}")
        self.path = path
        self.operation = operation
        self.cause = cause


class InsufficientStock(Exception):
    def __init__(self, product_id: str, stock: float, delta: float):
        super().__init__(
            f"Cannot apply {delta} to product {product_id} with stock {stock}"
        )
        self.product_id = product_id
        self.stock = stock
        self.delta = delta


def find_by_reference(
    store: DocumentStore, reference: str, user_id: Optional[str] = None
) -> Optional[Document]:
    filters = [("reference", "==", reference)]
    if user_id:
        filters.append(("userId", "==", user_id))
    for doc in store.query(PRODUCTS_COLLECTION, filters):
        if not doc.get("isDeleted"):
            return doc
    return None


def add_product_or_update_stock(
    store: DocumentStore, product: dict, user_id: Optional[str] = None
) -> tuple[str, bool]:
    """
    Create ``product`` or add its stock to the existing product with the same
    reference. Returns ``(product_id, created)``.
    """
    reference = (product.get("reference") or "").strip()
    existing = find_by_reference(store, reference, user_id) if reference else None

    if existing:
        path = existing.path

        def _increment(transaction: Transaction) -> None:
            current = transaction.get(path)
            if current is None:
                raise DocumentNotFound(path)
            stock = float(current.get("stock") or 0) + float(product.get("stock") or 0)
            fields = {
                "stock": stock,
                "version": int(current.get("version") or 1) + 1,
                "updatedAt": time.time(),
            }
            # Prices are only replaced when the caller sent them.
            for key in ("purchasePrice", "price"):
                if product.get(key) is not None:
                    fields[key] = product[key]
            transaction.update(path, fields)

        try:
            store.run_transaction(_increment)
        except Exception as exc:
            logger.error("Stock transaction failed for %s: %s", path, exc)
            raise StockUpdateError(path, "update", exc) from exc
        logger.info("Incremented stock of %s by %s", existing.id, product.get("stock"))
        return existing.id, False

    product_id = uuid.uuid4().hex
    path = doc_path(PRODUCTS_COLLECTION, product_id)
    now = time.time()
    data = {k: v for k, v in product.items() if k != "id"}
    data.update(version=1, isDeleted=False, createdAt=now, updatedAt=now)
    if user_id:
        data["userId"] = user_id

    def _create(transaction: Transaction) -> None:
        transaction.set(path, data)

    try:
        store.run_transaction(_create)
    except Exception as exc:
        logger.error("Create transaction failed for %s: %s", path, exc)
        raise StockUpdateError(path, "create", exc) from exc
    logger.info("Created product %s", product_id)
    return product_id, True


def adjust_stock(store: DocumentStore, product_id: str, delta: float) -> dict:
    """Atomically add ``delta`` (may be negative) to a product's stock."""
    path = doc_path(PRODUCTS_COLLECTION, product_id)

    def _adjust(transaction: Transaction) -> dict:
        current = transaction.get(path)
        if current is None:
            raise DocumentNotFound(path)
        stock = float(current.get("stock") or 0)
        new_stock = stock + delta
        if new_stock < 0:
            raise InsufficientStock(product_id, stock, delta)
        fields = {
            "stock": new_stock,
            "version": int(current.get("version") or 1) + 1,
            "updatedAt": time.time(),
        }
        transaction.update(path, fields)
        return {"id": product_id, **current.data, **fields}

    return store.run_transaction(_adjust)


def import_products(store: DocumentStore, products: list[dict], user_id: str) -> dict:
    summary = {"total": len(products), "created": 0, "updated": 0, "errors": []}
    for index, product in enumerate(products):
        try:
            _, created = add_product_or_update_stock(store, product, user_id)
        except StockUpdateError as exc:
            summary["errors"].append({"index": index, "error": str(exc)})
            continue
        summary["created" if created else "updated"] += 1
    logger.info(
        "Imported %d products for %s (%d created, %d updated, %d failed)",
        summary["total"],
        user_id,
        summary["created"],
        summary["updated"],
        len(summary["errors"]),
    )
    return summary

"""
Local-first product mutations.

Each operation writes the local replica first, records a commit for the push
worker, wakes the worker and tells the pull service the user is active.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from partsmanager.commits import CommitQueue
from partsmanager.pull import PullService
from partsmanager.queue import SyncQueue
from partsmanager.store import DocumentStore, DocumentNotFound, doc_path
from partsmanager.types import PRODUCTS_COLLECTION, CommitType

logger = logging.getLogger(__name__)


class OfflineProductRepository:
    def __init__(
        self,
        local: DocumentStore,
        commits: CommitQueue,
        user_id: str,
        *,
        signals: Optional[SyncQueue] = None,
        pull: Optional[PullService] = None,
    ):
        self.local = local
        self.commits = commits
        self.user_id = user_id
        self.signals = signals
        self.pull = pull

    def _after_change(self, activity: str) -> None:
        if self.signals is not None:
            try:
                self.signals.enqueue(self.user_id)
            except Exception:
                logger.exception("Failed to signal the sync worker")
        if self.pull is not None:
            self.pull.on_user_activity(activity)

    def _find_by_reference(self, reference: str):
        matches = self.local.query(
            PRODUCTS_COLLECTION,
            [("reference", "==", reference), ("userId", "==", self.user_id)],
        )
        return matches[0] if matches else None

    def import_products(self, products: list[dict]) -> dict:
        """Save products locally (merging by reference) and queue them for push."""
        result = {"total": len(products), "localSaved": 0, "queued": 0, "errors": []}
        now = time.time()
        staged: list[tuple[CommitType, str, dict]] = []
        # Rows repeating a reference add to the document already staged for it.
        staged_by_reference: dict[str, tuple[CommitType, str, dict]] = {}

        for product in products:
            reference = (product.get("reference") or "").strip()
            if reference in staged_by_reference:
                _, _, merged = staged_by_reference[reference]
                stock = float(merged.get("stock") or 0) + float(product.get("stock") or 0)
                merged.update({k: v for k, v in product.items() if k != "id"})
                merged["stock"] = stock
                continue
            existing = self._find_by_reference(reference) if reference else None
            if existing:
                stock = float(existing.get("stock") or 0) + float(product.get("stock") or 0)
                merged = {
                    **existing.data,
                    **product,
                    "stock": stock,
                    "version": int(existing.get("version") or 0) + 1,
                    "updatedAt": now,
                }
                merged.pop("id", None)
                staged.append((CommitType.UPDATE, existing.id, merged))
            else:
                product_id = product.get("id") or uuid.uuid4().hex
                created = {
                    **product,
                    "userId": self.user_id,
                    "version": 1,
                    "isDeleted": False,
                    "createdAt": product.get("createdAt") or now,
                    "updatedAt": now,
                }
                created.pop("id", None)
                staged.append((CommitType.CREATE, product_id, created))
            if reference:
                staged_by_reference[reference] = staged[-1]

        for commit_type, product_id, data in staged:
            try:
                self.local.set(doc_path(PRODUCTS_COLLECTION, product_id), data)
                result["localSaved"] += 1
            except Exception as exc:
                logger.error("Failed to save product locally %s: %s", product_id, exc)
                result["errors"].append(f"Failed to save {product_id} locally: {exc}")
                continue
            try:
                self.commits.queue_commit(
                    commit_type, PRODUCTS_COLLECTION, product_id, data, self.user_id
                )
                result["queued"] += 1
            except Exception as exc:
                logger.error("Failed to queue product %s: %s", product_id, exc)
                result["errors"].append(f"Failed to queue {product_id} for sync: {exc}")

        logger.info(
            "Imported %d products locally, queued %d", result["localSaved"], result["queued"]
        )
        self._after_change("add")
        return result

    def update_product(self, product_id: str, updates: dict) -> dict:
        path = doc_path(PRODUCTS_COLLECTION, product_id)
        current = self.local.get(path)
        if current is None:
            raise DocumentNotFound(path)
        fields = {k: v for k, v in updates.items() if k not in ("id", "version")}
        fields["version"] = int(current.get("version") or 0) + 1
        fields["updatedAt"] = time.time()
        doc = self.local.update(path, fields)
        self.commits.queue_commit(
            CommitType.UPDATE, PRODUCTS_COLLECTION, product_id, updates, self.user_id
        )
        self._after_change("edit")
        return doc.as_dict()

    def delete_product(self, product_id: str) -> None:
        """Soft delete: the product data is kept so it can be restored."""
        path = doc_path(PRODUCTS_COLLECTION, product_id)
        self.local.update(path, {"isDeleted": True, "deletedAt": time.time()})
        self.commits.queue_commit(
            CommitType.DELETE,
            PRODUCTS_COLLECTION,
            product_id,
            {"isDeleted": True},
            self.user_id,
        )
        self._after_change("delete")

    def restore_product(self, product_id: str) -> None:
        path = doc_path(PRODUCTS_COLLECTION, product_id)
        self.local.update(path, {"isDeleted": False, "deletedAt": None, "updatedAt": time.time()})
        self.commits.replace_delete_with_restore(PRODUCTS_COLLECTION, product_id, self.user_id)
        self._after_change("edit")

    def permanently_delete_product(self, product_id: str) -> None:
        self.local.delete(doc_path(PRODUCTS_COLLECTION, product_id))
        self.commits.queue_commit(
            CommitType.PERMANENT_DELETE, PRODUCTS_COLLECTION, product_id, {}, self.user_id
        )
        self._after_change("delete")

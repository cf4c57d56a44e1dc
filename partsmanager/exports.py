"""
Collection snapshots for the export page.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from partsmanager.storage import StorageClient
from partsmanager.store import DocumentStore

logger = logging.getLogger(__name__)

EXPORTABLE_COLLECTIONS = ("products", "suppliers", "customers", "sales", "purchases")


class UnsupportedCollection(ValueError):
    pass


@dataclass
class ExportResult:
    collection: str
    key: str
    url: str
    count: int
    size_bytes: int


def export_collection(
    store: DocumentStore,
    storage: StorageClient,
    collection: str,
    user_id: str,
    *,
    include_deleted: bool = False,
    expires_in: int = 3600,
    now: Optional[float] = None,
) -> ExportResult:
    """Upload the user's documents of ``collection`` as JSON and presign a download URL."""
    if collection not in EXPORTABLE_COLLECTIONS:
        raise UnsupportedCollection(f"Collection cannot be exported: {collection}")
    now = now if now is not None else time.time()

    docs = store.query(collection, [("userId", "==", user_id)])
    if not include_deleted:
        docs = [doc for doc in docs if not doc.get("isDeleted")]
    items = [doc.as_dict() for doc in docs]

    key = f"exports/{user_id}/{collection}-{int(now)}.json"
    size = storage.upload_json(
        key,
        {"collection": collection, "exportedAt": now, "count": len(items), "items": items},
    )
    logger.info("Exported %d %s for %s to %s", len(items), collection, user_id, key)
    return ExportResult(
        collection=collection,
        key=key,
        url=storage.presign_get(key, expires_in=expires_in),
        count=len(items),
        size_bytes=size,
    )

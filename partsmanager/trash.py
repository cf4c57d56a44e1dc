"""
Soft-delete lifecycle for products.

Deleting marks a document with ``isDeleted``/``deletedAt`` so it can be
restored; permanent deletion removes it. Bulk operations are written in
batches of at most 500 writes with a short pause between batches to stay
under the backend's write rate limits.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence, Union

from partsmanager.config import get_settings
from partsmanager.store import MAX_BATCH_WRITES, Document, DocumentStore, WriteBatch, doc_path
from partsmanager.types import PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


def _as_list(ids: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(ids, str):
        return [ids]
    return list(ids)


def _run_batched(
    store: DocumentStore,
    ids: Sequence[str],
    stage: Callable[[WriteBatch, str], None],
    on_progress: Optional[ProgressCallback] = None,
    *,
    batch_limit: Optional[int] = None,
    pause_seconds: Optional[float] = None,
) -> int:
    settings = get_settings()
    batch_limit = min(batch_limit or settings.batch_limit, MAX_BATCH_WRITES)
    pause_seconds = pause_seconds if pause_seconds is not None else settings.batch_pause_seconds

    processed = 0
    for start in range(0, len(ids), batch_limit):
        if start and pause_seconds:
            time.sleep(pause_seconds)
        chunk = ids[start : start + batch_limit]
        batch = store.batch()
        for doc_id in chunk:
            stage(batch, doc_id)
        batch.commit()
        processed += len(chunk)
        if on_progress:
            on_progress(min(round(processed / len(ids) * 100), 100))
    return processed


def move_to_trash(
    store: DocumentStore,
    ids: Union[str, Iterable[str]],
    on_progress: Optional[ProgressCallback] = None,
    *,
    collection: str = PRODUCTS_COLLECTION,
    now: Optional[float] = None,
    **batch_options,
) -> int:
    ids = _as_list(ids)
    if not ids:
        return 0
    deleted_at = now if now is not None else time.time()

    def _stage(batch: WriteBatch, doc_id: str) -> None:
        batch.update(
            doc_path(collection, doc_id),
            {"isDeleted": True, "deletedAt": deleted_at, "updatedAt": deleted_at},
        )

    processed = _run_batched(store, ids, _stage, on_progress, **batch_options)
    logger.info("Moved %d %s to trash", processed, collection)
    return processed


def restore_from_trash(
    store: DocumentStore,
    ids: Union[str, Iterable[str]],
    on_progress: Optional[ProgressCallback] = None,
    *,
    collection: str = PRODUCTS_COLLECTION,
    now: Optional[float] = None,
    **batch_options,
) -> int:
    ids = _as_list(ids)
    if not ids:
        return 0
    restored_at = now if now is not None else time.time()

    def _stage(batch: WriteBatch, doc_id: str) -> None:
        batch.update(
            doc_path(collection, doc_id),
            {"isDeleted": False, "deletedAt": None, "updatedAt": restored_at},
        )

    processed = _run_batched(store, ids, _stage, on_progress, **batch_options)
    logger.info("Restored %d %s from trash", processed, collection)
    return processed


def permanently_delete(
    store: DocumentStore,
    ids: Union[str, Iterable[str]],
    on_progress: Optional[ProgressCallback] = None,
    *,
    collection: str = PRODUCTS_COLLECTION,
    **batch_options,
) -> int:
    ids = _as_list(ids)
    if not ids:
        return 0

    def _stage(batch: WriteBatch, doc_id: str) -> None:
        batch.delete(doc_path(collection, doc_id))

    processed = _run_batched(store, ids, _stage, on_progress, **batch_options)
    logger.info("Permanently deleted %d %s", processed, collection)
    return processed


def _user_filter(user_id: Optional[str]) -> list:
    return [("userId", "==", user_id)] if user_id else []


def get_deleted_products(store: DocumentStore, user_id: Optional[str] = None) -> List[Document]:
    return store.query(
        PRODUCTS_COLLECTION, [("isDeleted", "==", True), *_user_filter(user_id)]
    )


def get_active_products(store: DocumentStore, user_id: Optional[str] = None) -> List[Document]:
    """Products with ``isDeleted == False``; run the migration first for legacy data."""
    return store.query(
        PRODUCTS_COLLECTION, [("isDeleted", "==", False), *_user_filter(user_id)]
    )


def find_products_missing_deleted_field(
    store: DocumentStore, user_id: Optional[str] = None
) -> List[str]:
    return [
        doc.id
        for doc in store.query(PRODUCTS_COLLECTION, _user_filter(user_id))
        if "isDeleted" not in doc.data
    ]


def ensure_all_products_have_deleted_field(
    store: DocumentStore, user_id: Optional[str] = None, **batch_options
) -> int:
    """
    Backfill ``isDeleted=False`` on products that lack the field, limited to
    ``user_id``'s products when given.
    """
    missing = find_products_missing_deleted_field(store, user_id)
    if not missing:
        return 0

    def _stage(batch: WriteBatch, doc_id: str) -> None:
        batch.update(doc_path(PRODUCTS_COLLECTION, doc_id), {"isDeleted": False})

    updated = _run_batched(store, missing, _stage, **batch_options)
    logger.info("Migrated %d products to have isDeleted field", updated)
    return updated

"""
HTTP routes for the sync backend API.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from partsmanager.auth import get_current_user_id
from partsmanager.commits import CommitQueue
from partsmanager.config import Settings, get_settings
from partsmanager.dependencies import (
    get_commit_queue,
    get_remote_store,
    get_storage_client,
    get_sync_queue,
)
from partsmanager.exports import UnsupportedCollection, export_collection
from partsmanager.notifications import (
    get_low_stock_alerts,
    send_low_stock_notification_for_user,
)
from partsmanager.queue import SyncQueue
from partsmanager.scan_sessions import (
    SessionClosed,
    SessionNotFound,
    generate_session_id,
    close_session,
    get_session,
    init_session,
    list_scans,
    submit_scan,
)
from partsmanager.schemas import (
    AdjustStockRequest,
    BulkIdsRequest,
    BulkResponse,
    ExportResponse,
    ImportProductsRequest,
    ImportProductsResponse,
    LowStockRunResponse,
    MigrationResponse,
    ProductPayload,
    ScanEventResponse,
    ScanListResponse,
    ScanSessionRequest,
    ScanSessionResponse,
    ScanSubmitRequest,
    StockUpdateResponse,
    SyncPendingResponse,
    SyncTriggerResponse,
)
from partsmanager.storage import StorageClient
from partsmanager.stock import (
    InsufficientStock,
    StockUpdateError,
    add_product_or_update_stock,
    adjust_stock,
    import_products,
)
from partsmanager.store import DocumentNotFound, DocumentStore, doc_path
from partsmanager.trash import (
    ensure_all_products_have_deleted_field,
    get_deleted_products,
    move_to_trash,
    permanently_delete,
    restore_from_trash,
)
from partsmanager.types import PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_owned(store: DocumentStore, collection: str, ids: list[str], user_id: str) -> None:
    missing = []
    for doc_id in ids:
        doc = store.get(doc_path(collection, doc_id))
        if doc is None or doc.get("userId") != user_id:
            missing.append(doc_id)
    if missing:
        raise HTTPException(
            status_code=404, detail=f"Documents not found: {', '.join(missing[:20])}"
        )


# Scan pairing -----------------------------------------------------------


@router.post("/scan-sessions", response_model=ScanSessionResponse)
def open_scan_session(
    payload: ScanSessionRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    session_id = payload.session_id or generate_session_id()
    existing = get_session(store, session_id)
    if existing and existing.host_id != user_id:
        raise HTTPException(status_code=403, detail="Session belongs to another host")
    session = init_session(store, session_id, user_id)
    return ScanSessionResponse(**session.as_dict())


@router.get("/scan-sessions/{session_id}", response_model=ScanSessionResponse)
def read_scan_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    session = get_session(store, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return ScanSessionResponse(**session.as_dict())


@router.delete("/scan-sessions/{session_id}", response_model=ScanSessionResponse)
def end_scan_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    session = get_session(store, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.host_id != user_id:
        raise HTTPException(status_code=403, detail="Session belongs to another host")
    closed = close_session(store, session_id)
    return ScanSessionResponse(**closed.as_dict())


@router.post(
    "/scan-sessions/{session_id}/scans",
    response_model=ScanEventResponse,
    status_code=201,
)
def post_scan(
    session_id: str,
    payload: ScanSubmitRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    try:
        event = submit_scan(store, session_id, payload.product_id, scanned_by=user_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except SessionClosed:
        raise HTTPException(status_code=409, detail="Session is closed")
    return ScanEventResponse(**event.as_dict())


@router.get("/scan-sessions/{session_id}/scans", response_model=ScanListResponse)
def get_scans(
    session_id: str,
    since: Optional[float] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
    settings: Settings = Depends(get_settings),
):
    if not get_session(store, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    if since is None:
        since = time.time() - settings.scan_staleness_seconds
    scans = list_scans(store, session_id, since=since)
    return ScanListResponse(
        session_id=session_id,
        scans=[ScanEventResponse(**event.as_dict()) for event in scans],
    )


# Stock ------------------------------------------------------------------


@router.post("/products/stock", response_model=StockUpdateResponse)
def add_or_update_stock(
    payload: ProductPayload,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    try:
        product_id, created = add_product_or_update_stock(
            store, payload.model_dump(exclude_none=True), user_id
        )
    except StockUpdateError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return StockUpdateResponse(product_id=product_id, created=created)


@router.post("/products/{product_id}/adjust-stock")
def adjust_product_stock(
    product_id: str,
    payload: AdjustStockRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    _require_owned(store, PRODUCTS_COLLECTION, [product_id], user_id)
    try:
        return adjust_stock(store, product_id, payload.delta)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Product not found")
    except InsufficientStock as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/import-products", response_model=ImportProductsResponse)
def import_products_route(
    payload: ImportProductsRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    if not payload.products:
        raise HTTPException(status_code=400, detail="No products provided")
    summary = import_products(
        store, [p.model_dump(exclude_none=True) for p in payload.products], user_id
    )
    return ImportProductsResponse(success=not summary["errors"], **summary)


# Trash ------------------------------------------------------------------


def _bulk(action, verb: str, payload: BulkIdsRequest, user_id: str, store: DocumentStore):
    if not payload.ids:
        return BulkResponse(success=True, processed=0, message=f"No items to {verb}")
    _require_owned(store, payload.collection, payload.ids, user_id)
    try:
        processed = action(store, payload.ids, collection=payload.collection)
    except Exception as exc:
        logger.exception("Bulk %s failed for %s", verb, user_id)
        raise HTTPException(status_code=500, detail=str(exc) or f"{verb} failed")
    return BulkResponse(success=True, processed=processed, message="")


@router.post("/bulk-delete", response_model=BulkResponse)
def bulk_delete(
    payload: BulkIdsRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    response = _bulk(move_to_trash, "delete", payload, user_id, store)
    if response.processed:
        response.message = f"Successfully moved {response.processed} items to trash"
    return response


@router.post("/bulk-restore", response_model=BulkResponse)
def bulk_restore(
    payload: BulkIdsRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    response = _bulk(restore_from_trash, "restore", payload, user_id, store)
    if response.processed:
        response.message = f"Successfully restored {response.processed} items"
    return response


@router.post("/bulk-permanent-delete", response_model=BulkResponse)
def bulk_permanent_delete(
    payload: BulkIdsRequest,
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    response = _bulk(permanently_delete, "permanently delete", payload, user_id, store)
    if response.processed:
        response.message = f"Permanently deleted {response.processed} items"
    return response


@router.get("/trash")
def list_trash(
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    return {"products": [doc.as_dict() for doc in get_deleted_products(store, user_id)]}


@router.post("/migrations/is-deleted", response_model=MigrationResponse)
def migrate_is_deleted(
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    logger.info("isDeleted migration requested by %s", user_id)
    return MigrationResponse(
        updated=ensure_all_products_have_deleted_field(store, user_id)
    )


# Sync -------------------------------------------------------------------


@router.post("/sync/trigger", response_model=SyncTriggerResponse, status_code=202)
def trigger_sync(
    user_id: str = Depends(get_current_user_id),
    commits: CommitQueue = Depends(get_commit_queue),
    queue: SyncQueue = Depends(get_sync_queue),
):
    queue.enqueue(user_id)
    return SyncTriggerResponse(queued=True, pending=len(commits.get_unpushed(user_id)))


@router.get("/sync/pending", response_model=SyncPendingResponse)
def pending_commits(
    user_id: str = Depends(get_current_user_id),
    commits: CommitQueue = Depends(get_commit_queue),
):
    pending = commits.get_unpushed(user_id)
    return SyncPendingResponse(
        pending=len(pending),
        doc_ids=sorted({commit.doc_id for commit in pending}),
    )


# Notifications ----------------------------------------------------------


@router.post("/notifications/low-stock", response_model=LowStockRunResponse)
def run_low_stock_check(
    threshold: Optional[int] = Query(default=None, ge=0),
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    return LowStockRunResponse(**send_low_stock_notification_for_user(store, user_id, threshold))


@router.get("/notifications/low-stock")
def list_low_stock_alerts(
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
):
    return {"alerts": get_low_stock_alerts(store, user_id)}


# Export -----------------------------------------------------------------


@router.post("/export/{collection}", response_model=ExportResponse)
def export_snapshot(
    collection: str,
    include_deleted: bool = Query(default=False),
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_remote_store),
    storage: StorageClient = Depends(get_storage_client),
):
    try:
        result = export_collection(
            store, storage, collection, user_id, include_deleted=include_deleted
        )
    except UnsupportedCollection as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ExportResponse(
        collection=result.collection, key=result.key, url=result.url, count=result.count
    )

"""
Dependency wiring for the FastAPI app, the worker and scripts.
"""

from __future__ import annotations

import logging

from partsmanager.commits import CommitQueue, InMemoryCommitQueue, SqlCommitQueue
from partsmanager.config import get_settings
from partsmanager.queue import InMemorySyncQueue, RedisSyncQueue, SyncQueue
from partsmanager.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from partsmanager.store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore

logger = logging.getLogger(__name__)

_remote_store: DocumentStore | None = None
_local_store: DocumentStore | None = None
_commit_queue: CommitQueue | None = None
_sync_queue: SyncQueue | None = None
_storage_client: StorageClient | None = None


def get_remote_store() -> DocumentStore:
    """
    Return a singleton handle on the shared document store so every request
    and the push worker see the same data.
    """
    global _remote_store
    if _remote_store:
        return _remote_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _remote_store = InMemoryDocumentStore()
    elif settings.use_firestore:
        from partsmanager.firestore_store import FirestoreDocumentStore, get_firebase_app

        get_firebase_app(settings.firebase_service_account)
        _remote_store = FirestoreDocumentStore()
    elif settings.database_url:
        _remote_store = SqlDocumentStore(settings.database_url)
    else:
        logger.warning("No remote database configured, using in-memory store")
        _remote_store = InMemoryDocumentStore()
    return _remote_store


def get_local_store() -> DocumentStore:
    global _local_store
    if _local_store:
        return _local_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _local_store = InMemoryDocumentStore()
    else:
        _local_store = SqlDocumentStore(settings.local_database_url)
    return _local_store


def get_commit_queue() -> CommitQueue:
    global _commit_queue
    if _commit_queue:
        return _commit_queue

    settings = get_settings()
    if settings.use_in_memory_backends:
        _commit_queue = InMemoryCommitQueue()
    else:
        _commit_queue = SqlCommitQueue(settings.local_database_url)
    return _commit_queue


def get_sync_queue() -> SyncQueue:
    """
    Return a singleton queue used to wake the push worker.
    """
    global _sync_queue
    if _sync_queue:
        return _sync_queue

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _sync_queue = RedisSyncQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _sync_queue = InMemorySyncQueue()
    return _sync_queue


get_signal_queue = get_sync_queue


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.cos_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client

"""
Firestore-backed document store (firebase-admin).
"""

from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional, Sequence, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from partsmanager.store import (
    Document,
    DocumentNotFound,
    Filter,
    QuotaExceededError,
    Transaction,
    Write,
    WriteBatch,
    split_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_firebase_app(service_account: str | None = None) -> firebase_admin.App:
    """Initialize the default Firebase app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    if service_account:
        cred = credentials.Certificate(json.loads(service_account))
        logger.info("Initializing Firebase app from service account")
        return firebase_admin.initialize_app(cred)
    logger.info("Initializing Firebase app with application default credentials")
    return firebase_admin.initialize_app()


class FirestoreDocumentStore:
    def __init__(self, client=None):
        self.client = client or firestore.client()

    def _snapshot_to_document(self, path: str, snapshot) -> Optional[Document]:
        if not snapshot.exists:
            return None
        collection, doc_id = split_path(path)
        return Document(doc_id, collection, snapshot.to_dict() or {})

    def get(self, path: str) -> Optional[Document]:
        return self._snapshot_to_document(path, self.client.document(path).get())

    def set(self, path: str, data: dict, *, merge: bool = False) -> Document:
        self.commit_writes([Write("set", *split_path(path), data, merge)])
        return self.get(path)

    def update(self, path: str, fields: dict) -> Document:
        self.commit_writes([Write("update", *split_path(path), fields)])
        return self.get(path)

    def delete(self, path: str) -> None:
        self.commit_writes([Write("delete", *split_path(path))])

    def add(self, collection: str, data: dict) -> Document:
        _, doc_ref = self.client.collection(collection).add(data)
        return Document(doc_ref.id, collection, dict(data))

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        query = self.client.collection(collection)
        for field_name, op, value in filters:
            query = query.where(filter=FieldFilter(field_name, op, value))
        if order_by:
            direction = (
                firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            )
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return [
            Document(snapshot.id, collection, snapshot.to_dict() or {})
            for snapshot in query.stream()
        ]

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        client = self.client

        @firestore.transactional
        def _run(transaction):
            def _read(path: str) -> Optional[Document]:
                snapshot = client.document(path).get(transaction=transaction)
                return self._snapshot_to_document(path, snapshot)

            buffered = Transaction(_read)
            result = fn(buffered)
            for write in buffered.writes:
                self._stage(transaction, write)
            return result

        try:
            return _run(client.transaction())
        except exceptions.NotFound as exc:
            raise DocumentNotFound(str(exc)) from exc
        except exceptions.ResourceExhausted as exc:
            raise QuotaExceededError(str(exc)) from exc

    def commit_writes(self, writes: Sequence[Write]) -> None:
        batch = self.client.batch()
        for write in writes:
            self._stage(batch, write)
        try:
            batch.commit()
        except exceptions.NotFound as exc:
            raise DocumentNotFound(str(exc)) from exc
        except exceptions.ResourceExhausted as exc:
            raise QuotaExceededError(str(exc)) from exc

    def _stage(self, target, write: Write) -> None:
        doc_ref = self.client.document(write.path)
        if write.kind == "set":
            target.set(doc_ref, write.data or {}, merge=write.merge)
        elif write.kind == "update":
            target.update(doc_ref, write.data or {})
        elif write.kind == "delete":
            target.delete(doc_ref)
        else:
            raise ValueError(f"Unknown write kind: {write.kind}")

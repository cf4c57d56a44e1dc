"""
Document store abstraction with SQLAlchemy and in-memory implementations.

Documents are addressed by slash separated paths (``products/abc`` or
``sync_sessions/abc/scans/xyz``) and hold plain JSON-compatible dicts. The
store mirrors the semantics the rest of the backend relies on from the
managed document database: batched writes that apply all-or-nothing,
single-document transactions, and query filters that skip documents missing
the filtered field.
"""

from __future__ import annotations

import copy
import operator
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from sqlalchemy import JSON, Column, Float, String, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

MAX_BATCH_WRITES = 500

Filter = Tuple[str, str, Any]
T = TypeVar("T")


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFound(StoreError):
    def __init__(self, path: str):
        super().__init__(f"Document does not exist: {path}")
        self.path = path


class BatchLimitExceeded(StoreError):
    pass


class QuotaExceededError(StoreError):
    """The backend refused the write because a usage quota is exhausted."""


def split_path(path: str) -> tuple[str, str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Invalid document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def doc_path(collection: str, doc_id: str) -> str:
    return f"{collection}/{doc_id}"


@dataclass
class Document:
    id: str
    collection: str
    data: dict

    @property
    def path(self) -> str:
        return doc_path(self.collection, self.id)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def as_dict(self) -> dict:
        return {"id": self.id, **self.data}


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


def matches(data: dict, filters: Sequence[Filter]) -> bool:
    for field_name, op, expected in filters:
        compare = _OPERATORS.get(op)
        if compare is None:
            raise ValueError(f"Unsupported filter operator: {op}")
        if field_name not in data:
            return False
        try:
            if not compare(data[field_name], expected):
                return False
        except TypeError:
            # Mismatched types (e.g. None vs float) never match.
            return False
    return True


def apply_query(
    docs: Iterable[Document],
    filters: Sequence[Filter] = (),
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Document]:
    results = [doc for doc in docs if matches(doc.data, filters)]
    if order_by:
        results = [doc for doc in results if order_by in doc.data]
        results.sort(
            key=lambda doc: (doc.data[order_by] is None, doc.data[order_by]),
            reverse=descending,
        )
    if limit is not None:
        results = results[:limit]
    return results


@dataclass
class Write:
    kind: str  # "set" | "update" | "delete"
    collection: str
    doc_id: str
    data: Optional[dict] = None
    merge: bool = False

    @property
    def path(self) -> str:
        return doc_path(self.collection, self.doc_id)


def apply_write(current: Optional[dict], write: Write) -> Optional[dict]:
    """Return the document data after ``write`` (None means deleted)."""
    if write.kind == "set":
        if write.merge and current is not None:
            return {**current, **copy.deepcopy(write.data or {})}
        return copy.deepcopy(write.data or {})
    if write.kind == "update":
        if current is None:
            raise DocumentNotFound(write.path)
        return {**current, **copy.deepcopy(write.data or {})}
    if write.kind == "delete":
        return None
    raise ValueError(f"Unknown write kind: {write.kind}")


class _WriteBuffer:
    def __init__(self):
        self.writes: list[Write] = []

    def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        collection, doc_id = split_path(path)
        self._append(Write("set", collection, doc_id, dict(data), merge))

    def update(self, path: str, fields: dict) -> None:
        collection, doc_id = split_path(path)
        self._append(Write("update", collection, doc_id, dict(fields)))

    def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        self._append(Write("delete", collection, doc_id))

    def _append(self, write: Write) -> None:
        self.writes.append(write)

    def __len__(self) -> int:
        return len(self.writes)


class WriteBatch(_WriteBuffer):
    """Collects up to 500 writes and commits them atomically."""

    def __init__(self, store: "DocumentStore"):
        super().__init__()
        self._store = store

    def _append(self, write: Write) -> None:
        if len(self.writes) >= MAX_BATCH_WRITES:
            raise BatchLimitExceeded(
                f"A batch can hold at most {MAX_BATCH_WRITES} writes"
            )
        super()._append(write)

    def commit(self) -> int:
        writes, self.writes = self.writes, []
        if writes:
            self._store.commit_writes(writes)
        return len(writes)


class Transaction(_WriteBuffer):
    """Reads go through to the store; writes are buffered until commit."""

    def __init__(self, read: Callable[[str], Optional[Document]]):
        super().__init__()
        self._read = read

    def get(self, path: str) -> Optional[Document]:
        return self._read(path)


class DocumentStore(Protocol):
    """Interface for document database access."""

    def get(self, path: str) -> Optional[Document]:
        ...

    def set(self, path: str, data: dict, *, merge: bool = False) -> Document:
        ...

    def update(self, path: str, fields: dict) -> Document:
        ...

    def delete(self, path: str) -> None:
        ...

    def add(self, collection: str, data: dict) -> Document:
        ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    def batch(self) -> WriteBatch:
        ...

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        ...

    def commit_writes(self, writes: Sequence[Write]) -> None:
        ...


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()

    def get(self, path: str) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self._lock:
            data = self.collections.get(collection, {}).get(doc_id)
            if data is None:
                return None
            return Document(doc_id, collection, copy.deepcopy(data))

    def set(self, path: str, data: dict, *, merge: bool = False) -> Document:
        collection, doc_id = split_path(path)
        with self._lock:
            self.commit_writes([Write("set", collection, doc_id, data, merge)])
            return self.get(path)

    def update(self, path: str, fields: dict) -> Document:
        collection, doc_id = split_path(path)
        with self._lock:
            self.commit_writes([Write("update", collection, doc_id, fields)])
            return self.get(path)

    def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        self.commit_writes([Write("delete", collection, doc_id)])

    def add(self, collection: str, data: dict) -> Document:
        return self.set(doc_path(collection, uuid.uuid4().hex), data)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._lock:
            docs = [
                Document(doc_id, collection, copy.deepcopy(data))
                for doc_id, data in self.collections.get(collection, {}).items()
            ]
        return apply_query(docs, filters, order_by, descending, limit)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self._lock:
            transaction = Transaction(self.get)
            result = fn(transaction)
            self.commit_writes(transaction.writes)
            return result

    def commit_writes(self, writes: Sequence[Write]) -> None:
        with self._lock:
            staged: Dict[tuple[str, str], Optional[dict]] = {}
            for write in writes:
                key = (write.collection, write.doc_id)
                if key in staged:
                    current = staged[key]
                else:
                    current = self.collections.get(write.collection, {}).get(write.doc_id)
                staged[key] = apply_write(current, write)
            for (collection, doc_id), data in staged.items():
                docs = self.collections.setdefault(collection, {})
                if data is None:
                    docs.pop(doc_id, None)
                else:
                    docs[doc_id] = data

    def reset(self) -> None:
        """Clear all stored documents (useful in tests)."""
        with self._lock:
            self.collections.clear()


class SqlDocumentStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (Postgres for
    the shared store, SQLite for the desktop replica and tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("A database URL is required for SqlDocumentStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _load(
        self, session: Session, collection: str, doc_id: str, *, for_update: bool = False
    ) -> Optional["DocumentRow"]:
        stmt = select(DocumentRow).where(
            DocumentRow.collection == collection, DocumentRow.doc_id == doc_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def get(self, path: str) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self.Session() as session:
            row = self._load(session, collection, doc_id)
            if not row:
                return None
            return Document(doc_id, collection, dict(row.data))

    def set(self, path: str, data: dict, *, merge: bool = False) -> Document:
        collection, doc_id = split_path(path)
        self.commit_writes([Write("set", collection, doc_id, data, merge)])
        return self.get(path)

    def update(self, path: str, fields: dict) -> Document:
        collection, doc_id = split_path(path)
        self.commit_writes([Write("update", collection, doc_id, fields)])
        return self.get(path)

    def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        self.commit_writes([Write("delete", collection, doc_id)])

    def add(self, collection: str, data: dict) -> Document:
        return self.set(doc_path(collection, uuid.uuid4().hex), data)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(DocumentRow).where(DocumentRow.collection == collection)
                )
                .scalars()
                .all()
            )
            docs = [Document(row.doc_id, collection, dict(row.data)) for row in rows]
        return apply_query(docs, filters, order_by, descending, limit)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self.Session() as session:

            def _read(path: str) -> Optional[Document]:
                collection, doc_id = split_path(path)
                row = self._load(session, collection, doc_id, for_update=True)
                if not row:
                    return None
                return Document(doc_id, collection, dict(row.data))

            transaction = Transaction(_read)
            result = fn(transaction)
            self._apply(session, transaction.writes)
            session.commit()
            return result

    def commit_writes(self, writes: Sequence[Write]) -> None:
        with self.Session() as session:
            self._apply(session, writes)
            session.commit()

    def _apply(self, session: Session, writes: Sequence[Write]) -> None:
        now = time.time()
        for write in writes:
            row = self._load(session, write.collection, write.doc_id)
            current = dict(row.data) if row else None
            data = apply_write(current, write)
            if data is None:
                if row:
                    session.delete(row)
            elif row:
                # Reassign so the JSON column is flagged as modified.
                row.data = data
                row.updated_at = now
            else:
                session.add(
                    DocumentRow(
                        collection=write.collection,
                        doc_id=write.doc_id,
                        data=data,
                        updated_at=now,
                    )
                )
            session.flush()


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    doc_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(Float, nullable=False)

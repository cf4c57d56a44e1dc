"""
Commit queue: local change tracking before changes are pushed.

Every local mutation is recorded as a commit. The push worker drains unsynced
commits in FIFO order and marks them synced once the remote store confirms.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Protocol

from sqlalchemy import JSON, Boolean, Column, Float, Integer, String, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from partsmanager.types import CommitType


class CommitNotFound(LookupError):
    def __init__(self, commit_id: str):
        super().__init__(f"Commit not found: {commit_id}")
        self.commit_id = commit_id


@dataclass
class Commit:
    id: str
    type: CommitType
    collection: str
    doc_id: str
    data: dict
    user_id: str
    timestamp: float = field(default_factory=lambda: time.time())
    synced: bool = False
    synced_at: Optional[float] = None
    version: int = 1
    retries: int = 0

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "collection": self.collection,
            "doc_id": self.doc_id,
            "data": self.data,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "synced": self.synced,
            "synced_at": self.synced_at,
            "version": self.version,
            "retries": self.retries,
        }


def _new_commit_id(collection: str, doc_id: str, timestamp: float) -> str:
    return f"{collection}-{doc_id}-{int(timestamp * 1000)}-{uuid.uuid4().hex[:8]}"


class CommitQueue(Protocol):
    """Interface for the local commit queue."""

    def queue_commit(
        self,
        type: CommitType,
        collection: str,
        doc_id: str,
        data: dict,
        user_id: str,
    ) -> Commit:
        ...

    def replace_delete_with_restore(
        self, collection: str, doc_id: str, user_id: str, data: Optional[dict] = None
    ) -> Commit:
        ...

    def get_unpushed(self, user_id: str) -> List[Commit]:
        ...

    def get_commit(self, commit_id: str) -> Optional[Commit]:
        ...

    def mark_synced(self, commit_id: str) -> None:
        ...

    def increment_retries(self, commit_id: str) -> int:
        ...

    def cleanup_synced(self, older_than_seconds: float = 24 * 60 * 60) -> int:
        ...

    def pending_doc_ids(self, user_id: str, collection: str) -> set[str]:
        ...


class InMemoryCommitQueue:
    """Simple in-memory commit queue for development and tests."""

    def __init__(self):
        self.commits: Dict[str, Commit] = {}
        self._seq: Dict[str, int] = {}

    def _add(self, commit: Commit) -> Commit:
        self._seq[commit.id] = len(self._seq)
        self.commits[commit.id] = commit
        return replace(commit)

    def queue_commit(
        self,
        type: CommitType,
        collection: str,
        doc_id: str,
        data: dict,
        user_id: str,
    ) -> Commit:
        now = time.time()
        commit = Commit(
            id=_new_commit_id(collection, doc_id, now),
            type=CommitType(type),
            collection=collection,
            doc_id=doc_id,
            data=dict(data or {}),
            user_id=user_id,
            timestamp=now,
        )
        return self._add(commit)

    def replace_delete_with_restore(
        self, collection: str, doc_id: str, user_id: str, data: Optional[dict] = None
    ) -> Commit:
        for commit in self.commits.values():
            if (
                commit.type == CommitType.DELETE
                and commit.collection == collection
                and commit.doc_id == doc_id
                and not commit.synced
            ):
                commit.type = CommitType.RESTORE
                commit.timestamp = time.time()
                commit.version += 1
                if data is not None:
                    commit.data = dict(data)
                return replace(commit)
        return self.queue_commit(CommitType.RESTORE, collection, doc_id, data or {}, user_id)

    def get_unpushed(self, user_id: str) -> List[Commit]:
        pending = [
            c for c in self.commits.values() if not c.synced and c.user_id == user_id
        ]
        pending.sort(key=lambda c: (c.timestamp, self._seq[c.id]))
        return [replace(c) for c in pending]

    def get_commit(self, commit_id: str) -> Optional[Commit]:
        commit = self.commits.get(commit_id)
        return replace(commit) if commit else None

    def mark_synced(self, commit_id: str) -> None:
        commit = self.commits.get(commit_id)
        if not commit:
            raise CommitNotFound(commit_id)
        commit.synced = True
        commit.synced_at = time.time()

    def increment_retries(self, commit_id: str) -> int:
        commit = self.commits.get(commit_id)
        if not commit:
            raise CommitNotFound(commit_id)
        commit.retries += 1
        return commit.retries

    def cleanup_synced(self, older_than_seconds: float = 24 * 60 * 60) -> int:
        cutoff = time.time() - older_than_seconds
        stale = [
            c.id
            for c in self.commits.values()
            if c.synced and c.synced_at is not None and c.synced_at < cutoff
        ]
        for commit_id in stale:
            del self.commits[commit_id]
            self._seq.pop(commit_id, None)
        return len(stale)

    def pending_doc_ids(self, user_id: str, collection: str) -> set[str]:
        return {
            c.doc_id
            for c in self.commits.values()
            if not c.synced and c.user_id == user_id and c.collection == collection
        }

    def reset(self) -> None:
        self.commits.clear()
        self._seq.clear()


class SqlCommitQueue:
    """
    SQLAlchemy-backed commit queue. Defaults to a SQLite file on the desktop
    host so queued commits survive restarts.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("A database URL is required for SqlCommitQueue")
        self.engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _row(self, session: Session, commit_id: str) -> Optional["CommitRow"]:
        stmt = select(CommitRow).where(CommitRow.id == commit_id)
        return session.execute(stmt).scalar_one_or_none()

    def _to_commit(self, row: "CommitRow") -> Commit:
        return Commit(
            id=row.id,
            type=CommitType(row.type),
            collection=row.collection,
            doc_id=row.doc_id,
            data=dict(row.data or {}),
            user_id=row.user_id,
            timestamp=row.timestamp,
            synced=row.synced,
            synced_at=row.synced_at,
            version=row.version,
            retries=row.retries,
        )

    def queue_commit(
        self,
        type: CommitType,
        collection: str,
        doc_id: str,
        data: dict,
        user_id: str,
    ) -> Commit:
        now = time.time()
        with self.Session() as session:
            row = CommitRow(
                id=_new_commit_id(collection, doc_id, now),
                type=CommitType(type).value,
                collection=collection,
                doc_id=doc_id,
                data=dict(data or {}),
                user_id=user_id,
                timestamp=now,
                synced=False,
                synced_at=None,
                version=1,
                retries=0,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_commit(row)

    def replace_delete_with_restore(
        self, collection: str, doc_id: str, user_id: str, data: Optional[dict] = None
    ) -> Commit:
        with self.Session() as session:
            stmt = (
                select(CommitRow)
                .where(
                    CommitRow.doc_id == doc_id,
                    CommitRow.collection == collection,
                    CommitRow.type == CommitType.DELETE.value,
                    CommitRow.synced == False,  # noqa: E712
                )
                .order_by(CommitRow.seq.asc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row:
                row.type = CommitType.RESTORE.value
                row.timestamp = time.time()
                row.version = row.version + 1
                if data is not None:
                    row.data = dict(data)
                session.commit()
                session.refresh(row)
                return self._to_commit(row)
        return self.queue_commit(CommitType.RESTORE, collection, doc_id, data or {}, user_id)

    def get_unpushed(self, user_id: str) -> List[Commit]:
        with self.Session() as session:
            stmt = (
                select(CommitRow)
                .where(CommitRow.user_id == user_id, CommitRow.synced == False)  # noqa: E712
                .order_by(CommitRow.timestamp.asc(), CommitRow.seq.asc())
            )
            return [self._to_commit(row) for row in session.execute(stmt).scalars()]

    def get_commit(self, commit_id: str) -> Optional[Commit]:
        with self.Session() as session:
            row = self._row(session, commit_id)
            return self._to_commit(row) if row else None

    def mark_synced(self, commit_id: str) -> None:
        with self.Session() as session:
            row = self._row(session, commit_id)
            if not row:
                raise CommitNotFound(commit_id)
            row.synced = True
            row.synced_at = time.time()
            session.commit()

    def increment_retries(self, commit_id: str) -> int:
        with self.Session() as session:
            row = self._row(session, commit_id)
            if not row:
                raise CommitNotFound(commit_id)
            row.retries = (row.retries or 0) + 1
            session.commit()
            return row.retries

    def cleanup_synced(self, older_than_seconds: float = 24 * 60 * 60) -> int:
        cutoff = time.time() - older_than_seconds
        with self.Session() as session:
            removed = (
                session.query(CommitRow)
                .filter(
                    CommitRow.synced == True,  # noqa: E712
                    CommitRow.synced_at != None,  # noqa: E711
                    CommitRow.synced_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
            session.commit()
            return removed or 0

    def pending_doc_ids(self, user_id: str, collection: str) -> set[str]:
        with self.Session() as session:
            stmt = select(CommitRow.doc_id).where(
                CommitRow.user_id == user_id,
                CommitRow.collection == collection,
                CommitRow.synced == False,  # noqa: E712
            )
            return set(session.execute(stmt).scalars())


Base = declarative_base()


class CommitRow(Base):
    __tablename__ = "commit_queue"

    # Insertion order breaks timestamp ties.
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    type = Column(String, nullable=False)
    collection = Column(String, nullable=False)
    doc_id = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    timestamp = Column(Float, nullable=False, index=True)
    synced = Column(Boolean, nullable=False, default=False, index=True)
    synced_at = Column(Float, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    retries = Column(Integer, nullable=False, default=0)

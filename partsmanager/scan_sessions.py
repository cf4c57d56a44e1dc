"""
Mobile-to-desktop scan pairing.

The desktop generates a random session id, stores it locally and registers a
session record. A phone that knows the id submits scan events into the
session's ``scans`` subcollection; the desktop listens to that log and reacts
to fresh scans only.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from partsmanager.config import get_settings
from partsmanager.store import Document, DocumentStore, Transaction, doc_path
from partsmanager.types import SCANS_SUBCOLLECTION, SYNC_SESSIONS_COLLECTION, SessionStatus

logger = logging.getLogger(__name__)


class SessionNotFound(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Scan session not found: {session_id}")
        self.session_id = session_id


class SessionClosed(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Scan session is closed: {session_id}")
        self.session_id = session_id


@dataclass
class SyncSession:
    id: str
    host_id: str
    created_at: float
    last_seen_at: float
    status: SessionStatus = SessionStatus.ACTIVE

    @classmethod
    def from_document(cls, doc: Document) -> "SyncSession":
        return cls(
            id=doc.id,
            host_id=doc.get("hostId", ""),
            created_at=doc.get("createdAt") or 0.0,
            last_seen_at=doc.get("lastSeenAt") or 0.0,
            status=SessionStatus(doc.get("status", SessionStatus.ACTIVE.value)),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "hostId": self.host_id,
            "createdAt": self.created_at,
            "lastSeenAt": self.last_seen_at,
            "status": self.status.value,
        }


@dataclass
class ScanEvent:
    id: str
    product_id: str
    timestamp: float
    scanned_by: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Document) -> "ScanEvent":
        return cls(
            id=doc.id,
            product_id=doc.get("productId", ""),
            timestamp=doc.get("timestamp") or 0.0,
            scanned_by=doc.get("scannedBy"),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "timestamp": self.timestamp,
            "scannedBy": self.scanned_by,
        }


def generate_session_id() -> str:
    return str(uuid.uuid4())


def _session_path(session_id: str) -> str:
    return doc_path(SYNC_SESSIONS_COLLECTION, session_id)


def _scans_collection(session_id: str) -> str:
    return f"{_session_path(session_id)}/{SCANS_SUBCOLLECTION}"


class LocalSessionFile:
    """Keeps the desktop's session id across restarts."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path or get_settings().session_file)

    def load(self) -> Optional[str]:
        try:
            value = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def load_or_create(self) -> str:
        session_id = self.load()
        if session_id:
            return session_id
        return self.regenerate()

    def regenerate(self) -> str:
        session_id = generate_session_id()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session_id, encoding="utf-8")
        logger.info("Generated new scan session %s", session_id)
        return session_id


def init_session(
    store: DocumentStore, session_id: str, host_id: str, now: Optional[float] = None
) -> SyncSession:
    """Create the session record, or refresh it as active and keep its creation time."""
    now = now if now is not None else time.time()
    path = _session_path(session_id)

    def _init(transaction: Transaction) -> dict:
        current = transaction.get(path)
        data = {
            "hostId": host_id,
            "createdAt": current.get("createdAt", now) if current else now,
            "lastSeenAt": now,
            "status": SessionStatus.ACTIVE.value,
        }
        transaction.set(path, data)
        return data

    data = store.run_transaction(_init)
    return SyncSession.from_document(Document(session_id, SYNC_SESSIONS_COLLECTION, data))


def get_session(store: DocumentStore, session_id: str) -> Optional[SyncSession]:
    doc = store.get(_session_path(session_id))
    return SyncSession.from_document(doc) if doc else None


def close_session(
    store: DocumentStore, session_id: str, now: Optional[float] = None
) -> SyncSession:
    path = _session_path(session_id)
    if store.get(path) is None:
        raise SessionNotFound(session_id)
    doc = store.update(
        path,
        {
            "status": SessionStatus.CLOSED.value,
            "lastSeenAt": now if now is not None else time.time(),
        },
    )
    logger.info("Closed scan session %s", session_id)
    return SyncSession.from_document(doc)


def submit_scan(
    store: DocumentStore,
    session_id: str,
    product_id: str,
    scanned_by: Optional[str] = None,
    now: Optional[float] = None,
) -> ScanEvent:
    session = get_session(store, session_id)
    if session is None:
        raise SessionNotFound(session_id)
    if session.status != SessionStatus.ACTIVE:
        raise SessionClosed(session_id)
    doc = store.add(
        _scans_collection(session_id),
        {
            "productId": product_id,
            "timestamp": now if now is not None else time.time(),
            "scannedBy": scanned_by,
        },
    )
    logger.info("Scan of %s submitted to session %s", product_id, session_id)
    return ScanEvent.from_document(doc)


def list_scans(
    store: DocumentStore,
    session_id: str,
    since: Optional[float] = None,
    limit: Optional[int] = None,
) -> List[ScanEvent]:
    filters = [("timestamp", ">", since)] if since is not None else []
    docs = store.query(
        _scans_collection(session_id), filters, order_by="timestamp", limit=limit
    )
    return [ScanEvent.from_document(doc) for doc in docs]


class ScanListener:
    """
    Polling subscription to a session's scan log.

    Each event is delivered at most once. Events older than the staleness
    window when first seen are dropped, so reconnecting does not replay
    history.
    """

    def __init__(
        self,
        store: DocumentStore,
        session_id: str,
        callback: Callable[[ScanEvent], None],
        *,
        poll_interval: float = 1.0,
        staleness_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session_id = session_id
        self.callback = callback
        self.poll_interval = poll_interval
        self.staleness_seconds = (
            staleness_seconds
            if staleness_seconds is not None
            else get_settings().scan_staleness_seconds
        )
        self.clock = clock
        self._seen: dict[str, float] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> List[ScanEvent]:
        now = self.clock()
        cutoff = now - self.staleness_seconds
        delivered: List[ScanEvent] = []
        # Scans at or before the cutoff are never read again.
        self._seen = {
            scan_id: ts for scan_id, ts in self._seen.items() if ts > cutoff
        }
        for event in list_scans(self.store, self.session_id, since=cutoff):
            if event.id in self._seen:
                continue
            self._seen[event.id] = event.timestamp
            try:
                self.callback(event)
            except Exception:
                logger.exception("Scan callback failed for %s", event.id)
                continue
            delivered.append(event)
        return delivered

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"scan-listener-{self.session_id}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:
                logger.exception("Polling scan session %s failed", self.session_id)
            self._stop_event.wait(self.poll_interval)

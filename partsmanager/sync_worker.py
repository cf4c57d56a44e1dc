"""
Push sync worker: drains the local commit queue into the remote store.

Commits are pushed one by one in FIFO order. Quota errors pause all pushes
for a day; other failures are retried on later passes until the retry limit,
after which the commit is dropped so it cannot block the queue.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from partsmanager.commits import Commit, CommitQueue
from partsmanager.config import get_settings
from partsmanager.queue import SyncQueue
from partsmanager.store import DocumentStore, QuotaExceededError, Transaction, doc_path
from partsmanager.types import LOCAL_ONLY_SUBSCRIPTIONS, USERS_COLLECTION, CommitType

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "quota", "exceeded")
STOP_CHECK_SECONDS = 1.0


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, QuotaExceededError):
        return True
    message = str(exc)
    return any(marker in message for marker in QUOTA_MARKERS)


@dataclass
class SyncWorkerState:
    is_running: bool = False
    is_syncing: bool = False
    last_quota_error: Optional[float] = None
    quota_error_notified: bool = False


@dataclass
class SyncResult:
    synced: int = 0
    retried: int = 0
    dropped: int = 0
    skipped: Optional[str] = None
    quota_exceeded: bool = False


def apply_commit(remote: DocumentStore, commit: Commit, now: Optional[float] = None) -> None:
    """Apply a single commit to the remote store inside a transaction."""
    now = now if now is not None else time.time()
    path = doc_path(commit.collection, commit.doc_id)

    def _txn(transaction: Transaction) -> None:
        if commit.type == CommitType.PERMANENT_DELETE:
            transaction.delete(path)
            return
        current = transaction.get(path)
        if commit.type == CommitType.CREATE:
            data = dict(commit.data)
            data.pop("id", None)
            if current is None:
                data.update(
                    userId=commit.user_id,
                    version=1,
                    createdAt=now,
                    updatedAt=now,
                )
                data.setdefault("isDeleted", False)
                transaction.set(path, data)
            else:
                # Replayed create (pushed before but never marked synced).
                data.update(
                    userId=commit.user_id,
                    version=int(current.get("version") or 0) + 1,
                    updatedAt=now,
                )
                transaction.set(path, data, merge=True)
            return

        # update/delete/restore address an existing remote document.
        if commit.type == CommitType.UPDATE:
            fields = dict(commit.data)
            fields.pop("id", None)
            fields.pop("version", None)
        elif commit.type == CommitType.DELETE:
            fields = {"isDeleted": True, "deletedAt": now}
        elif commit.type == CommitType.RESTORE:
            fields = {"isDeleted": False, "deletedAt": None}
        else:
            raise ValueError(f"Unknown commit type: {commit.type}")
        version = int(current.get("version") or 0) if current else 0
        fields.update(version=version + 1, updatedAt=now)
        transaction.update(path, fields)

    remote.run_transaction(_txn)


class SyncWorker:
    """
    Periodically pushes unsynced commits for the bound user.

    The loop wakes every ``interval_seconds`` or as soon as a signal arrives
    on the sync queue.
    """

    def __init__(
        self,
        remote: DocumentStore,
        commits: CommitQueue,
        signals: Optional[SyncQueue] = None,
        *,
        interval_seconds: Optional[float] = None,
        commit_delay_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        quota_pause_seconds: Optional[float] = None,
        synced_commit_ttl_seconds: Optional[float] = None,
        on_state_change: Optional[Callable[[SyncWorkerState], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.remote = remote
        self.commits = commits
        self.signals = signals
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.sync_interval_seconds
        )
        self.commit_delay_seconds = (
            commit_delay_seconds
            if commit_delay_seconds is not None
            else settings.commit_delay_seconds
        )
        self.max_retries = max_retries if max_retries is not None else settings.max_commit_retries
        self.quota_pause_seconds = (
            quota_pause_seconds
            if quota_pause_seconds is not None
            else settings.quota_pause_seconds
        )
        self.synced_commit_ttl_seconds = (
            synced_commit_ttl_seconds
            if synced_commit_ttl_seconds is not None
            else settings.synced_commit_ttl_seconds
        )
        self.on_state_change = on_state_change
        self.clock = clock

        self._state = SyncWorkerState()
        self._user_id: Optional[str] = None
        self._sync_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SyncWorkerState:
        return replace(self._state)

    def set_context(self, user_id: Optional[str]) -> None:
        self._user_id = user_id

    def _notify_state(self) -> None:
        if self.on_state_change:
            self.on_state_change(replace(self._state))

    # Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._state.is_running:
            logger.info("[SyncWorker] Already running")
            return
        logger.info("[SyncWorker] Starting sync worker")
        self._stop_event.clear()
        self._state.is_running = True
        self._thread = threading.Thread(
            target=self.run_forever, name="partsmanager-sync-worker", daemon=True
        )
        self._thread.start()
        self._notify_state()

    def stop(self, timeout: Optional[float] = None) -> None:
        logger.info("[SyncWorker] Stopping sync worker")
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self._state.is_running = False
        self._notify_state()

    def _wait_for_signal(self) -> None:
        """Wait for this user's signal, the interval, or stop()."""
        if self.signals is None or not self._user_id:
            self._stop_event.wait(self.interval_seconds)
            return
        deadline = time.monotonic() + self.interval_seconds
        while not self._stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            # Short blocking pops so stop() is noticed without a wake-up signal.
            timeout = min(remaining, STOP_CHECK_SECONDS)
            if self.signals.dequeue(self._user_id, block=True, timeout=timeout):
                return

    def run_forever(self) -> None:
        """Blocking loop; returns after stop()."""
        self._state.is_running = True
        while not self._stop_event.is_set():
            self._wait_for_signal()
            if self._stop_event.is_set():
                break
            try:
                self.process_pending_from_context()
                self.commits.cleanup_synced(self.synced_commit_ttl_seconds)
            except Exception:
                logger.exception("[SyncWorker] Unexpected error in sync loop")

    # Passes --------------------------------------------------------------

    def trigger_immediate_sync(self) -> SyncResult:
        if not self._user_id:
            logger.info("[SyncWorker] No user context, skipping immediate sync")
            return SyncResult(skipped="no-context")
        logger.info("[SyncWorker] Triggering immediate sync")
        return self.process_pending_commits(self._user_id)

    def process_pending_from_context(self) -> SyncResult:
        if not self._user_id:
            logger.info("[SyncWorker] User context not initialized yet")
            return SyncResult(skipped="no-context")
        return self.process_pending_commits(self._user_id)

    def _is_local_only(self, user_id: str) -> bool:
        try:
            user = self.remote.get(doc_path(USERS_COLLECTION, user_id))
        except Exception as exc:
            logger.warning("[SyncWorker] Could not check user subscription: %s", exc)
            return False
        if not user:
            return False
        subscription = user.get("subscription")
        if subscription in LOCAL_ONLY_SUBSCRIPTIONS:
            logger.info(
                "[SyncWorker] %s user %s keeps data locally, skipping push",
                subscription,
                user_id,
            )
            return True
        return False

    def _quota_paused(self) -> bool:
        if self._state.last_quota_error is None:
            return False
        elapsed = self.clock() - self._state.last_quota_error
        if elapsed < self.quota_pause_seconds:
            logger.info("[SyncWorker] Quota error within pause window, skipping sync")
            return True
        logger.info("[SyncWorker] Quota pause elapsed, retrying")
        self._state.last_quota_error = None
        self._state.quota_error_notified = False
        return False

    def process_pending_commits(self, user_id: str) -> SyncResult:
        if self._is_local_only(user_id):
            return SyncResult(skipped="local-only")
        if self._quota_paused():
            return SyncResult(skipped="quota")
        if not self._sync_lock.acquire(blocking=False):
            logger.info("[SyncWorker] Already syncing, skipping")
            return SyncResult(skipped="in-progress")

        result = SyncResult()
        try:
            self._state.is_syncing = True
            self._notify_state()

            pending = self.commits.get_unpushed(user_id)
            if not pending:
                logger.debug("[SyncWorker] No pending commits")
                return result
            logger.info("[SyncWorker] Processing %d commits", len(pending))

            for index, commit in enumerate(pending):
                if index and self.commit_delay_seconds:
                    time.sleep(self.commit_delay_seconds)
                if not self._push_one(commit, user_id, result):
                    break
        finally:
            self._state.is_syncing = False
            self._sync_lock.release()
            self._notify_state()
        return result

    def _push_one(self, commit: Commit, user_id: str, result: SyncResult) -> bool:
        """Push one commit; returns False when the pass must stop."""
        try:
            logger.info("[SyncWorker] Syncing %s %s", commit.type.value, commit.doc_id)
            apply_commit(self.remote, commit, now=self.clock())
            self.commits.mark_synced(commit.id)
            result.synced += 1
            return True
        except Exception as exc:
            if is_quota_error(exc):
                logger.error("[SyncWorker] Quota error, stopping sync: %s", exc)
                self._state.last_quota_error = self.clock()
                result.quota_exceeded = True
                if not self._state.quota_error_notified:
                    self._state.quota_error_notified = True
                    self._notify_quota_error(user_id)
                return False

            retries = commit.retries + 1
            if retries > self.max_retries:
                logger.error(
                    "[SyncWorker] Max retries exceeded for %s, dropping: %s",
                    commit.id,
                    exc,
                )
                self.commits.mark_synced(commit.id)
                result.dropped += 1
            else:
                logger.warning(
                    "[SyncWorker] Retry %d for %s: %s", retries, commit.id, exc
                )
                self.commits.increment_retries(commit.id)
                result.retried += 1
            return True

    def _notify_quota_error(self, user_id: str) -> None:
        logger.error(
            "[SyncWorker] QUOTA EXCEEDED for user %s, sync paused for %.0f hours",
            user_id,
            self.quota_pause_seconds / 3600,
        )


def run_loop(user_id: str) -> None:
    """
    Run the push worker in the foreground for one user. Intended to be run
    under systemd/supervisor.
    """
    from partsmanager.dependencies import (
        get_commit_queue,
        get_remote_store,
        get_sync_queue,
    )

    logging.basicConfig(level=logging.INFO)
    worker = SyncWorker(get_remote_store(), get_commit_queue(), get_sync_queue())
    worker.set_context(user_id)
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        worker.stop()


if __name__ == "__main__":
    import sys

    run_loop(sys.argv[1])

"""
Pull service: adaptive polling of remote product changes.

The interval starts at the minimum, grows by one step after each cycle with no
changes (up to the maximum) and snaps back to the minimum when changes are
found or the user is active.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from partsmanager.commits import CommitQueue
from partsmanager.config import get_settings
from partsmanager.store import DocumentStore, doc_path
from partsmanager.types import PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)


@dataclass
class PullState:
    is_running: bool = False
    last_pull_time: float = 0.0
    interval_seconds: float = 600.0
    min_interval: float = 600.0
    max_interval: float = 1800.0
    step: float = 600.0
    no_change_count: int = 0
    max_no_change_before_increase: int = 1


class PullService:
    def __init__(
        self,
        remote: DocumentStore,
        local: DocumentStore,
        commits: Optional[CommitQueue] = None,
        *,
        min_interval: Optional[float] = None,
        max_interval: Optional[float] = None,
        step: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        min_interval = min_interval if min_interval is not None else settings.pull_min_interval_seconds
        self.remote = remote
        self.local = local
        self.commits = commits
        self.clock = clock
        self._state = PullState(
            interval_seconds=min_interval,
            min_interval=min_interval,
            max_interval=max_interval if max_interval is not None else settings.pull_max_interval_seconds,
            step=step if step is not None else settings.pull_interval_step_seconds,
        )
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def get_state(self) -> PullState:
        return replace(self._state)

    def start(self, user_id: str) -> None:
        if self._state.is_running:
            logger.info("[Pull] Service already running")
            return
        logger.info("[Pull] Starting adaptive pull service")
        self._state.is_running = True
        self.pull_changes(user_id)
        self._schedule(user_id)

    def stop(self) -> None:
        logger.info("[Pull] Stopping pull service")
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = None
            self._state.is_running = False

    def _schedule(self, user_id: str) -> None:
        with self._lock:
            if not self._state.is_running:
                return
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(
                self._state.interval_seconds, self._tick, args=(user_id,)
            )
            self._timer.daemon = True
            self._timer.start()
        logger.info(
            "[Pull] Next pull scheduled in %d seconds",
            round(self._state.interval_seconds),
        )

    def _tick(self, user_id: str) -> None:
        self.pull_changes(user_id)
        self._schedule(user_id)

    def on_user_activity(self, kind: str | None = None) -> None:
        logger.info(
            "[Pull] User activity (%s), resetting poll interval to %d seconds",
            kind or "unknown",
            round(self._state.min_interval),
        )
        self._state.interval_seconds = self._state.min_interval
        self._state.no_change_count = 0

    def pull_changes(self, user_id: str) -> int:
        """Copy products changed since the last pull into the local store."""
        state = self._state
        now = self.clock()
        try:
            updated = self.remote.query(
                PRODUCTS_COLLECTION,
                [("userId", "==", user_id), ("updatedAt", ">", state.last_pull_time)],
            )
            logger.info("[Pull] Found %d updated products", len(updated))

            pending = (
                self.commits.pending_doc_ids(user_id, PRODUCTS_COLLECTION)
                if self.commits
                else set()
            )
            for doc in updated:
                if doc.id in pending:
                    # Local edits win until they are pushed.
                    logger.debug("[Pull] Skipping %s with unpushed commits", doc.id)
                    continue
                try:
                    self.local.set(doc_path(PRODUCTS_COLLECTION, doc.id), doc.data)
                except Exception as exc:
                    logger.warning("[Pull] Failed to save product locally %s: %s", doc.id, exc)

            if updated:
                state.interval_seconds = state.min_interval
                state.no_change_count = 0
            else:
                state.no_change_count += 1
                if (
                    state.no_change_count >= state.max_no_change_before_increase
                    and state.interval_seconds < state.max_interval
                ):
                    state.interval_seconds = min(
                        state.interval_seconds + state.step, state.max_interval
                    )
                    state.no_change_count = 0
                    logger.info(
                        "[Pull] No changes detected, increased interval to %d seconds",
                        round(state.interval_seconds),
                    )
            state.last_pull_time = now
            return len(updated)
        except Exception:
            logger.exception("[Pull] Error fetching changes")
            return 0

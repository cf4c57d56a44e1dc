import time
import unittest
from unittest.mock import call, patch

from partsmanager.commits import InMemoryCommitQueue
from partsmanager.queue import InMemorySyncQueue
from partsmanager.store import InMemoryDocumentStore, QuotaExceededError
from partsmanager.sync_worker import SyncWorker, apply_commit, is_quota_error
from partsmanager.types import CommitType


class FailingStore(InMemoryDocumentStore):
    def __init__(self, error: Exception):
        super().__init__()
        self.error = error
        self.attempts = 0

    def run_transaction(self, fn):
        self.attempts += 1
        raise self.error


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ApplyCommitTests(unittest.TestCase):
    def setUp(self):
        self.remote = InMemoryDocumentStore()
        self.commits = InMemoryCommitQueue()

    def test_create_sets_owner_and_version(self):
        commit = self.commits.queue_commit(
            CommitType.CREATE, "products", "p1", {"name": "Pad", "stock": 4}, "u1"
        )
        apply_commit(self.remote, commit, now=50.0)
        doc = self.remote.get("products/p1")
        self.assertEqual(doc.get("userId"), "u1")
        self.assertEqual(doc.get("version"), 1)
        self.assertEqual(doc.get("createdAt"), 50.0)
        self.assertFalse(doc.get("isDeleted"))

    def test_replayed_create_bumps_version(self):
        self.remote.set("products/p1", {"name": "Pad", "version": 3, "userId": "u1"})
        commit = self.commits.queue_commit(
            CommitType.CREATE, "products", "p1", {"name": "Pad v2"}, "u1"
        )
        apply_commit(self.remote, commit, now=60.0)
        doc = self.remote.get("products/p1")
        self.assertEqual(doc.get("version"), 4)
        self.assertEqual(doc.get("name"), "Pad v2")

    def test_update_uses_remote_version(self):
        self.remote.set("products/p1", {"stock": 1, "version": 7})
        commit = self.commits.queue_commit(
            CommitType.UPDATE, "products", "p1", {"stock": 9, "version": 2}, "u1"
        )
        apply_commit(self.remote, commit, now=70.0)
        doc = self.remote.get("products/p1")
        self.assertEqual(doc.get("stock"), 9)
        self.assertEqual(doc.get("version"), 8)
        self.assertEqual(doc.get("updatedAt"), 70.0)

    def test_delete_restore_and_permanent_delete(self):
        self.remote.set("products/p1", {"version": 1, "isDeleted": False})
        delete = self.commits.queue_commit(CommitType.DELETE, "products", "p1", {}, "u1")
        apply_commit(self.remote, delete, now=10.0)
        doc = self.remote.get("products/p1")
        self.assertTrue(doc.get("isDeleted"))
        self.assertEqual(doc.get("deletedAt"), 10.0)
        self.assertEqual(doc.get("version"), 2)

        restore = self.commits.queue_commit(CommitType.RESTORE, "products", "p1", {}, "u1")
        apply_commit(self.remote, restore, now=20.0)
        doc = self.remote.get("products/p1")
        self.assertFalse(doc.get("isDeleted"))
        self.assertIsNone(doc.get("deletedAt"))
        self.assertEqual(doc.get("version"), 3)

        purge = self.commits.queue_commit(
            CommitType.PERMANENT_DELETE, "products", "p1", {}, "u1"
        )
        apply_commit(self.remote, purge)
        self.assertIsNone(self.remote.get("products/p1"))

    def test_permanent_delete_runs_in_transaction(self):
        remote = FailingStore(RuntimeError("aborted"))
        remote.set("products/p1", {"version": 1})
        purge = self.commits.queue_commit(
            CommitType.PERMANENT_DELETE, "products", "p1", {}, "u1"
        )
        with self.assertRaises(RuntimeError):
            apply_commit(remote, purge)
        self.assertEqual(remote.attempts, 1)
        self.assertIsNotNone(remote.get("products/p1"))


class SyncWorkerTests(unittest.TestCase):
    def setUp(self):
        self.remote = InMemoryDocumentStore()
        self.commits = InMemoryCommitQueue()
        self.clock = FakeClock()

    def make_worker(self, remote=None, **kwargs):
        kwargs.setdefault("commit_delay_seconds", 0)
        return SyncWorker(remote or self.remote, self.commits, clock=self.clock, **kwargs)

    def test_pushes_pending_commits_in_order(self):
        self.commits.queue_commit(CommitType.CREATE, "products", "p1", {"stock": 1}, "u1")
        self.commits.queue_commit(CommitType.UPDATE, "products", "p1", {"stock": 5}, "u1")
        worker = self.make_worker()

        result = worker.process_pending_commits("u1")

        self.assertEqual(result.synced, 2)
        doc = self.remote.get("products/p1")
        self.assertEqual(doc.get("stock"), 5)
        self.assertEqual(doc.get("version"), 2)
        self.assertEqual(self.commits.get_unpushed("u1"), [])

    def test_pauses_between_commits_only(self):
        for doc_id in ("p1", "p2", "p3"):
            self.commits.queue_commit(CommitType.CREATE, "products", doc_id, {}, "u1")
        worker = self.make_worker(commit_delay_seconds=0.1)

        with patch("partsmanager.sync_worker.time.sleep") as sleep:
            result = worker.process_pending_commits("u1")

        self.assertEqual(result.synced, 3)
        self.assertEqual(sleep.call_args_list, [call(0.1), call(0.1)])

    def test_single_commit_is_pushed_without_pause(self):
        self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
        worker = self.make_worker(commit_delay_seconds=0.1)
        with patch("partsmanager.sync_worker.time.sleep") as sleep:
            worker.process_pending_commits("u1")
        sleep.assert_not_called()

    def test_local_only_subscription_is_not_pushed(self):
        self.remote.set("users/u1", {"subscription": "trial"})
        self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
        result = self.make_worker().process_pending_commits("u1")
        self.assertEqual(result.skipped, "local-only")
        self.assertIsNone(self.remote.get("products/p1"))
        self.assertEqual(len(self.commits.get_unpushed("u1")), 1)

    def test_paid_subscription_is_pushed(self):
        self.remote.set("users/u1", {"subscription": "premium"})
        self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
        result = self.make_worker().process_pending_commits("u1")
        self.assertEqual(result.synced, 1)

    def test_quota_error_pauses_for_a_day(self):
        remote = FailingStore(QuotaExceededError("quota"))
        self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
        self.commits.queue_commit(CommitType.CREATE, "products", "p2", {}, "u1")
        states = []
        worker = self.make_worker(remote, on_state_change=states.append)

        result = worker.process_pending_commits("u1")
        self.assertTrue(result.quota_exceeded)
        self.assertEqual(remote.attempts, 1)
        self.assertEqual(worker.state.last_quota_error, self.clock.now)
        self.assertTrue(worker.state.quota_error_notified)
        self.assertTrue(states)

        self.clock.now += 60 * 60
        self.assertEqual(worker.process_pending_commits("u1").skipped, "quota")
        self.assertEqual(remote.attempts, 1)

        self.clock.now += 24 * 60 * 60
        remote.error = RuntimeError("network down")
        result = worker.process_pending_commits("u1")
        self.assertIsNone(result.skipped)
        self.assertEqual(result.retried, 2)
        self.assertIsNone(worker.state.last_quota_error)
        self.assertFalse(worker.state.quota_error_notified)

    def test_quota_detected_from_message(self):
        self.assertTrue(is_quota_error(RuntimeError("429 RESOURCE_EXHAUSTED")))
        self.assertTrue(is_quota_error(RuntimeError("Daily limit exceeded")))
        self.assertFalse(is_quota_error(RuntimeError("permission denied")))

    def test_commit_dropped_after_max_retries(self):
        remote = FailingStore(RuntimeError("boom"))
        commit = self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
        worker = self.make_worker(remote, max_retries=5)

        for attempt in range(5):
            result = worker.process_pending_commits("u1")
            self.assertEqual(result.retried, 1)
        self.assertEqual(self.commits.get_commit(commit.id).retries, 5)

        result = worker.process_pending_commits("u1")
        self.assertEqual(result.dropped, 1)
        self.assertEqual(self.commits.get_unpushed("u1"), [])

    def test_failure_does_not_block_later_commits(self):
        self.remote.set("products/p2", {"version": 1})
        self.commits.queue_commit(CommitType.UPDATE, "products", "missing", {"a": 1}, "u1")
        self.commits.queue_commit(CommitType.UPDATE, "products", "p2", {"a": 2}, "u1")
        result = self.make_worker().process_pending_commits("u1")
        self.assertEqual(result.retried, 1)
        self.assertEqual(result.synced, 1)
        self.assertEqual(self.remote.get("products/p2").get("a"), 2)

    def test_reentrant_pass_is_skipped(self):
        worker = self.make_worker()
        worker._sync_lock.acquire()
        try:
            self.assertEqual(worker.process_pending_commits("u1").skipped, "in-progress")
        finally:
            worker._sync_lock.release()

    def test_trigger_without_context_is_skipped(self):
        worker = self.make_worker()
        self.assertEqual(worker.trigger_immediate_sync().skipped, "no-context")
        worker.set_context("u1")
        self.assertIsNone(worker.trigger_immediate_sync().skipped)

    def test_signal_wakes_running_worker(self):
        signals = InMemorySyncQueue()
        worker = SyncWorker(
            self.remote,
            self.commits,
            signals,
            interval_seconds=30,
            commit_delay_seconds=0,
        )
        worker.set_context("u1")
        worker.start()
        try:
            self.assertTrue(worker.state.is_running)
            self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
            signals.enqueue("u1")
            deadline = time.time() + 5
            while self.commits.get_unpushed("u1") and time.time() < deadline:
                time.sleep(0.01)
            self.assertEqual(self.commits.get_unpushed("u1"), [])
        finally:
            worker.stop(timeout=5)
        self.assertFalse(worker.state.is_running)

    def test_worker_ignores_other_users_signals_and_stops_cleanly(self):
        signals = InMemorySyncQueue()
        worker = SyncWorker(
            self.remote,
            self.commits,
            signals,
            interval_seconds=30,
            commit_delay_seconds=0,
        )
        worker.set_context("u1")
        worker.start()
        try:
            signals.enqueue("u2")
            self.commits.queue_commit(CommitType.CREATE, "products", "p1", {}, "u1")
            signals.enqueue("u1")
            deadline = time.time() + 5
            while self.commits.get_unpushed("u1") and time.time() < deadline:
                time.sleep(0.01)
            self.assertEqual(self.commits.get_unpushed("u1"), [])
        finally:
            started = time.monotonic()
            worker.stop(timeout=5)
        self.assertLess(time.monotonic() - started, 3)
        self.assertEqual(signals.items, ["u2"])


if __name__ == "__main__":
    unittest.main()

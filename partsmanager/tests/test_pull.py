import unittest

from partsmanager.commits import InMemoryCommitQueue
from partsmanager.pull import PullService
from partsmanager.store import InMemoryDocumentStore
from partsmanager.types import CommitType

MINUTE = 60.0


class FailingQueryStore(InMemoryDocumentStore):
    def query(self, *args, **kwargs):
        raise RuntimeError("unavailable")


class PullServiceTests(unittest.TestCase):
    def setUp(self):
        self.remote = InMemoryDocumentStore()
        self.local = InMemoryDocumentStore()
        self.commits = InMemoryCommitQueue()
        self.now = 10_000.0
        self.service = PullService(
            self.remote,
            self.local,
            self.commits,
            min_interval=10 * MINUTE,
            max_interval=30 * MINUTE,
            step=10 * MINUTE,
            clock=lambda: self.now,
        )

    def test_pulls_only_changes_for_user_since_last_pull(self):
        self.remote.set("products/a", {"userId": "u1", "updatedAt": 100.0, "name": "A"})
        self.remote.set("products/b", {"userId": "u2", "updatedAt": 100.0, "name": "B"})

        self.assertEqual(self.service.pull_changes("u1"), 1)
        self.assertEqual(self.local.get("products/a").get("name"), "A")
        self.assertIsNone(self.local.get("products/b"))
        self.assertEqual(self.service.get_state().last_pull_time, self.now)

        self.now += 5
        self.assertEqual(self.service.pull_changes("u1"), 0)

        self.remote.set("products/a", {"userId": "u1", "updatedAt": self.now + 1, "name": "A2"})
        self.assertEqual(self.service.pull_changes("u1"), 1)
        self.assertEqual(self.local.get("products/a").get("name"), "A2")

    def test_interval_grows_and_caps_without_changes(self):
        intervals = []
        for _ in range(4):
            self.service.pull_changes("u1")
            intervals.append(self.service.get_state().interval_seconds)
        self.assertEqual(intervals, [20 * MINUTE, 30 * MINUTE, 30 * MINUTE, 30 * MINUTE])

    def test_changes_reset_interval(self):
        self.service.pull_changes("u1")
        self.service.pull_changes("u1")
        self.assertEqual(self.service.get_state().interval_seconds, 30 * MINUTE)

        self.remote.set("products/a", {"userId": "u1", "updatedAt": self.now + 1})
        self.now += 10
        self.service.pull_changes("u1")
        state = self.service.get_state()
        self.assertEqual(state.interval_seconds, 10 * MINUTE)
        self.assertEqual(state.no_change_count, 0)

    def test_user_activity_resets_interval(self):
        self.service.pull_changes("u1")
        self.assertEqual(self.service.get_state().interval_seconds, 20 * MINUTE)
        self.service.on_user_activity("click")
        state = self.service.get_state()
        self.assertEqual(state.interval_seconds, 10 * MINUTE)
        self.assertEqual(state.no_change_count, 0)

    def test_documents_with_unpushed_commits_are_not_overwritten(self):
        self.local.set("products/a", {"userId": "u1", "name": "local edit"})
        self.commits.queue_commit(CommitType.UPDATE, "products", "a", {"name": "local edit"}, "u1")
        self.remote.set("products/a", {"userId": "u1", "updatedAt": 5.0, "name": "remote"})
        self.remote.set("products/b", {"userId": "u1", "updatedAt": 5.0, "name": "remote b"})

        self.service.pull_changes("u1")
        self.assertEqual(self.local.get("products/a").get("name"), "local edit")
        self.assertEqual(self.local.get("products/b").get("name"), "remote b")

    def test_errors_are_swallowed_and_retried_later(self):
        service = PullService(FailingQueryStore(), self.local, clock=lambda: self.now)
        self.assertEqual(service.pull_changes("u1"), 0)
        self.assertEqual(service.get_state().last_pull_time, 0.0)

    def test_state_is_a_copy(self):
        state = self.service.get_state()
        state.interval_seconds = 1
        self.assertEqual(self.service.get_state().interval_seconds, 10 * MINUTE)

    def test_start_and_stop(self):
        self.remote.set("products/a", {"userId": "u1", "updatedAt": 1.0})
        self.service.start("u1")
        try:
            self.assertTrue(self.service.get_state().is_running)
            self.assertIsNotNone(self.local.get("products/a"))
        finally:
            self.service.stop()
        self.assertFalse(self.service.get_state().is_running)


if __name__ == "__main__":
    unittest.main()

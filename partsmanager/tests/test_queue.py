import unittest
from unittest.mock import patch

from redis import exceptions as redis_exceptions

from partsmanager.queue import InMemorySyncQueue, RedisSyncQueue


class InMemorySyncQueueTests(unittest.TestCase):
    def test_dequeue_takes_only_the_requested_user(self):
        queue = InMemorySyncQueue()
        queue.enqueue("u2")
        queue.enqueue("u1")
        self.assertEqual(queue.dequeue("u1", block=False), "u1")
        self.assertIsNone(queue.dequeue("u1", block=True, timeout=0.01))
        self.assertEqual(queue.items, ["u2"])


class RedisSyncQueueTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("partsmanager.queue.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.from_url.return_value
        self.queue = RedisSyncQueue(url="redis://localhost:6379/0", queue_key="pm:sync")

    def test_signals_use_a_list_per_user(self):
        self.queue.enqueue("u1")
        self.client.rpush.assert_called_once_with("pm:sync:u1", "u1")

        self.client.blpop.return_value = (b"pm:sync:u1", b"u1")
        self.assertEqual(self.queue.dequeue("u1", timeout=2), "u1")
        self.client.blpop.assert_called_once_with("pm:sync:u1", timeout=2)

    def test_connection_reset_reads_as_empty(self):
        self.client.lpop.side_effect = redis_exceptions.ConnectionError("reset")
        self.assertIsNone(self.queue.dequeue("u1", block=False))
        self.assertEqual(self.from_url.call_count, 2)


if __name__ == "__main__":
    unittest.main()

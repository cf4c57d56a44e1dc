"""
Queue abstraction for waking the push sync worker.

Producers enqueue the id of a user with fresh local commits; the worker bound
to that user blocks on the queue between its periodic passes, and consumes
only that user's signals. Supports an in-memory fallback for tests/local runs
and a Redis-backed implementation (one list per user) for production.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class SyncQueue(Protocol):
    """Minimal queue interface for dispatching sync signals to the worker."""

    def enqueue(self, user_id: str) -> None:
        ...

    def dequeue(
        self, user_id: str, *, block: bool = True, timeout: float | None = None
    ) -> Optional[str]:
        ...


@dataclass
class InMemorySyncQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)

    def __post_init__(self):
        self._ready = threading.Condition()

    def enqueue(self, user_id: str) -> None:
        with self._ready:
            self.items.append(user_id)
            self._ready.notify_all()

    def dequeue(
        self, user_id: str, *, block: bool = True, timeout: float | None = None
    ) -> Optional[str]:
        with self._ready:
            if block and user_id not in self.items:
                self._ready.wait(timeout)
            if user_id not in self.items:
                return None
            self.items.remove(user_id)
            return user_id


@dataclass
class RedisSyncQueue:
    """Redis-backed queue using list push/pop operations, keyed per user."""

    url: str
    queue_key: str = "partsmanager:sync"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def key_for(self, user_id: str) -> str:
        return f"{self.queue_key}:{user_id}"

    def enqueue(self, user_id: str) -> None:
        self.client.rpush(self.key_for(user_id), user_id)

    def dequeue(
        self, user_id: str, *, block: bool = True, timeout: float | None = None
    ) -> Optional[str]:
        key = self.key_for(user_id)
        try:
            if block:
                result = self.client.blpop(key, timeout=timeout or 0)
                if result is None:
                    return None
                _, value = result
            else:
                value = self.client.lpop(key)
                if value is None:
                    return None
            return value.decode("utf-8")
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Treat as empty queue
            # and allow the worker loop to retry.
            self.client = redis.Redis.from_url(self.url)
            return None

"""
Queue abstraction for publishing usage events to downstream consumers.

Supports a bounded in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

DEFAULT_IN_MEMORY_LIMIT = 10000


class UsageEventQueue(Protocol):
    """Minimal queue interface for handing serialized usage events to consumers."""

    def publish(self, payload: str) -> None:
        ...


@dataclass
class InMemoryUsageEventQueue:
    """FIFO queue for testing/dev; once full, the oldest events are dropped."""

    maxlen: int = DEFAULT_IN_MEMORY_LIMIT
    items: deque = field(init=False)
    dropped: int = field(init=False, default=0)

    def __post_init__(self):
        self.items = deque(maxlen=self.maxlen)

    def publish(self, payload: str) -> None:
        if len(self.items) == self.maxlen:
            self.dropped += 1
            logger.warning(
                "In-memory usage queue is full (%d events); dropping the oldest event",
                self.maxlen,
            )
        self.items.append(payload)

    def pop(self) -> Optional[str]:
        if not self.items:
            return None
        return self.items.popleft()


@dataclass
class RedisUsageEventQueue:
    """Redis-backed queue; consumers pop events from the head of the list."""

    url: str
    queue_key: str = "data-usage:updates"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, payload: str) -> None:
        try:
            self.client.rpush(self.queue_key, payload)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and retry once.
            self.client = redis.Redis.from_url(self.url)
            self.client.rpush(self.queue_key, payload)

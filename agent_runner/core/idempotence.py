"""Distributed at-most-once locks keyed by string with an expiry."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod


class IdempotenceStore(ABC):
    @abstractmethod
    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        """Atomically claim ``key`` for ``ttl_seconds``. False if someone else holds it."""


class RedisIdempotenceStore(IdempotenceStore):
    """``SET key 1 NX EX ttl``: a single atomic conditional write."""

    def __init__(self, redis_client):
        self.redis = redis_client

    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self.redis.set(key, "1", nx=True, ex=ttl_seconds))


class InMemoryIdempotenceStore(IdempotenceStore):
    """Process-local store for single-replica deployments and tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._expiry.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._expiry[key] = now + ttl_seconds
            return True

"""
Per-key locks.

Used for the two contention points of the pipeline: the token refresh for
one connected account and the lookup-then-write for one dedup key. Keys that
differ never wait on each other.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis


logger = logging.getLogger(__name__)


class KeyedLock:
    """
    In-process lock table keyed by string.

    Entries are created on first use and dropped once nobody holds or
    waits on them, so the table only grows with in-flight keys.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class RedisKeyedLock:
    """
    Redis-backed lock table for deployments running several workers.

    Each key maps to its own redis lock, so the scoping is the same as
    KeyedLock. timeout bounds how long a crashed holder can block a key.
    """

    def __init__(
        self,
        redis_client: "redis.Redis",
        namespace: str = "ingestion:lock",
        timeout: float = 30.0,
        blocking_timeout: Optional[float] = None,
    ):
        self.redis_client = redis_client
        self.namespace = namespace
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisKeyedLock":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self.redis_client.lock(
            f"{self.namespace}:{key}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        async with lock:
            yield

    async def close(self):
        await self.redis_client.aclose()

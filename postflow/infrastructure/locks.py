# postflow/infrastructure/locks.py
import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import structlog
import redis.asyncio as aioredis
from redis.exceptions import LockError

logger = structlog.get_logger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
LOCK_TIMEOUT_SECONDS = int(os.getenv("LOCK_TIMEOUT_SECONDS", "120"))
LOCK_PREFIX = "postflow:lock:"


class KeyedLock:
    """
    One asyncio.Lock per key. Serialises work on a shared record (e.g. a
    credential refresh) inside a single process.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._lock_for(key):
            yield


class RedisKeyedLock(KeyedLock):
    """
    Same contract backed by Redis locks, so several workers sharing a
    database also share the serialisation. The local lock is still taken
    first to avoid hammering Redis from one process. While held, the Redis
    lock's TTL is renewed every third of `timeout`, so long holders (a slow
    reconcile tick) keep ownership.
    """

    def __init__(self, client: aioredis.Redis, timeout: float = LOCK_TIMEOUT_SECONDS):
        super().__init__()
        self.client = client
        self.timeout = timeout

    async def _keep_alive(self, lock, key: str) -> None:
        while True:
            await asyncio.sleep(self.timeout / 3)
            try:
                await lock.reacquire()
            except LockError as e:
                logger.error("keyed_lock_lost", key=key, error=str(e))
                return

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._lock_for(key):
            lock = self.client.lock(f"{LOCK_PREFIX}{key}", timeout=self.timeout)
            await lock.acquire()
            heartbeat = asyncio.create_task(self._keep_alive(lock, key))
            try:
                yield
            finally:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning("keyed_lock_release_failed", key=key, error=str(e))


def build_lock(redis_url: Optional[str] = REDIS_URL) -> KeyedLock:
    if not redis_url:
        return KeyedLock()
    logger.info("keyed_lock_backend", backend="redis")
    return RedisKeyedLock(aioredis.from_url(redis_url, decode_responses=True))

"""Tests for keyed locks."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockNotOwnedError

from postflow.infrastructure.locks import KeyedLock, RedisKeyedLock, build_lock


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold("credential:b:twitter"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLock()
    async with locks.hold("one"):
        assert locks.locked("one")
        assert not locks.locked("two")
        async with locks.hold("two"):
            assert locks.locked("two")
    assert not locks.locked("one")


def redis_client(lock: MagicMock) -> MagicMock:
    client = MagicMock()
    client.lock.return_value = lock
    return client


def redis_lock(release_error=None) -> MagicMock:
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.reacquire = AsyncMock(return_value=True)
    lock.release = AsyncMock(side_effect=release_error)
    return lock


@pytest.mark.asyncio
async def test_redis_lock_acquires_and_releases():
    lock = redis_lock()
    client = redis_client(lock)
    locks = RedisKeyedLock(client, timeout=30)

    async with locks.hold("reconcile-tick"):
        assert locks.locked("reconcile-tick")
        lock.acquire.assert_awaited_once()

    client.lock.assert_called_once_with("postflow:lock:reconcile-tick", timeout=30)
    lock.release.assert_awaited_once()
    lock.reacquire.assert_not_called()


@pytest.mark.asyncio
async def test_redis_lock_is_renewed_while_held_past_its_timeout():
    lock = redis_lock()
    locks = RedisKeyedLock(redis_client(lock), timeout=0.06)

    async with locks.hold("reconcile-tick"):
        await asyncio.sleep(0.15)

    assert lock.reacquire.await_count >= 2
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_lost_redis_lock_does_not_fail_the_holder():
    lock = redis_lock(release_error=LockNotOwnedError("Cannot release a lock that's no longer owned"))
    lock.reacquire = AsyncMock(side_effect=LockNotOwnedError("Cannot reacquire a lock that's no longer owned"))
    locks = RedisKeyedLock(redis_client(lock), timeout=0.03)
    finished = False

    async with locks.hold("reconcile-tick"):
        await asyncio.sleep(0.05)
        finished = True

    assert finished
    lock.reacquire.assert_awaited_once()
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_errors_inside_redis_lock_still_release():
    lock = redis_lock()
    locks = RedisKeyedLock(redis_client(lock), timeout=30)

    with pytest.raises(RuntimeError):
        async with locks.hold("credential:b:twitter"):
            raise RuntimeError("refresh failed")

    lock.release.assert_awaited_once()
    assert not locks.locked("credential:b:twitter")


def test_build_lock_without_redis():
    lock = build_lock(None)
    assert type(lock) is KeyedLock

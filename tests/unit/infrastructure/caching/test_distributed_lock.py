# tests/unit/infrastructure/caching/test_distributed_lock.py
from __future__ import annotations

import asyncio
import time

import pytest

from herdguard.domain.entities.lock import LockHandle
from herdguard.domain.exceptions.resolution import OperationCancelled
from herdguard.infrastructure.caching.distributed_lock import RedisDistributedLock
from herdguard.infrastructure.caching.json_cache import RedisJsonCache
from herdguard.infrastructure.concurrency.cancellation import CancelToken


@pytest.mark.asyncio
async def test_acquire_is_exclusive_and_leased(lock, cache, fake_redis):
    token = await lock.acquire("job:_lock", 5_000)

    assert token is not None
    assert await lock.acquire("job:_lock", 5_000) is None
    assert await fake_redis.get(cache.qualify("job:_lock")) == token
    assert 0 < await fake_redis.pttl(cache.qualify("job:_lock")) <= 5_000


@pytest.mark.asyncio
async def test_release_requires_matching_token(lock, cache, fake_redis):
    token = await lock.acquire("job:_lock", 5_000)

    assert await lock.release("job:_lock", "someone-else") is False
    assert await fake_redis.exists(cache.qualify("job:_lock")) == 1

    assert await lock.release("job:_lock", token) is True
    assert await fake_redis.exists(cache.qualify("job:_lock")) == 0
    assert await lock.release("job:_lock", token) is False


@pytest.mark.asyncio
async def test_expired_holder_cannot_release_new_owner(lock, cache, fake_redis):
    stale = await lock.acquire("job:_lock", 5_000)
    await fake_redis.delete(cache.qualify("job:_lock"))  # lease ran out
    fresh = await lock.acquire("job:_lock", 5_000)

    assert await lock.release("job:_lock", stale) is False
    assert await fake_redis.get(cache.qualify("job:_lock")) == fresh


def test_tokens_are_unique():
    tokens = {RedisDistributedLock.new_token() for _ in range(100)}
    assert len(tokens) == 100


@pytest.mark.asyncio
async def test_hold_releases_on_exit_and_on_error(lock, cache, fake_redis):
    async with lock.hold("job:_lock", 5_000) as handle:
        assert isinstance(handle, LockHandle)
        assert handle.key == "job:_lock"
        assert await fake_redis.exists(cache.qualify("job:_lock")) == 1
    assert await fake_redis.exists(cache.qualify("job:_lock")) == 0

    with pytest.raises(RuntimeError):
        async with lock.hold("job:_lock", 5_000):
            raise RuntimeError("fetch failed")
    assert await fake_redis.exists(cache.qualify("job:_lock")) == 0


@pytest.mark.asyncio
async def test_hold_yields_none_when_contended(lock, cache, fake_redis):
    token = await lock.acquire("job:_lock", 5_000)

    async with lock.hold("job:_lock", 5_000) as handle:
        assert handle is None

    # The loser must not have touched the owner's lease.
    assert await fake_redis.get(cache.qualify("job:_lock")) == token


@pytest.mark.asyncio
async def test_wait_for_key_adopts_value_written_later(lock, cache):
    async def writer() -> None:
        await asyncio.sleep(0.03)
        await cache.set_json("job", {"done": True}, ttl=60)

    task = asyncio.create_task(writer())
    value = await lock.wait_for_key("job", 1_000, 5)
    await task

    assert value == {"done": True}


@pytest.mark.asyncio
async def test_wait_for_key_times_out(lock):
    started = time.monotonic()
    assert await lock.wait_for_key("never", 50, 10) is None
    assert time.monotonic() - started >= 0.04


@pytest.mark.asyncio
async def test_wait_for_key_can_be_cancelled(lock):
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel)

    with pytest.raises(OperationCancelled):
        await lock.wait_for_key("never", 5_000, 10, cancel=token)


@pytest.mark.asyncio
async def test_unreachable_backend_degrades(broken_cache):
    lock = RedisDistributedLock(broken_cache)
    started = time.monotonic()

    assert await lock.acquire("job:_lock", 5_000) is None
    assert await lock.release("job:_lock", "t") is False
    assert await lock.wait_for_key("job", 5_000, 10) is None
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_no_client_configured_disables_lock():
    lock = RedisDistributedLock(RedisJsonCache(namespace="off"))
    assert await lock.acquire("job:_lock", 5_000) is None
    assert await lock.release("job:_lock", "t") is False
    assert await lock.wait_for_key("job", 5_000) is None
    async with lock.hold("job:_lock", 5_000) as handle:
        assert handle is None

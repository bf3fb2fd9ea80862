# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import fakeredis
import fakeredis.aioredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from herdguard.application.services.singleflight import SingleFlight
from herdguard.application.services.swr_resolver import SwrResolver
from herdguard.config.settings import get_settings
from herdguard.infrastructure.caching import redis_client as redis_client_module
from herdguard.infrastructure.caching.distributed_lock import RedisDistributedLock
from herdguard.infrastructure.caching.json_cache import RedisJsonCache

TEST_NAMESPACE = "herdguard-test:v1"


class BrokenRedis:
    """Redis stand-in whose every command fails as if the server were down."""

    def __init__(self) -> None:
        self.calls = 0

    def __getattr__(self, name: str) -> Callable[..., Any]:
        async def _fail(*_args: Any, **_kwargs: Any) -> Any:
            self.calls += 1
            raise RedisConnectionError(f"{name}: connection refused")

        return _fail


@pytest.fixture(autouse=True)
def _no_global_redis(monkeypatch: pytest.MonkeyPatch) -> None:
    """Never let a test lazily connect to a real Redis through the global client."""
    monkeypatch.setattr(redis_client_module, "_client", None)
    monkeypatch.setattr(redis_client_module, "_initialized", True)


@pytest.fixture(autouse=True)
def _fresh_settings() -> Any:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    """One shared backend; every client built on it sees the same keys."""
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(fake_server: fakeredis.FakeServer) -> fakeredis.aioredis.FakeRedis:
    return fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def cache(fake_redis: fakeredis.aioredis.FakeRedis) -> RedisJsonCache:
    return RedisJsonCache(namespace=TEST_NAMESPACE, client=fake_redis)


@pytest.fixture
def lock(cache: RedisJsonCache) -> RedisDistributedLock:
    return RedisDistributedLock(cache)


@pytest.fixture
def broken_cache() -> RedisJsonCache:
    return RedisJsonCache(namespace=TEST_NAMESPACE, client=BrokenRedis())  # type: ignore[arg-type]


@pytest.fixture
def make_process(fake_server: fakeredis.FakeServer) -> Callable[..., SwrResolver]:
    """Build a resolver as if it lived in its own OS process.

    Each "process" gets its own Redis connection and its own single-flight
    map, but all of them share the fake server.
    """

    def _make(**kwargs: Any) -> SwrResolver:
        client = fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)
        proc_cache = RedisJsonCache(namespace=TEST_NAMESPACE, client=client)
        return SwrResolver(
            cache=proc_cache,
            lock=RedisDistributedLock(proc_cache),
            singleflight=SingleFlight(),
            **kwargs,
        )

    return _make

# src/herdguard/infrastructure/caching/redis_client.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Async Redis client factory.

The shared client backs both the JSON cache and the distributed lock. It is
created lazily from ``Settings.redis_url``; when no URL is configured
``get_redis_client()`` returns ``None`` and callers run uncoordinated.
"""

from __future__ import annotations

from contextlib import suppress
from typing import TYPE_CHECKING, Any, Protocol, cast, runtime_checkable

import redis.asyncio as aioredis

if TYPE_CHECKING:
    from redis.asyncio.client import Redis as _RedisGeneric

    type AioredisRedis = _RedisGeneric[str]
else:
    from redis.asyncio.client import Redis as AioredisRedis  # type: ignore[assignment]

from herdguard.config.settings import Settings, get_settings
from herdguard.infrastructure.logging.logger import get_json_logger

__all__ = [
    "RedisClient",
    "init_redis",
    "close_redis",
    "get_redis_client",
]

logger = get_json_logger(__name__)


@runtime_checkable
class RedisClient(Protocol):
    """Minimal async Redis protocol used by the cache and the lock."""

    async def ping(self) -> Any: ...
    async def aclose(self) -> None: ...

    async def get(self, key: str) -> Any: ...
    async def mget(self, keys: list[str]) -> Any: ...
    async def set(
        self,
        key: str,
        value: Any,
        *,
        ex: int | None = None,
        px: int | None = None,
        nx: bool | None = None,
        xx: bool | None = None,
    ) -> Any: ...
    async def delete(self, *keys: str) -> Any: ...
    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any: ...


_client: RedisClient | None = None
_initialized = False


def _create_aioredis_client(url: str, settings: Settings) -> AioredisRedis:
    """Build the concrete asyncio Redis client from URL."""
    _from_url: Any = aioredis.from_url
    client = _from_url(
        url=url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=settings.redis_health_check_interval_s,
        socket_timeout=settings.redis_socket_timeout_s,
        socket_connect_timeout=settings.redis_socket_connect_timeout_s,
    )
    return cast(AioredisRedis, client)


def init_redis(settings: Settings) -> None:
    """Initialize the global async Redis client (idempotent)."""
    global _client, _initialized
    if _initialized:
        return
    _initialized = True

    if not settings.redis_url:
        logger.warning("redis.disabled", extra={"reason": "REDIS_URL not set"})
        return

    _client = cast(RedisClient, _create_aioredis_client(settings.redis_url, settings))
    logger.info("redis.configured", extra={"url": settings.safe_redis_url()})


async def close_redis() -> None:
    """Close the global Redis client at shutdown."""
    global _client, _initialized
    if _client is not None:
        with suppress(RuntimeError):
            await _client.aclose()
    _client = None
    _initialized = False


def get_redis_client() -> RedisClient | None:
    """Return the shared Redis client, or ``None`` when caching is disabled."""
    if not _initialized and _client is None:
        init_redis(get_settings())
    return _client

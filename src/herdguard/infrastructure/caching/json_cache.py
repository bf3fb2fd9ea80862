# src/herdguard/infrastructure/caching/json_cache.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""JSON Cache (Redis-backed).

Synopsis:
    Adapter implementing the application CachePort Protocol on top of the
    shared Redis client from `infrastructure/caching/redis_client.py`.
    Provides namespaced JSON get/set/multi-get with TTL and transparent
    compression of large values.

Design:
    * Client is injected, or resolved lazily via `get_redis_client()`.
    * Namespace and compression threshold default to ``CACHE_NAMESPACE`` and
      ``CACHE_COMPRESS_THRESHOLD_BYTES`` from `get_settings()`.
    * Pure JSON (utf-8) serialization; no pickle. Values at or above the
      compression threshold are stored gzip+base64 behind a ``gz:`` marker.
    * Key policy: the namespace prefix owns project + version
      (``herdguard:v1``); callers provide the resource-specific tail,
      e.g. ``channel:UC123``.
    * Backend failures are logged and degrade to a miss / no-op.

Layer:
    infrastructure/caching

See Also:
    - herdguard.infrastructure.caching.codec
    - herdguard.application.interfaces.cache_port.CachePort
"""

from __future__ import annotations

import time
import zlib
from collections.abc import Sequence
from typing import Any

from redis.exceptions import RedisError

from herdguard.application.interfaces.cache_port import CachePort
from herdguard.config.settings import Settings, get_settings
from herdguard.infrastructure.caching.codec import decode_value, encode_value
from herdguard.infrastructure.caching.redis_client import RedisClient, get_redis_client
from herdguard.infrastructure.logging.logger import get_json_logger
from herdguard.infrastructure.observability.metrics import (
    get_cache_operation_duration_seconds,
    get_cache_operations_total,
    safe_inc,
    safe_observe,
)
from herdguard.types import JsonValue

__all__ = ["BACKEND_ERRORS", "RedisJsonCache"]

logger = get_json_logger(__name__)

#: Exceptions meaning "backend unavailable"; never surfaced to callers.
BACKEND_ERRORS: tuple[type[BaseException], ...] = (RedisError, OSError, TimeoutError)


class RedisJsonCache(CachePort):
    """Redis-backed implementation of the CachePort Protocol.

    Keys are built as ``{namespace}:{key}``. When no Redis client is
    configured every read is a miss and every write is dropped.
    """

    def __init__(
        self,
        *,
        namespace: str | None = None,
        client: RedisClient | None = None,
        compress_threshold_bytes: int | None = None,
    ) -> None:
        """Initialize the cache adapter.

        Args:
            namespace: Prefix applied to all keys. Defaults to
                ``settings.cache_namespace``.
            client: Explicit Redis client; the shared client when omitted.
            compress_threshold_bytes: Serialized size at which values are
                gzipped. Defaults to ``settings.cache_compress_threshold_bytes``.
        """
        if namespace is None or compress_threshold_bytes is None:
            settings = get_settings()
            if namespace is None:
                namespace = settings.cache_namespace
            if compress_threshold_bytes is None:
                compress_threshold_bytes = settings.cache_compress_threshold_bytes
        self._ns = namespace.rstrip(":")
        self._client = client
        self._threshold = compress_threshold_bytes

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, *, client: RedisClient | None = None
    ) -> RedisJsonCache:
        """Build a cache whose namespace and threshold come from ``settings``."""
        settings = settings or get_settings()
        return cls(
            namespace=settings.cache_namespace,
            client=client,
            compress_threshold_bytes=settings.cache_compress_threshold_bytes,
        )

    @property
    def namespace(self) -> str:
        return self._ns

    # ------------------------------------------------------------------ #
    # Keys / client
    # ------------------------------------------------------------------ #
    def qualify(self, key: str) -> str:
        """Build a namespaced key from an unqualified tail."""
        key = key.lstrip(":")
        return f"{self._ns}:{key}"

    def make_key(self, *segments: object) -> str:
        """Build a resource tail key from simple segments.

        This does **not** apply the namespace; it only constructs the tail
        passed into `get_json`/`set_json`.
        """
        return ":".join(str(seg).strip(":") for seg in segments if seg != "")

    def redis(self) -> RedisClient | None:
        """Return the injected client or the shared one (``None`` if disabled)."""
        if self._client is not None:
            return self._client
        return get_redis_client()

    def _record(self, operation: str, hit: str, started: float) -> None:
        safe_observe(
            get_cache_operation_duration_seconds(),
            time.perf_counter() - started,
            operation=operation,
            namespace=self._ns,
            hit=hit,
        )
        safe_inc(get_cache_operations_total(), operation=operation, namespace=self._ns, hit=hit)

    def _decode(self, key: str, raw: Any) -> JsonValue | None:
        try:
            return decode_value(raw)
        except ValueError:
            # Covers JSONDecodeError, binascii.Error and UnicodeDecodeError.
            logger.warning("cache.decode_failed", extra={"key": key})
            return None
        except (OSError, EOFError, zlib.error):
            logger.warning("cache.decompress_failed", extra={"key": key})
            return None

    # ------------------------------------------------------------------ #
    # CachePort implementation
    # ------------------------------------------------------------------ #
    async def fetch_json(self, key: str) -> JsonValue | None:
        """Like :meth:`get_json` but lets backend errors propagate.

        Raises:
            RedisError | OSError | TimeoutError: If the backend is unreachable.
        """
        redis = self.redis()
        if redis is None:
            return None
        raw = await redis.get(self.qualify(key))
        if raw is None:
            return None
        return self._decode(key, raw)

    async def get_json(self, key: str) -> JsonValue | None:
        """Get a JSON value by key; ``None`` on miss or backend failure."""
        started = time.perf_counter()
        if self.redis() is None:
            return None

        hit = "false"
        try:
            value = await self.fetch_json(key)
            hit = "true" if value is not None else "false"
            return value
        except BACKEND_ERRORS as exc:
            hit = "error"
            logger.warning("cache.get_failed", extra={"key": key, "error": repr(exc)})
            return None
        finally:
            self._record("get_json", hit, started)

    async def set_json(self, key: str, value: JsonValue, *, ttl: int) -> None:
        """Set a JSON value with TTL; no-op for ``ttl <= 0`` or backend failure."""
        if ttl <= 0:
            return
        redis = self.redis()
        if redis is None:
            return

        started = time.perf_counter()
        hit = "n/a"
        try:
            payload = encode_value(value, threshold=self._threshold)
            await redis.set(self.qualify(key), payload, ex=int(ttl))
        except BACKEND_ERRORS as exc:
            hit = "error"
            logger.warning("cache.set_failed", extra={"key": key, "error": repr(exc)})
        finally:
            self._record("set_json", hit, started)

    async def get_many_json(self, keys: Sequence[str]) -> dict[str, JsonValue]:
        """Get several keys with one MGET; missing or undecodable keys are omitted."""
        if not keys:
            return {}
        redis = self.redis()
        if redis is None:
            return {}

        started = time.perf_counter()
        hit = "n/a"
        out: dict[str, JsonValue] = {}
        try:
            raws = await redis.mget([self.qualify(k) for k in keys])
        except BACKEND_ERRORS as exc:
            hit = "error"
            logger.warning("cache.mget_failed", extra={"count": len(keys), "error": repr(exc)})
            return out
        finally:
            self._record("get_many_json", hit, started)

        for key, raw in zip(keys, raws, strict=False):
            if raw is None:
                continue
            value = self._decode(key, raw)
            if value is not None:
                out[key] = value
        return out

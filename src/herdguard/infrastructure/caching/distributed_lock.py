# src/herdguard/infrastructure/caching/distributed_lock.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Distributed lock (Redis-backed).

Synopsis:
    Lease-style lock implementing the application LockPort Protocol.

Strategy:
    1. ``acquire``: ``SET key token PX ttl NX``. The lease expires on its own,
       so a crashed holder strands the lock for at most ``ttl``.
    2. ``release``: a Lua compare-and-delete executed server-side, so an
       expired holder can never delete a lock re-acquired by someone newer.
    3. ``wait_for_key``: losers poll the *result* key (through the JSON cache,
       which handles compression) and adopt the winner's output.

Every backend failure is logged and degrades: ``acquire`` and
``wait_for_key`` return ``None``, ``release`` returns ``False``.

Layer:
    infrastructure/caching
"""

from __future__ import annotations

import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from herdguard.application.interfaces.lock_port import LockPort
from herdguard.domain.entities.lock import LockHandle
from herdguard.infrastructure.caching.json_cache import BACKEND_ERRORS, RedisJsonCache
from herdguard.infrastructure.concurrency.cancellation import CancelToken, sleep
from herdguard.infrastructure.logging.logger import get_json_logger
from herdguard.infrastructure.observability.metrics import get_lock_operations_total, safe_inc
from herdguard.types import JsonValue

__all__ = ["RELEASE_SCRIPT", "RedisDistributedLock"]

logger = get_json_logger(__name__)

RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
else
  return 0
end
"""


class RedisDistributedLock(LockPort):
    """Redis lock sharing namespace and client with a :class:`RedisJsonCache`."""

    def __init__(self, cache: RedisJsonCache) -> None:
        """Initialize the lock.

        Args:
            cache: Cache whose namespace/client the lock uses and through
                which result keys are polled.
        """
        self._cache = cache

    @staticmethod
    def new_token() -> str:
        return secrets.token_hex(16)

    async def acquire(self, lock_key: str, ttl_ms: int) -> str | None:
        """Try to take ``lock_key`` for ``ttl_ms``; never blocks.

        Returns:
            A fresh ownership token, or ``None`` if the lock is held or the
            backend is unavailable.
        """
        counter = get_lock_operations_total()
        redis = self._cache.redis()
        if redis is None:
            safe_inc(counter, operation="acquire", outcome="disabled")
            return None

        token = self.new_token()
        try:
            ok = await redis.set(
                self._cache.qualify(lock_key), token, px=max(1, int(ttl_ms)), nx=True
            )
        except BACKEND_ERRORS as exc:
            safe_inc(counter, operation="acquire", outcome="error")
            logger.error("lock.acquire_failed", extra={"lock_key": lock_key, "error": repr(exc)})
            return None

        if not ok:
            safe_inc(counter, operation="acquire", outcome="held")
            return None
        safe_inc(counter, operation="acquire", outcome="won")
        return token

    async def release(self, lock_key: str, token: str) -> bool:
        """Delete ``lock_key`` only if it still holds ``token``."""
        counter = get_lock_operations_total()
        redis = self._cache.redis()
        if redis is None:
            safe_inc(counter, operation="release", outcome="disabled")
            return False

        try:
            res = await redis.eval(RELEASE_SCRIPT, 1, self._cache.qualify(lock_key), token)
        except BACKEND_ERRORS as exc:
            safe_inc(counter, operation="release", outcome="error")
            logger.error("lock.release_failed", extra={"lock_key": lock_key, "error": repr(exc)})
            return False

        released = int(res or 0) == 1
        safe_inc(counter, operation="release", outcome="released" if released else "not_owner")
        return released

    @asynccontextmanager
    async def hold(self, lock_key: str, ttl_ms: int) -> AsyncIterator[LockHandle | None]:
        """Hold ``lock_key`` for the block; yields ``None`` if not acquired.

        The lock is released in ``finally`` however the block exits.
        """
        token = await self.acquire(lock_key, ttl_ms)
        if token is None:
            yield None
            return
        try:
            yield LockHandle(key=lock_key, token=token, ttl_ms=int(ttl_ms))
        finally:
            await self.release(lock_key, token)

    async def wait_for_key(
        self,
        result_key: str,
        timeout_ms: int,
        poll_interval_ms: int = 100,
        *,
        cancel: CancelToken | None = None,
    ) -> JsonValue | None:
        """Poll ``result_key`` until a value appears or ``timeout_ms`` elapses.

        Raises:
            OperationCancelled: If ``cancel`` fires while waiting.
        """
        counter = get_lock_operations_total()
        if self._cache.redis() is None:
            safe_inc(counter, operation="wait", outcome="disabled")
            return None

        interval = max(1, int(poll_interval_ms)) / 1000
        deadline = time.monotonic() + max(0, int(timeout_ms)) / 1000
        while True:
            try:
                value = await self._cache.fetch_json(result_key)
            except BACKEND_ERRORS as exc:
                safe_inc(counter, operation="wait", outcome="error")
                logger.error(
                    "lock.wait_failed", extra={"result_key": result_key, "error": repr(exc)}
                )
                return None
            if value is not None:
                safe_inc(counter, operation="wait", outcome="adopted")
                return value
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                safe_inc(counter, operation="wait", outcome="timeout")
                return None
            await sleep(cancel, min(interval, remaining))

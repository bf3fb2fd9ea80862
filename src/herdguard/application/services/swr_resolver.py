# src/herdguard/application/services/swr_resolver.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Stale-while-revalidate resolver.

Synopsis:
    Resolves one logical resource through cache -> durable store -> locked
    fetch -> persist -> cache, with at most one effective fetch per key.

Decision tree (re-entered per call):
    1. Cache probe. Negative hit -> cached failure. Positive hit -> data.
    2. Durable-store probe (optional). With record age ``a`` and TTL ``t``:
        * ``a < t``: assemble from the record, cache it for ``jitter(t - a)``.
        * ``a >= t`` and ``serve_stale``: assemble with a short assumed
          remaining TTL (``t // stale_ttl_divisor``), return at once and
          refresh in a tracked background task.
        * ``a >= t`` otherwise: fall through.
       Store failures are logged and treated as a miss.
    3. Coordinated fetch: in-process single-flight on the cache key, then the
       distributed lock ``{key}:_lock``. The winner re-checks the cache, runs
       ``fetch_persist`` and caches the result for ``jitter(t)``. Losers poll
       the result key for a bounded window and, failing that, fetch anyway.
    4. Failures are mapped to ``(status, code)``. Request-attributable ones
       are negative-cached by the shared fetch itself, before the lock is
       released, so the entry exists even if every caller has left.
       Synchronous callers always get a ``ResolveFailure``; the background
       branch only logs.

Cancellation:
    ``OperationCancelled`` is raised to the caller as soon as its token
    fires. Work shared through single-flight keeps running for other callers.

Layer:
    application/services
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from herdguard.application.interfaces.cache_port import CachePort
from herdguard.application.interfaces.lock_port import LockPort
from herdguard.application.services.singleflight import SingleFlight
from herdguard.config.settings import Settings
from herdguard.domain.entities.resolution import (
    DurableRecord,
    Resolved,
    ResolveFailure,
    ResolveResult,
)
from herdguard.domain.exceptions.resolution import NegativeCacheHit, OperationCancelled
from herdguard.domain.services.error_mapping import (
    ErrorInfo,
    default_should_negative_cache,
    is_negative_cacheable,
    map_error,
)
from herdguard.domain.services.negative_cache import (
    NEGATIVE_CACHE_TTL_S,
    NegativeCacheEntry,
    is_negative,
    make_negative,
)
from herdguard.domain.services.ttl_jitter import jitter_ttl
from herdguard.infrastructure.concurrency.cancellation import CancelToken, checkpoint, guarded
from herdguard.infrastructure.logging.logger import get_json_logger
from herdguard.infrastructure.observability.metrics import (
    get_swr_resolution_duration_seconds,
    get_swr_resolutions_total,
    safe_inc,
    safe_observe,
)

__all__ = ["LOCK_SUFFIX", "ResolveOptions", "SwrResolver"]

logger = get_json_logger(__name__)

LOCK_SUFFIX = ":_lock"

type GetFromDb[D] = Callable[[], Awaitable[DurableRecord[D] | None]]
type AssembleFromDb[D, T] = Callable[[DurableRecord[D], int], Awaitable[T]]
type FetchPersist[T] = Callable[[], Awaitable[T]]
type NegativeCachePredicate = Callable[[int, str], bool]


@dataclass(frozen=True, slots=True)
class ResolveOptions:
    """Per-resource resolution policy.

    Attributes:
        ttl_seconds: Nominal freshness window for positive entries.
        serve_stale: Serve expired durable records while refreshing.
        should_negative_cache: Optional ``(status, code)`` predicate. It can
            only narrow the default: transient failures are never cached.
        negative_ttl_s: Fixed TTL of negative entries.
        stale_ttl_divisor: Stale responses assume ``ttl // divisor`` seconds
            of remaining life.
        lock_min_ttl_ms: Lower bound of the fetch lock lease.
        lock_wait_timeout_ms: How long a lock loser waits for the winner.
        lock_poll_interval_ms: Poll interval while waiting.
    """

    ttl_seconds: int
    serve_stale: bool = False
    should_negative_cache: NegativeCachePredicate | None = None
    negative_ttl_s: int = NEGATIVE_CACHE_TTL_S
    stale_ttl_divisor: int = 10
    lock_min_ttl_ms: int = 10_000
    lock_wait_timeout_ms: int = 5_000
    lock_poll_interval_ms: int = 100

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self.stale_ttl_divisor <= 0:
            raise ValueError("stale_ttl_divisor must be positive")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        ttl_seconds: int,
        serve_stale: bool = False,
        should_negative_cache: NegativeCachePredicate | None = None,
    ) -> ResolveOptions:
        return cls(
            ttl_seconds=ttl_seconds,
            serve_stale=serve_stale,
            should_negative_cache=should_negative_cache,
            negative_ttl_s=settings.negative_cache_ttl_s,
            stale_ttl_divisor=settings.stale_ttl_divisor,
            lock_min_ttl_ms=settings.lock_min_ttl_ms,
            lock_wait_timeout_ms=settings.lock_wait_timeout_ms,
            lock_poll_interval_ms=settings.lock_poll_interval_ms,
        )

    @property
    def lock_ttl_ms(self) -> int:
        return max(self.lock_min_ttl_ms, self.ttl_seconds * 1000)

    @property
    def stale_remaining_ttl(self) -> int:
        return max(1, self.ttl_seconds // self.stale_ttl_divisor)

    def wants_negative_cache(self, status: int, code: str) -> bool:
        if not is_negative_cacheable(status):
            return False
        predicate = self.should_negative_cache or default_should_negative_cache
        return bool(predicate(status, code))


class SwrResolver:
    """Cache/DB/fetch orchestrator with stampede protection."""

    def __init__(
        self,
        *,
        cache: CachePort,
        lock: LockPort | None,
        singleflight: SingleFlight | None = None,
        clock: Callable[[], datetime] | None = None,
        error_mapper: Callable[[BaseException], ErrorInfo] = map_error,
    ) -> None:
        """Initialize the resolver.

        Args:
            cache: Shared JSON cache.
            lock: Distributed lock; ``None`` disables cross-process coordination.
            singleflight: In-process coalescing map; a private one when omitted.
            clock: Returns "now" (timezone-aware) for record ages.
            error_mapper: Maps fetch exceptions to ``ErrorInfo``.
        """
        self._cache = cache
        self._lock = lock
        self._singleflight = singleflight if singleflight is not None else SingleFlight()
        self._clock = clock if clock is not None else (lambda: datetime.now(tz=UTC))
        self._map_error = error_mapper
        self._background: set[asyncio.Task[None]] = set()

    @property
    def pending_refreshes(self) -> int:
        return len(self._background)

    async def resolve[D, T](
        self,
        cache_key: str,
        *,
        options: ResolveOptions,
        fetch_persist: FetchPersist[T],
        get_from_db: GetFromDb[D] | None = None,
        assemble_from_db: AssembleFromDb[D, T] | None = None,
        cancel: CancelToken | None = None,
    ) -> ResolveResult[T]:
        """Resolve ``cache_key`` to data or a failure.

        Args:
            cache_key: Logical resource key (unqualified).
            options: Resolution policy.
            fetch_persist: Calls the remote source, persists durably and
                returns the payload.
            get_from_db: Reads the durable record, or ``None`` if absent.
            assemble_from_db: Builds the payload from a record and the
                remaining TTL in seconds. Required with ``get_from_db``.
            cancel: Optional abort signal.

        Returns:
            ``Resolved`` with data, or ``ResolveFailure``; never both.

        Raises:
            OperationCancelled: If ``cancel`` fires before resolution ends.
        """
        if get_from_db is not None and assemble_from_db is None:
            raise ValueError("assemble_from_db is required when get_from_db is given")

        started = time.perf_counter()
        outcome = "cancelled"
        try:
            result, outcome = await self._resolve(
                cache_key, options, fetch_persist, get_from_db, assemble_from_db, cancel
            )
            return result
        finally:
            safe_inc(get_swr_resolutions_total(), outcome=outcome)
            safe_observe(
                get_swr_resolution_duration_seconds(),
                time.perf_counter() - started,
                outcome=outcome,
            )

    async def drain(self) -> None:
        """Wait for every background refresh started so far (shutdown/tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    async def _resolve[D, T](
        self,
        key: str,
        options: ResolveOptions,
        fetch_persist: FetchPersist[T],
        get_from_db: GetFromDb[D] | None,
        assemble_from_db: AssembleFromDb[D, T] | None,
        cancel: CancelToken | None,
    ) -> tuple[ResolveResult[T], str]:
        # 1) Cache
        checkpoint(cancel)
        cached = await guarded(cancel, self._cache.get_json(key))
        if cached is not None:
            if is_negative(cached):
                logger.debug("swr.negative_hit", extra={"cache_key": key})
                return NegativeCacheEntry.from_json(cached).to_failure(), "negative_hit"
            logger.debug("swr.cache_hit", extra={"cache_key": key})
            return Resolved(cached), "cache_hit"  # type: ignore[arg-type]

        # 2) Durable store
        if get_from_db is not None and assemble_from_db is not None:
            from_db = await self._from_db(
                key, options, fetch_persist, get_from_db, assemble_from_db, cancel
            )
            if from_db is not None:
                return from_db

        # 3) Coordinated fetch
        try:
            data = await guarded(
                cancel,
                self._singleflight.do(
                    key, lambda: self._coordinated_fetch(key, options, fetch_persist)
                ),
            )
        except OperationCancelled:
            raise
        except Exception as exc:
            # 4) Error path
            return self._fail(key, exc), "error"
        return Resolved(data), "fetched"

    async def _from_db[D, T](
        self,
        key: str,
        options: ResolveOptions,
        fetch_persist: FetchPersist[T],
        get_from_db: GetFromDb[D],
        assemble_from_db: AssembleFromDb[D, T],
        cancel: CancelToken | None,
    ) -> tuple[ResolveResult[T], str] | None:
        ttl = options.ttl_seconds
        try:
            record = await guarded(cancel, get_from_db())
            if record is None:
                return None

            age = record.age_seconds(self._clock())
            if age < ttl:
                remaining = max(1, ttl - age)
                data = await guarded(cancel, assemble_from_db(record, remaining))
                await self._cache.set_json(key, data, ttl=jitter_ttl(remaining))  # type: ignore[arg-type]
                logger.debug(
                    "swr.db_fresh",
                    extra={"cache_key": key, "age_s": age, "remaining_s": remaining},
                )
                return Resolved(data), "db_fresh"

            if not options.serve_stale:
                return None

            data = await guarded(cancel, assemble_from_db(record, options.stale_remaining_ttl))
        except OperationCancelled:
            raise
        except Exception as exc:
            logger.warning(
                "swr.db_probe_failed", extra={"cache_key": key, "error": repr(exc)}
            )
            return None

        self._spawn_refresh(key, options, fetch_persist)
        logger.debug("swr.db_stale", extra={"cache_key": key, "age_s": age})
        return Resolved(data), "db_stale"

    async def _coordinated_fetch[T](
        self, key: str, options: ResolveOptions, fetch_persist: FetchPersist[T]
    ) -> T:
        if self._lock is None:
            return await self._fetch_and_cache(key, options, fetch_persist)

        async with self._lock.hold(key + LOCK_SUFFIX, options.lock_ttl_ms) as handle:
            if handle is not None:
                # A previous winner may have filled the cache since our probe.
                cached = await self._cache.get_json(key)
                if cached is not None and not is_negative(cached):
                    return cached  # type: ignore[return-value]
                return await self._fetch_and_cache(key, options, fetch_persist)

        waited = await self._lock.wait_for_key(
            key, options.lock_wait_timeout_ms, options.lock_poll_interval_ms
        )
        if waited is not None:
            if is_negative(waited):
                raise NegativeCacheEntry.from_json(waited).to_error()  # type: ignore[arg-type]
            return waited  # type: ignore[return-value]

        logger.info("swr.lock_wait_expired", extra={"cache_key": key})
        return await self._fetch_and_cache(key, options, fetch_persist)

    async def _fetch_and_cache[T](
        self, key: str, options: ResolveOptions, fetch_persist: FetchPersist[T]
    ) -> T:
        """Run ``fetch_persist`` and cache its outcome while the lock is still held."""
        try:
            data = await fetch_persist()
        except Exception as exc:
            await self._remember_failure(key, options, exc)
            raise
        await self._cache.set_json(key, data, ttl=jitter_ttl(options.ttl_seconds))  # type: ignore[arg-type]
        return data

    async def _remember_failure(self, key: str, options: ResolveOptions, exc: Exception) -> None:
        # Adopted entries are already cached; cancellation is never a property of the key.
        if isinstance(exc, (NegativeCacheHit, OperationCancelled)):
            return
        info = self._map_error(exc)
        if not options.wants_negative_cache(info.status, info.code):
            return
        entry = make_negative(info.message, info.code, info.status)
        await self._cache.set_json(key, entry.to_json(), ttl=options.negative_ttl_s)
        logger.info(
            "swr.negative_cached",
            extra={"cache_key": key, "status": info.status, "ttl_s": options.negative_ttl_s},
        )

    def _fail(self, key: str, exc: Exception) -> ResolveFailure:
        info = self._map_error(exc)
        extra = {"cache_key": key, "status": info.status, "code": info.code, "error": repr(exc)}
        if info.status >= 500:
            logger.error("swr.fetch_failed", extra=extra)
        else:
            logger.warning("swr.fetch_failed", extra=extra)
        return ResolveFailure(error=info.message, code=info.code, status=info.status)

    # ------------------------------------------------------------------ #
    # Background refresh
    # ------------------------------------------------------------------ #
    def _spawn_refresh[T](
        self, key: str, options: ResolveOptions, fetch_persist: FetchPersist[T]
    ) -> None:
        task = asyncio.create_task(
            self._refresh(key, options, fetch_persist), name=f"swr-refresh:{key}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh[T](
        self, key: str, options: ResolveOptions, fetch_persist: FetchPersist[T]
    ) -> None:
        try:
            await self._singleflight.do(
                key, lambda: self._coordinated_fetch(key, options, fetch_persist)
            )
        except Exception as exc:
            failure = self._fail(key, exc)
            logger.warning(
                "swr.background_refresh_failed",
                extra={"cache_key": key, "status": failure.status, "code": failure.code},
            )

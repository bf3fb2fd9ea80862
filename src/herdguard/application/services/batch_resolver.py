# src/herdguard/application/services/batch_resolver.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Batch resolution.

Synopsis:
    Resolves many caller-supplied ids to per-id results while keeping
    upstream pressure low:

    1. Extract an entity id per input id (no throttling). Extraction
       failures are recorded immediately.
    2. De-duplicate entity ids, keeping first-occurrence order.
    3. Optionally pre-check the cache with one multi-get. Negative entries
       become failures; a backend failure just means "no hits".
    4. Fetch only the misses through the throttled mapper. Exceptions from
       ``fetch_one`` are normalized into failures.
    5. Assemble a result for every input id, in input order.

Layer:
    application/services
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence

from herdguard.application.interfaces.cache_port import CachePort
from herdguard.domain.entities.resolution import (
    BatchItem,
    Resolved,
    ResolveFailure,
    ResolveResult,
)
from herdguard.domain.exceptions.resolution import OperationCancelled
from herdguard.domain.services.error_mapping import map_error
from herdguard.domain.services.negative_cache import NegativeCacheEntry, is_negative
from herdguard.infrastructure.concurrency.cancellation import CancelToken
from herdguard.infrastructure.concurrency.throttle import (
    ThrottleOptions,
    dedupe_ordered,
    throttle_map,
)
from herdguard.infrastructure.logging.logger import get_json_logger

__all__ = ["resolve_batch"]

logger = get_json_logger(__name__)

type ExtractEntityId = Callable[[str], str | ResolveFailure]


def _failure_from(exc: BaseException) -> ResolveFailure:
    info = map_error(exc)
    return ResolveFailure(error=info.message, code=info.code, status=info.status)


async def resolve_batch[T](
    ids: Sequence[str],
    *,
    extract_entity_id: ExtractEntityId,
    fetch_one: Callable[[str], Awaitable[ResolveResult[T]]],
    throttle: ThrottleOptions,
    cache: CachePort | None = None,
    cache_key_for: Callable[[str], str] | None = None,
    cancel: CancelToken | None = None,
) -> dict[str, BatchItem[T]]:
    """Resolve ``ids`` to per-id results.

    Args:
        ids: Caller-supplied ids (duplicates allowed).
        extract_entity_id: Maps an input id to the upstream entity id, or
            returns a failure. Exceptions are mapped to failures.
        fetch_one: Resolves one entity id, usually via ``SwrResolver.resolve``.
        throttle: Pool size and pacing for the fetches.
        cache: Cache for the multi-get pre-check; skipped when omitted.
        cache_key_for: Entity id -> cache key. Required with ``cache``.
        cancel: Optional abort signal; cancellation fails the whole batch.

    Returns:
        Mapping of every input id to its :class:`BatchItem`, in input order.

    Raises:
        OperationCancelled: If ``cancel`` fires during the fetch phase.
    """
    started = time.perf_counter()
    logger.info(
        "batch.start",
        extra={
            "count": len(ids),
            "concurrency": throttle.concurrency,
            "min_delay_ms": throttle.min_delay_ms,
            "max_delay_ms": throttle.max_delay_ms,
        },
    )

    # 1) Extract
    entity_for: dict[str, str] = {}
    failed: dict[str, ResolveFailure] = {}
    for raw_id in dedupe_ordered(ids):
        try:
            extracted = extract_entity_id(raw_id)
        except Exception as exc:
            extracted = _failure_from(exc)
        if isinstance(extracted, ResolveFailure):
            failed[raw_id] = extracted
            logger.warning(
                "batch.extract_failed",
                extra={"id": raw_id, "code": extracted.code, "error": extracted.error},
            )
        else:
            entity_for[raw_id] = extracted

    # 2) Dedupe
    unique = dedupe_ordered(entity_for.values())

    # 3) Cache pre-check
    known: dict[str, ResolveResult[T]] = {}
    if cache is not None and cache_key_for is not None and unique:
        keys = {eid: cache_key_for(eid) for eid in unique}
        hits = await cache.get_many_json(list(keys.values()))
        for eid, key in keys.items():
            if key not in hits:
                continue
            value = hits[key]
            if is_negative(value):
                known[eid] = NegativeCacheEntry.from_json(value).to_failure()  # type: ignore[arg-type]
            else:
                known[eid] = Resolved(value)  # type: ignore[arg-type]
    misses = [eid for eid in unique if eid not in known]
    logger.debug(
        "batch.cache_precheck",
        extra={"unique": len(unique), "hits": len(known), "misses": len(misses)},
    )

    # 4) Fetch misses
    if misses:

        async def _one(entity_id: str, _index: int) -> ResolveResult[T]:
            try:
                return await fetch_one(entity_id)
            except OperationCancelled:
                raise
            except Exception as exc:
                return _failure_from(exc)

        fetched = await throttle_map(
            misses,
            _one,
            concurrency=throttle.concurrency,
            min_delay_ms=throttle.min_delay_ms,
            max_delay_ms=throttle.max_delay_ms,
            cancel=cancel,
        )
        known.update(zip(misses, fetched, strict=True))

    # 5) Assemble
    out: dict[str, BatchItem[T]] = {}
    successes = failures = 0
    for raw_id in ids:
        if raw_id in out:
            continue
        result: ResolveResult[T] = failed.get(raw_id) or known[entity_for[raw_id]]
        if isinstance(result, Resolved):
            successes += 1
        else:
            failures += 1
            if raw_id not in failed:
                logger.warning(
                    "batch.item_failed",
                    extra={"id": raw_id, "code": result.code, "error": result.error},
                )
        out[raw_id] = BatchItem(id=raw_id, result=result)

    logger.info(
        "batch.end",
        extra={
            "count": len(ids),
            "successes": successes,
            "failures": failures,
            "duration_s": round(time.perf_counter() - started, 4),
        },
    )
    return out

"""Herdguard: cache coordination core.

Stale-while-revalidate resolution over a shared Redis cache, a durable store
and a rate-limited remote source, with single-flight, distributed locking,
negative caching and throttled batch fetching.

Typical wiring:
    cache = RedisJsonCache.from_settings(settings)
    resolver = SwrResolver(cache=cache, lock=RedisDistributedLock(cache))
    result = await resolver.resolve(key, options=..., fetch_persist=...)
"""

from __future__ import annotations

from herdguard.application.services.batch_resolver import resolve_batch
from herdguard.application.services.singleflight import SingleFlight
from herdguard.application.services.swr_resolver import ResolveOptions, SwrResolver
from herdguard.domain.entities.lock import LockHandle
from herdguard.domain.entities.resolution import (
    BatchItem,
    DurableRecord,
    Resolved,
    ResolveFailure,
    ResolveResult,
)
from herdguard.domain.enums.error_code import ErrorCode
from herdguard.domain.exceptions.resolution import OperationCancelled, UpstreamError
from herdguard.domain.services.negative_cache import is_negative, make_negative
from herdguard.domain.services.ttl_jitter import jitter_ttl
from herdguard.infrastructure.caching.distributed_lock import RedisDistributedLock
from herdguard.infrastructure.caching.json_cache import RedisJsonCache
from herdguard.infrastructure.concurrency.cancellation import CancelToken
from herdguard.infrastructure.concurrency.throttle import (
    ThrottleOptions,
    dedupe_ordered,
    read_batch_throttle,
    throttle_map,
)

__all__ = [
    "BatchItem",
    "CancelToken",
    "DurableRecord",
    "ErrorCode",
    "LockHandle",
    "OperationCancelled",
    "RedisDistributedLock",
    "RedisJsonCache",
    "ResolveFailure",
    "ResolveOptions",
    "ResolveResult",
    "Resolved",
    "SingleFlight",
    "SwrResolver",
    "ThrottleOptions",
    "UpstreamError",
    "dedupe_ordered",
    "is_negative",
    "jitter_ttl",
    "make_negative",
    "read_batch_throttle",
    "resolve_batch",
    "throttle_map",
]

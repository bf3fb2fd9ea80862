# tests/unit/observability/test_metrics_core.py
from __future__ import annotations

import asyncio

import prometheus_client
import pytest
from prometheus_client import CollectorRegistry

from herdguard.application.services.singleflight import SingleFlight
from herdguard.infrastructure.caching.distributed_lock import RedisDistributedLock
from herdguard.infrastructure.observability.metrics import (
    get_cache_operation_duration_seconds,
    get_cache_operations_total,
    get_lock_operations_total,
    get_singleflight_calls_total,
    get_swr_resolution_duration_seconds,
    get_swr_resolutions_total,
    get_throttle_items_total,
    safe_inc,
    safe_observe,
)


@pytest.fixture
def registry(monkeypatch: pytest.MonkeyPatch) -> CollectorRegistry:
    """Swap in a fresh default registry; collectors must follow it."""
    fresh = CollectorRegistry()
    monkeypatch.setattr(prometheus_client, "REGISTRY", fresh)
    return fresh


def test_collectors_are_singletons_per_registry(registry: CollectorRegistry) -> None:
    """Accessors should return the same collector until the registry changes."""
    for accessor in (
        get_cache_operation_duration_seconds,
        get_cache_operations_total,
        get_lock_operations_total,
        get_singleflight_calls_total,
        get_swr_resolution_duration_seconds,
        get_swr_resolutions_total,
        get_throttle_items_total,
    ):
        assert accessor() is accessor()

    first = get_lock_operations_total()
    prometheus_client.REGISTRY = CollectorRegistry()
    assert get_lock_operations_total() is not first


def test_safe_helpers_swallow_label_errors(registry: CollectorRegistry) -> None:
    safe_inc(get_lock_operations_total(), operation="acquire")  # missing label
    safe_observe(get_swr_resolution_duration_seconds(), 0.1, wrong="x")

    safe_inc(get_swr_resolutions_total(), outcome="fetched")
    assert registry.get_sample_value("swr_resolutions_total", {"outcome": "fetched"}) == 1.0


@pytest.mark.asyncio
async def test_singleflight_roles_are_counted(registry: CollectorRegistry) -> None:
    sf = SingleFlight()

    async def work() -> int:
        await asyncio.sleep(0.01)
        return 1

    await asyncio.gather(*(sf.do("k", work) for _ in range(3)))

    assert registry.get_sample_value("singleflight_calls_total", {"role": "leader"}) == 1.0
    assert registry.get_sample_value("singleflight_calls_total", {"role": "joiner"}) == 2.0


@pytest.mark.asyncio
async def test_lock_outcomes_are_counted(registry: CollectorRegistry, cache) -> None:
    lock = RedisDistributedLock(cache)

    token = await lock.acquire("m:_lock", 1_000)
    await lock.acquire("m:_lock", 1_000)
    await lock.release("m:_lock", token)

    def sample(operation: str, outcome: str) -> float | None:
        return registry.get_sample_value(
            "lock_operations_total", {"operation": operation, "outcome": outcome}
        )

    assert sample("acquire", "won") == 1.0
    assert sample("acquire", "held") == 1.0
    assert sample("release", "released") == 1.0


@pytest.mark.asyncio
async def test_cache_hits_and_misses_are_counted(registry: CollectorRegistry, cache) -> None:
    await cache.set_json("a", 1, ttl=60)
    await cache.get_json("a")
    await cache.get_json("missing")

    labels = {"operation": "get_json", "namespace": cache.namespace}
    assert registry.get_sample_value("cache_operations_total", {**labels, "hit": "true"}) == 1.0
    assert registry.get_sample_value("cache_operations_total", {**labels, "hit": "false"}) == 1.0

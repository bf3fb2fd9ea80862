# src/herdguard/infrastructure/observability/metrics.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Prometheus metrics utilities (registry-aware, hot-reload safe).

Every collector is returned by an accessor function that creates it on first
use and caches it for the *current* ``prometheus_client.REGISTRY``:

- Safe under hot reload and tests that swap the default registry.
- No duplicate-registration errors.
- Cache automatically resets when the active registry changes.

Collectors:
    * ``cache_operation_duration_seconds`` / ``cache_operations_total``
    * ``lock_operations_total``
    * ``singleflight_calls_total``
    * ``swr_resolutions_total`` / ``swr_resolution_duration_seconds``
    * ``throttle_items_total``

Recording is wrapped by :func:`safe_inc` so a metrics failure never breaks the
data path.

Example:
    get_lock_operations_total().labels(operation="acquire", outcome="won").inc()
"""

from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Final

import prometheus_client as prom
from prometheus_client import Counter, Histogram

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Common histogram buckets (seconds)
_BUCKETS: Final[tuple[float, ...]] = (
    0.001,
    0.005,
    0.010,
    0.025,
    0.050,
    0.100,
    0.250,
    0.500,
    1.000,
    2.500,
    5.000,
    10.000,
)

# Cache keyed by metric name within the currently-active registry.
_registry: prom.CollectorRegistry | None = None
_hist_cache: dict[str, Histogram] = {}
_counter_cache: dict[str, Counter] = {}
_lock = threading.RLock()


# ---------------------------------------------------------------------------
# Registry-handling primitives


def _ensure_registry() -> None:
    """Reset caches if the active registry changed."""
    global _registry
    with _lock:
        active = prom.REGISTRY
        if _registry is not active:
            _hist_cache.clear()
            _counter_cache.clear()
            _registry = active


def _lookup_existing[C: (Histogram, Counter)](name: str, kind: type[C]) -> C | None:
    """Return a previously-registered collector of ``kind`` from the active registry."""
    with _lock, suppress(Exception):
        mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
        if isinstance(mapping, dict):
            col = mapping.get(name)
            if isinstance(col, kind):
                return col
    return None


# ---------------------------------------------------------------------------
# Get-or-create helpers


def _get_or_create_hist(
    name: str,
    help_text: str,
    *,
    buckets: tuple[float, ...] = _BUCKETS,
    labelnames: tuple[str, ...] = (),
) -> Histogram:
    """Get or create a registry-bound ``Histogram`` with stable identity.

    1. Return from module cache if present for the active registry.
    2. If registry already has a collector by this name, reuse it.
    3. Otherwise, register a new collector on the active registry.
    4. If concurrent registration triggers a duplication error, retry step 2.
    """
    _ensure_registry()
    with _lock:
        cached = _hist_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Histogram)
        if existing is not None:
            _hist_cache[name] = existing
            return existing

        try:
            h = Histogram(name, help_text, labelnames, buckets=buckets, registry=prom.REGISTRY)
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Histogram)
                if again is not None:
                    _hist_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus histogram %s", name)
            raise
        _hist_cache[name] = h
        return h


def _get_or_create_counter(
    name: str,
    help_text: str,
    *,
    labelnames: tuple[str, ...] = (),
) -> Counter:
    """Get or create a registry-bound ``Counter`` with stable identity."""
    _ensure_registry()
    with _lock:
        cached = _counter_cache.get(name)
        if cached is not None:
            return cached

        existing = _lookup_existing(name, Counter)
        if existing is not None:
            _counter_cache[name] = existing
            return existing

        try:
            c = Counter(name, help_text, labelnames, registry=prom.REGISTRY)
        except ValueError as exc:
            if "Duplicated timeseries" in str(exc):
                again = _lookup_existing(name, Counter)
                if again is not None:
                    _counter_cache[name] = again
                    return again
            _log.exception("Failed to register Prometheus counter %s", name)
            raise
        _counter_cache[name] = c
        return c


def safe_inc(counter: Counter, **labels: str) -> None:
    """Increment a labelled counter, swallowing metric errors."""
    with suppress(Exception):
        counter.labels(**labels).inc()


def safe_observe(hist: Histogram, value: float, **labels: str) -> None:
    """Observe into a labelled histogram, swallowing metric errors."""
    with suppress(Exception):
        hist.labels(**labels).observe(value)


# ---------------------------------------------------------------------------
# Cache metrics


def get_cache_operation_duration_seconds() -> Histogram:
    """Return histogram for cache operation latency.

    Labels:
        operation: Cache operation name (e.g. ``get_json`` / ``set_json``).
        namespace: Cache namespace/prefix.
        hit: ``true``/``false``/``n/a``/``error``.
    """
    return _get_or_create_hist(
        name="cache_operation_duration_seconds",
        help_text="Latency (seconds) of cache operations.",
        labelnames=("operation", "namespace", "hit"),
    )


def get_cache_operations_total() -> Counter:
    """Return counter for cache operations (same labels as the histogram)."""
    return _get_or_create_counter(
        name="cache_operations_total",
        help_text="Total cache operations by type/namespace.",
        labelnames=("operation", "namespace", "hit"),
    )


# ---------------------------------------------------------------------------
# Coordination metrics


def get_lock_operations_total() -> Counter:
    """Return counter for distributed lock operations.

    Labels:
        operation: ``acquire`` / ``release`` / ``wait``.
        outcome: ``won`` / ``held`` / ``released`` / ``not_owner`` /
            ``adopted`` / ``timeout`` / ``error`` / ``disabled``.
    """
    return _get_or_create_counter(
        name="lock_operations_total",
        help_text="Distributed lock operations by outcome.",
        labelnames=("operation", "outcome"),
    )


def get_singleflight_calls_total() -> Counter:
    """Return counter for in-process single-flight calls.

    Labels:
        role: ``leader`` (started the work) or ``joiner`` (shared it).
    """
    return _get_or_create_counter(
        name="singleflight_calls_total",
        help_text="Single-flight calls by role.",
        labelnames=("role",),
    )


def get_swr_resolutions_total() -> Counter:
    """Return counter for resolution outcomes.

    Labels:
        outcome: ``cache_hit`` / ``negative_hit`` / ``db_fresh`` /
            ``db_stale`` / ``fetched`` / ``error``.
    """
    return _get_or_create_counter(
        name="swr_resolutions_total",
        help_text="Resolutions by outcome.",
        labelnames=("outcome",),
    )


def get_swr_resolution_duration_seconds() -> Histogram:
    """Return histogram for end-to-end resolution latency by outcome."""
    return _get_or_create_hist(
        name="swr_resolution_duration_seconds",
        help_text="Latency (seconds) of resolutions by outcome.",
        labelnames=("outcome",),
    )


def get_throttle_items_total() -> Counter:
    """Return counter for throttled batch items.

    Labels:
        outcome: ``success`` / ``error`` / ``cancelled``.
    """
    return _get_or_create_counter(
        name="throttle_items_total",
        help_text="Items processed by the throttled mapper.",
        labelnames=("outcome",),
    )

# src/herdguard/infrastructure/concurrency/throttle.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Throttled batch mapper.

Synopsis:
    Concurrency-limited, jitter-delayed mapping for polite crawling of a
    rate-limited upstream.

Design:
    * A fixed pool of ``concurrency`` workers pulls indices from one shared
      cursor, so a slow item never strands queued work behind it.
    * Each worker sleeps a uniformly random ``[min_delay_ms, max_delay_ms]``
      before every item to avoid a bursty request pattern.
    * Results keep input order and length.
    * All-or-cancelled: on cancellation or on the first worker error the
      remaining workers are cancelled and nothing partial is returned.

Layer:
    infrastructure/concurrency
"""

from __future__ import annotations

import asyncio
import itertools
import random
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from herdguard.config.settings import Settings, get_settings
from herdguard.domain.exceptions.resolution import OperationCancelled
from herdguard.infrastructure.concurrency.cancellation import (
    CancelToken,
    checkpoint,
    guarded,
    sleep,
)
from herdguard.infrastructure.logging.logger import get_json_logger
from herdguard.infrastructure.observability.metrics import get_throttle_items_total, safe_inc

__all__ = ["ThrottleOptions", "dedupe_ordered", "read_batch_throttle", "throttle_map"]

logger = get_json_logger(__name__)

#: Call-site caps applied when none are given.
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_MIN_DELAY_FLOOR_MS = 50


@dataclass(frozen=True, slots=True)
class ThrottleOptions:
    """Pool size and per-item delay window."""

    concurrency: int
    min_delay_ms: int
    max_delay_ms: int


async def throttle_map[T, R](
    items: Iterable[T],
    worker: Callable[[T, int], Awaitable[R]],
    *,
    concurrency: int,
    min_delay_ms: int = 0,
    max_delay_ms: int = 0,
    cancel: CancelToken | None = None,
    rng: random.Random | None = None,
) -> list[R]:
    """Map ``worker`` over ``items`` with bounded concurrency and pacing.

    Args:
        items: Input items.
        worker: Async callable receiving ``(item, index)``.
        concurrency: Worker pool size (at least 1).
        min_delay_ms: Lower bound of the pre-item delay.
        max_delay_ms: Upper bound of the pre-item delay.
        cancel: Optional abort signal.
        rng: Random source for delays.

    Returns:
        list[R]: Results in input order.

    Raises:
        OperationCancelled: If ``cancel`` fires before all items complete.
        Exception: The first exception raised by ``worker``.
    """
    seq: Sequence[T] = list(items)
    n = len(seq)
    checkpoint(cancel)
    if n == 0:
        return []

    source = rng if rng is not None else random.Random()  # noqa: S311
    lo = max(0, int(min_delay_ms))
    hi = max(lo, int(max_delay_ms))
    pool = min(n, max(1, int(concurrency)))
    results: list[Any] = [None] * n
    cursor = itertools.count()
    counter = get_throttle_items_total()
    started = time.perf_counter()

    async def _run_worker() -> None:
        while True:
            i = next(cursor)
            if i >= n:
                return
            checkpoint(cancel)
            await sleep(cancel, source.randint(lo, hi) / 1000)
            checkpoint(cancel)
            try:
                results[i] = await guarded(cancel, worker(seq[i], i))
            except OperationCancelled:
                safe_inc(counter, outcome="cancelled")
                raise
            except Exception:
                safe_inc(counter, outcome="error")
                raise
            safe_inc(counter, outcome="success")

    tasks = [asyncio.create_task(_run_worker()) for _ in range(pool)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    logger.debug(
        "throttle.completed",
        extra={
            "count": n,
            "concurrency": pool,
            "min_delay_ms": lo,
            "max_delay_ms": hi,
            "duration_s": round(time.perf_counter() - started, 4),
        },
    )
    return results


def read_batch_throttle(
    settings: Settings | None = None,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    min_delay_floor_ms: int = DEFAULT_MIN_DELAY_FLOOR_MS,
) -> ThrottleOptions:
    """Clamp the shared batch defaults against call-site caps.

    Individual endpoints can be stricter than the (untrusted) shared
    configuration, never looser.

    Args:
        settings: Source of the shared defaults; process settings when omitted.
        max_concurrency: Hard cap on the worker pool.
        min_delay_floor_ms: Hard floor for the pre-item delay.

    Returns:
        ThrottleOptions: Clamped options.
    """
    cfg = settings if settings is not None else get_settings()
    conc_cap = max(1, int(max_concurrency))
    delay_floor = max(1, int(min_delay_floor_ms))

    concurrency = max(1, min(conc_cap, int(cfg.batch_concurrency)))
    min_delay_ms = max(delay_floor, int(cfg.batch_min_delay_ms))
    max_delay_ms = max(min_delay_ms, int(cfg.batch_max_delay_ms))
    return ThrottleOptions(
        concurrency=concurrency,
        min_delay_ms=min_delay_ms,
        max_delay_ms=max_delay_ms,
    )


def dedupe_ordered[H: Hashable](items: Iterable[H]) -> list[H]:
    """Remove duplicates while preserving first-occurrence order."""
    return list(dict.fromkeys(items))

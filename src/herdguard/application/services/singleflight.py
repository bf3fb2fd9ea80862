# src/herdguard/application/services/singleflight.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""In-process single-flight.

Synopsis:
    Coalesces concurrent identical async work inside one process. The first
    caller for a key starts the work as a task; callers arriving while it is
    pending await the same task. The entry is removed as soon as the task
    settles, so a later call starts fresh work.

Design:
    * The in-flight map is owned by an instance (inject one per resolver, or
      share one per process); tests build isolated instances.
    * Callers await the task through ``asyncio.shield`` so one caller being
      cancelled never cancels the work the others are waiting on.
    * A done-callback retrieves the task's exception so abandoned failures
      are not reported as "never retrieved".

Layer:
    application/services
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from herdguard.infrastructure.observability.metrics import (
    get_singleflight_calls_total,
    safe_inc,
)

__all__ = ["SingleFlight"]


class SingleFlight:
    """Owned map of in-flight tasks keyed by resolution key."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def __contains__(self, key: object) -> bool:
        return key in self._inflight

    async def do[T](self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once for all concurrent callers of ``key``.

        Args:
            key: Coalescing key.
            fn: Zero-arg async callable; invoked only by the first caller.

        Returns:
            The shared result. Every joiner observes the same value or the
            same exception.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
            safe_inc(get_singleflight_calls_total(), role="leader")
        else:
            safe_inc(get_singleflight_calls_total(), role="joiner")
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()

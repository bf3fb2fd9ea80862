# src/herdguard/infrastructure/concurrency/cancellation.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Cooperative cancellation token.

Synopsis:
    A ``CancelToken`` is the abort signal threaded through every public entry
    point. It is backed by an ``asyncio.Event`` so waiters wake immediately on
    ``cancel()`` instead of busy-polling.

Design:
    * ``sleep`` and ``run`` race their work against the event and raise
      :class:`OperationCancelled` as soon as the token fires.
    * ``run`` cancels the task it created for the awaitable; callers that must
      not cancel shared work pass ``asyncio.shield(...)``.
    * A token is bound to no particular loop until first awaited.

Layer:
    infrastructure/concurrency
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from contextlib import suppress

from herdguard.domain.exceptions.resolution import OperationCancelled

__all__ = ["CancelToken", "checkpoint", "guarded", "sleep"]


class CancelToken:
    """Abort signal for async operations."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(details={"reason": self._reason})

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the token fires first.

        Raises:
            OperationCancelled: If the token is or becomes cancelled.
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        self.raise_if_cancelled()

    async def run[T](self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the token fires first.

        Raises:
            OperationCancelled: If the token fires before ``aw`` settles. The
                task wrapping ``aw`` is cancelled.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        work: asyncio.Future[T] = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await work
        raise OperationCancelled(details={"reason": self._reason})


def checkpoint(cancel: CancelToken | None) -> None:
    """Raise if ``cancel`` has fired; no-op for ``None``."""
    if cancel is not None:
        cancel.raise_if_cancelled()


async def guarded[T](cancel: CancelToken | None, aw: Awaitable[T]) -> T:
    """Await ``aw`` under ``cancel`` when a token is supplied."""
    if cancel is None:
        return await aw
    return await cancel.run(aw)


async def sleep(cancel: CancelToken | None, seconds: float) -> None:
    """Cancellable sleep; a plain ``asyncio.sleep`` without a token."""
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    await cancel.sleep(seconds)

# src/herdguard/application/interfaces/lock_port.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Application Interface: Distributed Lock Port.

Synopsis:
    Lease-style mutual exclusion across processes plus a "wait for the
    winner's result" primitive.

Contract:
    * ``acquire`` never blocks; it returns a token or ``None`` if held.
    * ``release`` succeeds only for the matching token (atomic
      compare-and-delete).
    * When the backend is unreachable ``acquire``/``wait_for_key`` return
      ``None`` and ``release`` returns ``False``: coordination degrades to
      redundant work, never to an error or a deadlock.

Layer:
    application/interfaces
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Protocol

from herdguard.domain.entities.lock import LockHandle
from herdguard.types import JsonValue

if TYPE_CHECKING:
    from herdguard.infrastructure.concurrency.cancellation import CancelToken


class LockPort(Protocol):
    """Distributed lock keyed by unqualified lock keys."""

    async def acquire(self, lock_key: str, ttl_ms: int) -> str | None:
        """Try to take the lock; return the ownership token or ``None``."""

    async def release(self, lock_key: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it."""

    def hold(
        self, lock_key: str, ttl_ms: int
    ) -> AbstractAsyncContextManager[LockHandle | None]:
        """Acquire for the duration of a block; release in ``finally``."""

    async def wait_for_key(
        self,
        result_key: str,
        timeout_ms: int,
        poll_interval_ms: int = 100,
        *,
        cancel: CancelToken | None = None,
    ) -> JsonValue | None:
        """Poll ``result_key`` until a value appears or ``timeout_ms`` passes."""

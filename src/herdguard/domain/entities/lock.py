# Copyright (c)
# SPDX-License-Identifier: MIT
"""Lock handle (Domain Layer)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Proof of ownership of a distributed lock.

    Attributes:
        key: Fully-qualified lock key.
        token: Random opaque value; release succeeds only with this token.
        ttl_ms: Lease length; the lock expires passively after it.
    """

    key: str
    token: str
    ttl_ms: int

    def __repr__(self) -> str:
        return f"LockHandle(key={self.key!r}, ttl_ms={self.ttl_ms})"

# src/herdguard/domain/entities/resolution.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Resolution Entities (Domain Layer).

Purpose:
    Value types flowing through the resolution pipeline:

    * :class:`Resolved` / :class:`ResolveFailure` form the discriminated
      result returned to callers (``ResolveResult``). Exactly one variant is
      returned; callers branch with ``match`` or ``isinstance``.
    * :class:`DurableRecord` is the read-only view of a durable-store row.
    * :class:`BatchItem` pairs an input id with its per-item result.

Layer:
    domain/entities
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass(frozen=True, slots=True)
class Resolved[T]:
    """Successful resolution carrying the payload."""

    data: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ResolveFailure:
    """Failed resolution carrying a client-safe message, code and status."""

    error: str
    code: str
    status: int

    @property
    def ok(self) -> bool:
        return False


type ResolveResult[T] = Resolved[T] | ResolveFailure


@dataclass(frozen=True, slots=True)
class DurableRecord[P]:
    """Payload plus last-updated timestamp, as read from the durable store.

    Naive timestamps are interpreted as UTC.
    """

    payload: P
    updated_at: datetime

    def age_seconds(self, now: datetime) -> int:
        """Return the whole-second age of the record, never negative."""
        updated = self.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return max(0, int((now - updated).total_seconds()))


@dataclass(frozen=True, slots=True)
class BatchItem[T]:
    """Per-id outcome of a batch resolution."""

    id: str
    result: ResolveResult[T]

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Resolved)

# src/herdguard/domain/services/negative_cache.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Negative cache convention.

A negative entry is an ordinary JSON cache value tagged with a reserved
marker field, so it shares keys, TTL handling and compression with positive
entries:

    {"__err": true, "__status": 404, "error": "...", "code": "..."}

Only request-attributable failures may be stored; the entry constructor
rejects any status that is not a client error.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from herdguard.domain.entities.resolution import ResolveFailure
from herdguard.domain.exceptions.resolution import NegativeCacheHit
from herdguard.domain.services.error_mapping import is_negative_cacheable

#: Fixed TTL for negative entries, independent of positive TTL policy.
NEGATIVE_CACHE_TTL_S = 60

_MARKER = "__err"
_STATUS = "__status"


@dataclass(frozen=True, slots=True)
class NegativeCacheEntry:
    """Cached record of a request-attributable failure."""

    error: str
    code: str
    status: int

    def __post_init__(self) -> None:
        if not is_negative_cacheable(self.status):
            raise ValueError(f"status {self.status} is not negative-cacheable")

    def to_json(self) -> dict[str, Any]:
        return {_MARKER: True, _STATUS: self.status, "error": self.error, "code": self.code}

    @classmethod
    def from_json(cls, value: Mapping[str, Any]) -> NegativeCacheEntry:
        return cls(
            error=str(value.get("error") or "Bad Request"),
            code=str(value.get("code") or "BAD_REQUEST"),
            status=int(value.get(_STATUS, 400)),
        )

    def to_failure(self) -> ResolveFailure:
        return ResolveFailure(error=self.error, code=self.code, status=self.status)

    def to_error(self) -> NegativeCacheHit:
        return NegativeCacheHit(self.error, status=self.status, code=self.code)


def make_negative(message: str, code: str, status: int) -> NegativeCacheEntry:
    """Build a negative entry; raises ``ValueError`` for non-client statuses."""
    return NegativeCacheEntry(error=message, code=code, status=status)


def is_negative(value: Any) -> bool:
    """Return True when ``value`` is a negative entry (object or raw JSON)."""
    if isinstance(value, NegativeCacheEntry):
        return True
    return (
        isinstance(value, Mapping)
        and value.get(_MARKER) is True
        and isinstance(value.get(_STATUS), int)
    )

# src/herdguard/application/interfaces/cache_port.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Application Interface: Cache Port.

Synopsis:
    Minimal JSON cache behavior used by the resolver and batch helpers.
    Enables swapping Redis, in-memory, or other cache implementations.

Contract:
    Implementations never raise for backend unavailability: reads degrade to
    ``None`` (miss) and writes to a no-op, so callers simply do redundant work.

Layer:
    application/interfaces
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from herdguard.types import JsonValue


class CachePort(Protocol):
    """JSON cache with TTL semantics.

    Implementations must store JSON-serializable values and apply TTL in
    seconds. TTLs <= 0 mean "do not cache".
    """

    async def get_json(self, key: str) -> JsonValue | None:
        """Get a JSON value by key.

        Args:
            key: Cache key (unqualified; implementations apply any namespace).

        Returns:
            Deserialized JSON value if present, else ``None``.
        """

    async def set_json(self, key: str, value: JsonValue, *, ttl: int) -> None:
        """Set a JSON value with TTL.

        Args:
            key: Cache key (unqualified).
            value: JSON-serializable value.
            ttl: Time-to-live in seconds.
        """

    async def get_many_json(self, keys: Sequence[str]) -> dict[str, JsonValue]:
        """Get several keys in one round trip.

        Args:
            keys: Cache keys (unqualified).

        Returns:
            Mapping of present keys to values; missing keys are omitted.
        """

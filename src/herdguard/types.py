"""Project-wide JSON typing helpers.

These aliases model JSON-serializable values, which is everything the shared
cache is able to store.
"""

from __future__ import annotations

type JsonPrimitive = None | bool | int | float | str
type JsonValue = JsonPrimitive | list[JsonValue] | dict[str, JsonValue]

__all__ = ["JsonPrimitive", "JsonValue"]

# Copyright (c)
# SPDX-License-Identifier: MIT
"""JSON value codec with transparent gzip compression.

Large values are stored as ``"gz:" + base64(gzip(json))``. Anything without
the marker is read as plain JSON, so entries written before compression was
enabled stay readable.
"""

from __future__ import annotations

import base64
import gzip
import json
from typing import Any

__all__ = ["COMPRESS_PREFIX", "COMPRESS_THRESHOLD_BYTES", "decode_value", "encode_value"]

COMPRESS_PREFIX = "gz:"
COMPRESS_THRESHOLD_BYTES = 8 * 1024


def encode_value(value: Any, *, threshold: int = COMPRESS_THRESHOLD_BYTES) -> str:
    """Serialize ``value`` to a cache string, compressing at ``threshold`` bytes."""
    plain = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    raw = plain.encode("utf-8")
    if len(raw) < threshold:
        return plain
    packed = base64.b64encode(gzip.compress(raw)).decode("ascii")
    return COMPRESS_PREFIX + packed


def decode_value(raw: str | bytes) -> Any:
    """Deserialize a cache string written by :func:`encode_value` (or legacy JSON)."""
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    if text.startswith(COMPRESS_PREFIX):
        packed = base64.b64decode(text[len(COMPRESS_PREFIX) :])
        text = gzip.decompress(packed).decode("utf-8")
    return json.loads(text)

# Copyright (c)
# SPDX-License-Identifier: MIT
"""TTL jitter.

Entries cached at the same instant with the same nominal TTL would otherwise
expire together and stampede the upstream. Each TTL is spread by up to ±10%.
"""

from __future__ import annotations

import math
import random
from typing import Any

JITTER_RATIO = 0.1


def jitter_ttl(ttl_seconds: Any, *, rng: random.Random | None = None) -> int:
    """Return ``ttl_seconds`` randomized by ±10%, floored, and at least 1.

    Non-numeric, non-finite, zero or negative input is treated as 1.

    Args:
        ttl_seconds: Nominal TTL in seconds.
        rng: Random source; the module-level generator when omitted.

    Returns:
        int: Jittered TTL in whole seconds.
    """
    try:
        base = float(ttl_seconds)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(base) or base <= 0:
        return 1
    source = rng if rng is not None else random
    delta = (source.random() * 2 - 1) * JITTER_RATIO * base  # noqa: S311
    return max(1, math.floor(base + delta))

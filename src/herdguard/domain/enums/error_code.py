# src/herdguard/domain/enums/error_code.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Canonical error codes and error kinds.

Purpose:
    Stable, transport-agnostic identifiers for failures surfaced by the
    resolution pipeline. Request-handling code maps them to HTTP.

Layer:
    domain
"""

from __future__ import annotations

from enum import Enum

#: Nginx-style status for a request abandoned by its caller.
STATUS_CLIENT_CLOSED_REQUEST = 499


class ErrorCode(str, Enum):
    """Canonical error codes for resolution failures."""

    # Client side
    BAD_REQUEST = "BAD_REQUEST"
    CLIENT_CLOSED_REQUEST = "CLIENT_CLOSED_REQUEST"

    # Upstream/Network
    UPSTREAM_NOT_FOUND = "UPSTREAM_NOT_FOUND"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_ABORTED = "UPSTREAM_ABORTED"
    UPSTREAM_RATE_LIMITED = "UPSTREAM_RATE_LIMITED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_BAD_GATEWAY = "UPSTREAM_BAD_GATEWAY"

    # Generic
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorKind(str, Enum):
    """Coarse failure taxonomy used for caching decisions.

    Backend unavailability is deliberately absent: it is recovered locally and
    never surfaces as a failure.
    """

    CLIENT = "client"
    TRANSIENT = "transient"
    CANCELLED = "cancelled"

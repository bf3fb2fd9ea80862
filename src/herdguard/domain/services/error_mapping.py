# src/herdguard/domain/services/error_mapping.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Error mapping.

Purpose:
    Translate any exception escaping a fetch into a deterministic
    ``(status, code, message)`` triple and classify it for caching decisions.

Rules:
    * ``UpstreamError`` with 404 / 429 / 503 keeps its status with the
      matching upstream code; other 5xx collapse to 502; other 4xx keep their
      status and code.
    * ``TimeoutError`` becomes 504, ``OperationCancelled`` 499.
    * A connection aborted or reset mid-request becomes 502 ``UPSTREAM_ABORTED``.
    * Anything else is an internal error (500).

Layer:
    domain/services
"""

from __future__ import annotations

from dataclasses import dataclass

from herdguard.domain.enums.error_code import (
    STATUS_CLIENT_CLOSED_REQUEST,
    ErrorCode,
    ErrorKind,
)
from herdguard.domain.exceptions.resolution import OperationCancelled, UpstreamError

# Transport failures where the upstream dropped the request mid-flight.
_ABORTED_ERRORS = (ConnectionAbortedError, ConnectionResetError, BrokenPipeError)

# 4xx statuses that describe timing or the caller's connection, not the request.
_TRANSIENT_4XX = frozenset({408, 429, STATUS_CLIENT_CLOSED_REQUEST})


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Normalized failure description."""

    status: int
    code: str
    message: str


def map_error(exc: BaseException) -> ErrorInfo:
    """Map an exception to an :class:`ErrorInfo`.

    Args:
        exc: Exception raised while fetching.

    Returns:
        ErrorInfo: Status, canonical code and client-safe message.
    """
    if isinstance(exc, UpstreamError):
        s = exc.status
        if s == 404:
            return ErrorInfo(404, ErrorCode.UPSTREAM_NOT_FOUND.value, exc.message or "Resource not found upstream")
        if s == 429:
            return ErrorInfo(429, ErrorCode.UPSTREAM_RATE_LIMITED.value, "Upstream rate limited")
        if s == 503:
            return ErrorInfo(503, ErrorCode.UPSTREAM_UNAVAILABLE.value, "Upstream unavailable")
        if s >= 500:
            return ErrorInfo(502, ErrorCode.UPSTREAM_BAD_GATEWAY.value, f"Upstream error ({s})")
        if 400 <= s < 500:
            return ErrorInfo(s, exc.code, exc.message or "Bad Request")
        return ErrorInfo(502, ErrorCode.UPSTREAM_BAD_GATEWAY.value, f"Upstream error ({s})")

    if isinstance(exc, OperationCancelled):
        return ErrorInfo(
            STATUS_CLIENT_CLOSED_REQUEST,
            ErrorCode.CLIENT_CLOSED_REQUEST.value,
            "Client Closed Request",
        )

    if isinstance(exc, TimeoutError):
        return ErrorInfo(504, ErrorCode.UPSTREAM_TIMEOUT.value, "Upstream request timed out")

    if isinstance(exc, _ABORTED_ERRORS):
        return ErrorInfo(502, ErrorCode.UPSTREAM_ABORTED.value, "Upstream request aborted")

    return ErrorInfo(500, ErrorCode.INTERNAL_ERROR.value, "Internal Server Error")


def classify(status: int) -> ErrorKind:
    """Return the failure kind implied by a mapped status."""
    if status == STATUS_CLIENT_CLOSED_REQUEST:
        return ErrorKind.CANCELLED
    if 400 <= status < 500 and status not in _TRANSIENT_4XX:
        return ErrorKind.CLIENT
    return ErrorKind.TRANSIENT


def is_negative_cacheable(status: int) -> bool:
    """True only for request-attributable (client) failures."""
    return classify(status) is ErrorKind.CLIENT


def default_should_negative_cache(status: int, code: str) -> bool:  # noqa: ARG001
    """Default predicate: cache every request-attributable failure."""
    return is_negative_cacheable(status)

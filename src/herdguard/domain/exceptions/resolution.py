# src/herdguard/domain/exceptions/resolution.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
Resolution Exceptions

Purpose:
    Error types raised by remote fetchers and by the coordination core itself.
    ``fetch_persist`` implementations raise :class:`UpstreamError` (or let
    ``TimeoutError`` escape); the resolver maps everything else to 500.

Layer: domain/exceptions
"""
from __future__ import annotations

from typing import Any

from herdguard.domain.enums.error_code import STATUS_CLIENT_CLOSED_REQUEST, ErrorCode

from .base import DomainError


class UpstreamError(DomainError):
    """The remote source rejected or failed a request.

    Args:
        message: Human-readable message (safe for clients).
        status: HTTP-equivalent status reported by or inferred for the upstream.
        code: Canonical error code; derived from ``status`` when omitted.
        details: Optional machine-readable diagnostics.
    """

    code = ErrorCode.BAD_REQUEST.value

    def __init__(
        self,
        message: str,
        *,
        status: int,
        code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = int(status)
        if code is not None:
            self.code = code.value if isinstance(code, ErrorCode) else str(code)

    def __str__(self) -> str:
        return self.message


class NegativeCacheHit(UpstreamError):
    """A failure adopted from a negative cache entry written by another caller."""


class OperationCancelled(DomainError):
    """The caller abandoned the operation before it completed."""

    code = ErrorCode.CLIENT_CLOSED_REQUEST.value
    status = STATUS_CLIENT_CLOSED_REQUEST

    def __init__(self, message: str = "Operation cancelled", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

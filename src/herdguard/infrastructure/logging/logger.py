# src/herdguard/infrastructure/logging/logger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Structured JSON logging utilities.

This module exposes an idempotent root configurator and a per-module logger
factory that produce JSON logs suitable for ingestion by log pipelines.

Features:
    * Stable keys: ``ts``, ``level``, ``logger``, ``message``, plus ``service``
      and ``env`` from settings when configured through
      :func:`configure_root_logging`.
    * Fields passed through ``extra=`` are merged at the top level, so call
      sites can write ``log.warning("lock.acquire_failed", extra={"key": k})``.
    * Values that are not JSON-serializable are rendered with ``str``.

The core never configures logging on import. Hosts call
:func:`configure_root_logging` once at startup.

Typical usage:
    configure_root_logging()
    log = get_json_logger(__name__)
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from herdguard.config.settings import get_settings

__all__ = ["configure_root_logging", "get_json_logger"]

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class _JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys plus ``extra`` fields."""

    def __init__(self, static_fields: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._static = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object.

        Args:
            record: Logging record.

        Returns:
            str: JSON-encoded log line.
        """
        payload: dict[str, Any] = {
            "ts": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
        }

        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_") or key in payload:
                continue
            payload[key] = value

        # Exceptions: guard against None in exc_info tuple.
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_root_logging(level: str | int | None = None) -> None:
    """Initialize the root logger with a JSON stream handler (idempotent).

    Args:
        level: Logging level or level name. If ``None``, use ``settings.log_level``
            (env ``LOG_LEVEL``) or ``INFO``.
    """
    root = logging.getLogger()
    settings = get_settings()

    resolved: int | str = level if level is not None else (settings.log_level or "INFO")
    if isinstance(resolved, str):
        resolved = resolved.upper()
    root.setLevel(resolved)

    if any(isinstance(h.formatter, _JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        _JsonFormatter({"service": settings.service_name, "env": settings.environment.value})
    )
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return a module-specific logger backed by the JSON root handler.

    This does *not* implicitly configure the root logger.

    Args:
        name: Logger name, typically ``__name__`` of the caller.

    Returns:
        logging.Logger: Configured logger.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    # Delegate formatting and level to the root logger.
    logger.propagate = True
    return logger

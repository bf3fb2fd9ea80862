# src/herdguard/config/settings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Herdguard Configuration (Pydantic Settings, v2)

Summary:
    Typed, validated configuration for the cache coordination core. Only the
    infrastructure adapters and the host application should read the process
    environment; resolver and batch helpers receive values derived from
    `Settings` explicitly (see ``ResolveOptions.from_settings`` and
    ``read_batch_throttle``).

Design:
    - Pydantic v2 BaseSettings with `extra='forbid'` to catch unknown env.
    - Explicit field declarations with constrained types and ranges.
    - ``REDIS_URL`` is optional: without it the core runs uncoordinated.
    - Singleton accessor `get_settings()` with LRU cache.
    - Safe, structured logging (no secrets).
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Logical deployment environment."""

    DEVELOPMENT = "development"
    TEST = "test"
    CI = "ci"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Typed configuration for the cache coordination core."""

    # ---------------------------
    # Core environment
    # ---------------------------
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Logical deployment environment.",
        validation_alias="ENVIRONMENT",
    )
    service_name: str = Field(
        default="herdguard",
        description="Logical service name for logging.",
        validation_alias="SERVICE_NAME",
    )
    log_level: str | None = Field(
        default=None,
        description="Override log level (e.g., 'DEBUG', 'INFO'). If not set, defaults are used.",
        validation_alias="LOG_LEVEL",
    )

    # ---------------------------
    # Redis (shared cache + lock backend)
    # ---------------------------
    redis_url: str | None = Field(
        default=None,
        description=(
            "Redis connection URL used for the shared cache and distributed locks. "
            "When unset, caching and cross-process locking are disabled."
        ),
        validation_alias="REDIS_URL",
    )
    redis_health_check_interval_s: int = Field(
        default=15,
        ge=1,
        le=3600,
        description="Health check interval for Redis clients in seconds.",
        validation_alias="REDIS_HEALTH_CHECK_INTERVAL_S",
    )
    redis_socket_timeout_s: float = Field(
        default=3.0,
        ge=0.1,
        le=60.0,
        description="Socket timeout in seconds for Redis commands.",
        validation_alias="REDIS_SOCKET_TIMEOUT_S",
    )
    redis_socket_connect_timeout_s: float = Field(
        default=3.0,
        ge=0.1,
        le=60.0,
        description="Socket connect timeout in seconds for Redis.",
        validation_alias="REDIS_SOCKET_CONNECT_TIMEOUT_S",
    )

    # ---------------------------
    # Cache policy
    # ---------------------------
    cache_namespace: str = Field(
        default="herdguard:v1",
        min_length=1,
        description="Prefix applied to every cache and lock key.",
        validation_alias="CACHE_NAMESPACE",
    )
    cache_compress_threshold_bytes: int = Field(
        default=8 * 1024,
        ge=1,
        description="Serialized values at or above this size are gzip-compressed.",
        validation_alias="CACHE_COMPRESS_THRESHOLD_BYTES",
    )
    negative_cache_ttl_s: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="TTL for cached request-attributable failures.",
        validation_alias="NEGATIVE_CACHE_TTL_S",
    )
    stale_ttl_divisor: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Stale responses assume ttl // divisor seconds of remaining life.",
        validation_alias="STALE_TTL_DIVISOR",
    )

    # ---------------------------
    # Distributed lock
    # ---------------------------
    lock_min_ttl_ms: int = Field(
        default=10_000,
        ge=100,
        description="Lower bound for the fetch lock lease in milliseconds.",
        validation_alias="LOCK_MIN_TTL_MS",
    )
    lock_wait_timeout_ms: int = Field(
        default=5_000,
        ge=0,
        le=60_000,
        description="How long a lock loser waits for the winner's cache write.",
        validation_alias="LOCK_WAIT_TIMEOUT_MS",
    )
    lock_poll_interval_ms: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Poll interval while waiting for the winner's cache write.",
        validation_alias="LOCK_POLL_INTERVAL_MS",
    )

    # ---------------------------
    # Batch throttling (shared, untrusted defaults; call sites clamp further)
    # ---------------------------
    batch_concurrency: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Default worker pool size for throttled batch fetches.",
        validation_alias="BATCH_CONCURRENCY",
    )
    batch_min_delay_ms: int = Field(
        default=150,
        ge=0,
        description="Minimum randomized delay before each batch item.",
        validation_alias="BATCH_MIN_DELAY_MS",
    )
    batch_max_delay_ms: int = Field(
        default=400,
        ge=0,
        description="Maximum randomized delay before each batch item.",
        validation_alias="BATCH_MAX_DELAY_MS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="forbid",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _validate_batch_delays(self) -> Settings:
        """Reject inverted delay windows.

        Returns:
            Settings: The validated settings instance.

        Raises:
            ValueError: If BATCH_MAX_DELAY_MS is below BATCH_MIN_DELAY_MS.
        """
        if self.batch_max_delay_ms < self.batch_min_delay_ms:
            raise ValueError("BATCH_MAX_DELAY_MS must be >= BATCH_MIN_DELAY_MS.")
        return self

    def safe_redis_url(self) -> str | None:
        """Return the Redis URL with any password masked, for logs."""
        if not self.redis_url:
            return None
        parsed = urlparse(self.redis_url)
        if not parsed.password:
            return self.redis_url
        return self.redis_url.replace(f":{parsed.password}@", ":***@")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance.

    Returns:
        Settings: Validated settings.

    Raises:
        RuntimeError: If configuration is invalid.
    """
    try:
        settings = Settings()
        logger.info(
            "Settings initialized",
            extra={
                "environment": settings.environment.value,
                "service_name": settings.service_name,
                "redis_url": settings.safe_redis_url(),
                "cache_namespace": settings.cache_namespace,
                "negative_cache_ttl_s": settings.negative_cache_ttl_s,
                "lock": {
                    "min_ttl_ms": settings.lock_min_ttl_ms,
                    "wait_timeout_ms": settings.lock_wait_timeout_ms,
                    "poll_interval_ms": settings.lock_poll_interval_ms,
                },
                "batch": {
                    "concurrency": settings.batch_concurrency,
                    "min_delay_ms": settings.batch_min_delay_ms,
                    "max_delay_ms": settings.batch_max_delay_ms,
                },
            },
        )
        return settings
    except ValidationError as exc:
        logger.exception("Invalid configuration")
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

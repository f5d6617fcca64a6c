"""
Configuration Module
====================

Type-safe, immutable configuration dataclasses for the object store, the
memory gate and the coordination services built on top of them.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Degradation**: A missing bucket or credentials is a valid config; the
   store logs once and degrades to no-ops instead of failing at import
4. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from blobcoord.core import constants as C
from blobcoord.core.types import Err, Ok, Result
from blobcoord.reliability.retry import RetryPolicy

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    val = env.get(key, "").strip().lower()
    if val in _TRUE_VALUES:
        return True
    if val in _FALSE_VALUES:
        return False
    return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    val = env.get(key, "").strip()
    if not val:
        return default
    try:
        parsed = int(val)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    val = env.get(key, "").strip()
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _env_str(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        val = env.get(key, "").strip()
        if val:
            return val
    return None


# =============================================================================
# OBJECT STORE CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class ObjectStoreConfig:
    """
    S3-compatible object store configuration.

    Supports AWS S3, MinIO, DigitalOcean Spaces, Cloudflare R2 and other
    S3-compatible stores.

    Attributes:
        bucket: Bucket name. None means the store is unconfigured.
        endpoint_url: Custom endpoint for non-AWS stores (None for AWS).
        access_key_id: Access key (None for IAM role auth).
        secret_access_key: Secret key (None for IAM role auth).
        region: Region name.
        cdn_base_url: Public CDN base URL for non-JSON reads.
        dry_run: Skip direct reads and all writes, logging the intent.
        read_only: Silently skip writes.
        privileged_updater: Bypass the soft memory threshold on writes.
        max_read_bytes: Reads above this size are declined.
        max_binary_write_bytes: Absolute write ceiling, never bypassed.
        small_payload_threshold_bytes: Soft write threshold.
        opengraph_threshold_bytes: Soft write threshold for OpenGraph images.
        cdn_timeout_ms: CDN GET timeout.
        stream_timeout_ms: Bound on buffering a streamed body.
        connect_timeout_seconds: TCP connect timeout for the S3 client.
        read_timeout_seconds: Read timeout for the S3 client.
    """

    bucket: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: str = "us-east-1"
    cdn_base_url: Optional[str] = None

    dry_run: bool = False
    read_only: bool = False
    privileged_updater: bool = False

    max_read_bytes: int = C.MAX_READ_BYTES
    max_binary_write_bytes: int = C.MAX_BINARY_WRITE_BYTES
    small_payload_threshold_bytes: int = C.SMALL_PAYLOAD_THRESHOLD_BYTES
    opengraph_threshold_bytes: int = C.OPENGRAPH_IMAGE_THRESHOLD_BYTES

    cdn_timeout_ms: int = C.CDN_TIMEOUT_MS
    stream_timeout_ms: int = C.STREAM_TIMEOUT_MS
    connect_timeout_seconds: int = C.CONNECT_TIMEOUT_S
    read_timeout_seconds: int = C.READ_TIMEOUT_S

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any size or timeout is non-positive.
        """
        for name in (
            "max_read_bytes",
            "max_binary_write_bytes",
            "small_payload_threshold_bytes",
            "opengraph_threshold_bytes",
            "cdn_timeout_ms",
            "stream_timeout_ms",
            "connect_timeout_seconds",
            "read_timeout_seconds",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if self.bucket is not None and not self.bucket.strip():
            raise ValueError("bucket must be non-empty when set")

    @property
    def missing_settings(self) -> list[str]:
        """Names of the settings required to reach the backend that are unset."""
        missing = []
        if not self.bucket:
            missing.append("S3_BUCKET")
        if not self.access_key_id:
            missing.append("S3_ACCESS_KEY_ID")
        if not self.secret_access_key:
            missing.append("S3_SECRET_ACCESS_KEY")
        return missing

    @property
    def is_configured(self) -> bool:
        return self.bucket is not None

    @property
    def cdn_enabled(self) -> bool:
        return bool(self.cdn_base_url)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> ObjectStoreConfig:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - S3_BUCKET: Bucket name
        - S3_SERVER_URL: Custom endpoint URL
        - S3_ACCESS_KEY_ID / S3_SECRET_ACCESS_KEY: Credentials
        - S3_REGION or AWS_REGION: Region (default: us-east-1)
        - S3_CDN_URL or NEXT_PUBLIC_S3_CDN_URL: CDN base URL
        - DRY_RUN: Skip reads and writes against the backend
        - S3_READ_ONLY: Silently skip writes
        - IS_DATA_UPDATER: Privileged background updater
        - S3_MAX_BINARY_WRITE_BYTES: Absolute write ceiling override

        Unparseable numeric overrides fall back to the default.
        """
        env = os.environ if env is None else env
        cdn = _env_str(env, "S3_CDN_URL", "NEXT_PUBLIC_S3_CDN_URL")
        return cls(
            bucket=_env_str(env, "S3_BUCKET"),
            endpoint_url=_env_str(env, "S3_SERVER_URL"),
            access_key_id=_env_str(env, "S3_ACCESS_KEY_ID"),
            secret_access_key=_env_str(env, "S3_SECRET_ACCESS_KEY"),
            region=_env_str(env, "S3_REGION", "AWS_REGION") or "us-east-1",
            cdn_base_url=cdn.rstrip("/") if cdn else None,
            dry_run=_env_bool(env, "DRY_RUN", False),
            read_only=_env_bool(env, "S3_READ_ONLY", False),
            privileged_updater=_env_bool(env, "IS_DATA_UPDATER", False),
            max_binary_write_bytes=_env_int(
                env, "S3_MAX_BINARY_WRITE_BYTES", C.MAX_BINARY_WRITE_BYTES
            ),
        )

    def get_boto_config(self) -> dict[str, Any]:
        """
        Generate client kwargs for aioboto3.

        Returns:
            Dict suitable for session.client('s3', **config).
        """
        config: dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            config["endpoint_url"] = self.endpoint_url
        if self.access_key_id and self.secret_access_key:
            config["aws_access_key_id"] = self.access_key_id
            config["aws_secret_access_key"] = self.secret_access_key
        return config


# =============================================================================
# MEMORY CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class MemoryConfig:
    """
    Process memory budget used by the memory gate.

    Attributes:
        total_budget_bytes: Memory the process is allowed to use.
        critical_ratio: RSS / budget at or above which the process is
            under pressure.
        warning_ratio: RSS / budget at which a warning is logged.
        heap_utilization_threshold: Allocator utilization at or above which
            the process is under pressure.
    """

    total_budget_bytes: int = C.TOTAL_PROCESS_MEMORY_BUDGET_BYTES
    critical_ratio: float = C.MEMORY_CRITICAL_RATIO
    warning_ratio: float = C.MEMORY_WARNING_RATIO
    heap_utilization_threshold: float = C.HEAP_UTILIZATION_THRESHOLD

    def __post_init__(self) -> None:
        if self.total_budget_bytes <= 0:
            raise ValueError(
                f"total_budget_bytes must be > 0, got {self.total_budget_bytes}"
            )
        for name in ("critical_ratio", "warning_ratio", "heap_utilization_threshold"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.warning_ratio > self.critical_ratio:
            raise ValueError("warning_ratio cannot exceed critical_ratio")

    @property
    def critical_bytes(self) -> int:
        return int(self.total_budget_bytes * self.critical_ratio)

    @property
    def warning_bytes(self) -> int:
        return int(self.total_budget_bytes * self.warning_ratio)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> MemoryConfig:
        """
        Environment Variables:
        - TOTAL_PROCESS_MEMORY_BUDGET_BYTES: Budget in bytes
        - MEMORY_CRITICAL_THRESHOLD: Critical ratio of the budget
        """
        env = os.environ if env is None else env
        return cls(
            total_budget_bytes=_env_int(
                env,
                "TOTAL_PROCESS_MEMORY_BUDGET_BYTES",
                C.TOTAL_PROCESS_MEMORY_BUDGET_BYTES,
            ),
            critical_ratio=_env_float(
                env, "MEMORY_CRITICAL_THRESHOLD", C.MEMORY_CRITICAL_RATIO
            ),
        )


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================
@dataclass(frozen=True)
class CoordinationConfig:
    """Root configuration for the storage-coordination core."""

    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy.for_reads)
    lock_ttl_ms: int = C.DEFAULT_LOCK_TTL_MS

    def __post_init__(self) -> None:
        if self.lock_ttl_ms <= 0:
            raise ValueError(f"lock_ttl_ms must be > 0, got {self.lock_ttl_ms}")

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None
    ) -> Result[CoordinationConfig, str]:
        """
        Load configuration from environment variables.

        See ObjectStoreConfig.from_env and MemoryConfig.from_env for the
        variables read.
        """
        env = os.environ if env is None else env
        try:
            return Ok(
                cls(
                    object_store=ObjectStoreConfig.from_env(env),
                    memory=MemoryConfig.from_env(env),
                )
            )
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

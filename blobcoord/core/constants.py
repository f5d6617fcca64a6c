"""
System-Wide Constants for the Storage-Coordination Core

All magic numbers and configuration defaults centralized here.
Every value can be overridden through the config dataclasses.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB
GB: Final[int] = 1024 * MB

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS

# =============================================================================
# KEY CONVENTIONS
# =============================================================================
BINARY_KEY_PREFIX: Final[str] = "images/"
OPENGRAPH_IMAGE_PREFIX: Final[str] = "images/opengraph/"
LOCK_KEY_PREFIX: Final[str] = "locks/"
JSON_SUFFIX: Final[str] = ".json"

# =============================================================================
# MEMORY GATING
# =============================================================================
MAX_READ_BYTES: Final[int] = 50 * MB
MAX_BINARY_WRITE_BYTES: Final[int] = 50 * MB
SMALL_PAYLOAD_THRESHOLD_BYTES: Final[int] = 512 * KB
OPENGRAPH_IMAGE_THRESHOLD_BYTES: Final[int] = 2 * MB

TOTAL_PROCESS_MEMORY_BUDGET_BYTES: Final[int] = 1 * GB
MEMORY_WARNING_RATIO: Final[float] = 0.7
MEMORY_CRITICAL_RATIO: Final[float] = 0.9
HEAP_UTILIZATION_THRESHOLD: Final[float] = 0.9

# =============================================================================
# TIMEOUTS
# =============================================================================
CDN_TIMEOUT_MS: Final[int] = 10 * SECOND_MS
STREAM_TIMEOUT_MS: Final[int] = 30 * SECOND_MS
CONNECT_TIMEOUT_S: Final[int] = 5
READ_TIMEOUT_S: Final[int] = 60

# =============================================================================
# RETRY
# =============================================================================
READ_RETRY_MAX_ATTEMPTS: Final[int] = 3
READ_RETRY_BASE_DELAY_MS: Final[int] = 100
READ_RETRY_MAX_DELAY_MS: Final[int] = 5 * SECOND_MS
READ_RETRY_JITTER_RATIO: Final[float] = 0.3
BACKEND_MAX_ATTEMPTS: Final[int] = 5  # botocore client-level retries

# =============================================================================
# CIRCUIT BREAKER
# =============================================================================
CIRCUIT_FAILURE_THRESHOLD: Final[int] = 1
CIRCUIT_SUCCESS_THRESHOLD: Final[int] = 1
CIRCUIT_RESET_TIMEOUT_MS: Final[int] = 30 * SECOND_MS

# =============================================================================
# LOCKING
# =============================================================================
DEFAULT_LOCK_TTL_MS: Final[int] = 5 * MINUTE_MS

# =============================================================================
# RATE LIMITING
# =============================================================================
SHORT_WINDOW_MS: Final[int] = SECOND_MS
DEFAULT_POLL_INTERVAL_MS: Final[int] = 50
PERMIT_WAKE_MARGIN_MS: Final[int] = 10
PRUNE_INTERVAL_MS: Final[int] = MINUTE_MS

# =============================================================================
# CDN
# =============================================================================
CDN_USER_AGENT: Final[str] = "blobcoord/1.0"

"""
Observability module: structured logging.
"""

from blobcoord.observability.logging import (
    JsonFormatter,
    LogLevel,
    log_context,
    log_once,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "LogLevel",
    "log_context",
    "log_once",
    "setup_logging",
]

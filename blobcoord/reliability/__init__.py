"""
Reliability module: retry with backoff and circuit breaking.
"""

from blobcoord.reliability.circuit_breaker import CircuitBreaker, CircuitState
from blobcoord.reliability.retry import RetryPolicy, calculate_backoff, retry_with_backoff

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "calculate_backoff",
    "retry_with_backoff",
]

"""
Rate limiting module: in-process sliding-log limiter and default profiles.
"""

from blobcoord.ratelimit.limiter import (
    API_ENDPOINT_STORE_NAME,
    DEFAULT_API_ENDPOINT_LIMIT_CONFIG,
    DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG,
    OPENGRAPH_FETCH_CONTEXT_ID,
    OPENGRAPH_FETCH_STORE_NAME,
    RateBucket,
    RateLimitConfig,
    RateLimiter,
)

__all__ = [
    "API_ENDPOINT_STORE_NAME",
    "DEFAULT_API_ENDPOINT_LIMIT_CONFIG",
    "DEFAULT_OPENGRAPH_FETCH_LIMIT_CONFIG",
    "OPENGRAPH_FETCH_CONTEXT_ID",
    "OPENGRAPH_FETCH_STORE_NAME",
    "RateBucket",
    "RateLimitConfig",
    "RateLimiter",
]

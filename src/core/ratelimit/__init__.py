"""Internal rate limiting."""

from .rate_limiter import (
    GLOBAL_SCOPE,
    RATE_LIMIT_KEY_PREFIX,
    InternalServiceRateLimiter,
    RateLimitSettings,
)

__all__ = [
    "GLOBAL_SCOPE",
    "RATE_LIMIT_KEY_PREFIX",
    "InternalServiceRateLimiter",
    "RateLimitSettings",
]

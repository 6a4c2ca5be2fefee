"""Security service module."""

from approvalhub.services.security.rate_limiter import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RateLimitResult,
    get_rate_limiter,
    reset_rate_limiter,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimiter",
    "RateLimitResult",
    "get_rate_limiter",
    "reset_rate_limiter",
]

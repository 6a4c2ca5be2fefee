"""Per-service rate limiting using fixed one-minute windows."""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, Field

from approvalhub.core.config import get_settings


class RateLimitResult(BaseModel):
    """Result of rate limit check."""

    allowed: bool = Field(..., description="Whether request is allowed")
    remaining: int = Field(..., description="Remaining requests in window")
    reset_at: float = Field(..., description="Timestamp when the window ends")
    retry_after: float | None = Field(None, description="Seconds to wait before retry")
    limit: int = Field(..., description="Current limit")


@dataclass
class WindowCounter:
    """Request count of one (key, window) bucket."""

    count: int
    reset_at: float


class CounterStore(ABC):
    """Storage for window counters.

    Implementations decide whether state is process-local or shared.
    """

    @abstractmethod
    def hit(self, key: str, quota: int, window_seconds: float, now: float) -> WindowCounter:
        """Record a request against a bucket if under quota.

        Args:
            key: Bucket key (service id and window index)
            quota: Maximum requests per window
            window_seconds: Window length
            now: Current timestamp

        Returns:
            Counter state after the call; ``count > quota`` means denied
        """

    @abstractmethod
    def reset(self, key_prefix: str | None = None) -> None:
        """Drop counters, optionally only those starting with a prefix."""


class InMemoryCounterStore(CounterStore):
    """Process-local counter store.

    Counters are not shared between worker processes, so the effective
    quota scales with the number of instances.
    """

    def __init__(self) -> None:
        self._counters: dict[str, WindowCounter] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, quota: int, window_seconds: float, now: float) -> WindowCounter:
        with self._lock:
            self._prune(now)
            counter = self._counters.get(key)
            if counter is None:
                window_start = (now // window_seconds) * window_seconds
                counter = WindowCounter(count=1, reset_at=window_start + window_seconds)
                self._counters[key] = counter
                return WindowCounter(counter.count, counter.reset_at)

            if counter.count >= quota:
                return WindowCounter(quota + 1, counter.reset_at)

            counter.count += 1
            return WindowCounter(counter.count, counter.reset_at)

    def reset(self, key_prefix: str | None = None) -> None:
        with self._lock:
            if key_prefix is None:
                self._counters.clear()
                return
            for key in [k for k in self._counters if k.startswith(key_prefix)]:
                del self._counters[key]

    def _prune(self, now: float) -> None:
        expired = [k for k, c in self._counters.items() if c.reset_at <= now]
        for key in expired:
            del self._counters[key]

    def __len__(self) -> int:
        return len(self._counters)


class RateLimiter:
    """Service for admitting requests per service identity."""

    def __init__(
        self,
        store: CounterStore | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter.

        Args:
            store: Counter storage (defaults to in-memory)
            window_seconds: Window length (defaults to settings)
            clock: Time source returning epoch seconds
        """
        self.store = store or InMemoryCounterStore()
        self.window_seconds = window_seconds or get_settings().rate_limit_window_seconds
        self._clock = clock

    def _key(self, service_id: str, now: float) -> str:
        return f"{service_id}:{int(now // self.window_seconds)}"

    def check(self, service_id: str, quota: int) -> RateLimitResult:
        """Record a request and report whether it is allowed.

        Args:
            service_id: Calling service identity
            quota: Requests allowed per window

        Returns:
            Rate limit result
        """
        now = self._clock()
        counter = self.store.hit(
            self._key(service_id, now), quota, self.window_seconds, now
        )
        allowed = counter.count <= quota
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, quota - counter.count),
            reset_at=counter.reset_at,
            retry_after=None if allowed else max(0.0, counter.reset_at - now),
            limit=quota,
        )

    def admit(self, service_id: str, quota: int) -> bool:
        """Quick check if request is allowed.

        Args:
            service_id: Calling service identity
            quota: Requests allowed per window

        Returns:
            True if allowed
        """
        return self.check(service_id, quota).allowed

    def reset(self, service_id: str | None = None) -> None:
        """Reset counters for one service or all services."""
        self.store.reset(None if service_id is None else f"{service_id}:")

    def get_stats(self) -> dict[str, Any]:
        """Get rate limiter statistics.

        Returns:
            Statistics dict
        """
        tracked = len(self.store) if hasattr(self.store, "__len__") else None
        return {
            "window_seconds": self.window_seconds,
            "store": type(self.store).__name__,
            "tracked_keys": tracked,
        }


# Singleton instance
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter instance.

    Returns:
        The rate limiter
    """
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the singleton (tests)."""
    global _rate_limiter
    _rate_limiter = None

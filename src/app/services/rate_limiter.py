"""Rate Limiter Interface

Sliding-window request limiting per caller key.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Allow max_requests per window_seconds"""
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    """
    Outcome of a rate limit check

    Attributes:
        allowed: Whether the request may proceed
        remaining: Requests left in the current window
        reset_at: Epoch seconds at which a slot frees up
        retry_after_seconds: Set only when rejected
    """
    allowed: bool
    remaining: int
    reset_at: float
    retry_after_seconds: Optional[int] = None


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "standard": RateLimitConfig(max_requests=60, window_seconds=60),
    "webhook": RateLimitConfig(max_requests=100, window_seconds=60),
    "sync": RateLimitConfig(max_requests=10, window_seconds=60),
    "auth": RateLimitConfig(max_requests=10, window_seconds=60),
}


class RateLimiter(ABC):
    """
    Rate limiter contract

    Implementations:
    - RedisRateLimiter: shared across instances
    - InMemoryRateLimiter: single-process fallback
    """

    @abstractmethod
    async def check_rate_limit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Record a request for key and decide whether it is allowed

        Args:
            key: Caller key (e.g. "billing:203.0.113.7")
            config: Window size and request budget

        Returns:
            RateLimitResult
        """
        pass

    async def close(self) -> None:
        """Release backend resources"""
        return None

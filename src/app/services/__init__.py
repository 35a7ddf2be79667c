from .unit_of_work import UnitOfWork
from .billing_provider import (
    BillingProviderAdapter,
    BillingProviderError,
    ProviderNotConnected,
    ProviderRejected,
    ProviderTransient,
    ProviderProtocolError,
    ProviderLockViolation,
)
from .rate_limiter import RateLimiter, RateLimitConfig, RateLimitResult, RATE_LIMITS

__all__ = [
    "UnitOfWork",
    "BillingProviderAdapter",
    "BillingProviderError",
    "ProviderNotConnected",
    "ProviderRejected",
    "ProviderTransient",
    "ProviderProtocolError",
    "ProviderLockViolation",
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "RATE_LIMITS",
]

from .unit_of_work import SqlAlchemyUnitOfWork
from .stripe_billing import StripeBillingAdapter
from .shopify_billing import ShopifyBillingAdapter
from .provider_factory import create_billing_adapters
from .rate_limiter import RedisRateLimiter, InMemoryRateLimiter, create_rate_limiter

__all__ = [
    "SqlAlchemyUnitOfWork",
    "StripeBillingAdapter",
    "ShopifyBillingAdapter",
    "create_billing_adapters",
    "RedisRateLimiter",
    "InMemoryRateLimiter",
    "create_rate_limiter",
]

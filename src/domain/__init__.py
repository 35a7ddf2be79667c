from .base import BaseModel
from .plans import PlanTier, BillingPeriod, PlanLimits, Plan, PLANS, PERIOD_DAYS, get_plan
from .subscription import Subscription, SubscriptionStatus, BillingProvider
from .organization import Organization
from .marketplace_connection import MarketplaceConnection
from .invoice import Invoice

__all__ = [
    "BaseModel",
    "PlanTier",
    "BillingPeriod",
    "PlanLimits",
    "Plan",
    "PLANS",
    "PERIOD_DAYS",
    "get_plan",
    "Subscription",
    "SubscriptionStatus",
    "BillingProvider",
    "Organization",
    "MarketplaceConnection",
    "Invoice",
]

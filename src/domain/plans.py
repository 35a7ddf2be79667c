"""Plan Catalogue

Fixed tiered pricing in USD and the entitlement limits each tier grants.
A limit of -1 means unlimited.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict


class PlanTier(str, Enum):
    """Subscription tiers"""
    FREE = "FREE"
    STARTER = "STARTER"
    ELITE = "ELITE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class BillingPeriod(str, Enum):
    """Billing cadence"""
    MONTHLY = "monthly"
    ANNUAL = "annual"


PERIOD_DAYS: Dict[BillingPeriod, int] = {
    BillingPeriod.MONTHLY: 30,
    BillingPeriod.ANNUAL: 365,
}

UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    """Entitlement limits materialized onto the organization record"""
    max_agents: int
    max_sub_admins: int
    max_customers: int
    max_campaigns: int
    max_emails_per_month: int
    max_sms_per_month: int
    max_voice_minutes_per_month: int


@dataclass(frozen=True)
class Plan:
    tier: PlanTier
    name: str
    monthly_price: Decimal
    annual_price: Decimal
    limits: PlanLimits

    @property
    def purchasable(self) -> bool:
        return self.tier != PlanTier.FREE

    def price_for(self, period: BillingPeriod) -> Decimal:
        return self.annual_price if period == BillingPeriod.ANNUAL else self.monthly_price

    def recurring_charge_amount(self, period: BillingPeriod) -> Decimal:
        """
        Amount billed per 30-day cycle

        Annual plans are charged monthly at a twelfth of the annual price and
        capped at the annual price.
        """
        if period == BillingPeriod.ANNUAL:
            return (self.annual_price / 12).quantize(Decimal("0.01"))
        return self.monthly_price


PLANS: Dict[PlanTier, Plan] = {
    PlanTier.FREE: Plan(
        tier=PlanTier.FREE,
        name="Free",
        monthly_price=Decimal("0"),
        annual_price=Decimal("0"),
        limits=PlanLimits(
            max_agents=1,
            max_sub_admins=0,
            max_customers=25,
            max_campaigns=2,
            max_emails_per_month=1500,
            max_sms_per_month=600,
            max_voice_minutes_per_month=0,
        ),
    ),
    PlanTier.STARTER: Plan(
        tier=PlanTier.STARTER,
        name="Starter",
        monthly_price=Decimal("49.99"),
        annual_price=Decimal("509.89"),
        limits=PlanLimits(
            max_agents=1,
            max_sub_admins=1,
            max_customers=500,
            max_campaigns=10,
            max_emails_per_month=5000,
            max_sms_per_month=1000,
            max_voice_minutes_per_month=100,
        ),
    ),
    PlanTier.ELITE: Plan(
        tier=PlanTier.ELITE,
        name="Elite",
        monthly_price=Decimal("79.99"),
        annual_price=Decimal("815.89"),
        limits=PlanLimits(
            max_agents=3,
            max_sub_admins=3,
            max_customers=2000,
            max_campaigns=25,
            max_emails_per_month=15000,
            max_sms_per_month=5000,
            max_voice_minutes_per_month=500,
        ),
    ),
    PlanTier.PRO: Plan(
        tier=PlanTier.PRO,
        name="Professional",
        monthly_price=Decimal("129.99"),
        annual_price=Decimal("1325.89"),
        limits=PlanLimits(
            max_agents=5,
            max_sub_admins=10,
            max_customers=10000,
            max_campaigns=100,
            max_emails_per_month=50000,
            max_sms_per_month=20000,
            max_voice_minutes_per_month=2000,
        ),
    ),
    PlanTier.ENTERPRISE: Plan(
        tier=PlanTier.ENTERPRISE,
        name="Enterprise",
        monthly_price=Decimal("499.99"),
        annual_price=Decimal("5099.89"),
        limits=PlanLimits(
            max_agents=UNLIMITED,
            max_sub_admins=UNLIMITED,
            max_customers=UNLIMITED,
            max_campaigns=UNLIMITED,
            max_emails_per_month=UNLIMITED,
            max_sms_per_month=UNLIMITED,
            max_voice_minutes_per_month=UNLIMITED,
        ),
    ),
}


def get_plan(tier: PlanTier) -> Plan:
    return PLANS[tier]

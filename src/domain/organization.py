"""Organization Domain Entity

Tenant record carrying the denormalized plan entitlements used by
authorization checks elsewhere in the application.
"""

from datetime import datetime
from typing import Optional
from sqlmodel import Field, Column
from sqlalchemy import String
from src.domain.base import BaseModel
from src.domain.plans import PlanLimits, PlanTier, PLANS
from src.domain.subscription import SubscriptionStatus

FREE_LIMITS = PLANS[PlanTier.FREE].limits


class Organization(BaseModel, table=True):
    """
    Organization - Billable tenant with materialized entitlements

    Domain Rules:
    - Entitlement columns mirror the limits of subscription_tier
    - Updated only in lock-step with Subscription plan/status changes
    - A cancelled subscription leaves the organization on the FREE tier
    """

    __tablename__ = "organizations"

    id: str = Field(
        sa_column=Column(String(255), primary_key=True),
        description="Tenant ID"
    )

    name: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="Display name"
    )

    subscription_tier: PlanTier = Field(default=PlanTier.FREE)
    subscription_status: Optional[SubscriptionStatus] = Field(default=None)
    subscription_start_date: Optional[datetime] = Field(default=None)

    max_agents: int = Field(default=FREE_LIMITS.max_agents)
    max_sub_admins: int = Field(default=FREE_LIMITS.max_sub_admins)
    max_customers: int = Field(default=FREE_LIMITS.max_customers)
    max_campaigns: int = Field(default=FREE_LIMITS.max_campaigns)
    max_emails_per_month: int = Field(default=FREE_LIMITS.max_emails_per_month)
    max_sms_per_month: int = Field(default=FREE_LIMITS.max_sms_per_month)
    max_voice_minutes_per_month: int = Field(default=FREE_LIMITS.max_voice_minutes_per_month)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def apply_limits(self, limits: PlanLimits) -> None:
        self.max_agents = limits.max_agents
        self.max_sub_admins = limits.max_sub_admins
        self.max_customers = limits.max_customers
        self.max_campaigns = limits.max_campaigns
        self.max_emails_per_month = limits.max_emails_per_month
        self.max_sms_per_month = limits.max_sms_per_month
        self.max_voice_minutes_per_month = limits.max_voice_minutes_per_month

    def limits(self) -> PlanLimits:
        return PlanLimits(
            max_agents=self.max_agents,
            max_sub_admins=self.max_sub_admins,
            max_customers=self.max_customers,
            max_campaigns=self.max_campaigns,
            max_emails_per_month=self.max_emails_per_month,
            max_sms_per_month=self.max_sms_per_month,
            max_voice_minutes_per_month=self.max_voice_minutes_per_month,
        )

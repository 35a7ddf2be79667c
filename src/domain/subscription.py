"""Subscription Domain Entity

Canonical subscription state of a tenant, independent of which billing
authority approved the charge.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import Field, Column, Index
from sqlalchemy import BigInteger, Integer, String
from src.domain.base import BaseModel
from src.domain.plans import BillingPeriod, PlanTier


class SubscriptionStatus(str, Enum):
    """Canonical subscription status"""
    PENDING_APPROVAL = "PENDING_APPROVAL"  # Charge created, awaiting merchant approval
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class BillingProvider(str, Enum):
    """External billing authority"""
    DIRECT = "DIRECT"            # Card-payment processor
    MARKETPLACE = "MARKETPLACE"  # Marketplace recurring billing


class Subscription(BaseModel, table=True):
    """
    Subscription - Canonical billing state of one tenant

    Domain Rules:
    - Exactly one subscription per tenant (tenant_id is unique)
    - Mutated only by the reconciler, never hard-deleted
    - billing_provider is write-once to MARKETPLACE (never reverts to DIRECT)
    - version increments on every write (conditional updates)
    - last_event_at holds the provider timestamp of the last applied event
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index('ix_subscriptions_status', 'status'),
        Index('ix_subscriptions_provider_charge_id', 'provider_charge_id'),
    )

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        description="Unique subscription identifier (auto-increment)"
    )

    tenant_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True, index=True),
        description="Tenant ID (unique - one subscription per tenant)"
    )

    user_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="User who started the subscription"
    )

    plan: PlanTier = Field(
        description="Subscribed plan tier"
    )

    billing_period: BillingPeriod = Field(
        default=BillingPeriod.MONTHLY,
        description="Billing cadence (monthly, annual)"
    )

    status: SubscriptionStatus = Field(
        description="Canonical status"
    )

    billing_provider: BillingProvider = Field(
        description="Authoritative billing provider (DIRECT, MARKETPLACE)"
    )

    provider_charge_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="Provider subscription / recurring charge identifier"
    )

    provider_account_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="Provider account (card processor customer ID or shop domain)"
    )

    current_period_start: Optional[datetime] = Field(default=None)
    current_period_end: Optional[datetime] = Field(default=None)
    trial_start: Optional[datetime] = Field(default=None)
    trial_end: Optional[datetime] = Field(default=None)

    cancel_at_period_end: bool = Field(
        default=False,
        description="Cancellation deferred to the end of the current period"
    )

    cancelled_at: Optional[datetime] = Field(default=None)

    email_credits: int = Field(default=0, description="Remaining email credits")
    sms_credits: int = Field(default=0, description="Remaining SMS credits")

    last_event_at: Optional[datetime] = Field(
        default=None,
        description="Provider timestamp of the last applied status change"
    )

    version: int = Field(
        default=1,
        description="Optimistic concurrency counter"
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Subscription creation timestamp"
    )

    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last update timestamp"
    )

    @property
    def is_live(self) -> bool:
        """Paid access is currently granted (or in grace)"""
        return self.status in (
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED

    class Config:
        """SQLModel configuration"""
        json_schema_extra = {
            "example": {
                "id": 1,
                "tenant_id": "org_xyz789",
                "plan": "ELITE",
                "billing_period": "monthly",
                "status": "TRIALING",
                "billing_provider": "DIRECT",
                "provider_charge_id": "sub_1Nabc",
                "provider_account_id": "cus_9xyz",
                "current_period_start": "2024-01-01T00:00:00Z",
                "current_period_end": "2024-01-31T00:00:00Z",
                "cancel_at_period_end": False,
                "version": 3,
            }
        }

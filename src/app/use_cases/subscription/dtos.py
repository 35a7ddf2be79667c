"""Data Transfer Objects for Subscription Use Cases

Pydantic models for command inputs and response outputs.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus


class CreateChargeCommandDTO(BaseModel):
    """
    Command DTO for starting a subscription

    Used as input to CreateCharge use case.
    """

    tenant_id: str = Field(..., description="Tenant identifier")
    user_id: Optional[str] = Field(default=None, description="User starting the subscription")
    email: Optional[str] = Field(default=None, description="Billing email for new processor customers")
    plan: PlanTier = Field(..., description="Requested tier")
    period: BillingPeriod = Field(default=BillingPeriod.MONTHLY, description="Billing cadence")
    provider: Optional[BillingProvider] = Field(
        default=None,
        description="Requested provider; marketplace-installed tenants are always MARKETPLACE"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "org_xyz789",
                "user_id": "user_123",
                "plan": "ELITE",
                "period": "monthly",
            }
        }


class ChargeResponseDTO(BaseModel):
    """
    Confirmation action for a pending charge

    DIRECT charges carry client_secret (inline confirmation), MARKETPLACE
    charges carry confirmation_url (redirect approval).
    """

    provider: BillingProvider
    provider_charge_id: str
    confirmation_url: Optional[str] = None
    client_secret: Optional[str] = None


class ActivateChargeCommandDTO(BaseModel):
    """Command DTO for activating an approved charge"""

    tenant_id: str = Field(..., description="Tenant identifier")
    charge_id: str = Field(..., min_length=1, description="Provider charge identifier")


class CancelCommandDTO(BaseModel):
    """Command DTO for cancelling a subscription"""

    tenant_id: str = Field(..., description="Tenant identifier")
    immediate: bool = Field(
        default=False,
        description="Cancel now instead of at the end of the current period"
    )


class SubscriptionResponseDTO(BaseModel):
    """Canonical subscription state"""

    tenant_id: str
    plan: PlanTier
    billing_period: BillingPeriod
    status: SubscriptionStatus
    billing_provider: BillingProvider
    provider_charge_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None
    email_credits: int = 0
    sms_credits: int = 0
    version: int
    updated_at: datetime

    @classmethod
    def from_entity(cls, subscription: Subscription) -> "SubscriptionResponseDTO":
        return cls(
            tenant_id=subscription.tenant_id,
            plan=subscription.plan,
            billing_period=subscription.billing_period,
            status=subscription.status,
            billing_provider=subscription.billing_provider,
            provider_charge_id=subscription.provider_charge_id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            trial_end=subscription.trial_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            cancelled_at=subscription.cancelled_at,
            email_credits=subscription.email_credits,
            sms_credits=subscription.sms_credits,
            version=subscription.version,
            updated_at=subscription.updated_at,
        )


class WebhookCommandDTO(BaseModel):
    """
    Raw provider notification

    raw_body is kept byte-exact for signature verification.
    """

    raw_body: bytes
    headers: Dict[str, str]
    payload: Dict[str, Any]


class WebhookResultDTO(BaseModel):
    """
    Outcome of a webhook delivery

    outcome is one of: applied, unverified, malformed, unhandled,
    duplicate, stale, foreign_charge, not_found, no_change, or the lower
    case error code (concurrent_update, internal_error) when applying failed.
    """

    received: bool = True
    applied: bool
    outcome: str
    event_type: Optional[str] = None


class SyncResultDTO(BaseModel):
    """Result of re-polling one subscription"""

    synced: bool = Field(..., description="False when the subscription was skipped")
    changed: bool
    subscription: SubscriptionResponseDTO


class BillingProviderInfoDTO(BaseModel):
    """Which provider bills the tenant, and why"""

    provider: BillingProvider
    is_marketplace_merchant: bool
    shop_domain: Optional[str] = None
    has_active_subscription: bool
    current_plan: Optional[PlanTier] = None
    current_status: Optional[SubscriptionStatus] = None
    billing_provider: Optional[BillingProvider] = None


class SyncRunResultDTO(BaseModel):
    """Summary of one periodic sync pass"""

    total_subscriptions: int
    synced: int
    changed: int
    skipped: int
    failed: int
    execution_time_ms: int

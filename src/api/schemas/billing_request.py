"""Request schemas for Billing API

Pydantic models for validating incoming HTTP requests. The tenant is taken
from the session headers, never from the body.
"""

from typing import Optional
from pydantic import BaseModel, Field
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.subscription import BillingProvider


class SubscribeRequestSchema(BaseModel):
    """
    Request schema for starting a subscription

    Used for POST /billing/subscribe endpoint.
    """

    plan: PlanTier = Field(
        ...,
        description="Plan tier to purchase (FREE is rejected)"
    )

    period: BillingPeriod = Field(
        default=BillingPeriod.MONTHLY,
        description="Billing cadence (monthly, annual)"
    )

    provider: Optional[BillingProvider] = Field(
        default=None,
        description="Preferred provider; marketplace-installed tenants always use MARKETPLACE"
    )

    email: Optional[str] = Field(
        default=None,
        max_length=320,
        description="Billing email for new card-processor customers"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "plan": "ELITE",
                "period": "monthly",
            }
        }


class ConfirmRequestSchema(BaseModel):
    """
    Request schema for confirming an inline (DIRECT) charge

    Used for POST /billing/confirm endpoint.
    """

    charge_id: str = Field(
        ...,
        min_length=1,
        description="Provider charge identifier returned by /billing/subscribe"
    )

    class Config:
        json_schema_extra = {"example": {"charge_id": "sub_1Nabc"}}


class CancelRequestSchema(BaseModel):
    """Used for POST /billing/cancel endpoint."""

    immediate: bool = Field(
        default=False,
        description="Cancel now instead of at the end of the current period"
    )

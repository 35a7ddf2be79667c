"""Billing Provider Adapter Interface

Defines the contract every external billing authority adapter implements,
the value objects crossing that boundary, and the provider error taxonomy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.provider_event import ProviderEvent
from src.domain.subscription import BillingProvider


class BillingProviderError(Exception):
    """Base class for provider failures"""

    code = "PROVIDER_ERROR"
    retryable = False

    def __init__(self, message: str, provider: Optional[BillingProvider] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class ProviderNotConnected(BillingProviderError):
    """Tenant never linked the billing authority (user-actionable)"""
    code = "PROVIDER_NOT_CONNECTED"


class ProviderRejected(BillingProviderError):
    """Merchant declined or the charge expired (terminal, never retried)"""
    code = "CHARGE_REJECTED"


class ProviderTransient(BillingProviderError):
    """Timeout, 5xx or 429 (retried locally)"""
    code = "PROVIDER_UNAVAILABLE"
    retryable = True

    def __init__(
        self,
        message: str,
        provider: Optional[BillingProvider] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code


class ProviderProtocolError(BillingProviderError):
    """Malformed or unexpected provider response (fatal)"""
    code = "PROVIDER_ERROR"


class ProviderLockViolation(BillingProviderError):
    """Operation through an adapter the tenant is not allowed to use"""
    code = "PROVIDER_LOCK_VIOLATION"


@dataclass(frozen=True)
class ProviderAccount:
    """
    Provider-side account a charge lives under

    account_id is the card processor customer ID or the marketplace shop
    domain; access_token is only used by the marketplace.
    """
    provider: BillingProvider
    account_id: Optional[str] = None
    access_token: Optional[str] = None


@dataclass(frozen=True)
class BillingTenant:
    """Tenant context handed to create_charge"""
    tenant_id: str
    user_id: Optional[str]
    account: ProviderAccount
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ChargeCreation:
    """
    Pending charge returned by create_charge

    Exactly one of confirmation_url (redirect approval) or client_secret
    (inline confirmation) is expected.
    """
    provider_charge_id: str
    provider_account_id: Optional[str] = None
    confirmation_url: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class ProviderChargeStatus:
    """Charge state as reported by the provider"""
    provider_charge_id: str
    native_status: str
    trial_days: int = 0
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    observed_at: datetime = field(default_factory=datetime.utcnow)


class BillingProviderAdapter(ABC):
    """
    Stateless translator between canonical billing requests and one
    provider's wire API

    Every network call goes through libs.retry.with_retry.
    """

    provider: BillingProvider
    supports_deferred_cancel: bool = False

    @abstractmethod
    async def create_charge(
        self, tenant: BillingTenant, plan: PlanTier, period: BillingPeriod
    ) -> ChargeCreation:
        """Create a pending charge awaiting merchant approval"""
        pass

    @abstractmethod
    async def activate(
        self, account: ProviderAccount, provider_charge_id: str
    ) -> ProviderChargeStatus:
        """
        Activate an approved charge

        Raises:
            ProviderRejected: charge declined or expired
        """
        pass

    @abstractmethod
    async def cancel(
        self, account: ProviderAccount, provider_charge_id: str, at_period_end: bool = False
    ) -> None:
        """Cancel a charge, now or at the end of the current period"""
        pass

    @abstractmethod
    async def get_status(
        self, account: ProviderAccount, provider_charge_id: str
    ) -> ProviderChargeStatus:
        """Fetch the current charge status"""
        pass

    @abstractmethod
    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        """Verify a webhook signature. Never raises."""
        pass

    @abstractmethod
    def parse_event(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> ProviderEvent:
        """
        Translate a verified webhook payload into a ProviderEvent variant

        Raises:
            ProviderProtocolError: payload lacks the fields its type requires
        """
        pass

"""Provider Events

Explicit variants for webhook payloads and status polls, plus the fixed
tables mapping each provider's native status vocabulary onto the canonical
SubscriptionStatus.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple, Type
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.subscription import BillingProvider, SubscriptionStatus

logger = logging.getLogger(__name__)

S = SubscriptionStatus

# Native status -> canonical status. None means "no status change".
NATIVE_STATUS_MAP: Dict[BillingProvider, Dict[str, Optional[SubscriptionStatus]]] = {
    BillingProvider.MARKETPLACE: {
        "ACTIVE": S.ACTIVE,
        "FROZEN": S.PAST_DUE,
        "CANCELLED": S.CANCELLED,
        "DECLINED": S.CANCELLED,
        "EXPIRED": S.CANCELLED,
        "PENDING": None,
        "ACCEPTED": None,
    },
    BillingProvider.DIRECT: {
        "trialing": S.TRIALING,
        "active": S.ACTIVE,
        "past_due": S.PAST_DUE,
        "unpaid": S.PAST_DUE,
        "paused": S.PAST_DUE,
        "canceled": S.CANCELLED,
        "incomplete_expired": S.CANCELLED,
        "incomplete": None,
    },
}


def normalize_native_status(provider: BillingProvider, native_status: str) -> str:
    # Marketplace GraphQL payloads are upper case, its REST API lower case
    if provider == BillingProvider.MARKETPLACE:
        return native_status.upper()
    return native_status.lower()


def map_native_status(
    provider: BillingProvider, native_status: Optional[str]
) -> Optional[SubscriptionStatus]:
    """Map a provider status to the canonical enum; unknown values map to None"""
    if not native_status:
        return None
    table = NATIVE_STATUS_MAP[provider]
    key = normalize_native_status(provider, native_status)
    if key not in table:
        logger.warning(f"Unmapped {provider.value} status '{native_status}', ignoring")
        return None
    return table[key]


@dataclass(frozen=True)
class ProviderEvent:
    """
    Base of every parsed provider notification

    provider_charge_id identifies the subscription/charge the event concerns;
    provider_object_id identifies the object carried by the event (which is
    the charge itself for status events, an invoice for invoice events).
    """

    provider: BillingProvider
    event_type: str
    provider_object_id: str
    provider_charge_id: Optional[str]
    provider_timestamp: Optional[datetime] = None
    account_id: Optional[str] = None

    @property
    def idempotency_key(self) -> Tuple[str, str, str, Optional[str]]:
        timestamp = self.provider_timestamp.isoformat() if self.provider_timestamp else None
        return (self.provider.value, self.event_type, self.provider_object_id, timestamp)


@dataclass(frozen=True)
class SubscriptionStatusEvent(ProviderEvent):
    """
    Provider reports the current status of a charge

    plan and billing_period are set when the provider reports which plan the
    charge is billed for; a change means the plan was switched provider-side.
    """
    native_status: str = ""
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    trial_end: Optional[datetime] = None
    plan: Optional[PlanTier] = None
    billing_period: Optional[BillingPeriod] = None


@dataclass(frozen=True)
class SubscriptionDeletedEvent(ProviderEvent):
    """Provider ended the subscription"""


@dataclass(frozen=True)
class InvoicePaidEvent(ProviderEvent):
    """A billing period was paid"""
    amount: Decimal = Decimal("0")
    currency: str = "usd"
    invoice_status: str = "paid"
    hosted_invoice_url: Optional[str] = None
    pdf_url: Optional[str] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentFailedEvent(ProviderEvent):
    """A renewal payment failed"""


@dataclass(frozen=True)
class UnhandledEvent(ProviderEvent):
    """Event type this service does not act on"""


def _status_event(event: SubscriptionStatusEvent) -> Optional[SubscriptionStatus]:
    return map_native_status(event.provider, event.native_status)


def _deleted_event(event: SubscriptionDeletedEvent) -> Optional[SubscriptionStatus]:
    return S.CANCELLED


def _payment_failed_event(event: PaymentFailedEvent) -> Optional[SubscriptionStatus]:
    return S.PAST_DUE


def _no_status(event: ProviderEvent) -> Optional[SubscriptionStatus]:
    return None


def _unhandled_event(event: UnhandledEvent) -> Optional[SubscriptionStatus]:
    logger.info(
        f"Unhandled {event.provider.value} event '{event.event_type}' "
        f"(object {event.provider_object_id})"
    )
    return None


CANONICAL_STATUS_DISPATCH: Dict[Type[ProviderEvent], Callable[..., Optional[SubscriptionStatus]]] = {
    SubscriptionStatusEvent: _status_event,
    SubscriptionDeletedEvent: _deleted_event,
    PaymentFailedEvent: _payment_failed_event,
    InvoicePaidEvent: _no_status,
    UnhandledEvent: _unhandled_event,
}


def canonical_status_for(event: ProviderEvent) -> Optional[SubscriptionStatus]:
    """Canonical status implied by an event, or None when it implies none"""
    handler = CANONICAL_STATUS_DISPATCH.get(type(event))
    if handler is None:
        raise TypeError(f"No status mapping for event type {type(event).__name__}")
    return handler(event)

"""Subscription reconciliation use cases"""
from .create_charge import CreateCharge
from .activate_charge import ActivateCharge
from .apply_webhook_event import ApplyWebhookEvent
from .cancel_subscription import CancelSubscription
from .sync_subscription import SyncSubscription
from .get_subscription import GetSubscription
from .get_billing_provider import GetBillingProvider
from .provider_router import BillingProviderRouter
from .reconciler import SubscriptionReconciler
from .dtos import (
    CreateChargeCommandDTO,
    ChargeResponseDTO,
    ActivateChargeCommandDTO,
    CancelCommandDTO,
    SubscriptionResponseDTO,
    WebhookCommandDTO,
    WebhookResultDTO,
    SyncResultDTO,
    SyncRunResultDTO,
    BillingProviderInfoDTO,
)

__all__ = [
    "CreateCharge",
    "ActivateCharge",
    "ApplyWebhookEvent",
    "CancelSubscription",
    "SyncSubscription",
    "GetSubscription",
    "GetBillingProvider",
    "BillingProviderRouter",
    "SubscriptionReconciler",
    "CreateChargeCommandDTO",
    "ChargeResponseDTO",
    "ActivateChargeCommandDTO",
    "CancelCommandDTO",
    "SubscriptionResponseDTO",
    "WebhookCommandDTO",
    "WebhookResultDTO",
    "SyncResultDTO",
    "SyncRunResultDTO",
    "BillingProviderInfoDTO",
]

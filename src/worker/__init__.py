"""Background workers for billing service"""
from .subscription_sync import SubscriptionSyncWorker

__all__ = ["SubscriptionSyncWorker"]

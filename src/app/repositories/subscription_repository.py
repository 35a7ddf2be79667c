"""Subscription Repository Interface

Defines the contract for subscription persistence operations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from src.domain.subscription import BillingProvider, Subscription


class SubscriptionRepository(ABC):
    """
    Repository interface for Subscription persistence

    Reads always return the latest committed row; writes to an existing
    subscription go through save_if_version only.
    """

    @abstractmethod
    async def get_by_tenant_id(self, tenant_id: str) -> Optional[Subscription]:
        """
        Retrieve the subscription of a tenant

        Args:
            tenant_id: Tenant identifier

        Returns:
            Subscription if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_by_provider_charge_id(
        self, provider: BillingProvider, provider_charge_id: str
    ) -> Optional[Subscription]:
        """
        Retrieve the subscription currently bound to a provider charge

        Args:
            provider: Billing provider that owns the charge
            provider_charge_id: Provider subscription / charge identifier

        Returns:
            Subscription if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_syncable(self, limit: Optional[int] = None) -> List[Subscription]:
        """
        List subscriptions the periodic sync should poll

        Returns:
            Subscriptions in TRIALING, ACTIVE or PAST_DUE with a provider charge
        """
        pass

    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription:
        """
        Create a new subscription

        Args:
            subscription: Subscription entity to persist

        Returns:
            Created Subscription with generated ID
        """
        pass

    @abstractmethod
    async def save_if_version(
        self, subscription_id: int, expected_version: int, changes: Dict[str, Any]
    ) -> bool:
        """
        Conditionally update a subscription

        Applies changes and bumps version only if the stored version still
        equals expected_version.

        Returns:
            True if the row was updated, False if another writer got there first
        """
        pass

"""Organization Repository Interface

Defines the contract for tenant entitlement persistence.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from src.domain.organization import Organization
from src.domain.plans import PlanLimits, PlanTier
from src.domain.subscription import SubscriptionStatus


class OrganizationRepository(ABC):
    """Repository interface for Organization persistence"""

    @abstractmethod
    async def get_by_id(self, tenant_id: str) -> Optional[Organization]:
        """
        Retrieve an organization by tenant ID

        Returns:
            Organization if found, None otherwise
        """
        pass

    @abstractmethod
    async def apply_entitlements(
        self,
        tenant_id: str,
        tier: PlanTier,
        status: SubscriptionStatus,
        limits: PlanLimits,
        start_date: Optional[datetime] = None,
    ) -> Organization:
        """
        Materialize plan tier, status and limits onto the organization

        Creates the organization record when the tenant has none yet.

        Args:
            tenant_id: Tenant identifier
            tier: Tier whose limits are granted
            status: Canonical subscription status to mirror
            limits: Entitlement limits of the tier
            start_date: Subscription start, set on activation only

        Returns:
            Updated Organization
        """
        pass

"""Marketplace Connection Repository Interface"""

from abc import ABC, abstractmethod
from typing import Optional
from src.domain.marketplace_connection import MarketplaceConnection


class MarketplaceConnectionRepository(ABC):
    """Read access to tenant marketplace store links"""

    @abstractmethod
    async def get_by_tenant_id(self, tenant_id: str) -> Optional[MarketplaceConnection]:
        pass

    @abstractmethod
    async def get_by_shop_domain(self, shop_domain: str) -> Optional[MarketplaceConnection]:
        pass

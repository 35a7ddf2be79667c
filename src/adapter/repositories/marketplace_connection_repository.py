"""SQLAlchemy Marketplace Connection Repository Implementation"""

from typing import Optional
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.marketplace_connection import MarketplaceConnection


class SqlAlchemyMarketplaceConnectionRepository(MarketplaceConnectionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_tenant_id(self, tenant_id: str) -> Optional[MarketplaceConnection]:
        statement = select(MarketplaceConnection).where(MarketplaceConnection.tenant_id == tenant_id)
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_shop_domain(self, shop_domain: str) -> Optional[MarketplaceConnection]:
        statement = (
            select(MarketplaceConnection)
            .where(MarketplaceConnection.shop_domain == shop_domain)
            .where(MarketplaceConnection.is_active == True)  # noqa: E712
        )
        result = await self.session.execute(statement)
        return result.scalars().first()

"""SQLAlchemy Organization Repository Implementation"""

from datetime import datetime
from typing import Optional
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from src.app.repositories.organization_repository import OrganizationRepository
from src.domain.organization import Organization
from src.domain.plans import PlanLimits, PlanTier
from src.domain.subscription import SubscriptionStatus


class SqlAlchemyOrganizationRepository(OrganizationRepository):
    """SQLAlchemy implementation of OrganizationRepository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, tenant_id: str) -> Optional[Organization]:
        statement = (
            select(Organization)
            .where(Organization.id == tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def apply_entitlements(
        self,
        tenant_id: str,
        tier: PlanTier,
        status: SubscriptionStatus,
        limits: PlanLimits,
        start_date: Optional[datetime] = None,
    ) -> Organization:
        organization = await self.get_by_id(tenant_id)
        if organization is None:
            organization = Organization(id=tenant_id)

        organization.subscription_tier = tier
        organization.subscription_status = status
        if start_date is not None:
            organization.subscription_start_date = start_date
        organization.apply_limits(limits)
        organization.updated_at = datetime.utcnow()

        self.session.add(organization)
        await self.session.flush()
        return organization

"""SQLAlchemy Subscription Repository Implementation

Implements subscription persistence using SQLAlchemy async session.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus

SYNCABLE_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)


class SqlAlchemySubscriptionRepository(SubscriptionRepository):
    """
    SQLAlchemy implementation of SubscriptionRepository

    Every read refreshes the identity map (populate_existing) so a retry
    after a lost conditional write sees the winner's row.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_tenant_id(self, tenant_id: str) -> Optional[Subscription]:
        statement = (
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_provider_charge_id(
        self, provider: BillingProvider, provider_charge_id: str
    ) -> Optional[Subscription]:
        statement = (
            select(Subscription)
            .where(Subscription.billing_provider == provider)
            .where(Subscription.provider_charge_id == provider_charge_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(statement)
        return result.scalars().first()

    async def list_syncable(self, limit: Optional[int] = None) -> List[Subscription]:
        statement = (
            select(Subscription)
            .where(Subscription.status.in_(SYNCABLE_STATUSES))
            .where(Subscription.provider_charge_id.is_not(None))
            .order_by(Subscription.updated_at)
        )
        if limit:
            statement = statement.limit(limit)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def create(self, subscription: Subscription) -> Subscription:
        """
        Create a new subscription

        Raises:
            IntegrityError: the tenant already has a subscription
        """
        self.session.add(subscription)
        await self.session.flush()
        await self.session.refresh(subscription)
        return subscription

    async def save_if_version(
        self, subscription_id: int, expected_version: int, changes: Dict[str, Any]
    ) -> bool:
        """
        UPDATE subscriptions SET ..., version = version + 1
        WHERE id = :id AND version = :expected
        """
        values = dict(changes)
        values["version"] = expected_version + 1
        values.setdefault("updated_at", datetime.utcnow())

        statement = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .where(Subscription.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return result.rowcount == 1

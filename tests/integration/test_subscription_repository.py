"""Integration tests for the SQLAlchemy repositories against SQLite"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from src.adapter.repositories.invoice_repository import SqlAlchemyInvoiceRepository
from src.adapter.repositories.marketplace_connection_repository import (
    SqlAlchemyMarketplaceConnectionRepository,
)
from src.adapter.repositories.organization_repository import SqlAlchemyOrganizationRepository
from src.adapter.repositories.subscription_repository import SqlAlchemySubscriptionRepository
from src.domain.invoice import Invoice
from src.domain.marketplace_connection import MarketplaceConnection
from src.domain.plans import PLANS, BillingPeriod, PlanTier
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus


def new_subscription(tenant_id="org_repo", status=SubscriptionStatus.ACTIVE, charge_id="sub_repo"):
    return Subscription(
        tenant_id=tenant_id,
        plan=PlanTier.ELITE,
        billing_period=BillingPeriod.MONTHLY,
        status=status,
        billing_provider=BillingProvider.DIRECT,
        provider_charge_id=charge_id,
    )


class TestSubscriptionRepository:

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, db_session):
        repo = SqlAlchemySubscriptionRepository(db_session)

        created = await repo.create(new_subscription())
        await db_session.commit()

        assert created.id is not None
        assert created.version == 1
        by_tenant = await repo.get_by_tenant_id("org_repo")
        by_charge = await repo.get_by_provider_charge_id(BillingProvider.DIRECT, "sub_repo")
        assert by_tenant.id == created.id
        assert by_charge.id == created.id
        assert await repo.get_by_provider_charge_id(BillingProvider.MARKETPLACE, "sub_repo") is None

    @pytest.mark.asyncio
    async def test_one_subscription_per_tenant(self, db_session):
        repo = SqlAlchemySubscriptionRepository(db_session)
        await repo.create(new_subscription())

        with pytest.raises(IntegrityError):
            await repo.create(new_subscription(charge_id="sub_other"))

    @pytest.mark.asyncio
    async def test_conditional_write(self, db_session):
        """
        Given: A subscription at version 1
        When: Two writers both read version 1 and write
        Then: The first write wins and bumps the version, the second is refused
        """
        # Arrange
        repo = SqlAlchemySubscriptionRepository(db_session)
        subscription = await repo.create(new_subscription())
        await db_session.commit()

        # Act
        first = await repo.save_if_version(subscription.id, 1, {"status": SubscriptionStatus.PAST_DUE})
        second = await repo.save_if_version(subscription.id, 1, {"status": SubscriptionStatus.CANCELLED})
        await db_session.commit()

        # Assert
        assert first is True
        assert second is False
        latest = await repo.get_by_tenant_id("org_repo")
        assert latest.status == SubscriptionStatus.PAST_DUE
        assert latest.version == 2

    @pytest.mark.asyncio
    async def test_list_syncable(self, db_session):
        repo = SqlAlchemySubscriptionRepository(db_session)
        await repo.create(new_subscription("org_active", SubscriptionStatus.ACTIVE, "sub_1"))
        await repo.create(new_subscription("org_trial", SubscriptionStatus.TRIALING, "sub_2"))
        await repo.create(new_subscription("org_pending", SubscriptionStatus.PENDING_APPROVAL, "sub_3"))
        await repo.create(new_subscription("org_cancelled", SubscriptionStatus.CANCELLED, "sub_4"))
        await repo.create(new_subscription("org_no_charge", SubscriptionStatus.ACTIVE, None))
        await db_session.commit()

        syncable = await repo.list_syncable()

        assert {s.tenant_id for s in syncable} == {"org_active", "org_trial"}
        assert len(await repo.list_syncable(limit=1)) == 1


class TestOrganizationRepository:

    @pytest.mark.asyncio
    async def test_apply_entitlements_creates_and_updates(self, db_session):
        repo = SqlAlchemyOrganizationRepository(db_session)
        started = datetime(2024, 1, 1)

        await repo.apply_entitlements(
            tenant_id="org_ent",
            tier=PlanTier.ELITE,
            status=SubscriptionStatus.TRIALING,
            limits=PLANS[PlanTier.ELITE].limits,
            start_date=started,
        )
        await repo.apply_entitlements(
            tenant_id="org_ent",
            tier=PlanTier.FREE,
            status=SubscriptionStatus.CANCELLED,
            limits=PLANS[PlanTier.FREE].limits,
        )
        await db_session.commit()

        organization = await repo.get_by_id("org_ent")
        assert organization.subscription_tier == PlanTier.FREE
        assert organization.subscription_status == SubscriptionStatus.CANCELLED
        assert organization.subscription_start_date == started
        assert organization.limits() == PLANS[PlanTier.FREE].limits


class TestMarketplaceConnectionRepository:

    @pytest.mark.asyncio
    async def test_lookup_by_tenant_and_shop(self, db_session):
        db_session.add(
            MarketplaceConnection(tenant_id="org_shop", shop_domain="acme.myshopify.com", access_token="shpat_1")
        )
        db_session.add(
            MarketplaceConnection(
                tenant_id="org_gone", shop_domain="gone.myshopify.com", access_token="shpat_2", is_active=False
            )
        )
        await db_session.commit()
        repo = SqlAlchemyMarketplaceConnectionRepository(db_session)

        connection = await repo.get_by_tenant_id("org_shop")

        assert connection.is_installed is True
        assert (await repo.get_by_shop_domain("acme.myshopify.com")).tenant_id == "org_shop"
        assert await repo.get_by_shop_domain("gone.myshopify.com") is None


class TestInvoiceRepository:

    @pytest.mark.asyncio
    async def test_create_and_find_by_provider_id(self, db_session):
        subscription = await SqlAlchemySubscriptionRepository(db_session).create(new_subscription())
        repo = SqlAlchemyInvoiceRepository(db_session)

        await repo.create(
            Invoice(
                tenant_id="org_repo",
                subscription_id=subscription.id,
                billing_provider=BillingProvider.DIRECT,
                provider_invoice_id="in_repo",
                amount=Decimal("79.99"),
                currency="usd",
                status="paid",
            )
        )
        await db_session.commit()

        found = await repo.get_by_provider_invoice_id("in_repo")
        assert found is not None
        assert found.amount == Decimal("79.99")
        assert await repo.get_by_provider_invoice_id("in_missing") is None

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from src.domain.plans import BillingPeriod, PlanTier
from src.app.use_cases.subscription.provider_router import BillingProviderRouter
from src.app.use_cases.subscription.reconciler import SubscriptionReconciler
from src.domain.marketplace_connection import MarketplaceConnection
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus


@pytest.fixture
def mock_uow():
    """Mock unit of work"""
    uow = MagicMock()
    uow.commit = AsyncMock()
    uow.rollback = AsyncMock()
    return uow


@pytest.fixture
def make_subscription():
    """Factory for Subscription entities with sensible defaults"""

    def _make(**overrides) -> Subscription:
        now = datetime.utcnow()
        fields = dict(
            id=1,
            tenant_id="org_123",
            user_id="user_123",
            plan=PlanTier.ELITE,
            billing_period=BillingPeriod.MONTHLY,
            status=SubscriptionStatus.ACTIVE,
            billing_provider=BillingProvider.DIRECT,
            provider_charge_id="sub_123",
            provider_account_id="cus_123",
            current_period_start=now - timedelta(days=5),
            current_period_end=now + timedelta(days=25),
            version=1,
            created_at=now,
            updated_at=now,
        )
        fields.update(overrides)
        return Subscription(**fields)

    return _make


@pytest.fixture
def subscription_repo():
    """
    MagicMock repository backed by a dict

    save_if_version honours the expected version so reconciler retries and
    conflicts behave as they do against the database.
    """
    store = {}
    repo = MagicMock()
    repo.store = store

    async def get_by_tenant_id(tenant_id):
        return store.get(tenant_id)

    async def get_by_provider_charge_id(provider, provider_charge_id):
        for subscription in store.values():
            if (
                subscription.billing_provider == provider
                and subscription.provider_charge_id == provider_charge_id
            ):
                return subscription
        return None

    async def create(subscription):
        if subscription.id is None:
            subscription.id = len(store) + 1
        store[subscription.tenant_id] = subscription
        return subscription

    async def save_if_version(subscription_id, expected_version, changes):
        for subscription in store.values():
            if subscription.id == subscription_id:
                if subscription.version != expected_version:
                    return False
                for key, value in changes.items():
                    setattr(subscription, key, value)
                subscription.version = expected_version + 1
                return True
        return False

    async def list_syncable(limit=None):
        live = [s for s in store.values() if s.is_live and s.provider_charge_id]
        return live[:limit] if limit else live

    repo.get_by_tenant_id = AsyncMock(side_effect=get_by_tenant_id)
    repo.get_by_provider_charge_id = AsyncMock(side_effect=get_by_provider_charge_id)
    repo.create = AsyncMock(side_effect=create)
    repo.save_if_version = AsyncMock(side_effect=save_if_version)
    repo.list_syncable = AsyncMock(side_effect=list_syncable)
    return repo


@pytest.fixture
def organization_repo():
    repo = MagicMock()
    repo.apply_entitlements = AsyncMock()
    repo.get_by_id = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def connection_repo():
    repo = MagicMock()
    repo.get_by_tenant_id = AsyncMock(return_value=None)
    repo.get_by_shop_domain = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def invoice_repo():
    repo = MagicMock()
    repo.get_by_provider_invoice_id = AsyncMock(return_value=None)
    repo.create = AsyncMock(side_effect=lambda invoice: invoice)
    return repo


@pytest.fixture
def reconciler(subscription_repo, organization_repo):
    return SubscriptionReconciler(subscription_repo, organization_repo, max_attempts=3)


def _mock_adapter(provider, supports_deferred_cancel):
    adapter = MagicMock()
    adapter.provider = provider
    adapter.supports_deferred_cancel = supports_deferred_cancel
    adapter.create_charge = AsyncMock()
    adapter.activate = AsyncMock()
    adapter.cancel = AsyncMock()
    adapter.get_status = AsyncMock()
    adapter.verify_webhook = MagicMock(return_value=True)
    adapter.parse_event = MagicMock()
    return adapter


@pytest.fixture
def direct_adapter():
    return _mock_adapter(BillingProvider.DIRECT, supports_deferred_cancel=True)


@pytest.fixture
def marketplace_adapter():
    return _mock_adapter(BillingProvider.MARKETPLACE, supports_deferred_cancel=False)


@pytest.fixture
def billing_router(direct_adapter, marketplace_adapter):
    return BillingProviderRouter(
        {
            BillingProvider.DIRECT: direct_adapter,
            BillingProvider.MARKETPLACE: marketplace_adapter,
        }
    )


@pytest.fixture
def installed_connection():
    return MarketplaceConnection(
        id=1,
        tenant_id="org_123",
        shop_domain="acme.myshopify.com",
        access_token="shpat_1",
        is_active=True,
    )

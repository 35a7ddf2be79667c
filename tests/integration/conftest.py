import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config import ApplicationConfig
from src.depends import get_session
from src.adapter.services.provider_factory import close_billing_adapters
from src.adapter.services.shopify_billing import ShopifyBillingAdapter
from src.adapter.services.stripe_billing import StripeBillingAdapter
from src.app.use_cases.subscription.provider_router import BillingProviderRouter
from src.domain.invoice import Invoice  # noqa: F401
from src.domain.marketplace_connection import MarketplaceConnection  # noqa: F401
from src.domain.organization import Organization  # noqa: F401
from src.domain.subscription import BillingProvider, Subscription  # noqa: F401


class IntegrationConfig(ApplicationConfig):
    API_PREFIX = ""
    APP_URL = "https://app.example.com"
    ENABLE_SENTRY = 0
    STRIPE_SECRET_KEY = ""
    STRIPE_WEBHOOK_SECRET = "whsec_integration"
    SHOPIFY_API_SECRET = "shpss_integration"
    RATE_LIMIT_REDIS_URL = ""
    TRIAL_DAYS = 30
    RECONCILE_MAX_ATTEMPTS = 3


@pytest_asyncio.fixture(scope="function")
async def engine():
    """In-memory SQLite database shared by every connection of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine):
    """Create a new database session for each test"""
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with Session() as session:
        yield session


def _fake_adapter(real):
    """
    Adapter whose network operations are mocks while webhook verification
    and parsing run the real provider code
    """
    adapter = MagicMock()
    adapter.provider = real.provider
    adapter.supports_deferred_cancel = real.supports_deferred_cancel
    adapter.create_charge = AsyncMock()
    adapter.activate = AsyncMock()
    adapter.cancel = AsyncMock()
    adapter.get_status = AsyncMock()
    adapter.close = AsyncMock()
    adapter.verify_webhook = real.verify_webhook
    adapter.parse_event = real.parse_event
    return adapter


@pytest.fixture
def direct_adapter():
    return _fake_adapter(StripeBillingAdapter(api_key=None, price_ids={}))


@pytest_asyncio.fixture
async def marketplace_adapter():
    real = ShopifyBillingAdapter(app_url=IntegrationConfig.APP_URL)
    yield _fake_adapter(real)
    await real.close()


@pytest_asyncio.fixture
async def app(db_session, direct_adapter, marketplace_adapter):
    """Application wired to the test session and fake provider adapters"""
    from src.api.app import create_app

    app = create_app(IntegrationConfig)
    await close_billing_adapters(app.state.billing_router.adapters)
    app.state.billing_router = BillingProviderRouter(
        {
            BillingProvider.DIRECT: direct_adapter,
            BillingProvider.MARKETPLACE: marketplace_adapter,
        }
    )

    # Override the session dependency to use test session
    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    return app


@pytest_asyncio.fixture
async def client(app):
    """Create test client; requests carry no tenant headers by default"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def tenant_headers():
    return {"X-Tenant-ID": "org_e2e", "X-User-ID": "user_e2e"}

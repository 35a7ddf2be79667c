"""Unit tests for ShopifyBillingAdapter (MARKETPLACE)

HTTP traffic goes through httpx.MockTransport.
"""

import json
import pytest
import httpx
from datetime import datetime
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

from libs.retry import RetryConfig
from src.adapter.services.shopify_billing import ShopifyBillingAdapter, charge_id_from_gid
from src.app.services.billing_provider import (
    BillingTenant,
    ProviderAccount,
    ProviderNotConnected,
    ProviderProtocolError,
    ProviderRejected,
    ProviderTransient,
)
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.provider_event import SubscriptionStatusEvent, UnhandledEvent
from src.domain.subscription import BillingProvider

SHOP = "acme.myshopify.com"
ACCOUNT = ProviderAccount(provider=BillingProvider.MARKETPLACE, account_id=SHOP, access_token="shpat_1")


class Recorder:
    """Routes requests to canned responses and records them"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_adapter(recorder, **kwargs) -> ShopifyBillingAdapter:
    return ShopifyBillingAdapter(
        app_url="https://app.example.com/",
        trial_days=30,
        transport=httpx.MockTransport(recorder),
        retry_config=RetryConfig(max_retries=2, initial_delay=0.01),
        **kwargs,
    )


def charge(status: str, charge_id: int = 1029, **extra):
    body = {"id": charge_id, "status": status, "trial_days": 30}
    body.update(extra)
    return {"recurring_application_charge": body}


@pytest.fixture
def tenant():
    return BillingTenant(tenant_id="org_123", user_id="user_9", account=ACCOUNT)


@pytest.mark.asyncio
class TestCreateCharge:

    async def test_monthly_charge(self, tenant):
        """
        Given: An installed store
        When: create_charge is called for ELITE monthly in test mode
        Then: Recurring charge posted with price, trial and return URL; confirmation URL returned
        """
        # Arrange
        recorder = Recorder([
            httpx.Response(
                201,
                json=charge("pending", confirmation_url="https://acme.myshopify.com/admin/charges/1029/confirm"),
            )
        ])
        adapter = make_adapter(recorder, test_mode=True)

        # Act
        creation = await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

        # Assert
        assert creation.provider_charge_id == "1029"
        assert creation.provider_account_id == SHOP
        assert creation.confirmation_url.endswith("/confirm")
        assert creation.client_secret is None

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == (
            f"https://{SHOP}/admin/api/2024-01/recurring_application_charges.json"
        )
        assert request.headers["X-Shopify-Access-Token"] == "shpat_1"
        sent = json.loads(request.content)["recurring_application_charge"]
        assert sent["price"] == "79.99"
        assert sent["trial_days"] == 30
        assert sent["test"] is True
        assert "capped_amount" not in sent

        return_url = urlparse(sent["return_url"])
        assert return_url.path == "/billing/callback"
        assert parse_qs(return_url.query) == {
            "org": ["org_123"],
            "user": ["user_9"],
            "plan": ["ELITE"],
            "billing": ["monthly"],
        }

        await adapter.close()

    async def test_annual_charge_is_monthly_twelfth_with_cap(self, tenant):
        recorder = Recorder([httpx.Response(201, json=charge("pending"))])
        adapter = make_adapter(recorder)

        await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.ANNUAL)

        sent = json.loads(recorder.requests[0].content)["recurring_application_charge"]
        assert sent["price"] == "67.99"
        assert sent["capped_amount"] == "815.89"
        assert sent["test"] is None

    async def test_not_connected_without_token(self):
        adapter = make_adapter(Recorder([]))
        tenant = BillingTenant(
            tenant_id="org_123",
            user_id=None,
            account=ProviderAccount(provider=BillingProvider.MARKETPLACE, account_id=SHOP),
        )

        with pytest.raises(ProviderNotConnected):
            await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

    async def test_unauthorized_is_not_connected(self, tenant):
        adapter = make_adapter(Recorder([httpx.Response(401, json={"errors": "Invalid token"})]))

        with pytest.raises(ProviderNotConnected):
            await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

    async def test_unprocessable_is_protocol_error(self, tenant):
        adapter = make_adapter(Recorder([httpx.Response(422, json={"errors": {"price": ["invalid"]}})]))

        with pytest.raises(ProviderProtocolError):
            await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

    async def test_throttling_is_retried(self, tenant):
        recorder = Recorder([
            httpx.Response(429),
            httpx.Response(503),
            httpx.Response(201, json=charge("pending")),
        ])
        adapter = make_adapter(recorder)

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            creation = await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

        assert creation.provider_charge_id == "1029"
        assert len(recorder.requests) == 3
        assert sleep.await_count == 2

    async def test_transport_errors_exhaust_budget(self, tenant):
        request = httpx.Request("POST", "https://acme.myshopify.com")
        recorder = Recorder([httpx.ConnectError("refused", request=request)] * 3)
        adapter = make_adapter(recorder)

        with patch("libs.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ProviderTransient):
                await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)

        assert len(recorder.requests) == 3

    async def test_malformed_charge(self, tenant):
        adapter = make_adapter(Recorder([httpx.Response(201, json={"unexpected": True})]))

        with pytest.raises(ProviderProtocolError):
            await adapter.create_charge(tenant, PlanTier.ELITE, BillingPeriod.MONTHLY)


@pytest.mark.asyncio
class TestActivate:

    async def test_accepted_charge_is_activated(self):
        recorder = Recorder([
            httpx.Response(200, json=charge("accepted")),
            httpx.Response(
                200,
                json=charge(
                    "active",
                    activated_on="2024-01-01",
                    billing_on="2024-01-31",
                ),
            ),
        ])
        adapter = make_adapter(recorder)

        status = await adapter.activate(ACCOUNT, "1029")

        assert status.native_status == "active"
        assert status.trial_days == 30
        assert status.current_period_start == datetime(2024, 1, 1)
        assert status.current_period_end == datetime(2024, 1, 31)
        assert recorder.requests[1].url.path.endswith("/recurring_application_charges/1029/activate.json")

    async def test_already_active_charge_is_not_reactivated(self):
        recorder = Recorder([httpx.Response(200, json=charge("active"))])
        adapter = make_adapter(recorder)

        status = await adapter.activate(ACCOUNT, "1029")

        assert status.native_status == "active"
        assert len(recorder.requests) == 1

    async def test_empty_activate_response_assumes_active(self):
        recorder = Recorder([httpx.Response(200, json=charge("pending")), httpx.Response(200)])
        adapter = make_adapter(recorder)

        status = await adapter.activate(ACCOUNT, "1029")

        assert status.native_status == "active"

    @pytest.mark.parametrize("native", ["declined", "expired"])
    async def test_declined_or_expired_is_rejected(self, native):
        adapter = make_adapter(Recorder([httpx.Response(200, json=charge(native))]))

        with pytest.raises(ProviderRejected):
            await adapter.activate(ACCOUNT, "1029")


@pytest.mark.asyncio
class TestCancelAndStatus:

    async def test_cancel_deletes_charge(self):
        recorder = Recorder([httpx.Response(200)])
        adapter = make_adapter(recorder)

        await adapter.cancel(ACCOUNT, "1029")

        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].url.path.endswith("/recurring_application_charges/1029.json")

    async def test_deferred_cancel_is_not_supported(self):
        adapter = make_adapter(Recorder([]))

        assert adapter.supports_deferred_cancel is False
        with pytest.raises(ValueError):
            await adapter.cancel(ACCOUNT, "1029", at_period_end=True)

    async def test_get_status(self):
        adapter = make_adapter(Recorder([httpx.Response(200, json=charge("frozen", trial_days=0))]))

        status = await adapter.get_status(ACCOUNT, "1029")

        assert status.native_status == "frozen"
        assert status.trial_days == 0


class TestParseEvent:

    def test_app_subscription_update(self):
        adapter = make_adapter(Recorder([]))
        payload = {
            "app_subscription": {
                "admin_graphql_api_id": "gid://shopify/AppSubscription/1029",
                "name": "Elite Plan (Monthly)",
                "status": "CANCELLED",
                "updated_at": "2024-02-01T10:00:00-05:00",
            }
        }
        headers = {
            "x-shopify-topic": "app_subscriptions/update",
            "x-shopify-shop-domain": SHOP,
        }

        event = adapter.parse_event(payload, headers)

        assert isinstance(event, SubscriptionStatusEvent)
        assert event.provider_charge_id == "1029"
        assert event.native_status == "CANCELLED"
        assert event.account_id == SHOP
        assert event.provider_timestamp == datetime(2024, 2, 1, 15, 0, 0)

    def test_timestamp_falls_back_to_trigger_header(self):
        adapter = make_adapter(Recorder([]))
        payload = {"app_subscription": {"admin_graphql_api_id": "gid://shopify/AppSubscription/7", "status": "ACTIVE"}}
        headers = {
            "X-Shopify-Topic": "app_subscriptions/update",
            "X-Shopify-Triggered-At": "2024-03-01T00:00:00Z",
        }

        event = adapter.parse_event(payload, headers)

        assert event.provider_timestamp == datetime(2024, 3, 1)

    def test_unknown_topic_is_unhandled(self):
        adapter = make_adapter(Recorder([]))

        event = adapter.parse_event({"id": 5}, {"X-Shopify-Topic": "shop/update"})

        assert isinstance(event, UnhandledEvent)
        assert event.provider_object_id == "5"

    def test_missing_topic_is_protocol_error(self):
        adapter = make_adapter(Recorder([]))

        with pytest.raises(ProviderProtocolError):
            adapter.parse_event({}, {})

    def test_update_without_status_is_protocol_error(self):
        adapter = make_adapter(Recorder([]))

        with pytest.raises(ProviderProtocolError):
            adapter.parse_event(
                {"app_subscription": {"admin_graphql_api_id": "gid://shopify/AppSubscription/1"}},
                {"X-Shopify-Topic": "app_subscriptions/update"},
            )

    def test_charge_id_from_gid(self):
        assert charge_id_from_gid("gid://shopify/AppSubscription/1029266947") == "1029266947"
        assert charge_id_from_gid(42) == "42"
        assert charge_id_from_gid(None) is None

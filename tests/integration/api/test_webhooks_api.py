"""Integration tests for webhook endpoints

Signatures are computed with the secrets of the integration config so the
real verification and parsing code runs end to end.
"""

import base64
import hashlib
import hmac
import json
import time
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from httpx import AsyncClient
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import IntegrityError

from src.adapter.repositories.invoice_repository import SqlAlchemyInvoiceRepository
from src.adapter.repositories.organization_repository import SqlAlchemyOrganizationRepository
from src.adapter.repositories.subscription_repository import SqlAlchemySubscriptionRepository
from src.domain.marketplace_connection import MarketplaceConnection
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus

STRIPE_SECRET = "whsec_integration"
SHOPIFY_SECRET = "shpss_integration"


def stripe_request(event: dict, secret: str = STRIPE_SECRET):
    body = json.dumps(event).encode()
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    headers = {"Stripe-Signature": f"t={timestamp},v1={digest}", "Content-Type": "application/json"}
    return body, headers


def shopify_request(payload: dict, topic: str = "app_subscriptions/update"):
    body = json.dumps(payload).encode()
    digest = base64.b64encode(hmac.new(SHOPIFY_SECRET.encode(), body, hashlib.sha256).digest()).decode()
    headers = {
        "X-Shopify-Hmac-Sha256": digest,
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "acme.myshopify.com",
        "Content-Type": "application/json",
    }
    return body, headers


async def seed_subscription(db_session, **overrides) -> Subscription:
    fields = dict(
        tenant_id="org_hook",
        plan=PlanTier.ELITE,
        billing_period=BillingPeriod.MONTHLY,
        status=SubscriptionStatus.ACTIVE,
        billing_provider=BillingProvider.DIRECT,
        provider_charge_id="sub_hook",
        provider_account_id="cus_hook",
        current_period_start=datetime.utcnow() - timedelta(days=5),
        current_period_end=datetime.utcnow() + timedelta(days=25),
    )
    fields.update(overrides)
    subscription = Subscription(**fields)
    db_session.add(subscription)
    await db_session.commit()
    return subscription


class TestWebhookRequests:

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AsyncClient):
        response = await client.post("/webhooks/paypal", json={"id": "1"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: AsyncClient):
        response = await client.post("/webhooks/stripe", content=b"{not json")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_non_object_body(self, client: AsyncClient):
        response = await client.post("/webhooks/stripe", json=[1, 2, 3])

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_signature_is_acknowledged_but_ignored(self, client: AsyncClient, db_session):
        """
        Given: An ACTIVE subscription
        When: A deletion event arrives signed with the wrong secret
        Then: 200 (no redelivery) but nothing changes
        """
        await seed_subscription(db_session)
        body, headers = stripe_request(
            {"id": "evt_1", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_hook"}}},
            secret="whsec_wrong",
        )

        response = await client.post("/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "applied": False,
            "outcome": "unverified",
            "event_type": None,
        }
        stored = await SqlAlchemySubscriptionRepository(db_session).get_by_tenant_id("org_hook")
        assert stored.status == SubscriptionStatus.ACTIVE


class TestStripeWebhooks:

    @pytest.mark.asyncio
    async def test_subscription_deleted_downgrades_to_free(self, client: AsyncClient, db_session):
        # Arrange
        await seed_subscription(db_session)
        created = int(time.time())
        body, headers = stripe_request({
            "id": "evt_del",
            "type": "customer.subscription.deleted",
            "created": created,
            "data": {"object": {"id": "sub_hook", "customer": "cus_hook", "status": "canceled"}},
        })

        # Act
        response = await client.post("/webhooks/stripe", content=body, headers=headers)

        # Assert
        assert response.status_code == 200
        assert response.json()["applied"] is True
        stored = await SqlAlchemySubscriptionRepository(db_session).get_by_tenant_id("org_hook")
        assert stored.status == SubscriptionStatus.CANCELLED
        assert stored.cancelled_at is not None
        organization = await SqlAlchemyOrganizationRepository(db_session).get_by_id("org_hook")
        assert organization.subscription_tier == PlanTier.FREE

    @pytest.mark.asyncio
    async def test_invoice_paid_is_recorded_once(self, client: AsyncClient, db_session):
        """
        Given: An ACTIVE subscription
        When: The same invoice.paid event is delivered twice
        Then: One invoice row, second delivery reported as duplicate
        """
        # Arrange
        await seed_subscription(db_session)
        body, headers = stripe_request({
            "id": "evt_inv",
            "type": "invoice.paid",
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": "in_hook",
                    "customer": "cus_hook",
                    "subscription": "sub_hook",
                    "amount_paid": 7999,
                    "currency": "USD",
                    "status": "paid",
                }
            },
        })

        # Act
        first = await client.post("/webhooks/stripe", content=body, headers=headers)
        second = await client.post("/webhooks/stripe", content=body, headers=headers)

        # Assert
        assert first.json()["outcome"] == "applied"
        assert second.json()["outcome"] == "duplicate"
        invoices = await SqlAlchemyInvoiceRepository(db_session).list_by_tenant("org_hook")
        assert len(invoices) == 1
        assert invoices[0].amount == Decimal("79.99")
        assert invoices[0].currency == "usd"

    @pytest.mark.asyncio
    async def test_failed_invoice_write_is_still_acknowledged(self, client: AsyncClient, db_session):
        """
        Given: An ACTIVE subscription
        When: Recording the paid invoice fails on the unique invoice id
        Then: 200 with applied=false so the provider stops redelivering
        """
        # Arrange
        await seed_subscription(db_session)
        body, headers = stripe_request({
            "id": "evt_race",
            "type": "invoice.paid",
            "created": int(time.time()),
            "data": {"object": {"id": "in_race", "subscription": "sub_hook", "amount_paid": 7999}},
        })
        duplicate = IntegrityError("INSERT INTO invoices", {}, Exception("UNIQUE constraint failed"))

        # Act
        with patch.object(SqlAlchemyInvoiceRepository, "create", new=AsyncMock(side_effect=duplicate)):
            response = await client.post(
                "/webhooks/stripe", content=body, headers={**headers, "X-Request-ID": "req-hook"}
            )

        # Assert
        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "applied": False,
            "outcome": "internal_error",
            "event_type": None,
        }
        assert response.headers["X-Request-ID"] == "req-hook"
        invoices = await SqlAlchemyInvoiceRepository(db_session).list_by_tenant("org_hook")
        assert invoices == []

    @pytest.mark.asyncio
    async def test_unhandled_event_type(self, client: AsyncClient):
        body, headers = stripe_request(
            {"id": "evt_cus", "type": "customer.created", "data": {"object": {"id": "cus_new"}}}
        )

        response = await client.post("/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "unhandled"
        assert response.json()["event_type"] == "customer.created"

    @pytest.mark.asyncio
    async def test_event_without_data_is_malformed(self, client: AsyncClient):
        body, headers = stripe_request({"id": "evt_bad", "type": "invoice.paid"})

        response = await client.post("/webhooks/stripe", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "malformed"


class TestShopifyWebhooks:

    @pytest.mark.asyncio
    async def test_frozen_charge_is_past_due(self, client: AsyncClient, db_session):
        # Arrange
        db_session.add(
            MarketplaceConnection(tenant_id="org_hook", shop_domain="acme.myshopify.com", access_token="shpat_1")
        )
        await seed_subscription(
            db_session,
            billing_provider=BillingProvider.MARKETPLACE,
            provider_charge_id="1029",
            provider_account_id="acme.myshopify.com",
        )
        body, headers = shopify_request({
            "app_subscription": {
                "admin_graphql_api_id": "gid://shopify/AppSubscription/1029",
                "status": "FROZEN",
                "updated_at": "2024-02-01T10:00:00Z",
            }
        })

        # Act
        response = await client.post("/webhooks/shopify", content=body, headers=headers)

        # Assert
        assert response.status_code == 200
        assert response.json()["applied"] is True
        stored = await SqlAlchemySubscriptionRepository(db_session).get_by_tenant_id("org_hook")
        assert stored.status == SubscriptionStatus.PAST_DUE
        assert stored.last_event_at == datetime(2024, 2, 1, 10, 0, 0)

    @pytest.mark.asyncio
    async def test_replaced_charge_is_foreign(self, client: AsyncClient, db_session):
        """
        Given: A tenant whose current marketplace charge is 2000
        When: A cancellation arrives for its old charge 1029
        Then: The event is ignored and the subscription stays ACTIVE
        """
        db_session.add(
            MarketplaceConnection(tenant_id="org_hook", shop_domain="acme.myshopify.com", access_token="shpat_1")
        )
        await seed_subscription(
            db_session, billing_provider=BillingProvider.MARKETPLACE, provider_charge_id="2000"
        )
        body, headers = shopify_request({
            "app_subscription": {
                "admin_graphql_api_id": "gid://shopify/AppSubscription/1029",
                "status": "CANCELLED",
            }
        })

        response = await client.post("/webhooks/shopify", content=body, headers=headers)

        assert response.json()["outcome"] == "foreign_charge"
        stored = await SqlAlchemySubscriptionRepository(db_session).get_by_tenant_id("org_hook")
        assert stored.status == SubscriptionStatus.ACTIVE

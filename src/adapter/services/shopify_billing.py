"""Shopify Billing Adapter (MARKETPLACE)

Marketplace implementation of BillingProviderAdapter over the Shopify Admin
REST API (recurring application charges).

Flow:
1. Create a recurring application charge and return its confirmation URL
2. The merchant approves it on Shopify
3. Shopify redirects to /billing/callback with charge_id
4. The charge is activated
5. Shopify sends app_subscriptions/update webhooks for later changes
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from libs.retry import RETRY_CONFIGS, RetryConfig, with_retry
from src.adapter.services.webhook_verifier import (
    SHOPIFY_HMAC_HEADER,
    get_header,
    verify_shopify_webhook,
)
from src.app.services.billing_provider import (
    BillingProviderAdapter,
    BillingTenant,
    ChargeCreation,
    ProviderAccount,
    ProviderChargeStatus,
    ProviderNotConnected,
    ProviderProtocolError,
    ProviderRejected,
    ProviderTransient,
)
from src.domain.plans import BillingPeriod, PlanTier, get_plan
from src.domain.provider_event import ProviderEvent, SubscriptionStatusEvent, UnhandledEvent
from src.domain.subscription import BillingProvider

logger = logging.getLogger(__name__)

SHOPIFY_TIMEOUT_SECONDS = 15.0

TOPIC_HEADER = "X-Shopify-Topic"
SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
WEBHOOK_ID_HEADER = "X-Shopify-Webhook-Id"
TRIGGERED_AT_HEADER = "X-Shopify-Triggered-At"

ACTIVATABLE_STATUSES = ("pending", "accepted")

_GID_PATTERN = re.compile(r"(\d+)$")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable Shopify timestamp '{value}'")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def charge_id_from_gid(value: Any) -> Optional[str]:
    """'gid://shopify/AppSubscription/1029266947' -> '1029266947'"""
    if value is None:
        return None
    match = _GID_PATTERN.search(str(value))
    return match.group(1) if match else None


class ShopifyBillingAdapter(BillingProviderAdapter):
    """
    MARKETPLACE billing through recurring application charges

    Shopify has no deferred cancellation; the reconciler schedules the
    cancel itself and issues it once the period ends.
    """

    provider = BillingProvider.MARKETPLACE
    supports_deferred_cancel = False

    def __init__(
        self,
        app_url: str,
        api_version: str = "2024-01",
        trial_days: int = 30,
        test_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: RetryConfig = RETRY_CONFIGS["shopify"],
    ):
        self.app_url = app_url.rstrip("/")
        self.api_version = api_version
        self.trial_days = trial_days
        self.test_mode = test_mode
        self.retry_config = retry_config
        self.client = httpx.AsyncClient(timeout=SHOPIFY_TIMEOUT_SECONDS, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    def _credentials(self, account: ProviderAccount):
        if not account.account_id or not account.access_token:
            raise ProviderNotConnected(
                "Shopify is not connected. Please connect your Shopify store first.",
                BillingProvider.MARKETPLACE,
            )
        return account.account_id, account.access_token

    async def _request(
        self,
        account: ProviderAccount,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        shop, access_token = self._credentials(account)
        url = f"https://{shop}/admin/api/{self.api_version}/{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }

        async def attempt() -> httpx.Response:
            try:
                response = await self.client.request(method, url, headers=headers, json=body)
            except httpx.TransportError as e:
                raise ProviderTransient(
                    f"Shopify request failed: {type(e).__name__}", BillingProvider.MARKETPLACE
                ) from e
            if response.status_code == 429 or response.status_code >= 500:
                raise ProviderTransient(
                    f"Shopify API error {response.status_code}",
                    BillingProvider.MARKETPLACE,
                    status_code=response.status_code,
                )
            return response

        response = await with_retry(attempt, self.retry_config.with_label(f"shopify.{method} {endpoint}"))

        if response.status_code in (401, 403):
            raise ProviderNotConnected(
                f"Shopify rejected the access token ({response.status_code})",
                BillingProvider.MARKETPLACE,
            )
        if response.status_code >= 400:
            raise ProviderProtocolError(
                f"Shopify API error {response.status_code}: {response.text}",
                BillingProvider.MARKETPLACE,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderProtocolError(
                "Shopify returned a non-JSON response", BillingProvider.MARKETPLACE
            ) from e

    @staticmethod
    def _charge_from(data: Dict[str, Any]) -> Dict[str, Any]:
        charge = data.get("recurring_application_charge")
        if not isinstance(charge, dict) or not charge.get("id") or not charge.get("status"):
            raise ProviderProtocolError("Malformed recurring application charge", BillingProvider.MARKETPLACE)
        return charge

    def return_url(self, tenant: BillingTenant, plan: PlanTier, period: BillingPeriod) -> str:
        query = urlencode(
            {
                "org": tenant.tenant_id,
                "user": tenant.user_id or "",
                "plan": plan.value,
                "billing": period.value,
            }
        )
        return f"{self.app_url}/billing/callback?{query}"

    async def create_charge(
        self, tenant: BillingTenant, plan: PlanTier, period: BillingPeriod
    ) -> ChargeCreation:
        plan_config = get_plan(plan)
        price = plan_config.recurring_charge_amount(period)
        label = "Annual" if period == BillingPeriod.ANNUAL else "Monthly"

        charge_data: Dict[str, Any] = {
            "name": f"{plan_config.name} Plan ({label})",
            "price": f"{price:.2f}",
            "return_url": self.return_url(tenant, plan, period),
            "trial_days": self.trial_days,
            "test": True if self.test_mode else None,
        }
        if period == BillingPeriod.ANNUAL:
            charge_data["capped_amount"] = f"{plan_config.annual_price:.2f}"

        data = await self._request(
            tenant.account,
            "POST",
            "recurring_application_charges.json",
            {"recurring_application_charge": charge_data},
        )
        charge = self._charge_from(data)

        logger.info(
            f"Shopify recurring charge {charge['id']} created for tenant {tenant.tenant_id} "
            f"({plan.value}/{period.value}, price={charge_data['price']})"
        )

        return ChargeCreation(
            provider_charge_id=str(charge["id"]),
            provider_account_id=tenant.account.account_id,
            confirmation_url=charge.get("confirmation_url"),
        )

    def _to_status(self, charge: Dict[str, Any]) -> ProviderChargeStatus:
        return ProviderChargeStatus(
            provider_charge_id=str(charge["id"]),
            native_status=charge["status"],
            trial_days=int(charge.get("trial_days") or 0),
            current_period_start=_parse_timestamp(charge.get("activated_on")),
            current_period_end=_parse_timestamp(charge.get("billing_on")),
            observed_at=datetime.utcnow(),
        )

    async def activate(self, account: ProviderAccount, provider_charge_id: str) -> ProviderChargeStatus:
        endpoint = f"recurring_application_charges/{provider_charge_id}.json"
        charge = self._charge_from(await self._request(account, "GET", endpoint))

        if charge["status"] == "declined":
            logger.warning(f"Shopify charge {provider_charge_id} was declined")
            raise ProviderRejected("The charge was declined by the merchant.", BillingProvider.MARKETPLACE)
        if charge["status"] == "expired":
            raise ProviderRejected("The charge has expired. Please try again.", BillingProvider.MARKETPLACE)

        if charge["status"] in ACTIVATABLE_STATUSES:
            activated = await self._request(
                account,
                "POST",
                f"recurring_application_charges/{provider_charge_id}/activate.json",
                {"recurring_application_charge": {"id": charge["id"]}},
            )
            if activated.get("recurring_application_charge"):
                charge = self._charge_from(activated)
            else:
                charge = dict(charge, status="active")

        return self._to_status(charge)

    async def cancel(
        self, account: ProviderAccount, provider_charge_id: str, at_period_end: bool = False
    ) -> None:
        if at_period_end:
            raise ValueError("Shopify charges cannot be cancelled at period end")
        await self._request(account, "DELETE", f"recurring_application_charges/{provider_charge_id}.json")
        logger.info(f"Shopify recurring charge {provider_charge_id} cancelled")

    async def get_status(self, account: ProviderAccount, provider_charge_id: str) -> ProviderChargeStatus:
        data = await self._request(account, "GET", f"recurring_application_charges/{provider_charge_id}.json")
        return self._to_status(self._charge_from(data))

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        return verify_shopify_webhook(raw_body, get_header(headers, SHOPIFY_HMAC_HEADER), secret)

    def parse_event(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> ProviderEvent:
        topic = get_header(headers, TOPIC_HEADER)
        if not topic:
            raise ProviderProtocolError("Shopify webhook without topic header", BillingProvider.MARKETPLACE)

        parser = TOPIC_PARSERS.get(topic, _parse_unhandled)
        return parser(topic, payload, headers)


def _parse_app_subscription_update(
    topic: str, payload: Dict[str, Any], headers: Mapping[str, str]
) -> ProviderEvent:
    app_subscription = payload.get("app_subscription") or payload
    charge_id = charge_id_from_gid(
        app_subscription.get("admin_graphql_api_id") or app_subscription.get("id")
    )
    status = app_subscription.get("status")
    if not charge_id or not status:
        raise ProviderProtocolError(
            "app_subscriptions/update payload without charge id or status",
            BillingProvider.MARKETPLACE,
        )

    timestamp = _parse_timestamp(app_subscription.get("updated_at")) or _parse_timestamp(
        get_header(headers, TRIGGERED_AT_HEADER)
    )
    return SubscriptionStatusEvent(
        provider=BillingProvider.MARKETPLACE,
        event_type=topic,
        provider_object_id=charge_id,
        provider_charge_id=charge_id,
        provider_timestamp=timestamp,
        account_id=get_header(headers, SHOP_DOMAIN_HEADER),
        native_status=status,
    )


def _parse_unhandled(topic: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> ProviderEvent:
    object_id = get_header(headers, WEBHOOK_ID_HEADER) or str(payload.get("id") or "")
    return UnhandledEvent(
        provider=BillingProvider.MARKETPLACE,
        event_type=topic,
        provider_object_id=object_id,
        provider_charge_id=None,
        provider_timestamp=_parse_timestamp(get_header(headers, TRIGGERED_AT_HEADER)),
        account_id=get_header(headers, SHOP_DOMAIN_HEADER),
    )


TOPIC_PARSERS: Dict[str, Callable[[str, Dict[str, Any], Mapping[str, str]], ProviderEvent]] = {
    "app_subscriptions/update": _parse_app_subscription_update,
}

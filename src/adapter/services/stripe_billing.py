"""Stripe Billing Adapter (DIRECT)

Card-processor implementation of BillingProviderAdapter on top of the
official Stripe SDK. Charges are Stripe subscriptions created incomplete and
confirmed client-side with the returned client secret.
"""

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, TypeVar

import stripe

from libs.retry import RETRY_CONFIGS, RetryConfig, with_retry
from src.adapter.services.webhook_verifier import (
    STRIPE_SIGNATURE_HEADER,
    get_header,
    verify_stripe_webhook,
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
from src.domain.plans import BillingPeriod, PlanTier
from src.domain.provider_event import (
    InvoicePaidEvent,
    PaymentFailedEvent,
    ProviderEvent,
    SubscriptionDeletedEvent,
    SubscriptionStatusEvent,
    UnhandledEvent,
)
from src.domain.subscription import BillingProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRIPE_TIMEOUT_SECONDS = 20
SECONDS_PER_DAY = 86400

SUBSCRIPTION_EXPAND = ["latest_invoice.payment_intent", "pending_setup_intent"]


def _from_unix(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a StripeObject, a plain dict or None"""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def _period_bounds(subscription: Any):
    start = _get(subscription, "current_period_start")
    end = _get(subscription, "current_period_end")
    if start is None or end is None:
        # Newer API versions carry the period on the subscription items
        items = _get(_get(subscription, "items"), "data", [])
        if items:
            start = start or _get(items[0], "current_period_start")
            end = end or _get(items[0], "current_period_end")
    return _from_unix(start), _from_unix(end)


def _client_secret(subscription: Any) -> Optional[str]:
    invoice = _get(subscription, "latest_invoice")
    payment_intent = _get(invoice, "payment_intent")
    secret = _get(payment_intent, "client_secret")
    if secret:
        return secret
    secret = _get(_get(invoice, "confirmation_secret"), "client_secret")
    if secret:
        return secret
    return _get(_get(subscription, "pending_setup_intent"), "client_secret")


def _translate_error(error: stripe.StripeError) -> Exception:
    message = error.user_message or str(error)
    status = error.http_status

    if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
        return ProviderTransient(message, BillingProvider.DIRECT, status_code=status)
    if isinstance(error, stripe.CardError):
        return ProviderRejected(message, BillingProvider.DIRECT)
    if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
        return ProviderNotConnected(message, BillingProvider.DIRECT)
    if status is not None and (status == 429 or status >= 500):
        return ProviderTransient(message, BillingProvider.DIRECT, status_code=status)
    return ProviderProtocolError(message, BillingProvider.DIRECT)


class StripeBillingAdapter(BillingProviderAdapter):
    """
    DIRECT billing through Stripe subscriptions

    Args:
        api_key: Stripe secret key
        price_ids: {tier: {period: price_id}} for every purchasable plan
        trial_days: Trial length applied to new subscriptions
        client: Pre-built StripeClient (tests inject a mock)
    """

    provider = BillingProvider.DIRECT
    supports_deferred_cancel = True

    def __init__(
        self,
        api_key: Optional[str],
        price_ids: Dict[str, Dict[str, str]],
        trial_days: int = 30,
        client: Optional[stripe.StripeClient] = None,
        retry_config: RetryConfig = RETRY_CONFIGS["stripe"],
    ):
        self.price_ids = price_ids or {}
        self.trial_days = trial_days
        self.retry_config = retry_config
        if client is None and api_key:
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.HTTPXClient(timeout=STRIPE_TIMEOUT_SECONDS),
                max_network_retries=0,
            )
        self.client = client

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            raise ProviderNotConnected("Stripe is not configured", BillingProvider.DIRECT)
        return self.client

    async def _call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            try:
                return await fn()
            except stripe.StripeError as e:
                raise _translate_error(e) from e

        return await with_retry(attempt, self.retry_config.with_label(f"stripe.{label}"))

    def price_id_for(self, plan: PlanTier, period: BillingPeriod) -> str:
        price_id = self.price_ids.get(plan.value, {}).get(period.value)
        if not price_id:
            raise ProviderProtocolError(
                f"No Stripe price configured for {plan.value}/{period.value}",
                BillingProvider.DIRECT,
            )
        return price_id

    def plan_for_price(self, price_id: Optional[str]) -> Optional[Tuple[PlanTier, BillingPeriod]]:
        """Reverse lookup of price_id_for; None for prices this service did not configure"""
        if not price_id:
            return None
        for tier, periods in self.price_ids.items():
            for period, configured in periods.items():
                if configured == price_id:
                    return PlanTier(tier), BillingPeriod(period)
        logger.warning(f"Stripe price {price_id} is not mapped to any plan")
        return None

    async def create_charge(

        self, tenant: BillingTenant, plan: PlanTier, period: BillingPeriod
    ) -> ChargeCreation:
        client = self._require_client()
        price_id = self.price_id_for(plan, period)

        customer_id = tenant.account.account_id
        if not customer_id:
            params: Dict[str, Any] = {"metadata": {"tenant_id": tenant.tenant_id}}
            if tenant.email:
                params["email"] = tenant.email
            if tenant.name:
                params["name"] = tenant.name
            if tenant.user_id:
                params["metadata"]["user_id"] = tenant.user_id
            customer = await self._call(
                "create_customer", lambda: client.customers.create_async(params=params)
            )
            customer_id = _get(customer, "id")
            logger.info(f"Created Stripe customer {customer_id} for tenant {tenant.tenant_id}")

        subscription_params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": SUBSCRIPTION_EXPAND,
            "metadata": {
                "tenant_id": tenant.tenant_id,
                "plan": plan.value,
                "billing_period": period.value,
            },
        }
        if self.trial_days > 0:
            subscription_params["trial_period_days"] = self.trial_days

        subscription = await self._call(
            "create_subscription",
            lambda: client.subscriptions.create_async(params=subscription_params),
        )

        subscription_id = _get(subscription, "id")
        if not subscription_id:
            raise ProviderProtocolError("Stripe returned a subscription without id", BillingProvider.DIRECT)

        logger.info(
            f"Stripe subscription {subscription_id} created for tenant {tenant.tenant_id} "
            f"({plan.value}/{period.value})"
        )

        return ChargeCreation(
            provider_charge_id=subscription_id,
            provider_account_id=customer_id,
            client_secret=_client_secret(subscription),
        )

    def _to_status(self, subscription: Any) -> ProviderChargeStatus:
        status = _get(subscription, "status")
        subscription_id = _get(subscription, "id")
        if not status or not subscription_id:
            raise ProviderProtocolError("Malformed Stripe subscription", BillingProvider.DIRECT)

        now = datetime.utcnow()
        trial_days = 0
        trial_end = _from_unix(_get(subscription, "trial_end"))
        if status == "trialing" and trial_end and trial_end > now:
            trial_days = math.ceil((trial_end - now).total_seconds() / SECONDS_PER_DAY)

        period_start, period_end = _period_bounds(subscription)
        return ProviderChargeStatus(
            provider_charge_id=subscription_id,
            native_status=status,
            trial_days=trial_days,
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=bool(_get(subscription, "cancel_at_period_end", False)),
            observed_at=now,
        )

    async def activate(self, account: ProviderAccount, provider_charge_id: str) -> ProviderChargeStatus:
        client = self._require_client()
        subscription = await self._call(
            "retrieve_subscription",
            lambda: client.subscriptions.retrieve_async(provider_charge_id),
        )

        if _get(subscription, "status") == "incomplete_expired":
            raise ProviderRejected(
                "The payment was not completed in time. Please try again.",
                BillingProvider.DIRECT,
            )

        return self._to_status(subscription)

    async def cancel(
        self, account: ProviderAccount, provider_charge_id: str, at_period_end: bool = False
    ) -> None:
        client = self._require_client()
        if at_period_end:
            await self._call(
                "schedule_cancel",
                lambda: client.subscriptions.update_async(
                    provider_charge_id, params={"cancel_at_period_end": True}
                ),
            )
        else:
            await self._call(
                "cancel_subscription",
                lambda: client.subscriptions.cancel_async(provider_charge_id),
            )
        logger.info(
            f"Stripe subscription {provider_charge_id} cancelled "
            f"({'at period end' if at_period_end else 'immediately'})"
        )

    async def get_status(self, account: ProviderAccount, provider_charge_id: str) -> ProviderChargeStatus:
        client = self._require_client()
        subscription = await self._call(
            "retrieve_subscription",
            lambda: client.subscriptions.retrieve_async(provider_charge_id),
        )
        return self._to_status(subscription)

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        return verify_stripe_webhook(raw_body, get_header(headers, STRIPE_SIGNATURE_HEADER), secret)

    def parse_event(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> ProviderEvent:
        event_type = payload.get("type")
        obj = (payload.get("data") or {}).get("object")
        if not event_type or not isinstance(obj, dict):
            raise ProviderProtocolError("Stripe event without type or data.object", BillingProvider.DIRECT)

        parser = EVENT_PARSERS.get(event_type, _parse_unhandled)
        event = parser(payload, obj)
        if isinstance(event, SubscriptionStatusEvent):
            # Plan changes made in the Stripe dashboard arrive as a new item price
            resolved = self.plan_for_price(_subscription_price_id(obj))
            if resolved is not None:
                event = replace(event, plan=resolved[0], billing_period=resolved[1])
        return event


def _require_id(obj: Dict[str, Any], event_type: str) -> str:
    object_id = obj.get("id")
    if not object_id:
        raise ProviderProtocolError(f"Stripe {event_type} event without object id", BillingProvider.DIRECT)
    return object_id


def _base_fields(payload: Dict[str, Any], obj: Dict[str, Any], charge_id: Optional[str]) -> Dict[str, Any]:
    return {
        "provider": BillingProvider.DIRECT,
        "event_type": payload["type"],
        "provider_object_id": _require_id(obj, payload["type"]),
        "provider_charge_id": charge_id,
        "provider_timestamp": _from_unix(payload.get("created")),
        "account_id": obj.get("customer"),
    }


def _subscription_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = _get(_get(subscription, "items"), "data", [])
    if not items:
        return None
    price = _get(items[0], "price")
    if isinstance(price, str):
        return price
    return _get(price, "id")


def _parse_subscription_change(
payload: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    period_start, period_end = _period_bounds(obj)
    return SubscriptionStatusEvent(
        **_base_fields(payload, obj, obj.get("id")),
        native_status=obj.get("status") or "",
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=obj.get("cancel_at_period_end"),
        trial_end=_from_unix(obj.get("trial_end")),
    )


def _parse_subscription_deleted(payload: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    return SubscriptionDeletedEvent(**_base_fields(payload, obj, obj.get("id")))


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if subscription:
        return subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _parse_invoice_paid(payload: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    amount_cents = obj.get("amount_paid")
    if amount_cents is None:
        amount_cents = obj.get("total", 0)
    paid_at = (obj.get("status_transitions") or {}).get("paid_at")
    return InvoicePaidEvent(
        **_base_fields(payload, obj, _invoice_subscription_id(obj)),
        amount=(Decimal(int(amount_cents)) / 100).quantize(Decimal("0.01")),
        currency=(obj.get("currency") or "usd").lower(),
        invoice_status=obj.get("status") or "paid",
        hosted_invoice_url=obj.get("hosted_invoice_url"),
        pdf_url=obj.get("invoice_pdf"),
        paid_at=_from_unix(paid_at) or _from_unix(payload.get("created")),
    )


def _parse_payment_failed(payload: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    return PaymentFailedEvent(**_base_fields(payload, obj, _invoice_subscription_id(obj)))


def _parse_unhandled(payload: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    return UnhandledEvent(
        provider=BillingProvider.DIRECT,
        event_type=payload["type"],
        provider_object_id=obj.get("id") or payload.get("id") or "",
        provider_charge_id=None,
        provider_timestamp=_from_unix(payload.get("created")),
    )


EVENT_PARSERS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], ProviderEvent]] = {
    "customer.subscription.created": _parse_subscription_change,
    "customer.subscription.updated": _parse_subscription_change,
    "customer.subscription.deleted": _parse_subscription_deleted,
    "invoice.paid": _parse_invoice_paid,
    "invoice.payment_failed": _parse_payment_failed,
}

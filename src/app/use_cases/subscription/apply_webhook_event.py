"""ApplyWebhookEvent Use Case

Verifies a provider notification, parses it into a ProviderEvent and
applies it idempotently.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from libs.result import Result, Return
from src.app.services.unit_of_work import UnitOfWork
from src.app.services.billing_provider import BillingProviderAdapter, ProviderProtocolError
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.invoice_repository import InvoiceRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.invoice import Invoice
from src.domain.provider_event import (
    InvoicePaidEvent,
    ProviderEvent,
    SubscriptionStatusEvent,
    UnhandledEvent,
    canonical_status_for,
)
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus
from src.domain.subscription_state import next_status
from .dtos import WebhookCommandDTO, WebhookResultDTO
from .errors import ConcurrentUpdateError, conflict_error, internal_error
from .reconciler import SubscriptionReconciler, Transition, status_changes

logger = logging.getLogger(__name__)


def event_transition(subscription: Subscription, event: ProviderEvent) -> Transition:
    """
    Pure transition for a status-bearing event

    - events for another charge are ignored
    - events older than last_event_at are stale
    - status moves through next_status; period bounds, the deferred cancel
      flag and a provider-side plan change follow the provider unless the
      subscription is cancelled
    """
    if event.provider != subscription.billing_provider or (
        event.provider_charge_id != subscription.provider_charge_id
    ):
        return Transition(reason="foreign_charge")

    observed_at = event.provider_timestamp or datetime.utcnow()
    if subscription.last_event_at and event.provider_timestamp and (
        event.provider_timestamp < subscription.last_event_at
    ):
        return Transition(reason="stale")

    changes: Dict[str, Any] = {}
    target = next_status(subscription.status, canonical_status_for(event))
    if target != subscription.status:
        changes.update(status_changes(subscription, target, observed_at))

    resulting_status = changes.get("status", subscription.status)
    if isinstance(event, SubscriptionStatusEvent) and resulting_status != SubscriptionStatus.CANCELLED:
        if event.current_period_start and event.current_period_start != subscription.current_period_start:
            changes["current_period_start"] = event.current_period_start
        if event.current_period_end and event.current_period_end != subscription.current_period_end:
            changes["current_period_end"] = event.current_period_end
        if event.trial_end and event.trial_end != subscription.trial_end:
            changes["trial_end"] = event.trial_end
        if (
            event.cancel_at_period_end is not None
            and event.cancel_at_period_end != subscription.cancel_at_period_end
        ):
            changes["cancel_at_period_end"] = event.cancel_at_period_end
        if event.plan and event.plan != subscription.plan:
            changes["plan"] = event.plan
        if event.billing_period and event.billing_period != subscription.billing_period:
            changes["billing_period"] = event.billing_period

    if not changes:
        return Transition(reason="no_change")

    if subscription.last_event_at is None or observed_at > subscription.last_event_at:
        changes["last_event_at"] = observed_at
    return Transition(changes=changes, reason=event.event_type)


class ApplyWebhookEvent:
    """
    Use Case: Apply a provider webhook

    Business Rules:
    1. Unverified deliveries are dropped (acknowledged, never applied)
    2. Re-delivery is harmless: transitions are idempotent and invoices are
       keyed by provider_invoice_id
    3. A transition into CANCELLED downgrades entitlements to FREE
    4. Unknown event types are logged and acknowledged

    Flow:
    1. Verify signature
    2. Parse into a ProviderEvent
    3. Dispatch on event kind (invoice vs status)
    4. Commit
    """

    def __init__(
        self,
        uow: UnitOfWork,
        subscription_repo: SubscriptionRepository,
        invoice_repo: InvoiceRepository,
        connection_repo: MarketplaceConnectionRepository,
        reconciler: SubscriptionReconciler,
        adapter: BillingProviderAdapter,
        webhook_secret: Optional[str],
    ):
        self.uow = uow
        self.subscription_repo = subscription_repo
        self.invoice_repo = invoice_repo
        self.connection_repo = connection_repo
        self.reconciler = reconciler
        self.adapter = adapter
        self.webhook_secret = webhook_secret

    async def execute(self, command: WebhookCommandDTO) -> Result[WebhookResultDTO]:
        provider = self.adapter.provider

        if not self.adapter.verify_webhook(command.raw_body, command.headers, self.webhook_secret):
            logger.warning(f"Dropping unverified {provider.value} webhook")
            return Return.ok(WebhookResultDTO(applied=False, outcome="unverified"))

        try:
            event = self.adapter.parse_event(command.payload, command.headers)
        except ProviderProtocolError as e:
            logger.warning(f"Malformed {provider.value} webhook: {e.message}")
            return Return.ok(WebhookResultDTO(applied=False, outcome="malformed"))

        try:
            if isinstance(event, UnhandledEvent):
                canonical_status_for(event)
                outcome = "unhandled"
            elif isinstance(event, InvoicePaidEvent):
                outcome = await self._record_invoice(event)
            else:
                outcome = await self._apply_status(event)

            await self.uow.commit()

            logger.info(
                f"{provider.value} webhook {event.event_type} "
                f"(object {event.provider_object_id}): {outcome}"
            )
            return Return.ok(
                WebhookResultDTO(
                    applied=outcome == "applied",
                    outcome=outcome,
                    event_type=event.event_type,
                )
            )

        except ConcurrentUpdateError as e:
            await self.uow.rollback()
            return Return.err(conflict_error(e))
        except Exception as e:
            await self.uow.rollback()
            return Return.err(internal_error(e, "Failed to apply webhook event"))

    async def _find_subscription(self, event: ProviderEvent) -> Optional[Subscription]:
        if not event.provider_charge_id:
            return None
        return await self.subscription_repo.get_by_provider_charge_id(
            event.provider, event.provider_charge_id
        )

    async def _explain_missing(self, event: ProviderEvent) -> str:
        if event.provider == BillingProvider.MARKETPLACE and event.account_id:
            connection = await self.connection_repo.get_by_shop_domain(event.account_id)
            if connection is not None:
                logger.info(
                    f"Charge {event.provider_charge_id} is not the current charge of "
                    f"tenant {connection.tenant_id}, ignoring"
                )
                return "foreign_charge"
        logger.warning(f"No subscription for {event.provider.value} charge {event.provider_charge_id}")
        return "not_found"

    async def _apply_status(self, event: ProviderEvent) -> str:
        subscription = await self._find_subscription(event)
        if subscription is None:
            return await self._explain_missing(event)

        outcome = await self.reconciler.reconcile(
            load=lambda: self.subscription_repo.get_by_tenant_id(subscription.tenant_id),
            compute=lambda current: event_transition(current, event),
        )
        if outcome.reason == "stale":
            logger.info(
                f"Tenant {subscription.tenant_id}: stale {event.event_type} "
                f"({event.provider_timestamp} < {subscription.last_event_at}), discarded"
            )
        if outcome.changed:
            return "applied"
        return outcome.reason or "no_change"

    async def _record_invoice(self, event: InvoicePaidEvent) -> str:
        subscription = await self._find_subscription(event)
        if subscription is None:
            return await self._explain_missing(event)

        existing = await self.invoice_repo.get_by_provider_invoice_id(event.provider_object_id)
        if existing is not None:
            return "duplicate"

        await self.invoice_repo.create(
            Invoice(
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                billing_provider=event.provider,
                provider_invoice_id=event.provider_object_id,
                amount=event.amount,
                currency=event.currency,
                status=event.invoice_status,
                hosted_invoice_url=event.hosted_invoice_url,
                pdf_url=event.pdf_url,
                paid_at=event.paid_at,
            )
        )
        return "applied"

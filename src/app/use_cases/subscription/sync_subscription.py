"""SyncSubscription Use Case

Re-polls the provider for one tenant and re-applies the same mapping and
transition rules as webhooks. Safety net for missed deliveries, and the
place where deferred cancellations without provider support are issued.
"""

import logging
from datetime import datetime
from typing import Any, Dict
from libs.result import Result, Return, Error
from src.app.services.unit_of_work import UnitOfWork
from src.app.services.billing_provider import BillingProviderError, ProviderChargeStatus
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.provider_event import map_native_status
from src.domain.subscription import Subscription, SubscriptionStatus
from src.domain.subscription_state import next_status
from .cancel_subscription import cancel_now
from .dtos import SubscriptionResponseDTO, SyncResultDTO
from .errors import ConcurrentUpdateError, conflict_error, internal_error, provider_error
from .provider_router import BillingProviderRouter
from .reconciler import SubscriptionReconciler, Transition, status_changes

logger = logging.getLogger(__name__)

SKIPPED_STATUSES = (SubscriptionStatus.PENDING_APPROVAL, SubscriptionStatus.CANCELLED)


def poll_transition(
    subscription: Subscription, polled: ProviderChargeStatus, follow_cancel_flag: bool
) -> Transition:
    """
    Pure transition for a status poll

    The poll is an observation taken now, so it is never stale.
    """
    if polled.provider_charge_id != subscription.provider_charge_id:
        return Transition(reason="charge replaced")

    changes: Dict[str, Any] = {}
    mapped = map_native_status(subscription.billing_provider, polled.native_status)
    target = next_status(subscription.status, mapped)
    if target != subscription.status:
        changes.update(status_changes(subscription, target, polled.observed_at))

    if changes.get("status", subscription.status) != SubscriptionStatus.CANCELLED:
        if polled.current_period_start and polled.current_period_start != subscription.current_period_start:
            changes["current_period_start"] = polled.current_period_start
        if polled.current_period_end and polled.current_period_end != subscription.current_period_end:
            changes["current_period_end"] = polled.current_period_end
        if follow_cancel_flag and polled.cancel_at_period_end != subscription.cancel_at_period_end:
            changes["cancel_at_period_end"] = polled.cancel_at_period_end

    if not changes:
        return Transition(reason="in sync")
    changes["last_event_at"] = polled.observed_at
    return Transition(changes=changes, reason=f"sync ({polled.native_status})")


def deferred_cancel_due(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.cancel_at_period_end
        and not subscription.is_cancelled
        and subscription.current_period_end is not None
        and subscription.current_period_end <= now
    )


class SyncSubscription:
    """
    Use Case: Reconcile one tenant against its provider

    Business Rules:
    1. PENDING_APPROVAL and CANCELLED subscriptions are skipped
    2. A due deferred cancel is issued at the provider (when the provider
       cannot schedule it itself) and the subscription becomes CANCELLED
    3. Otherwise the provider status goes through the webhook mapping and
       transition function
    4. Idempotent: a second sync with no provider change writes nothing
    """

    def __init__(
        self,
        uow: UnitOfWork,
        subscription_repo: SubscriptionRepository,
        connection_repo: MarketplaceConnectionRepository,
        reconciler: SubscriptionReconciler,
        router: BillingProviderRouter,
    ):
        self.uow = uow
        self.subscription_repo = subscription_repo
        self.connection_repo = connection_repo
        self.reconciler = reconciler
        self.router = router

    async def execute(self, tenant_id: str) -> Result[SyncResultDTO]:
        try:
            subscription = await self.subscription_repo.get_by_tenant_id(tenant_id)
            if subscription is None:
                return Return.err(
                    Error(
                        code="SUBSCRIPTION_NOT_FOUND",
                        message=f"No subscription found for tenant {tenant_id}",
                    )
                )

            if subscription.status in SKIPPED_STATUSES or not subscription.provider_charge_id:
                return Return.ok(
                    SyncResultDTO(
                        synced=False,
                        changed=False,
                        subscription=SubscriptionResponseDTO.from_entity(subscription),
                    )
                )

            connection = await self.connection_repo.get_by_tenant_id(tenant_id)
            adapter = self.router.adapter_for(subscription.billing_provider)
            account = self.router.account_for(subscription.billing_provider, subscription, connection)

            now = datetime.utcnow()
            if deferred_cancel_due(subscription, now):
                if not adapter.supports_deferred_cancel:
                    await adapter.cancel(account, subscription.provider_charge_id, at_period_end=False)
                logger.info(f"Tenant {tenant_id}: period ended, applying scheduled cancellation")
                outcome = await self.reconciler.reconcile(
                    load=lambda: self.subscription_repo.get_by_tenant_id(tenant_id),
                    compute=lambda current: cancel_now(current, now),
                )
            else:
                polled = await adapter.get_status(account, subscription.provider_charge_id)
                outcome = await self.reconciler.reconcile(
                    load=lambda: self.subscription_repo.get_by_tenant_id(tenant_id),
                    compute=lambda current: poll_transition(
                        current, polled, adapter.supports_deferred_cancel
                    ),
                )

            await self.uow.commit()

            return Return.ok(
                SyncResultDTO(
                    synced=True,
                    changed=outcome.changed,
                    subscription=SubscriptionResponseDTO.from_entity(outcome.subscription),
                )
            )

        except BillingProviderError as e:
            await self.uow.rollback()
            return Return.err(provider_error(e))
        except ConcurrentUpdateError as e:
            await self.uow.rollback()
            return Return.err(conflict_error(e))
        except Exception as e:
            await self.uow.rollback()
            return Return.err(internal_error(e, "Failed to sync subscription"))

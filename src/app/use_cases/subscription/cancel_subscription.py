"""CancelSubscription Use Case

Cancels a subscription immediately or at the end of the current period.
"""

import logging
from datetime import datetime
from functools import partial
from libs.result import Result, Return, Error
from src.app.services.unit_of_work import UnitOfWork
from src.app.services.billing_provider import BillingProviderError
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.subscription import Subscription, SubscriptionStatus
from src.domain.subscription_state import next_status
from .dtos import CancelCommandDTO, SubscriptionResponseDTO
from .errors import ConcurrentUpdateError, conflict_error, internal_error, provider_error
from .reconciler import SubscriptionReconciler, Transition, status_changes
from .provider_router import BillingProviderRouter

logger = logging.getLogger(__name__)


def cancel_now(subscription: Subscription, observed_at: datetime) -> Transition:
    target = next_status(subscription.status, SubscriptionStatus.CANCELLED)
    if target == subscription.status:
        return Transition(reason="already cancelled")
    changes = status_changes(subscription, target, observed_at)
    changes["last_event_at"] = observed_at
    return Transition(changes=changes, reason="cancelled")


def cancel_at_period_end(subscription: Subscription) -> Transition:
    if subscription.is_cancelled or subscription.cancel_at_period_end:
        return Transition(reason="already scheduled")
    return Transition(changes={"cancel_at_period_end": True}, reason="cancel scheduled")


class CancelSubscription:
    """
    Use Case: Cancel the tenant's subscription

    Business Rules:
    1. Cancelling twice fails with ALREADY_CANCELLED
    2. Immediate: provider cancel, then CANCELLED and FREE entitlements now
    3. Deferred: cancel_at_period_end is set; providers with native deferred
       cancellation are told now, the others are cancelled by the periodic
       sync once current_period_end has passed
    4. A charge still awaiting approval is always cancelled immediately
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

    async def execute(self, command: CancelCommandDTO) -> Result[SubscriptionResponseDTO]:
        try:
            subscription = await self.subscription_repo.get_by_tenant_id(command.tenant_id)
            if subscription is None:
                return Return.err(
                    Error(
                        code="SUBSCRIPTION_NOT_FOUND",
                        message=f"No subscription found for tenant {command.tenant_id}",
                    )
                )
            if subscription.is_cancelled:
                return Return.err(
                    Error(code="ALREADY_CANCELLED", message="Subscription is already cancelled")
                )

            connection = await self.connection_repo.get_by_tenant_id(command.tenant_id)
            adapter = self.router.adapter_for(subscription.billing_provider)
            account = self.router.account_for(subscription.billing_provider, subscription, connection)

            immediate = command.immediate or subscription.status == SubscriptionStatus.PENDING_APPROVAL

            if immediate:
                if subscription.provider_charge_id:
                    await adapter.cancel(account, subscription.provider_charge_id, at_period_end=False)
                now = datetime.utcnow()
                compute = partial(cancel_now, observed_at=now)
            else:
                if adapter.supports_deferred_cancel and subscription.provider_charge_id:
                    await adapter.cancel(account, subscription.provider_charge_id, at_period_end=True)
                compute = cancel_at_period_end

            outcome = await self.reconciler.reconcile(
                load=lambda: self.subscription_repo.get_by_tenant_id(command.tenant_id),
                compute=compute,
            )

            await self.uow.commit()

            logger.info(
                f"Tenant {command.tenant_id}: {subscription.billing_provider.value} subscription "
                f"{'cancelled' if immediate else 'set to cancel at period end'}"
            )
            return Return.ok(SubscriptionResponseDTO.from_entity(outcome.subscription))

        except BillingProviderError as e:
            await self.uow.rollback()
            return Return.err(provider_error(e))
        except ConcurrentUpdateError as e:
            await self.uow.rollback()
            return Return.err(conflict_error(e))
        except Exception as e:
            await self.uow.rollback()
            return Return.err(internal_error(e, "Failed to cancel subscription"))

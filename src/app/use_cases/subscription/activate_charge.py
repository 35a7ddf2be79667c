"""ActivateCharge Use Case

Completes the approval flow: the marketplace redirect callback and the
DIRECT inline confirmation both land here.
"""

import logging
from libs.result import Result, Return, Error
from src.app.services.unit_of_work import UnitOfWork
from src.app.services.billing_provider import BillingProviderError, ProviderRejected
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.provider_event import map_native_status
from src.domain.subscription import Subscription, SubscriptionStatus
from .dtos import ActivateChargeCommandDTO, SubscriptionResponseDTO
from .errors import ConcurrentUpdateError, conflict_error, internal_error, provider_error
from .provider_router import BillingProviderRouter
from .reconciler import SubscriptionReconciler, Transition, activation_changes

logger = logging.getLogger(__name__)


class ActivateCharge:
    """
    Use Case: Activate an approved charge

    Business Rules:
    1. The charge must be the subscription's current charge
    2. Declined, expired or cancelled charges fail with CHARGE_REJECTED
    3. Charges the provider still reports as unpaid or pending fail with
       CHARGE_NOT_CONFIRMED and the subscription stays PENDING_APPROVAL
    4. A live charge becomes TRIALING when the provider grants trial days,
       ACTIVE otherwise; PAST_DUE is taken as reported
    5. Period, trial bounds and credit counters restart from now
    6. Re-activating a TRIALING/ACTIVE subscription is a no-op

    Flow:
    1. Load subscription and check the charge
    2. Activate at the provider
    3. Apply the activation transition and entitlements
    4. Commit
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

    async def execute(self, command: ActivateChargeCommandDTO) -> Result[SubscriptionResponseDTO]:
        try:
            subscription = await self.subscription_repo.get_by_tenant_id(command.tenant_id)
            if subscription is None:
                return Return.err(
                    Error(
                        code="SUBSCRIPTION_NOT_FOUND",
                        message=f"No subscription found for tenant {command.tenant_id}",
                    )
                )

            if subscription.provider_charge_id != command.charge_id:
                return Return.err(
                    Error(
                        code="VALIDATION_ERROR",
                        message="Charge does not belong to the current subscription",
                        reason=f"expected {subscription.provider_charge_id}, got {command.charge_id}",
                    )
                )

            if subscription.status in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE):
                logger.info(
                    f"Tenant {command.tenant_id}: charge {command.charge_id} already "
                    f"{subscription.status.value}, nothing to activate"
                )
                return Return.ok(SubscriptionResponseDTO.from_entity(subscription))

            connection = await self.connection_repo.get_by_tenant_id(command.tenant_id)
            adapter = self.router.adapter_for(subscription.billing_provider)
            account = self.router.account_for(subscription.billing_provider, subscription, connection)

            charge_status = await adapter.activate(account, command.charge_id)

            mapped = map_native_status(subscription.billing_provider, charge_status.native_status)
            if mapped == SubscriptionStatus.CANCELLED:
                raise ProviderRejected(
                    f"The charge is {charge_status.native_status} and can no longer be activated.",
                    subscription.billing_provider,
                )
            if mapped is None:
                logger.info(
                    f"Tenant {command.tenant_id}: charge {command.charge_id} is still "
                    f"{charge_status.native_status}, not activating"
                )
                return Return.err(
                    Error(
                        code="CHARGE_NOT_CONFIRMED",
                        message="The charge has not been confirmed yet",
                        reason=f"provider status {charge_status.native_status}",
                    )
                )

            def compute(current: Subscription) -> Transition:
                if current.provider_charge_id != command.charge_id:
                    return Transition(reason="charge replaced")
                return activation_changes(
                    current, mapped, charge_status.trial_days, charge_status.observed_at
                )

            outcome = await self.reconciler.reconcile(
                load=lambda: self.subscription_repo.get_by_tenant_id(command.tenant_id),
                compute=compute,
            )

            await self.uow.commit()

            return Return.ok(SubscriptionResponseDTO.from_entity(outcome.subscription))

        except BillingProviderError as e:
            await self.uow.rollback()
            return Return.err(provider_error(e))
        except ConcurrentUpdateError as e:
            await self.uow.rollback()
            return Return.err(conflict_error(e))
        except Exception as e:
            await self.uow.rollback()
            return Return.err(internal_error(e, "Failed to activate charge"))

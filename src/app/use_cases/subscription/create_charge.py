"""CreateCharge Use Case

Starts a subscription: creates a pending charge at the tenant's billing
provider and records the subscription as PENDING_APPROVAL.
"""

import logging
from datetime import datetime
from typing import Optional
from libs.result import Result, Return, Error
from src.app.services.unit_of_work import UnitOfWork
from src.app.services.billing_provider import BillingProviderError, BillingTenant
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from src.domain.plans import get_plan
from src.domain.subscription import BillingProvider, Subscription, SubscriptionStatus
from .dtos import ChargeResponseDTO, CreateChargeCommandDTO
from .errors import ConcurrentUpdateError, conflict_error, internal_error, provider_error
from .provider_router import BillingProviderRouter
from .reconciler import SubscriptionReconciler, Transition

logger = logging.getLogger(__name__)


class CreateCharge:
    """
    Use Case: Create a pending charge for a paid plan

    Business Rules:
    1. FREE cannot be purchased
    2. Marketplace-locked tenants can only be billed by the marketplace
    3. A live subscription must be cancelled first: PROVIDER_MISMATCH at
       another provider, SUBSCRIPTION_ACTIVE at the same one
    4. billing_provider never moves from MARKETPLACE back to DIRECT
    5. A cancelled or still pending subscription may start a fresh
       PENDING_APPROVAL

    Flow:
    1. Resolve provider through the router
    2. Create the pending charge at the provider
    3. Upsert the subscription as PENDING_APPROVAL
    4. Commit and return the confirmation action
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

    async def execute(self, command: CreateChargeCommandDTO) -> Result[ChargeResponseDTO]:
        if not get_plan(command.plan).purchasable:
            return Return.err(
                Error(
                    code="INVALID_PLAN",
                    message=f"Plan {command.plan.value} cannot be purchased",
                )
            )

        try:
            subscription = await self.subscription_repo.get_by_tenant_id(command.tenant_id)
            connection = await self.connection_repo.get_by_tenant_id(command.tenant_id)

            provider, adapter = self.router.resolve(subscription, connection, command.provider)

            mismatch = self._provider_mismatch(subscription, provider)
            if mismatch:
                return Return.err(mismatch)

            if subscription is not None and subscription.is_live:
                return Return.err(self._already_subscribed(subscription))

            account = self.router.account_for(provider, subscription, connection)
            tenant = BillingTenant(
                tenant_id=command.tenant_id,
                user_id=command.user_id,
                account=account,
                email=command.email,
            )
            creation = await adapter.create_charge(tenant, command.plan, command.period)

            fields = {
                "user_id": command.user_id,
                "plan": command.plan,
                "billing_period": command.period,
                "status": SubscriptionStatus.PENDING_APPROVAL,
                "billing_provider": provider,
                "provider_charge_id": creation.provider_charge_id,
                "provider_account_id": creation.provider_account_id,
                "cancel_at_period_end": False,
                "cancelled_at": None,
            }

            if subscription is None:
                await self.subscription_repo.create(
                    Subscription(tenant_id=command.tenant_id, **fields)
                )
            else:
                outcome = await self.reconciler.reconcile(
                    load=lambda: self.subscription_repo.get_by_tenant_id(command.tenant_id),
                    compute=lambda current: self._restart(current, fields),
                )
                if not outcome.changed:
                    logger.warning(
                        f"Tenant {command.tenant_id}: subscription went live while charge "
                        f"{creation.provider_charge_id} was being created, discarding it"
                    )
                    await self.uow.rollback()
                    return Return.err(self._already_subscribed(outcome.subscription))

            await self.uow.commit()

            logger.info(
                f"Tenant {command.tenant_id}: pending {provider.value} charge "
                f"{creation.provider_charge_id} for {command.plan.value}/{command.period.value}"
            )

            return Return.ok(
                ChargeResponseDTO(
                    provider=provider,
                    provider_charge_id=creation.provider_charge_id,
                    confirmation_url=creation.confirmation_url,
                    client_secret=creation.client_secret,
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
            return Return.err(internal_error(e, "Failed to create charge"))

    @staticmethod
    def _provider_mismatch(
        subscription: Optional[Subscription], provider: BillingProvider
    ) -> Optional[Error]:
        # A never-approved charge does not bind the tenant to its provider
        if subscription is None or not subscription.is_live:
            return None
        if subscription.billing_provider == provider:
            return None
        return Error(
            code="PROVIDER_MISMATCH",
            message=(
                f"Your subscription is billed by {subscription.billing_provider.value}. "
                f"Cancel it before subscribing through {provider.value}."
            ),
        )

    @staticmethod
    def _already_subscribed(subscription: Subscription) -> Error:
        return Error(
            code="SUBSCRIPTION_ACTIVE",
            message=(
                f"Your {subscription.plan.value} subscription is {subscription.status.value}. "
                f"Cancel it before starting a new one."
            ),
        )

    @staticmethod
    def _restart(current: Subscription, fields: dict) -> Transition:
        # Only a pending or cancelled subscription may take a new charge
        if current.is_live:
            return Transition(reason=f"already {current.status.value}")
        changes = dict(fields)
        if current.billing_provider == BillingProvider.MARKETPLACE:
            changes["billing_provider"] = BillingProvider.MARKETPLACE
        changes["updated_at"] = datetime.utcnow()
        return Transition(changes=changes, reason="new charge")

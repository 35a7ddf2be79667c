"""GetSubscription Use Case

Read-only view of the tenant's canonical subscription state.
"""

from libs.result import Result, Return, Error
from src.app.repositories.subscription_repository import SubscriptionRepository
from .dtos import SubscriptionResponseDTO


class GetSubscription:
    """
    Use Case: Get canonical subscription state

    Pure query, no side effects.
    """

    def __init__(self, subscription_repo: SubscriptionRepository):
        self.subscription_repo = subscription_repo

    async def execute(self, tenant_id: str) -> Result[SubscriptionResponseDTO]:
        try:
            subscription = await self.subscription_repo.get_by_tenant_id(tenant_id)

            if subscription is None:
                return Return.err(
                    Error(
                        code="SUBSCRIPTION_NOT_FOUND",
                        message=f"No subscription found for tenant {tenant_id}",
                    )
                )

            return Return.ok(SubscriptionResponseDTO.from_entity(subscription))

        except Exception as e:
            return Return.err(
                Error(
                    code="INTERNAL_ERROR",
                    message="Failed to retrieve subscription",
                    reason=str(e),
                )
            )

"""GetBillingProvider Use Case

Tells the client which billing authority serves the tenant so it can show
the right checkout (inline card form or marketplace redirect).
"""

from libs.result import Result, Return, Error
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.app.repositories.marketplace_connection_repository import MarketplaceConnectionRepository
from .dtos import BillingProviderInfoDTO
from .provider_router import BillingProviderRouter


class GetBillingProvider:

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        connection_repo: MarketplaceConnectionRepository,
        router: BillingProviderRouter,
    ):
        self.subscription_repo = subscription_repo
        self.connection_repo = connection_repo
        self.router = router

    async def execute(self, tenant_id: str) -> Result[BillingProviderInfoDTO]:
        try:
            subscription = await self.subscription_repo.get_by_tenant_id(tenant_id)
            connection = await self.connection_repo.get_by_tenant_id(tenant_id)
            return Return.ok(self.router.describe(subscription, connection))
        except Exception as e:
            return Return.err(
                Error(
                    code="INTERNAL_ERROR",
                    message="Failed to resolve billing provider",
                    reason=str(e),
                )
            )

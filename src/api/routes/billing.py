"""Billing API Routes

FastAPI routes for the subscription lifecycle: subscribe, confirm,
marketplace approval callback, cancel, sync and read-only views.
"""

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from src.api.error import ClientError
from src.api.rate_limit import rate_limit
from src.api.schemas.billing_request import (
    CancelRequestSchema,
    ConfirmRequestSchema,
    SubscribeRequestSchema,
)
from src.adapter.repositories.marketplace_connection_repository import (
    SqlAlchemyMarketplaceConnectionRepository,
)
from src.adapter.repositories.organization_repository import SqlAlchemyOrganizationRepository
from src.adapter.repositories.subscription_repository import SqlAlchemySubscriptionRepository
from src.adapter.services.unit_of_work import SqlAlchemyUnitOfWork
from src.app.use_cases.subscription import (
    ActivateCharge,
    ActivateChargeCommandDTO,
    BillingProviderInfoDTO,
    BillingProviderRouter,
    CancelCommandDTO,
    CancelSubscription,
    ChargeResponseDTO,
    CreateCharge,
    CreateChargeCommandDTO,
    GetBillingProvider,
    GetSubscription,
    SubscriptionReconciler,
    SubscriptionResponseDTO,
    SyncResultDTO,
    SyncSubscription,
)
from src.depends import (
    TenantContext,
    get_billing_router,
    get_config,
    get_session,
    get_tenant_context,
)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _lifecycle_dependencies(session: AsyncSession, config, billing_router: BillingProviderRouter) -> dict:
    """Keyword arguments shared by the state-changing use cases"""
    subscription_repo = SqlAlchemySubscriptionRepository(session)
    reconciler = SubscriptionReconciler(
        subscription_repo=subscription_repo,
        organization_repo=SqlAlchemyOrganizationRepository(session),
        max_attempts=config.RECONCILE_MAX_ATTEMPTS,
    )
    return {
        "uow": SqlAlchemyUnitOfWork(session),
        "subscription_repo": subscription_repo,
        "connection_repo": SqlAlchemyMarketplaceConnectionRepository(session),
        "reconciler": reconciler,
        "router": billing_router,
    }


@router.post(
    "/subscribe",
    response_model=ChargeResponseDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("standard"))],
    responses={
        409: {
            "description": "Tenant is billed by another provider",
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": "PROVIDER_LOCK_VIOLATION",
                            "message": "This account is billed through the marketplace. "
                                       "Manage your subscription from the marketplace admin.",
                            "request_id": "6f1c...",
                        }
                    }
                }
            }
        },
        400: {"description": "FREE plan requested or marketplace not connected"},
    }
)
async def subscribe(
    request: SubscribeRequestSchema,
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """
    Start a paid subscription.

    Creates a pending charge at the tenant's billing provider and records
    the subscription as PENDING_APPROVAL.

    **Returns:**
    - 200: `client_secret` (DIRECT, confirm inline) or `confirmation_url`
      (MARKETPLACE, redirect the merchant)
    - 400: FREE plan, or marketplace not connected
    - 409: Provider lock or live subscription at another provider
    - 503: Provider temporarily unavailable
    """
    command = CreateChargeCommandDTO(
        tenant_id=tenant.tenant_id,
        user_id=tenant.user_id,
        email=request.email,
        plan=request.plan,
        period=request.period,
        provider=request.provider,
    )

    use_case = CreateCharge(**_lifecycle_dependencies(session, config, billing_router))
    result = await use_case.execute(command)

    if result.is_err():
        raise ClientError(result.error)

    return result.value


@router.post(
    "/confirm",
    response_model=SubscriptionResponseDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("standard"))],
)
async def confirm(
    request: ConfirmRequestSchema,
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """
    Inline payment confirmed on the client (DIRECT).

    Runs the same activation as the marketplace callback.

    **Returns:**
    - 200: Subscription TRIALING or ACTIVE
    - 400: Charge does not belong to the tenant's subscription
    - 402: Charge rejected by the provider
    - 404: No subscription
    """
    use_case = ActivateCharge(**_lifecycle_dependencies(session, config, billing_router))
    result = await use_case.execute(
        ActivateChargeCommandDTO(tenant_id=tenant.tenant_id, charge_id=request.charge_id)
    )

    if result.is_err():
        raise ClientError(result.error)

    return result.value


@router.get(
    "/callback",
    status_code=status.HTTP_302_FOUND,
    dependencies=[Depends(rate_limit("auth"))],
    response_class=RedirectResponse,
)
async def marketplace_callback(
    org: str = Query(..., min_length=1, description="Tenant ID"),
    user: Optional[str] = Query(default=None),
    plan: Optional[str] = Query(default=None),
    billing: Optional[str] = Query(default=None),
    charge_id: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """
    Marketplace approval redirect.

    The merchant lands here after approving (or declining) the recurring
    charge. Always answers with a redirect to the frontend subscription page.
    """
    target = f"{config.APP_URL.rstrip('/')}/subscription"

    if not charge_id:
        return RedirectResponse(
            f"{target}?{urlencode({'error': 'VALIDATION_ERROR'})}",
            status_code=status.HTTP_302_FOUND,
        )

    use_case = ActivateCharge(**_lifecycle_dependencies(session, config, billing_router))
    result = await use_case.execute(ActivateChargeCommandDTO(tenant_id=org, charge_id=charge_id))

    if result.is_err():
        query = {"error": result.error.code}
    else:
        query = {"shopify_billing": "success", "plan": result.value.plan.value}
        if billing:
            query["billing"] = billing

    return RedirectResponse(f"{target}?{urlencode(query)}", status_code=status.HTTP_302_FOUND)


@router.post(
    "/cancel",
    response_model=SubscriptionResponseDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("standard"))],
)
async def cancel(
    request: CancelRequestSchema,
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """
    Cancel the tenant's subscription.

    `immediate=false` keeps access until current_period_end.

    **Returns:**
    - 200: Updated subscription
    - 404: No subscription
    - 409: Already cancelled
    """
    use_case = CancelSubscription(**_lifecycle_dependencies(session, config, billing_router))
    result = await use_case.execute(
        CancelCommandDTO(tenant_id=tenant.tenant_id, immediate=request.immediate)
    )

    if result.is_err():
        raise ClientError(result.error)

    return result.value


@router.post(
    "/sync",
    response_model=SyncResultDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("sync"))],
)
async def sync(
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """Re-poll the provider for the current tenant. Safe to repeat."""
    use_case = SyncSubscription(**_lifecycle_dependencies(session, config, billing_router))
    result = await use_case.execute(tenant.tenant_id)

    if result.is_err():
        raise ClientError(result.error)

    return result.value


@router.get(
    "/subscription",
    response_model=SubscriptionResponseDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("standard"))],
)
async def get_subscription(
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    use_case = GetSubscription(SqlAlchemySubscriptionRepository(session))
    result = await use_case.execute(tenant.tenant_id)

    if result.is_err():
        raise ClientError(result.error)

    return result.value


@router.get(
    "/provider",
    response_model=BillingProviderInfoDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("standard"))],
)
async def get_billing_provider(
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """Which provider bills the tenant (drives the checkout UI)."""
    use_case = GetBillingProvider(
        subscription_repo=SqlAlchemySubscriptionRepository(session),
        connection_repo=SqlAlchemyMarketplaceConnectionRepository(session),
        router=billing_router,
    )
    result = await use_case.execute(tenant.tenant_id)

    if result.is_err():
        raise ClientError(result.error)

    return result.value

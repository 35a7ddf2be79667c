"""Webhook API Routes

Provider notifications. Every delivery whose body parses is acknowledged
with 200 so providers stop retrying. Unverified or unknown events are
dropped by the use case; events that fail to apply are logged and left to
the periodic sync.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlmodel.ext.asyncio.session import AsyncSession

from libs.result import Error
from src.api.error import ClientError, request_id_of
from src.api.rate_limit import rate_limit
from src.adapter.repositories.invoice_repository import SqlAlchemyInvoiceRepository
from src.adapter.repositories.marketplace_connection_repository import (
    SqlAlchemyMarketplaceConnectionRepository,
)
from src.adapter.repositories.organization_repository import SqlAlchemyOrganizationRepository
from src.adapter.repositories.subscription_repository import SqlAlchemySubscriptionRepository
from src.adapter.services.provider_factory import webhook_secrets
from src.adapter.services.unit_of_work import SqlAlchemyUnitOfWork
from src.app.use_cases.subscription import (
    ApplyWebhookEvent,
    BillingProviderRouter,
    SubscriptionReconciler,
    WebhookCommandDTO,
    WebhookResultDTO,
)
from src.domain.subscription import BillingProvider
from src.depends import get_billing_router, get_config, get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

PROVIDER_SLUGS = {
    "stripe": BillingProvider.DIRECT,
    "shopify": BillingProvider.MARKETPLACE,
}


@router.post(
    "/{provider}",
    response_model=WebhookResultDTO,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(rate_limit("webhook", prefix="webhook"))],
    responses={
        400: {"description": "Body is not a JSON object"},
        404: {"description": "Unknown provider"},
    }
)
async def receive_webhook(
    provider: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
    config=Depends(get_config),
    billing_router: BillingProviderRouter = Depends(get_billing_router),
):
    """
    Receive a provider webhook (`stripe` or `shopify`).

    The raw body is passed through untouched for signature verification.

    **Returns:**
    - 200: `{received: true, applied: bool, outcome}`
    - 400: Unparseable body
    - 404: Unknown provider
    """
    billing_provider = PROVIDER_SLUGS.get(provider.lower())
    if billing_provider is None:
        raise ClientError(
            Error(code="NOT_FOUND", message=f"Unknown webhook provider '{provider}'"),
            status_code=status.HTTP_404_NOT_FOUND,
        )

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ClientError(
            Error(code="VALIDATION_ERROR", message="Webhook body is not valid JSON", reason=str(e))
        )
    if not isinstance(payload, dict):
        raise ClientError(
            Error(code="VALIDATION_ERROR", message="Webhook body must be a JSON object")
        )

    subscription_repo = SqlAlchemySubscriptionRepository(session)
    use_case = ApplyWebhookEvent(
        uow=SqlAlchemyUnitOfWork(session),
        subscription_repo=subscription_repo,
        invoice_repo=SqlAlchemyInvoiceRepository(session),
        connection_repo=SqlAlchemyMarketplaceConnectionRepository(session),
        reconciler=SubscriptionReconciler(
            subscription_repo=subscription_repo,
            organization_repo=SqlAlchemyOrganizationRepository(session),
            max_attempts=config.RECONCILE_MAX_ATTEMPTS,
        ),
        adapter=billing_router.adapter_for(billing_provider),
        webhook_secret=webhook_secrets(config)[billing_provider],
    )

    result = await use_case.execute(
        WebhookCommandDTO(raw_body=raw_body, headers=dict(request.headers), payload=payload)
    )

    if result.is_err():
        # Still acknowledged; sync() recovers whatever this delivery missed
        logger.error(
            f"[{request_id_of(request)}] {provider} webhook not applied: "
            f"{result.error.code}: {result.error.reason or result.error.message}"
        )
        return WebhookResultDTO(applied=False, outcome=result.error.code.lower())

    return result.value


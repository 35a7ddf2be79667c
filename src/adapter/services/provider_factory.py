"""Billing adapter construction

Adapters are built once per process (API startup or worker start) from
ApplicationConfig and shared by every request.
"""

import logging
from typing import Dict, Optional

from libs.retry import RetryConfig
from src.app.services.billing_provider import BillingProviderAdapter
from src.domain.subscription import BillingProvider
from .shopify_billing import ShopifyBillingAdapter
from .stripe_billing import StripeBillingAdapter

logger = logging.getLogger(__name__)


def create_billing_adapters(
    config, retry_config: Optional[RetryConfig] = None
) -> Dict[BillingProvider, BillingProviderAdapter]:
    """
    Factory function to create one adapter per provider

    Args:
        config: ApplicationConfig (or any object with the same attributes)
        retry_config: Override of the per-provider retry presets (the sync
                      worker passes the slower background preset)

    Returns:
        {BillingProvider: adapter}
    """
    stripe_kwargs = {"retry_config": retry_config} if retry_config else {}
    shopify_kwargs = {"retry_config": retry_config} if retry_config else {}

    if not config.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY is not set, DIRECT billing calls will fail")

    return {
        BillingProvider.DIRECT: StripeBillingAdapter(
            api_key=config.STRIPE_SECRET_KEY,
            price_ids=config.STRIPE_PRICE_IDS,
            trial_days=config.TRIAL_DAYS,
            **stripe_kwargs,
        ),
        BillingProvider.MARKETPLACE: ShopifyBillingAdapter(
            app_url=config.APP_URL,
            api_version=config.SHOPIFY_API_VERSION,
            trial_days=config.TRIAL_DAYS,
            test_mode=config.SHOPIFY_BILLING_TEST,
            **shopify_kwargs,
        ),
    }


def webhook_secrets(config) -> Dict[BillingProvider, str]:
    return {
        BillingProvider.DIRECT: config.STRIPE_WEBHOOK_SECRET,
        BillingProvider.MARKETPLACE: config.SHOPIFY_API_SECRET,
    }


async def close_billing_adapters(adapters: Dict[BillingProvider, BillingProviderAdapter]) -> None:
    for adapter in adapters.values():
        close = getattr(adapter, "close", None)
        if close is not None:
            await close()

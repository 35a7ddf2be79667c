"""Billing Provider Router

Decides which billing authority serves a tenant. Marketplace-installed
tenants, and tenants whose subscription is already MARKETPLACE, are locked
to the marketplace; everyone else defaults to DIRECT.
"""

import logging
from typing import Dict, Optional, Tuple
from src.app.services.billing_provider import (
    BillingProviderAdapter,
    ProviderAccount,
    ProviderLockViolation,
    ProviderNotConnected,
)
from src.domain.marketplace_connection import MarketplaceConnection
from src.domain.subscription import BillingProvider, Subscription
from .dtos import BillingProviderInfoDTO

logger = logging.getLogger(__name__)


def is_marketplace_installed(connection: Optional[MarketplaceConnection]) -> bool:
    return connection is not None and connection.is_installed


def is_marketplace_locked(
    subscription: Optional[Subscription], connection: Optional[MarketplaceConnection]
) -> bool:
    """MARKETPLACE is write-once: once locked, a tenant never returns to DIRECT"""
    if is_marketplace_installed(connection):
        return True
    return subscription is not None and subscription.billing_provider == BillingProvider.MARKETPLACE


class BillingProviderRouter:
    """
    Routes billing operations to the adapter that owns the tenant

    Args:
        adapters: One adapter per configured provider
    """

    def __init__(self, adapters: Dict[BillingProvider, BillingProviderAdapter]):
        self.adapters = adapters

    def adapter_for(self, provider: BillingProvider) -> BillingProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ProviderNotConnected(f"{provider.value} billing is not configured", provider)
        return adapter

    def resolve(
        self,
        subscription: Optional[Subscription],
        connection: Optional[MarketplaceConnection],
        requested: Optional[BillingProvider] = None,
    ) -> Tuple[BillingProvider, BillingProviderAdapter]:
        """
        Pick the provider for a new operation

        Raises:
            ProviderLockViolation: DIRECT requested for a marketplace-locked tenant
        """
        if is_marketplace_locked(subscription, connection):
            if requested == BillingProvider.DIRECT:
                tenant = subscription.tenant_id if subscription else (connection.tenant_id if connection else "?")
                logger.warning(f"Tenant {tenant}: DIRECT billing requested on a marketplace-locked tenant")
                raise ProviderLockViolation(
                    "This account is billed through the marketplace. "
                    "Manage your subscription from the marketplace admin.",
                    BillingProvider.DIRECT,
                )
            provider = BillingProvider.MARKETPLACE
        else:
            provider = requested or BillingProvider.DIRECT
        return provider, self.adapter_for(provider)

    def account_for(
        self,
        provider: BillingProvider,
        subscription: Optional[Subscription],
        connection: Optional[MarketplaceConnection],
    ) -> ProviderAccount:
        """
        Provider-side account of the tenant

        Raises:
            ProviderNotConnected: MARKETPLACE without an installed store
        """
        if provider == BillingProvider.MARKETPLACE:
            if not is_marketplace_installed(connection):
                raise ProviderNotConnected(
                    "Shopify is not connected. Please connect your Shopify store first.",
                    provider,
                )
            return ProviderAccount(
                provider=provider,
                account_id=connection.shop_domain,
                access_token=connection.access_token,
            )

        account_id = None
        if subscription is not None and subscription.billing_provider == BillingProvider.DIRECT:
            account_id = subscription.provider_account_id
        return ProviderAccount(provider=provider, account_id=account_id)

    def describe(
        self,
        subscription: Optional[Subscription],
        connection: Optional[MarketplaceConnection],
    ) -> BillingProviderInfoDTO:
        installed = is_marketplace_installed(connection)
        provider = (
            BillingProvider.MARKETPLACE
            if is_marketplace_locked(subscription, connection)
            else BillingProvider.DIRECT
        )
        return BillingProviderInfoDTO(
            provider=provider,
            is_marketplace_merchant=installed,
            shop_domain=connection.shop_domain if installed else None,
            has_active_subscription=subscription is not None and subscription.is_live,
            current_plan=subscription.plan if subscription else None,
            current_status=subscription.status if subscription else None,
            billing_provider=subscription.billing_provider if subscription else None,
        )

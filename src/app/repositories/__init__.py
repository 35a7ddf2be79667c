from .subscription_repository import SubscriptionRepository
from .organization_repository import OrganizationRepository
from .invoice_repository import InvoiceRepository
from .marketplace_connection_repository import MarketplaceConnectionRepository

__all__ = [
    "SubscriptionRepository",
    "OrganizationRepository",
    "InvoiceRepository",
    "MarketplaceConnectionRepository",
]

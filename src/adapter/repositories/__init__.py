from .subscription_repository import SqlAlchemySubscriptionRepository
from .organization_repository import SqlAlchemyOrganizationRepository
from .invoice_repository import SqlAlchemyInvoiceRepository
from .marketplace_connection_repository import SqlAlchemyMarketplaceConnectionRepository

__all__ = [
    "SqlAlchemySubscriptionRepository",
    "SqlAlchemyOrganizationRepository",
    "SqlAlchemyInvoiceRepository",
    "SqlAlchemyMarketplaceConnectionRepository",
]

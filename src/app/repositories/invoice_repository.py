"""Invoice Repository Interface

Defines the contract for invoice persistence operations.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from src.domain.invoice import Invoice


class InvoiceRepository(ABC):
    """
    Repository interface for Invoice persistence

    Invoices are append-only: there is no update or delete.
    """

    @abstractmethod
    async def get_by_provider_invoice_id(self, provider_invoice_id: str) -> Optional[Invoice]:
        """
        Retrieve an invoice by its provider identifier

        Used to neutralize re-delivered paid-period events.

        Returns:
            Invoice if found, None otherwise
        """
        pass

    @abstractmethod
    async def create(self, invoice: Invoice) -> Invoice:
        """
        Persist a new invoice

        Args:
            invoice: Invoice entity to persist

        Returns:
            Created Invoice with generated ID
        """
        pass

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str, limit: int = 20, offset: int = 0) -> List[Invoice]:
        """
        List invoices of a tenant, newest first

        Args:
            tenant_id: Tenant identifier
            limit: Maximum number of invoices to return
            offset: Offset for pagination
        """
        pass

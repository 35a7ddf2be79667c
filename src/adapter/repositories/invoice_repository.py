"""SQLAlchemy Invoice Repository Implementation

Implements invoice persistence using SQLAlchemy async session.
"""

from typing import List, Optional
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from src.app.repositories.invoice_repository import InvoiceRepository
from src.domain.invoice import Invoice


class SqlAlchemyInvoiceRepository(InvoiceRepository):
    """
    SQLAlchemy implementation of InvoiceRepository

    Uses async session for database operations.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_provider_invoice_id(self, provider_invoice_id: str) -> Optional[Invoice]:
        statement = select(Invoice).where(Invoice.provider_invoice_id == provider_invoice_id)
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def create(self, invoice: Invoice) -> Invoice:
        """
        Persist a new invoice

        Raises:
            IntegrityError: provider_invoice_id already recorded
        """
        self.session.add(invoice)
        await self.session.flush()
        await self.session.refresh(invoice)
        return invoice

    async def list_by_tenant(self, tenant_id: str, limit: int = 20, offset: int = 0) -> List[Invoice]:
        statement = (
            select(Invoice)
            .where(Invoice.tenant_id == tenant_id)
            .order_by(Invoice.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

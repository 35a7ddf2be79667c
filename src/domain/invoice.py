"""Invoice Domain Entity

Append-only record of a paid billing period reported by a provider.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlmodel import Field, Column, Index
from sqlalchemy import BigInteger, Integer, Numeric, String, Text
from src.domain.base import BaseModel
from src.domain.subscription import BillingProvider


class Invoice(BaseModel, table=True):
    """
    Invoice - Paid period reported by a billing provider

    Domain Rules:
    - Created from a paid-period webhook event
    - provider_invoice_id is unique (re-delivery never double-invoices)
    - Immutable once written
    """

    __tablename__ = "invoices"
    __table_args__ = (
        Index('ix_invoices_tenant_id', 'tenant_id'),
    )

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        description="Unique invoice identifier (auto-increment)"
    )

    tenant_id: str = Field(
        description="Tenant ID"
    )

    subscription_id: int = Field(
        description="Subscription the invoice belongs to"
    )

    billing_provider: BillingProvider = Field(
        description="Provider that issued the invoice"
    )

    provider_invoice_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True),
        description="Provider invoice identifier (unique)"
    )

    amount: Decimal = Field(
        sa_column=Column(Numeric(18, 2), nullable=False),
        description="Amount paid"
    )

    currency: str = Field(
        default="usd",
        sa_column=Column(String(3), nullable=False),
        description="Currency code (ISO 4217)"
    )

    status: str = Field(
        sa_column=Column(String(50), nullable=False),
        description="Provider invoice status (e.g. paid)"
    )

    hosted_invoice_url: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
    )

    pdf_url: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
    )

    paid_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp when the period was paid"
    )

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Invoice creation timestamp (immutable)"
    )

    class Config:
        """SQLModel configuration"""
        json_schema_extra = {
            "example": {
                "id": 1,
                "tenant_id": "org_xyz789",
                "subscription_id": 1,
                "billing_provider": "DIRECT",
                "provider_invoice_id": "in_1Nabc",
                "amount": "79.99",
                "currency": "usd",
                "status": "paid",
                "paid_at": "2024-02-01T00:00:00Z",
            }
        }

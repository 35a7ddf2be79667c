"""Marketplace Connection Domain Entity

Link between a tenant and its marketplace store. A tenant with an active
connection was installed through the marketplace and must be billed there.
"""

from datetime import datetime
from typing import Optional
from sqlmodel import Field, Column
from sqlalchemy import BigInteger, Integer, String, Text
from src.domain.base import BaseModel


class MarketplaceConnection(BaseModel, table=True):
    """
    Marketplace Connection - Store credentials for marketplace billing

    Domain Rules:
    - One connection per tenant
    - Only active connections with an access token count as installed
    """

    __tablename__ = "marketplace_connections"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
    )

    tenant_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True, index=True),
        description="Tenant ID"
    )

    shop_domain: str = Field(
        sa_column=Column(String(255), nullable=False, index=True),
        description="Store domain (e.g. acme.myshopify.com)"
    )

    access_token: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Admin API access token"
    )

    is_active: bool = Field(default=True)

    installed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_installed(self) -> bool:
        return self.is_active and bool(self.access_token)

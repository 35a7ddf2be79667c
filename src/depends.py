from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession
from config import ApplicationConfig
from libs.result import Error
from src.api.error import ClientError
from src.adapter.services.unit_of_work import SqlAlchemyUnitOfWork
from src.app.services.rate_limiter import RateLimiter
from src.app.use_cases.subscription.provider_router import BillingProviderRouter

engine = create_async_engine(ApplicationConfig.DB_URI, echo=False, future=True)

AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@dataclass(frozen=True)
class TenantContext:
    """Authenticated caller, as established by the upstream auth layer"""
    tenant_id: str
    user_id: Optional[str] = None


async def get_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def get_unit_of_work():
    async with AsyncSessionLocal() as session:
        yield SqlAlchemyUnitOfWork(session)


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> TenantContext:
    if not x_tenant_id:
        raise ClientError(
            Error(code="UNAUTHENTICATED", message="Missing tenant session")
        )
    return TenantContext(tenant_id=x_tenant_id, user_id=x_user_id)


def get_config(request: Request):
    return request.app.state.config


def get_billing_router(request: Request) -> BillingProviderRouter:
    return request.app.state.billing_router


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter

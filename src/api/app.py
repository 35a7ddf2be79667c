"""FastAPI application factory"""

import logging
import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.adapter.services.provider_factory import (
    close_billing_adapters,
    create_billing_adapters,
)
from src.adapter.services.rate_limiter import create_rate_limiter
from src.api.error import register_error_handlers
from src.api.routes import billing, webhooks
from src.app.use_cases.subscription.provider_router import BillingProviderRouter

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def create_app(config) -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if config.ENABLE_SENTRY and config.DSN_SENTRY:
        sentry_sdk.init(
            dsn=config.DSN_SENTRY,
            environment=config.SENTRY_ENVIRONMENT,
            traces_sample_rate=0.1,
        )
        logger.info("Sentry error reporting enabled")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await close_billing_adapters(app.state.billing_router.adapters)
        await app.state.rate_limiter.close()
        logger.info("Billing service shutdown complete")

    app = FastAPI(
        title="Subscription Billing Service",
        description="Reconciles DIRECT and MARKETPLACE subscription billing",
        root_path=config.API_PREFIX,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.billing_router = BillingProviderRouter(create_billing_adapters(config))
    app.state.rate_limiter = create_rate_limiter(config.RATE_LIMIT_REDIS_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    register_error_handlers(app)

    app.include_router(billing.router)
    app.include_router(webhooks.router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app

"""Subscription Sync Background Worker

Periodically re-polls every live subscription at its provider and applies
the result through the same reconciler as webhooks. Covers missed webhook
deliveries and issues scheduled cancellations for providers that cannot
defer a cancel themselves.
Can be run as a standalone script or integrated with a scheduler.
"""

import asyncio
import logging
import time
from typing import Dict, Optional
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config import ApplicationConfig
from libs.retry import RETRY_CONFIGS
from src.adapter.repositories.marketplace_connection_repository import (
    SqlAlchemyMarketplaceConnectionRepository,
)
from src.adapter.repositories.organization_repository import SqlAlchemyOrganizationRepository
from src.adapter.repositories.subscription_repository import SqlAlchemySubscriptionRepository
from src.adapter.services.provider_factory import close_billing_adapters, create_billing_adapters
from src.adapter.services.unit_of_work import SqlAlchemyUnitOfWork
from src.app.services.billing_provider import BillingProviderAdapter
from src.app.use_cases.subscription import (
    BillingProviderRouter,
    SubscriptionReconciler,
    SyncRunResultDTO,
    SyncSubscription,
)
from src.domain.subscription import BillingProvider

logger = logging.getLogger(__name__)


class SubscriptionSyncWorker:
    """
    Background worker for periodic subscription reconciliation

    Features:
    - Re-polls TRIALING, ACTIVE and PAST_DUE subscriptions
    - One session per tenant so a failure never affects other tenants
    - Idempotent: a pass with no provider change writes nothing
    - Can run once or continuously

    Usage:
        # Run one pass (typical cron usage)
        worker = SubscriptionSyncWorker()
        result = await worker.run_once()

        # Run continuously
        worker = SubscriptionSyncWorker()
        await worker.run_forever(interval_seconds=3600)
    """

    def __init__(
        self,
        db_uri: Optional[str] = None,
        config=ApplicationConfig,
        adapters: Optional[Dict[BillingProvider, BillingProviderAdapter]] = None,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize the worker

        Args:
            db_uri: Database URI (defaults to config.DB_URI)
            config: Application configuration
            adapters: Provider adapters (defaults to adapters on the sync retry preset)
            batch_size: Max subscriptions per pass (defaults to config.SYNC_BATCH_SIZE)
        """
        self.config = config
        self.db_uri = db_uri or config.DB_URI
        self.batch_size = batch_size or config.SYNC_BATCH_SIZE

        # Create engine and session factory
        self.engine = create_async_engine(self.db_uri, echo=False, future=True)
        self.async_session_factory = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )

        if adapters is None:
            adapters = create_billing_adapters(config, retry_config=RETRY_CONFIGS["sync"])
        self.router = BillingProviderRouter(adapters)

        self._stopping = asyncio.Event()

        logger.info("SubscriptionSyncWorker initialized")

    async def _sync_tenant(self, tenant_id: str):
        async with self.async_session_factory() as session:
            subscription_repo = SqlAlchemySubscriptionRepository(session)
            use_case = SyncSubscription(
                uow=SqlAlchemyUnitOfWork(session),
                subscription_repo=subscription_repo,
                connection_repo=SqlAlchemyMarketplaceConnectionRepository(session),
                reconciler=SubscriptionReconciler(
                    subscription_repo=subscription_repo,
                    organization_repo=SqlAlchemyOrganizationRepository(session),
                    max_attempts=self.config.RECONCILE_MAX_ATTEMPTS,
                ),
                router=self.router,
            )
            return await use_case.execute(tenant_id)

    async def run_once(self) -> SyncRunResultDTO:
        """
        Run one sync pass over all live subscriptions

        Returns:
            SyncRunResultDTO with summary
        """
        start_time = time.time()

        async with self.async_session_factory() as session:
            subscriptions = await SqlAlchemySubscriptionRepository(session).list_syncable(
                limit=self.batch_size
            )
            tenant_ids = [subscription.tenant_id for subscription in subscriptions]

        logger.info(f"Syncing {len(tenant_ids)} subscriptions")

        synced = changed = skipped = failed = 0

        for tenant_id in tenant_ids:
            try:
                result = await self._sync_tenant(tenant_id)
            except Exception as e:
                logger.exception(f"Unexpected error syncing tenant {tenant_id}: {e}")
                failed += 1
                continue

            if result.is_err():
                logger.error(
                    f"Failed to sync tenant {tenant_id}: "
                    f"{result.error.code} {result.error.reason or result.error.message}"
                )
                failed += 1
            elif not result.value.synced:
                skipped += 1
            else:
                synced += 1
                if result.value.changed:
                    changed += 1
                    logger.info(
                        f"Tenant {tenant_id} reconciled to {result.value.subscription.status.value}"
                    )

        execution_time_ms = int((time.time() - start_time) * 1000)

        result = SyncRunResultDTO(
            total_subscriptions=len(tenant_ids),
            synced=synced,
            changed=changed,
            skipped=skipped,
            failed=failed,
            execution_time_ms=execution_time_ms,
        )

        logger.info(
            f"Subscription sync complete: "
            f"{synced}/{len(tenant_ids)} synced, {changed} changed, "
            f"{failed} failed, {execution_time_ms}ms"
        )

        return result

    async def run_forever(self, interval_seconds: Optional[int] = None):
        """
        Run sync passes continuously until shutdown() is called

        Args:
            interval_seconds: Seconds between passes (default: config.SYNC_INTERVAL_SECONDS)
        """
        interval = interval_seconds or self.config.SYNC_INTERVAL_SECONDS
        logger.info(f"Starting continuous subscription sync with {interval}s interval")

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Sync cycle failed: {e}")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def stop(self):
        self._stopping.set()

    async def shutdown(self):
        """Cleanup resources"""
        self.stop()
        await close_billing_adapters(self.router.adapters)
        await self.engine.dispose()
        logger.info("SubscriptionSyncWorker shutdown complete")


async def main():
    """
    Entry point for running the worker as a standalone script

    Usage:
        # Run one pass
        python -m src.worker.subscription_sync --once

        # Run continuously (default)
        python -m src.worker.subscription_sync --interval 1800
    """
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Subscription Sync Worker")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=ApplicationConfig.SYNC_INTERVAL_SECONDS,
        help="Seconds between passes",
    )
    args = parser.parse_args()

    if not args.once and not ApplicationConfig.SYNC_ENABLED:
        logger.info("SYNC_ENABLED is off, exiting")
        return

    worker = SubscriptionSyncWorker()

    try:
        if args.once:
            result = await worker.run_once()
            print(f"Sync complete:")
            print(f"  Total subscriptions: {result.total_subscriptions}")
            print(f"  Synced: {result.synced}")
            print(f"  Changed: {result.changed}")
            print(f"  Skipped: {result.skipped}")
            print(f"  Failed: {result.failed}")
            print(f"  Execution time: {result.execution_time_ms}ms")
        else:
            await worker.run_forever(interval_seconds=args.interval)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        await worker.shutdown()


if __name__ == "__main__":
    asyncio.run(main())

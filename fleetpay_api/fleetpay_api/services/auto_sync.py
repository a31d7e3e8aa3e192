"""Background scheduler for periodic gateway sync across all tenants.

Runs as an ``asyncio`` background task.  Every pass lists the tenants with
a stored gateway configuration and syncs each one for the lookback
window, at most ``auto_sync_max_workers`` tenants at a time.  A failing
tenant never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, timedelta

from fleetpay_core.errors import GatewayConfigurationError, GatewayError, TenantConfigNotFoundError
from fleetpay_core.models.sync import SyncResult
from fleetpay_core.state.database import is_sqlite_url
from pydantic import BaseModel, Field
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetpay_api.config import APISettings
from fleetpay_api.services.gateway_client import GatewayClient
from fleetpay_api.services.gateway_service import GatewayService
from fleetpay_api.services.invoice_import import InvoiceImportService
from fleetpay_api.services.tenant_config_service import TenantConfigService, list_configured_tenants
from fleetpay_api.services.token_cache import TokenRegistry
from fleetpay_api.services.transaction_sync import SyncLocks, TransactionSyncService

logger = logging.getLogger(__name__)


class TenantSyncOutcome(BaseModel):
    """Result of one tenant within a scheduled pass."""

    tenant_id: str
    success: bool
    sync: SyncResult | None = None
    invoices_imported: int = 0
    invoice_error: str | None = Field(default=None, description="Invoice import failure; the sync still ran.")
    error: str | None = None


class AutoSyncReport(BaseModel):
    """Summary of one scheduled pass."""

    total_tenants: int = 0
    successful: int = 0
    failed: int = 0
    results: list[TenantSyncOutcome] = Field(default_factory=list)


class AutoSyncScheduler:
    """AsyncIO background task for scheduled multi-tenant sync.

    Parameters
    ----------
    session_factory:
        Factory for the per-tenant sessions; each tenant runs in its own.
    client:
        Shared gateway HTTP client.
    registry:
        Shared token registry.
    sync_locks:
        Per-tenant locks shared with on-demand sync requests.
    settings:
        Interval, lookback, concurrency and page sizes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: GatewayClient,
        registry: TokenRegistry,
        sync_locks: SyncLocks,
        settings: APISettings,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._registry = registry
        self._sync_locks = sync_locks
        self._settings = settings
        # SQLite allows a single writer; tenants then run one at a time.
        self._max_workers = 1 if is_sqlite_url(settings.database_url) else settings.auto_sync_max_workers
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Whether the scheduler loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("AutoSyncScheduler already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("AutoSyncScheduler started (interval=%ss)", self._settings.auto_sync_interval_seconds)

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("AutoSyncScheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("AutoSyncScheduler database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("AutoSyncScheduler unexpected error: %s", exc, exc_info=True)
                raise
            await asyncio.sleep(self._settings.auto_sync_interval_seconds)

    async def run_once(self, *, today: date | None = None) -> AutoSyncReport:
        """Sync every configured tenant once and return the report."""
        today = today or datetime.now(UTC).date()
        start = today - timedelta(days=self._settings.auto_sync_lookback_days)

        async with self._session_factory() as session:
            tenant_ids = await list_configured_tenants(session)

        report = AutoSyncReport(total_tenants=len(tenant_ids))
        if not tenant_ids:
            logger.info("Auto-sync: no tenant has a gateway configuration")
            return report

        semaphore = asyncio.Semaphore(self._max_workers)

        async def _bounded(tenant_id: str) -> TenantSyncOutcome:
            async with semaphore:
                try:
                    return await self.sync_tenant(tenant_id, start, today)
                except Exception as exc:
                    logger.exception("Auto-sync crashed for tenant %s", tenant_id)
                    return TenantSyncOutcome(
                        tenant_id=tenant_id,
                        success=False,
                        error=str(exc) or exc.__class__.__name__,
                    )

        report.results = list(await asyncio.gather(*(_bounded(tenant_id) for tenant_id in tenant_ids)))
        report.successful = sum(1 for outcome in report.results if outcome.success)
        report.failed = report.total_tenants - report.successful
        logger.info(
            "Auto-sync pass finished: tenants=%d successful=%d failed=%d",
            report.total_tenants,
            report.successful,
            report.failed,
        )
        return report

    async def sync_tenant(self, tenant_id: str, start: date, end: date) -> TenantSyncOutcome:
        """Sync transactions, then import invoices (optional), for one tenant.

        The statement goes first so the matcher sees every credit before the
        import refreshes invoice statuses; the import then offers the
        still-open credits to the matcher again.
        """
        outcome = TenantSyncOutcome(tenant_id=tenant_id, success=False)
        async with self._session_factory() as session:
            try:
                config = await TenantConfigService(session, tenant_id=tenant_id).load()
            except (TenantConfigNotFoundError, GatewayConfigurationError) as exc:
                outcome.error = str(exc)
                logger.error("Auto-sync skipped tenant %s: %s", tenant_id, exc)
                return outcome

            gateway = GatewayService.from_settings(
                session, self._client, self._registry, self._settings, tenant_id=tenant_id
            )

            syncer = TransactionSyncService(
                session,
                gateway,
                tenant_id=tenant_id,
                window_days=self._settings.reconciliation_window_days,
                lock=self._sync_locks.lock(tenant_id),
            )
            try:
                outcome.sync = await syncer.sync_transactions(config, start, end)
            except Exception as exc:
                # Keep the error sync log written by the failed run.
                try:
                    await session.commit()
                except SQLAlchemyError:
                    await session.rollback()
                    logger.exception("Could not persist the sync log of tenant %s", tenant_id)
                outcome.error = str(exc) or exc.__class__.__name__
                logger.error("Auto-sync failed for tenant %s: %s", tenant_id, exc)
                return outcome
            await session.commit()

            if self._settings.auto_sync_import_invoices:
                importer = InvoiceImportService(
                    session,
                    gateway,
                    tenant_id=tenant_id,
                    window_days=self._settings.reconciliation_window_days,
                )
                try:
                    imported = await importer.import_invoices(config, start=start, end=end, today=end)
                    await session.commit()
                    outcome.invoices_imported = imported.imported_count
                except GatewayError as exc:
                    await session.rollback()
                    outcome.invoice_error = str(exc)
                    logger.warning("Auto-sync invoice import failed for tenant %s: %s", tenant_id, exc)

        outcome.success = True
        return outcome

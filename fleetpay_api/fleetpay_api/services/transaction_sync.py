"""Statement ingestion: fetch, normalize, upsert, reconcile, log.

One call to :meth:`TransactionSyncService.sync_transactions` is one sync
run.  Every run writes exactly one ``sync_logs`` row, whether it succeeds
or fails.  A malformed entry is skipped without aborting the run; a
failed statement fetch aborts the run and is re-raised after logging.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import date
from typing import Any

from fleetpay_core.errors import StatementEntryError
from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.models.sync import SyncResult, SyncStatus
from fleetpay_core.models.transaction import TransactionDirection, normalize_statement_entry
from fleetpay_core.state.repository import BankTransactionRepository, SyncLogRepository
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.services.gateway_service import GatewayService
from fleetpay_api.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class SyncLocks:
    """One lock per tenant so sync runs of the same tenant never overlap."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock


class TransactionSyncService:
    """Pull a statement window into ``bank_transactions`` for one tenant.

    Parameters
    ----------
    session:
        Active database session; the caller commits.
    gateway:
        Authenticated gateway operations for the same tenant.
    tenant_id:
        Tenant scope.
    window_days:
        Reconciliation due-date window, passed to the matcher.
    lock:
        Optional per-tenant lock held for the whole run.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayService,
        *,
        tenant_id: str,
        window_days: int = 7,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._tenant_id = tenant_id
        self._lock = lock
        self._transactions = BankTransactionRepository(session, tenant_id=tenant_id)
        self._sync_log = SyncLogRepository(session, tenant_id=tenant_id)
        self._matcher = ReconciliationService(session, tenant_id=tenant_id, window_days=window_days)

    async def sync_transactions(
        self,
        config: TenantGatewayConfig,
        start_date: date,
        end_date: date,
    ) -> SyncResult:
        """Ingest ``[start_date, end_date]`` (inclusive calendar dates).

        Raises
        ------
        ValueError
            If the date range is inverted (no log is written).
        GatewayError
            If the statement fetch fails after the retry policy; a
            ``status=error`` log row with the counts so far is written first.
        """
        if start_date > end_date:
            raise ValueError(f"start_date {start_date} is after end_date {end_date}")

        guard = self._lock if self._lock is not None else contextlib.nullcontext()
        async with guard:
            return await self._run(config, start_date, end_date)

    async def _run(self, config: TenantGatewayConfig, start_date: date, end_date: date) -> SyncResult:
        result = SyncResult(tenant_id=self._tenant_id, start_date=start_date, end_date=end_date)
        started = time.monotonic()

        try:
            async for entries in self._gateway.iter_statement_pages(config, start_date, end_date):
                for entry in entries:
                    await self._ingest(entry, result)
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                await self._session.rollback()
            result.duration_ms = int((time.monotonic() - started) * 1000)
            await self._sync_log.record(
                start_date=start_date,
                end_date=end_date,
                status=SyncStatus.ERROR.value,
                imported_count=result.imported_count,
                conciliated_count=result.conciliated_count,
                skipped_count=result.skipped_count,
                duration_ms=result.duration_ms,
                error_message=str(exc) or exc.__class__.__name__,
            )
            logger.error(
                "Sync failed for tenant %s (%s..%s) after %d imported: %s",
                self._tenant_id,
                start_date,
                end_date,
                result.imported_count,
                exc,
            )
            raise

        result.duration_ms = int((time.monotonic() - started) * 1000)
        await self._sync_log.record(
            start_date=start_date,
            end_date=end_date,
            status=SyncStatus.SUCCESS.value,
            imported_count=result.imported_count,
            conciliated_count=result.conciliated_count,
            skipped_count=result.skipped_count,
            duration_ms=result.duration_ms,
        )
        logger.info(
            "Sync for tenant %s (%s..%s): imported=%d conciliated=%d skipped=%d in %dms",
            self._tenant_id,
            start_date,
            end_date,
            result.imported_count,
            result.conciliated_count,
            result.skipped_count,
            result.duration_ms,
        )
        return result

    async def _ingest(self, entry: Any, result: SyncResult) -> None:
        """Normalize, upsert and (for credits) reconcile one entry."""
        try:
            normalized = normalize_statement_entry(entry)
        except StatementEntryError as exc:
            logger.warning("Skipping statement entry for tenant %s: %s", self._tenant_id, exc)
            result.skipped_count += 1
            return

        try:
            async with self._session.begin_nested():
                row = await self._transactions.upsert(
                    external_id=normalized.external_id,
                    amount=normalized.amount,
                    currency=normalized.currency,
                    direction=normalized.direction.value,
                    status=normalized.status,
                    description=normalized.description,
                    occurred_at=normalized.occurred_at,
                    raw_payload=normalized.raw_payload,
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "Skipping statement entry %s for tenant %s: %s",
                normalized.external_id,
                self._tenant_id,
                exc,
            )
            result.skipped_count += 1
            return
        result.imported_count += 1

        if normalized.direction is not TransactionDirection.CREDIT or row.conciliated:
            return
        try:
            if await self._matcher.try_reconcile(row, normalized.amount):
                result.conciliated_count += 1
        except SQLAlchemyError as exc:
            logger.warning(
                "Reconciliation of %s failed for tenant %s: %s",
                normalized.external_id,
                self._tenant_id,
                exc,
            )

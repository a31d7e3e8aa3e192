"""Import of the gateway invoice listing into local invoices.

Invoices are keyed by ``(tenant_id, external_charge_id)``.  An import
creates missing invoices and refreshes existing ones, but never moves an
invoice out of a protected final state (paid, cancelled, chargeback).
An invoice past due while the gateway still takes payment is stored as
``expired`` with the ``overdue`` flag and stays open for matching.
After the import, open credits are offered to the matcher again since
their invoice may only now exist locally.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any

from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.models.invoice import (
    PAYMENT_METHOD_GATEWAY,
    PROTECTED_STATUSES,
    GatewayInvoice,
    InvoiceStatus,
)
from fleetpay_core.models.sync import InvoiceImportResult
from fleetpay_core.state.repository import InvoiceRepository
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.services.gateway_service import GatewayService
from fleetpay_api.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class InvoiceImportService:
    """Pull the gateway invoice listing for one tenant.

    Parameters
    ----------
    session:
        Active database session; the caller commits.
    gateway:
        Authenticated gateway operations for the same tenant.
    tenant_id:
        Tenant scope.
    window_days:
        Reconciliation due-date window for the post-import matching pass.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayService,
        *,
        tenant_id: str,
        window_days: int = 7,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._tenant_id = tenant_id
        self._invoices = InvoiceRepository(session, tenant_id=tenant_id)
        self._matcher = ReconciliationService(session, tenant_id=tenant_id, window_days=window_days)

    async def import_invoices(
        self,
        config: TenantGatewayConfig,
        *,
        start: date | None = None,
        end: date | None = None,
        state: str | None = None,
        today: date | None = None,
    ) -> InvoiceImportResult:
        """Import every listed invoice matching the filters.

        Raises
        ------
        GatewayError
            If a listing page cannot be fetched.  Invoices from earlier
            pages stay in the session for the caller to commit or discard.
        """
        filters: dict[str, Any] = {
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "state": state,
        }
        today = today or datetime.now(UTC).date()
        result = InvoiceImportResult(tenant_id=self._tenant_id)

        async for items in self._gateway.iter_invoice_pages(config, filters):
            result.pages += 1
            for item in items:
                await self._import_item(item, result, today)

        result.conciliated_count = await self._matcher.reconcile_outstanding()
        logger.info(
            "Invoice import for tenant %s: imported=%d skipped=%d conciliated=%d pages=%d",
            self._tenant_id,
            result.imported_count,
            result.skipped_count,
            result.conciliated_count,
            result.pages,
        )
        return result

    async def _import_item(self, item: Any, result: InvoiceImportResult, today: date) -> None:
        if not isinstance(item, dict):
            result.skipped_count += 1
            return
        try:
            invoice = GatewayInvoice.from_gateway(item, today=today)
        except ValueError as exc:
            logger.warning("Skipping gateway invoice for tenant %s: %s", self._tenant_id, exc)
            result.skipped_count += 1
            return

        try:
            async with self._session.begin_nested():
                await self._upsert(invoice)
        except SQLAlchemyError as exc:
            logger.warning(
                "Skipping gateway invoice %s for tenant %s: %s",
                invoice.external_charge_id,
                self._tenant_id,
                exc,
            )
            result.skipped_count += 1
            return
        result.imported_count += 1

    async def _upsert(self, invoice: GatewayInvoice) -> None:
        paid = invoice.status is InvoiceStatus.PAID
        existing = await self._invoices.get_by_external_charge_id(invoice.external_charge_id)
        if existing is None:
            await self._invoices.create(
                external_charge_id=invoice.external_charge_id,
                amount=invoice.amount,
                due_date=invoice.due_date,
                status=invoice.status.value,
                overdue=invoice.overdue,
                customer_name=invoice.customer_name,
                description=invoice.description,
                paid_at=invoice.paid_at if paid else None,
                paid_amount=(invoice.paid_amount or invoice.amount) if paid else None,
                payment_method=PAYMENT_METHOD_GATEWAY if paid else None,
            )
            return

        await self._invoices.update_details(
            existing,
            amount=invoice.amount,
            due_date=invoice.due_date,
            customer_name=invoice.customer_name,
            description=invoice.description,
        )
        current = InvoiceStatus(existing.status)
        if current in PROTECTED_STATUSES:
            return
        if current is invoice.status and existing.overdue == invoice.overdue:
            return
        if paid:
            await self._invoices.apply_status(
                existing,
                invoice.status.value,
                paid_at=invoice.paid_at or datetime.now(UTC),
                paid_amount=invoice.paid_amount or invoice.amount,
                payment_method=existing.payment_method or PAYMENT_METHOD_GATEWAY,
            )
        else:
            await self._invoices.apply_status(existing, invoice.status.value, overdue=invoice.overdue)

"""Gateway actions: sync, connection test, invoice import, charge creation, scheduled pass.

All five share one endpoint, ``POST /gateway/actions``, with a body
discriminated on ``action``.  Failures surface through the application
exception handlers as ``{success: false, error, message}``.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Request
from fleetpay_core.models.gateway import TenantGatewayConfig
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.dependencies import (
    GatewayClientDep,
    SchedulerDep,
    SessionDep,
    SettingsDep,
    SyncLocksDep,
    TokenRegistryDep,
)
from fleetpay_api.schemas import (
    ActionResponse,
    ChargeCreatedResponse,
    ConnectionTestAction,
    CreateInvoiceAction,
    FetchInvoicesAction,
    GatewayAction,
    InvoiceImportResponse,
    ScheduledSyncAction,
    SyncActionResponse,
)
from fleetpay_api.services.charge_creation import ChargeCreationService
from fleetpay_api.services.gateway_service import GatewayService
from fleetpay_api.services.invoice_import import InvoiceImportService
from fleetpay_api.services.tenant_config_service import TenantConfigService
from fleetpay_api.services.token_cache import TokenRegistry
from fleetpay_api.services.transaction_sync import TransactionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gateway", tags=["gateway"])


async def _resolve_config(
    session: AsyncSession,
    registry: TokenRegistry,
    tenant_id: str,
    config: TenantGatewayConfig | None,
) -> TenantGatewayConfig:
    if config is not None:
        return config
    return await TenantConfigService(session, tenant_id=tenant_id, registry=registry).load()


@router.post("/actions")
async def gateway_action(
    body: Annotated[GatewayAction, Body(discriminator="action")],
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    client: GatewayClientDep,
    registry: TokenRegistryDep,
    sync_locks: SyncLocksDep,
    scheduler: SchedulerDep,
) -> dict[str, Any]:
    """Dispatch one gateway action."""
    if isinstance(body, ScheduledSyncAction):
        report = await scheduler.run_once()
        return report.model_dump(mode="json")

    tenant_id = body.tenant_id
    request.state.tenant_id = tenant_id
    config = await _resolve_config(session, registry, tenant_id, body.config)
    gateway = GatewayService.from_settings(session, client, registry, settings, tenant_id=tenant_id)

    if isinstance(body, ConnectionTestAction):
        await gateway.test_connection(config)
        logger.info("Gateway connection test succeeded for tenant %s", tenant_id)
        return ActionResponse(success=True, message="Connection established").model_dump()

    if isinstance(body, FetchInvoicesAction):
        importer = InvoiceImportService(
            session,
            gateway,
            tenant_id=tenant_id,
            window_days=settings.reconciliation_window_days,
        )
        imported = await importer.import_invoices(
            config,
            start=body.start_date,
            end=body.end_date,
            state=body.state,
        )
        return InvoiceImportResponse(
            success=True,
            imported=imported.imported_count,
            skipped=imported.skipped_count,
            conciliated=imported.conciliated_count,
            message=f"Imported {imported.imported_count} invoices",
        ).model_dump()

    if isinstance(body, CreateInvoiceAction):
        created = await ChargeCreationService(session, gateway, tenant_id=tenant_id).create_charge(
            config,
            body.invoice_id,
            body.customer,
            service_name=body.service_name,
            terms=body.terms,
            idempotency_key=body.idempotency_key,
        )
        return ChargeCreatedResponse(
            success=True,
            invoice_id=created.invoice_id,
            external_charge_id=created.external_charge_id,
            created=created.created,
            message=(
                f"Created charge {created.external_charge_id}"
                if created.created
                else f"Invoice already has charge {created.external_charge_id}"
            ),
        ).model_dump()

    syncer = TransactionSyncService(
        session,
        gateway,
        tenant_id=tenant_id,
        window_days=settings.reconciliation_window_days,
        lock=sync_locks.lock(tenant_id),
    )
    try:
        result = await syncer.sync_transactions(config, body.start_date, body.end_date)
    except Exception:
        # The failed run already wrote its error sync log; keep it.
        await session.commit()
        raise
    return SyncActionResponse(
        success=True,
        imported=result.imported_count,
        conciliated=result.conciliated_count,
        skipped=result.skipped_count,
        duration_ms=result.duration_ms,
        message=(
            f"Imported {result.imported_count} transactions, "
            f"{result.conciliated_count} reconciled automatically"
        ),
    ).model_dump()

"""Read-only listings of the sync and webhook audit logs."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query
from fleetpay_core.state.database import validate_tenant_id
from fleetpay_core.state.repository import SyncLogRepository, WebhookLogRepository

from fleetpay_api.dependencies import SessionDep
from fleetpay_api.schemas import SyncLogResponse, WebhookLogResponse

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("/sync", response_model=list[SyncLogResponse])
async def list_sync_logs(
    session: SessionDep,
    tenant_id: Annotated[str, Query(description="Tenant whose sync runs are listed.")],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[SyncLogResponse]:
    """Most recent sync runs of a tenant, newest first."""
    repo = SyncLogRepository(session, tenant_id=validate_tenant_id(tenant_id))
    rows = await repo.list_recent(limit=limit)
    return [SyncLogResponse.model_validate(row) for row in rows]


@router.get("/webhooks", response_model=list[WebhookLogResponse])
async def list_webhook_logs(
    session: SessionDep,
    external_charge_id: Annotated[str | None, Query()] = None,
    tenant_id: Annotated[str | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[WebhookLogResponse]:
    """Most recent webhook deliveries, newest first, optionally filtered."""
    repo = WebhookLogRepository(session)
    rows = await repo.list_recent(external_charge_id=external_charge_id, tenant_id=tenant_id, limit=limit)
    return [WebhookLogResponse.model_validate(row) for row in rows]

"""Per-tenant gateway credentials and token cache management."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.state.database import validate_tenant_id

from fleetpay_api.dependencies import SessionDep, TokenRegistryDep
from fleetpay_api.services.tenant_config_service import TenantConfigService
from fleetpay_api.services.token_cache import TokenCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["tenant-config"])


@router.put("/gateway-config")
async def put_gateway_config(
    tenant_id: str,
    config: TenantGatewayConfig,
    request: Request,
    session: SessionDep,
    registry: TokenRegistryDep,
) -> dict[str, Any]:
    """Validate and store the tenant's gateway identity.

    Returns the redacted configuration; key material is never echoed.
    """
    tenant_id = validate_tenant_id(tenant_id)
    request.state.tenant_id = tenant_id
    service = TenantConfigService(session, tenant_id=tenant_id, registry=registry)
    stored = await service.save(config)
    return {"tenant_id": tenant_id, "config": stored.redacted()}


@router.get("/gateway-config")
async def get_gateway_config(tenant_id: str, request: Request, session: SessionDep) -> dict[str, Any]:
    """Return the stored configuration, redacted."""
    tenant_id = validate_tenant_id(tenant_id)
    request.state.tenant_id = tenant_id
    config = await TenantConfigService(session, tenant_id=tenant_id).load()
    return {"tenant_id": tenant_id, "config": config.redacted()}


@router.delete("/gateway-token")
async def delete_gateway_token(
    tenant_id: str,
    request: Request,
    session: SessionDep,
    registry: TokenRegistryDep,
) -> dict[str, Any]:
    """Drop the cached access token; the next gateway call re-authenticates."""
    tenant_id = validate_tenant_id(tenant_id)
    request.state.tenant_id = tenant_id
    cache = TokenCache(session, registry, tenant_id=tenant_id)
    await cache.invalidate()
    return {"success": True, "message": f"Cached gateway token cleared for tenant {tenant_id}"}

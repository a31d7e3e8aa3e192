"""Health-check and readiness probe endpoints.

``/health`` (liveness) lives under the versioned prefix
(``/api/v1/health``); ``/ready`` is registered at the application root so
orchestrators can gate traffic independently of the API version.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from fleetpay_api import __version__
from fleetpay_api.dependencies import GatewayClientDep, SessionDep
from fleetpay_api.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

# Short timeout for the proxy ping so probes respond quickly.
_PROXY_HEALTH_TIMEOUT = 2.0

router = APIRouter(tags=["health"])


async def _check_proxy_health(client: GatewayClient) -> bool:
    try:
        return await asyncio.wait_for(client.health_check(), timeout=_PROXY_HEALTH_TIMEOUT)
    except TimeoutError:
        return False


@router.get("/health")
async def health(session: SessionDep, client: GatewayClientDep) -> dict[str, Any]:
    """Return service health with dependency checks.

    Always HTTP 200; ``db`` and ``gateway_proxy`` report whether the
    downstream dependencies are reachable.
    """
    result: dict[str, Any] = {
        "status": "healthy",
        "version": __version__,
        "db": "ok",
        "gateway_proxy": "ok",
    }
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"

    if not await _check_proxy_health(client):
        result["gateway_proxy"] = "unavailable"
    return result


# ---------------------------------------------------------------------------
# Readiness probe (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep, client: GatewayClientDep) -> JSONResponse:
    """Readiness probe.

    The database gates readiness (503 ``not_ready`` when unreachable); an
    unreachable gateway proxy only degrades it, since webhooks and the
    audit listings still work without it.
    """
    checks: dict[str, str] = {"db": "ok", "gateway_proxy": "ok"}
    overall = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Readiness: DB check failed: %s", exc)
        checks["db"] = "unavailable"
        overall = "not_ready"

    if not await _check_proxy_health(client):
        checks["gateway_proxy"] = "unavailable"
        if overall == "ready":
            overall = "degraded"

    return JSONResponse(
        status_code=200 if overall != "not_ready" else 503,
        content={"status": overall, "version": __version__, "checks": checks},
    )

"""Access log for the fleetpay API.

One record per request on the ``fleetpay_api.access`` logger, carried in
the ``request`` extra so :class:`~fleetpay_api.middleware.json_formatter.JSONFormatter`
emits it as a nested object.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("fleetpay_api.access")

CORRELATION_HEADER = "X-Correlation-ID"

# Credentials and webhook signatures never reach the log.
_MASKED_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "x-proxy-secret", "x-webhook-signature"})

# Orchestrator probes poll constantly; keep them out of the INFO stream.
_PROBE_PATHS = frozenset({"/ready", "/api/v1/health"})


def masked_headers(request: Request) -> dict[str, str]:
    return {
        key: "***" if key.lower() in _MASKED_HEADERS else value
        for key, value in request.headers.items()
    }


def _level_for(status_code: int, path: str) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in _PROBE_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request.

    The correlation id comes from ``X-Correlation-ID`` when the caller
    (usually the gateway proxy) sends one, otherwise a UUID-4 is minted; it
    is echoed on the response.  Routers that resolve a tenant store it on
    ``request.state.tenant_id`` and it is attached to the record.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            path = request.url.path
            entry: dict[str, Any] = {
                "method": request.method,
                "path": path,
                "query": request.url.query or None,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "tenant_id": getattr(request.state, "tenant_id", None),
                "headers": masked_headers(request),
            }
            logger.log(
                _level_for(status_code, path),
                "%s %s -> %d",
                request.method,
                path,
                status_code,
                extra={"request": entry},
            )

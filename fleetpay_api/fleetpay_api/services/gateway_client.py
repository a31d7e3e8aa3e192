"""HTTP client for the payment gateway's mTLS proxy.

The proxy terminates mutual TLS with the tenant's certificate, so every
call carries the certificate material alongside the access token.  This
module only speaks HTTP; token caching and the retry-once policy live in
:mod:`fleetpay_api.services.gateway_service`.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx
from fleetpay_core.errors import (
    GatewayAuthenticationError,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayTransportError,
)
from fleetpay_core.models.gateway import TenantGatewayConfig, TokenGrant
from pydantic import ValidationError

from fleetpay_api.config import APISettings

logger = logging.getLogger(__name__)

# Marker the gateway puts in OAuth errors for bad client credentials.  The
# proxy wraps those in a 500, so the body has to be inspected too.
_INVALID_CLIENT_MARKER = "invalid_client"


class GatewayClient:
    """Thin async wrapper around the proxy REST API.

    Unlike best-effort clients, every method raises a
    :class:`~fleetpay_core.errors.GatewayError` subclass on failure; callers
    decide whether to retry.

    Parameters
    ----------
    base_url:
        Root URL of the mTLS proxy.
    proxy_secret:
        Shared secret sent as ``X-Proxy-Secret`` on every call.
    timeout:
        Per-request timeout in seconds.
    token_path, statement_path, invoices_path, invoice_create_path:
        Proxy routes for the gateway operations.
    default_token_ttl:
        Lifetime assumed when the token response omits ``expires_in``.
    transport:
        Optional custom transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        proxy_secret: str,
        timeout: float = 30.0,
        *,
        token_path: str = "/token",
        statement_path: str = "/transactions",
        invoices_path: str = "/invoices",
        invoice_create_path: str = "/invoices/create",
        default_token_ttl: int = 3600,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_path = token_path
        self._statement_path = statement_path
        self._invoices_path = invoices_path
        self._invoice_create_path = invoice_create_path
        self._default_token_ttl = default_token_ttl
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers={"X-Proxy-Secret": proxy_secret, "Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: APISettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GatewayClient:
        """Build a client from the API settings."""
        return cls(
            base_url=settings.gateway_proxy_url,
            proxy_secret=settings.gateway_proxy_secret.get_secret_value(),
            timeout=settings.gateway_timeout_seconds,
            token_path=settings.gateway_token_path,
            statement_path=settings.gateway_statement_path,
            invoices_path=settings.gateway_invoices_path,
            invoice_create_path=settings.gateway_invoice_create_path,
            default_token_ttl=settings.default_token_ttl_seconds,
            transport=transport,
        )

    # -- Gateway operations --------------------------------------------------

    async def request_token(self, config: TenantGatewayConfig) -> TokenGrant:
        """Exchange the tenant's client credentials for an access token.

        Sent as multipart form data: ``client_id`` and ``base_url`` fields
        plus the certificate and key as file parts.
        """
        body = await self._post(
            self._token_path,
            data={"client_id": config.client_id, "base_url": config.resolved_base_url},
            files={
                "cert_file": ("certificate.pem", config.certificate.encode(), "application/x-pem-file"),
                "key_file": (
                    "private-key.key",
                    config.private_key.get_secret_value().encode(),
                    "application/x-pem-file",
                ),
            },
        )
        if not body.get("access_token"):
            raise GatewayAuthenticationError("Token endpoint returned no access token")
        try:
            return TokenGrant(
                access_token=body["access_token"],
                expires_in=body.get("expires_in") or self._default_token_ttl,
            )
        except ValidationError as exc:
            raise GatewayResponseError(f"Malformed token response: {exc}") from exc

    async def fetch_statement_page(
        self,
        access_token: str,
        config: TenantGatewayConfig,
        *,
        start: date,
        end: date,
        page: int,
        per_page: int,
    ) -> dict[str, Any]:
        """Fetch one page of bank statement entries for ``[start, end]``."""
        payload = self._authenticated_payload(access_token, config)
        payload.update(
            {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "page": page,
                "perPage": per_page,
            }
        )
        return await self._post(self._statement_path, json=payload)

    async def fetch_invoices_page(
        self,
        access_token: str,
        config: TenantGatewayConfig,
        *,
        filters: dict[str, Any],
        page: int,
        per_page: int,
    ) -> dict[str, Any]:
        """Fetch one page of the gateway invoice listing."""
        payload = self._authenticated_payload(access_token, config)
        payload.update(
            {
                "start": filters.get("start") or "",
                "end": filters.get("end") or "",
                "state": filters.get("state") or "",
                "page": page,
                "perPage": per_page,
            }
        )
        return await self._post(self._invoices_path, json=payload)

    async def create_charge(
        self,
        access_token: str,
        config: TenantGatewayConfig,
        *,
        charge: dict[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Create one charge and return the gateway's description of it.

        The idempotency key goes in the body for the proxy and as the
        ``Idempotency-Key`` header; resending the same key never creates a
        second charge.
        """
        payload = self._authenticated_payload(access_token, config)
        payload.update({"idempotencyKey": idempotency_key, "boleto": charge})
        return await self._post(
            self._invoice_create_path,
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )

    # -- Lifecycle -----------------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` if the proxy responds to a health ping."""
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # -- Internal helpers ----------------------------------------------------

    @staticmethod
    def _authenticated_payload(access_token: str, config: TenantGatewayConfig) -> dict[str, Any]:
        return {
            "access_token": access_token,
            "base_url": config.resolved_base_url,
            "cert_file": config.certificate,
            "key_file": config.private_key.get_secret_value(),
        }

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        """POST to the proxy and return the JSON object body.

        Raises
        ------
        GatewayAuthenticationError
            On 401/403, or any error body flagged ``invalid_client``.
        GatewayTimeoutError
            When the configured timeout elapses.
        GatewayTransportError
            On connection-level failures.
        GatewayResponseError
            On any other non-2xx status or a non-object JSON body.
        """
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Gateway request to %s timed out: %s", path, exc)
            raise GatewayTimeoutError(f"Gateway request to {path} timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("Gateway request to %s failed: %s", path, exc)
            raise GatewayTransportError(f"Gateway request to {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            logger.warning("Gateway rejected %s with %d", path, response.status_code)
            raise GatewayAuthenticationError(
                f"Gateway rejected credentials ({response.status_code})",
                status_code=response.status_code,
            )
        if response.is_error:
            snippet = response.text[:500]
            logger.warning("Gateway returned %d for %s: %s", response.status_code, path, snippet)
            if _INVALID_CLIENT_MARKER in snippet:
                raise GatewayAuthenticationError(
                    f"Gateway rejected client credentials ({response.status_code}): {snippet}",
                    status_code=response.status_code,
                )
            raise GatewayResponseError(
                f"Gateway returned {response.status_code} for {path}: {snippet}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayResponseError(f"Gateway returned a non-JSON body for {path}") from exc
        if not isinstance(body, dict):
            raise GatewayResponseError(f"Gateway returned an unexpected body for {path}")
        return body

"""Authenticated gateway operations for one tenant.

Combines the HTTP client, the token cache and the retry-once policy:
every call obtains a token (cached or fresh), and a 401/403 answer
invalidates the token and repeats the call once with a forced refresh.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import date, timedelta
from typing import Any

from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.retry import AuthRetryPolicy, with_auth_retry
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.config import APISettings
from fleetpay_api.services.gateway_client import GatewayClient
from fleetpay_api.services.token_cache import TokenCache, TokenRegistry

logger = logging.getLogger(__name__)

_STATEMENT_KEYS = ("entries", "items", "transactions")
_INVOICE_KEYS = ("items", "invoices")


def _page_items(body: dict[str, Any], keys: tuple[str, ...]) -> list[Any]:
    for key in keys:
        value = body.get(key)
        if isinstance(value, list):
            return value
    return []


def _has_more(body: dict[str, Any], page: int, per_page: int, received: int) -> bool:
    total = body.get("totalItems") or body.get("total_items")
    if isinstance(total, int) and not isinstance(total, bool):
        return page * per_page < total
    return received >= per_page


class GatewayService:
    """Gateway calls for one tenant with token caching and auth retry.

    Parameters
    ----------
    session:
        Session for the persisted token cache.
    client:
        Shared :class:`GatewayClient`.
    registry:
        Shared :class:`TokenRegistry` (memory cache and refresh locks).
    tenant_id:
        Tenant on whose behalf calls are made.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: GatewayClient,
        registry: TokenRegistry,
        *,
        tenant_id: str,
        safety_margin: timedelta = timedelta(minutes=5),
        policy: AuthRetryPolicy | None = None,
        statement_page_size: int = 100,
        invoice_page_size: int = 50,
        max_pages: int = 50,
    ) -> None:
        self._client = client
        self._registry = registry
        self._tenant_id = tenant_id
        self._cache = TokenCache(session, registry, tenant_id=tenant_id, safety_margin=safety_margin)
        self._policy = policy or AuthRetryPolicy()
        self._statement_page_size = statement_page_size
        self._invoice_page_size = invoice_page_size
        self._max_pages = max_pages

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        client: GatewayClient,
        registry: TokenRegistry,
        settings: APISettings,
        *,
        tenant_id: str,
    ) -> GatewayService:
        return cls(
            session,
            client,
            registry,
            tenant_id=tenant_id,
            safety_margin=timedelta(seconds=settings.token_safety_margin_seconds),
            policy=AuthRetryPolicy(retry_budget=settings.auth_retry_budget),
            statement_page_size=settings.statement_page_size,
            invoice_page_size=settings.invoice_page_size,
            max_pages=settings.max_pages,
        )

    # -- Tokens --------------------------------------------------------------

    async def get_access_token(self, config: TenantGatewayConfig, *, force_refresh: bool = False) -> str:
        """Return a usable access token, authenticating only when needed.

        Configuration is validated first so a broken config never reaches
        the gateway.  Refreshes are serialized per tenant; a caller that
        waited on the lock reuses the token its predecessor obtained.
        """
        config.validate_credentials()

        if not force_refresh:
            cached = await self._cache.get()
            if cached is not None:
                logger.debug("Using cached gateway token for tenant %s", self._tenant_id)
                return cached.access_token

        lock = self._registry.lock(self._tenant_id)
        async with lock:
            if not force_refresh:
                cached = await self._cache.get()
                if cached is not None:
                    return cached.access_token
            logger.info("Requesting new gateway token for tenant %s", self._tenant_id)
            grant = await self._client.request_token(config)
            token = await self._cache.store(grant)
            return token.access_token

    async def invalidate(self) -> None:
        await self._cache.invalidate()

    # -- Operations ----------------------------------------------------------

    async def test_connection(self, config: TenantGatewayConfig) -> None:
        """Authenticate with a forced refresh; populates the token cache."""

        async def _call(_force_refresh: bool) -> str:
            return await self.get_access_token(config, force_refresh=True)

        await with_auth_retry(_call, invalidate=self.invalidate, policy=self._policy)

    async def iter_statement_pages(
        self,
        config: TenantGatewayConfig,
        start: date,
        end: date,
    ) -> AsyncIterator[list[Any]]:
        """Yield the raw statement entries of ``[start, end]`` page by page."""
        page = 1
        while page <= self._max_pages:

            async def _call(force_refresh: bool, page: int = page) -> dict[str, Any]:
                token = await self.get_access_token(config, force_refresh=force_refresh)
                return await self._client.fetch_statement_page(
                    token,
                    config,
                    start=start,
                    end=end,
                    page=page,
                    per_page=self._statement_page_size,
                )

            body = await with_auth_retry(_call, invalidate=self.invalidate, policy=self._policy)
            entries = _page_items(body, _STATEMENT_KEYS)
            yield entries
            if not _has_more(body, page, self._statement_page_size, len(entries)):
                return
            page += 1
        logger.warning(
            "Statement for tenant %s truncated at %d pages (%s..%s)",
            self._tenant_id,
            self._max_pages,
            start,
            end,
        )

    async def iter_invoice_pages(
        self,
        config: TenantGatewayConfig,
        filters: dict[str, Any],
    ) -> AsyncIterator[list[Any]]:
        """Yield the raw invoice listing items page by page."""
        page = 1
        while page <= self._max_pages:

            async def _call(force_refresh: bool, page: int = page) -> dict[str, Any]:
                token = await self.get_access_token(config, force_refresh=force_refresh)
                return await self._client.fetch_invoices_page(
                    token,
                    config,
                    filters=filters,
                    page=page,
                    per_page=self._invoice_page_size,
                )

            body = await with_auth_retry(_call, invalidate=self.invalidate, policy=self._policy)
            items = _page_items(body, _INVOICE_KEYS)
            yield items
            if not _has_more(body, page, self._invoice_page_size, len(items)):
                return
            page += 1
        logger.warning("Invoice listing for tenant %s truncated at %d pages", self._tenant_id, self._max_pages)

    async def create_charge(
        self,
        config: TenantGatewayConfig,
        charge: dict[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Create a charge under the auth retry policy.

        Every attempt, including the retry after a timeout, reuses
        *idempotency_key*, so at most one charge exists per key.
        """

        async def _call(force_refresh: bool) -> dict[str, Any]:
            token = await self.get_access_token(config, force_refresh=force_refresh)
            return await self._client.create_charge(
                token,
                config,
                charge=charge,
                idempotency_key=idempotency_key,
            )

        return await with_auth_retry(_call, invalidate=self.invalidate, policy=self._policy)

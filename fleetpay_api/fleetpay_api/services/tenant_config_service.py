"""Stored per-tenant gateway configuration."""

from __future__ import annotations

import logging

from fleetpay_core.errors import GatewayConfigurationError, TenantConfigNotFoundError
from fleetpay_core.models.gateway import GATEWAY_SETTINGS_KEY, GATEWAY_TOKEN_KEY, TenantGatewayConfig
from fleetpay_core.state.repository import TenantConfigRepository
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.services.token_cache import TokenRegistry

logger = logging.getLogger(__name__)


class TenantConfigService:
    """Load and store the gateway identity of one tenant."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        registry: TokenRegistry | None = None,
    ) -> None:
        self._repo = TenantConfigRepository(session, tenant_id=tenant_id)
        self._tenant_id = tenant_id
        self._registry = registry

    async def load(self) -> TenantGatewayConfig:
        """Return the stored configuration.

        Raises
        ------
        TenantConfigNotFoundError
            If nothing is stored for the tenant.
        GatewayConfigurationError
            If the stored value cannot be parsed.
        """
        stored = await self._repo.get_value(GATEWAY_SETTINGS_KEY)
        if stored is None:
            raise TenantConfigNotFoundError(self._tenant_id)
        try:
            return TenantGatewayConfig.model_validate(stored)
        except ValidationError as exc:
            raise GatewayConfigurationError(f"Stored gateway configuration is malformed: {exc}") from exc

    async def save(self, config: TenantGatewayConfig) -> TenantGatewayConfig:
        """Validate and store *config*.

        Any cached token was issued to the previous identity and is dropped.
        """
        config.validate_credentials()
        await self._repo.put(GATEWAY_SETTINGS_KEY, config.to_storage())
        await self._repo.delete(GATEWAY_TOKEN_KEY)
        if self._registry is not None:
            self._registry.discard(self._tenant_id)
        logger.info("Stored gateway configuration for tenant %s (client_id=%s)", self._tenant_id, config.client_id)
        return config


async def list_configured_tenants(session: AsyncSession) -> list[str]:
    """Ids of every tenant with a stored gateway configuration."""
    rows = await TenantConfigRepository(session).list_for_key(GATEWAY_SETTINGS_KEY)
    return [row.tenant_id for row in rows]

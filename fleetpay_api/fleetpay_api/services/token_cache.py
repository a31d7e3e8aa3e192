"""Per-tenant access-token cache.

Tokens are persisted in ``tenant_config`` under ``gateway_access_token``
and mirrored in a process-wide :class:`TokenRegistry`.  The registry also
owns one lock per tenant so concurrent refreshes collapse into a single
authentication round-trip.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from fleetpay_core.models.gateway import GATEWAY_TOKEN_KEY, TOKEN_SAFETY_MARGIN, CachedToken, TokenGrant
from fleetpay_core.state.repository import TenantConfigRepository
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Process-wide token state shared by every request and the scheduler."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._tokens: dict[str, CachedToken] = {}

    def lock(self, tenant_id: str) -> asyncio.Lock:
        """Return the refresh lock for *tenant_id*, creating it on first use."""
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def get(self, tenant_id: str) -> CachedToken | None:
        return self._tokens.get(tenant_id)

    def put(self, tenant_id: str, token: CachedToken) -> None:
        self._tokens[tenant_id] = token

    def discard(self, tenant_id: str) -> None:
        self._tokens.pop(tenant_id, None)


class TokenCache:
    """Read/write the cached token of one tenant.

    Parameters
    ----------
    session:
        Session used for the persisted copy; writes join the caller's unit
        of work.
    registry:
        Process-wide registry holding the in-memory copy.
    tenant_id:
        Tenant whose token is managed.
    safety_margin:
        A token is served only while ``now < expires_at - safety_margin``.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: TokenRegistry,
        *,
        tenant_id: str,
        safety_margin: timedelta = TOKEN_SAFETY_MARGIN,
    ) -> None:
        self._repo = TenantConfigRepository(session, tenant_id=tenant_id)
        self._registry = registry
        self._tenant_id = tenant_id
        self._safety_margin = safety_margin

    async def get(self, *, now: datetime | None = None) -> CachedToken | None:
        """Return the cached token if it is still usable, else ``None``."""
        now = now or datetime.now(UTC)
        token = self._registry.get(self._tenant_id)
        if token is not None and token.is_usable(now=now, safety_margin=self._safety_margin):
            return token

        stored = await self._repo.get_value(GATEWAY_TOKEN_KEY)
        if stored is None:
            return None
        try:
            token = CachedToken.model_validate(stored)
        except ValidationError:
            logger.warning("Discarding malformed cached token for tenant %s", self._tenant_id)
            return None
        if not token.is_usable(now=now, safety_margin=self._safety_margin):
            return None
        self._registry.put(self._tenant_id, token)
        return token

    async def store(self, grant: TokenGrant, *, now: datetime | None = None) -> CachedToken:
        """Persist a fresh grant, replacing any previous token."""
        token = CachedToken.from_grant(grant, now=now)
        await self._repo.put(GATEWAY_TOKEN_KEY, token.model_dump(mode="json"))
        self._registry.put(self._tenant_id, token)
        logger.info("Cached gateway token for tenant %s until %s", self._tenant_id, token.expires_at.isoformat())
        return token

    async def invalidate(self) -> None:
        """Drop the cached token (memory and persisted copy)."""
        self._registry.discard(self._tenant_id)
        await self._repo.delete(GATEWAY_TOKEN_KEY)
        logger.info("Invalidated gateway token for tenant %s", self._tenant_id)

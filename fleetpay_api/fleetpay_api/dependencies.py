"""FastAPI dependency injection for settings, database sessions and the gateway client."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from fleetpay_core.state.database import create_session_factory, get_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fleetpay_api.config import APISettings, load_api_settings
from fleetpay_api.services.auto_sync import AutoSyncScheduler
from fleetpay_api.services.gateway_client import GatewayClient
from fleetpay_api.services.token_cache import TokenRegistry
from fleetpay_api.services.transaction_sync import SyncLocks

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    _session_factory = create_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by components that manage their own sessions (the auto-sync
    scheduler, one session per tenant).
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession``; commits on clean exit, rolls back on error.

    Tenant scoping is applied by the repositories, which all take an
    explicit ``tenant_id``.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Gateway client and shared token state
# ---------------------------------------------------------------------------

_gateway_client: GatewayClient | None = None
_token_registry = TokenRegistry()
_sync_locks = SyncLocks()


def init_gateway_client(settings: APISettings) -> GatewayClient:
    """Create and cache the global :class:`GatewayClient`."""
    global _gateway_client  # noqa: PLW0603
    _gateway_client = GatewayClient.from_settings(settings)
    return _gateway_client


async def dispose_gateway_client() -> None:
    """Close the gateway client's underlying HTTP pool."""
    global _gateway_client  # noqa: PLW0603
    if _gateway_client is not None:
        await _gateway_client.close()
        _gateway_client = None


def get_gateway_client() -> GatewayClient:
    """Return the cached :class:`GatewayClient` singleton."""
    if _gateway_client is None:
        raise RuntimeError(
            "Gateway client has not been initialised. "
            "Ensure init_gateway_client() is called during application startup."
        )
    return _gateway_client


def get_token_registry() -> TokenRegistry:
    """Return the process-wide token registry."""
    return _token_registry


def get_sync_locks() -> SyncLocks:
    """Return the process-wide per-tenant sync locks."""
    return _sync_locks


GatewayClientDep = Annotated[GatewayClient, Depends(get_gateway_client)]
TokenRegistryDep = Annotated[TokenRegistry, Depends(get_token_registry)]
SyncLocksDep = Annotated[SyncLocks, Depends(get_sync_locks)]

# ---------------------------------------------------------------------------
# Auto-sync scheduler
# ---------------------------------------------------------------------------

_scheduler: AutoSyncScheduler | None = None


def init_scheduler(settings: APISettings) -> AutoSyncScheduler:
    """Create and cache the global :class:`AutoSyncScheduler` (not started)."""
    global _scheduler  # noqa: PLW0603
    _scheduler = AutoSyncScheduler(
        get_session_factory(),
        get_gateway_client(),
        _token_registry,
        _sync_locks,
        settings,
    )
    return _scheduler


async def dispose_scheduler() -> None:
    """Stop the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> AutoSyncScheduler:
    """Return the cached :class:`AutoSyncScheduler` singleton."""
    if _scheduler is None:
        raise RuntimeError(
            "Auto-sync scheduler has not been initialised. Ensure init_scheduler() is called during application startup."
        )
    return _scheduler


SchedulerDep = Annotated[AutoSyncScheduler, Depends(get_scheduler)]

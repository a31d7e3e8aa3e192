"""Engine and session helpers for the fleetpay state store.

Production runs on PostgreSQL through asyncpg; local development, the CLI
against a file database, and the test-suite run on SQLite through
aiosqlite.  The URL scheme picks the backend.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Tenant identifiers end up in URLs, log lines and config keys.
_TENANT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")

_SQLITE_PREFIX = "sqlite"


def validate_tenant_id(tenant_id: str) -> str:
    """Return *tenant_id* unchanged, or raise ``ValueError`` if malformed."""
    if not _TENANT_ID_RE.match(tenant_id):
        raise ValueError(f"Invalid tenant_id: must match {_TENANT_ID_RE.pattern!r}, got {tenant_id!r}")
    return tenant_id


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith(_SQLITE_PREFIX)


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Create the async engine for *database_url*.

    Parameters
    ----------
    database_url:
        ``postgresql+asyncpg://...`` or ``sqlite+aiosqlite:///path``.  A
        SQLite URL without a path opens an in-memory database.
    pool_size, max_overflow:
        PostgreSQL pool sizing; ignored for SQLite.
    """
    if is_sqlite_url(database_url):
        from fleetpay_core.state.sqlite_adapter import get_local_engine

        _, _, db_path = database_url.partition("///")
        return get_local_engine(db_path or ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "application_name": "fleetpay",
                # A statement page upsert is small; anything slower is stuck.
                "statement_timeout": "30000",
                "lock_timeout": "5000",
            }
        },
    )
    logger.info("PostgreSQL engine ready (pool_size=%d, max_overflow=%d)", pool_size, max_overflow)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the API, the scheduler and the CLI.

    Attributes stay loaded after commit: services return ORM rows that the
    caller reads once the unit of work is closed.
    """
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on success, roll back and re-raise on error."""
    async with create_session_factory(engine)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

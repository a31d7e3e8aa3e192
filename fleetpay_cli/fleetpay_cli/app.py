"""fleetpay CLI application -- Typer-based operator interface.

Runs the gateway service, or drives a sync, an invoice import or a
scheduled pass directly against the configured database.  Human-readable
output goes to *stderr* via Rich; ``--json`` prints machine-readable
results on *stdout* so that pipelines can compose cleanly.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console

from fleetpay_cli.display import (
    display_auto_sync_report,
    display_import_result,
    display_sync_logs,
    display_sync_result,
)

if TYPE_CHECKING:
    from fleetpay_api.config import APISettings
    from fleetpay_api.services.gateway_client import GatewayClient
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="fleetpay",
    help="fleetpay - payment gateway sync, reconciliation and webhooks",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global option populated by the Typer callback.
_json_output: bool = False


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output  # noqa: PLW0603
    _json_output = json_mode


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_date(value: str, label: str) -> date:
    """Parse a YYYY-MM-DD string into a :class:`date`, raising on failure."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        console.print(f"[red]Invalid {label} date '{value}': {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _emit_json(data: Any) -> None:
    typer.echo(json.dumps(data, sort_keys=True, default=str))


def _load_settings() -> APISettings:
    from fleetpay_api.config import load_api_settings

    return load_api_settings()


@asynccontextmanager
async def _runtime(settings: APISettings) -> AsyncIterator[tuple[async_sessionmaker[AsyncSession], GatewayClient]]:
    """Engine, session factory and gateway client for one command."""
    from fleetpay_api.services.gateway_client import GatewayClient
    from fleetpay_core.state.database import create_session_factory, get_engine, is_sqlite_url
    from fleetpay_core.state.sqlite_adapter import create_local_tables

    engine = get_engine(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    if is_sqlite_url(settings.database_url):
        await create_local_tables(engine)
    client = GatewayClient.from_settings(settings)
    try:
        yield create_session_factory(engine), client
    finally:
        await client.close()
        await engine.dispose()


def _fail(exc: Exception) -> typer.Exit:
    if _json_output:
        _emit_json({"success": False, "error": exc.__class__.__name__, "message": str(exc)})
    console.print(f"[red]{exc}[/red]")
    return typer.Exit(code=3)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind the API server to."),
    port: int = typer.Option(8000, "--port", "-p", help="API server port."),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload on code changes."),
) -> None:
    """Run the HTTP service (webhooks, gateway actions, audit listings)."""
    import uvicorn

    uvicorn_config = uvicorn.Config(
        "fleetpay_api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)

    console.print(f"[green]✓[/green] API server starting on http://{host}:{port}")
    console.print(f"[green]✓[/green] Webhook endpoint at http://{host}:{port}/api/v1/webhooks/gateway")
    console.print(f"[green]✓[/green] Readiness probe at http://{host}:{port}/ready")
    try:
        server.run()
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/yellow]")


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    tenant_id: str = typer.Argument(..., help="Tenant to sync."),
    start: str | None = typer.Option(None, "--start", help="First statement date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", help="Last statement date (YYYY-MM-DD); defaults to today."),
) -> None:
    """Pull the bank statement of a tenant and reconcile incoming credits."""
    from fleetpay_core.errors import GatewayError, TenantConfigNotFoundError

    settings = _load_settings()
    end_date = _parse_date(end, "end") if end else datetime.now(UTC).date()
    start_date = (
        _parse_date(start, "start") if start else end_date - timedelta(days=settings.auto_sync_lookback_days)
    )

    try:
        result = asyncio.run(_run_sync(settings, tenant_id, start_date, end_date))
    except (GatewayError, TenantConfigNotFoundError, ValueError) as exc:
        raise _fail(exc) from exc

    if _json_output:
        _emit_json({"success": True, **result.model_dump(mode="json")})
    else:
        display_sync_result(console, result)


async def _run_sync(settings: APISettings, tenant_id: str, start_date: date, end_date: date) -> Any:
    from fleetpay_api.services.gateway_service import GatewayService
    from fleetpay_api.services.tenant_config_service import TenantConfigService
    from fleetpay_api.services.token_cache import TokenRegistry
    from fleetpay_api.services.transaction_sync import TransactionSyncService

    async with _runtime(settings) as (session_factory, client):
        async with session_factory() as session:
            config = await TenantConfigService(session, tenant_id=tenant_id).load()
            gateway = GatewayService.from_settings(session, client, TokenRegistry(), settings, tenant_id=tenant_id)
            syncer = TransactionSyncService(
                session,
                gateway,
                tenant_id=tenant_id,
                window_days=settings.reconciliation_window_days,
            )
            try:
                return await syncer.sync_transactions(config, start_date, end_date)
            finally:
                # Persists the sync log of failed runs as well.
                await session.commit()


# ---------------------------------------------------------------------------
# import-invoices
# ---------------------------------------------------------------------------


@app.command(name="import-invoices")
def import_invoices(
    tenant_id: str = typer.Argument(..., help="Tenant whose gateway invoices are imported."),
    start: str | None = typer.Option(None, "--start", help="Listing start date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", help="Listing end date (YYYY-MM-DD)."),
    state: str | None = typer.Option(None, "--state", help="Gateway invoice state filter."),
) -> None:
    """Import the gateway invoice listing of a tenant."""
    from fleetpay_core.errors import GatewayError, TenantConfigNotFoundError

    settings = _load_settings()
    start_date = _parse_date(start, "start") if start else None
    end_date = _parse_date(end, "end") if end else None

    try:
        result = asyncio.run(_run_import(settings, tenant_id, start_date, end_date, state))
    except (GatewayError, TenantConfigNotFoundError, ValueError) as exc:
        raise _fail(exc) from exc

    if _json_output:
        _emit_json({"success": True, **result.model_dump(mode="json")})
    else:
        display_import_result(console, result)


async def _run_import(
    settings: APISettings,
    tenant_id: str,
    start_date: date | None,
    end_date: date | None,
    state: str | None,
) -> Any:
    from fleetpay_api.services.gateway_service import GatewayService
    from fleetpay_api.services.invoice_import import InvoiceImportService
    from fleetpay_api.services.tenant_config_service import TenantConfigService
    from fleetpay_api.services.token_cache import TokenRegistry

    async with _runtime(settings) as (session_factory, client):
        async with session_factory() as session:
            config = await TenantConfigService(session, tenant_id=tenant_id).load()
            gateway = GatewayService.from_settings(session, client, TokenRegistry(), settings, tenant_id=tenant_id)
            importer = InvoiceImportService(
                session,
                gateway,
                tenant_id=tenant_id,
                window_days=settings.reconciliation_window_days,
            )
            result = await importer.import_invoices(config, start=start_date, end=end_date, state=state)
            await session.commit()
            return result


# ---------------------------------------------------------------------------
# auto-sync
# ---------------------------------------------------------------------------


@app.command(name="auto-sync")
def auto_sync() -> None:
    """Run one scheduled pass over every configured tenant."""
    settings = _load_settings()
    report = asyncio.run(_run_auto_sync(settings))

    if _json_output:
        _emit_json(report.model_dump(mode="json"))
    else:
        display_auto_sync_report(console, report)
    if report.failed:
        raise typer.Exit(code=1)


async def _run_auto_sync(settings: APISettings) -> Any:
    from fleetpay_api.services.auto_sync import AutoSyncScheduler
    from fleetpay_api.services.token_cache import TokenRegistry
    from fleetpay_api.services.transaction_sync import SyncLocks

    async with _runtime(settings) as (session_factory, client):
        scheduler = AutoSyncScheduler(session_factory, client, TokenRegistry(), SyncLocks(), settings)
        return await scheduler.run_once()


# ---------------------------------------------------------------------------
# logs
# ---------------------------------------------------------------------------


@app.command()
def logs(
    tenant_id: str = typer.Argument(..., help="Tenant whose sync runs are listed."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=500, help="Number of runs to show."),
) -> None:
    """Show the most recent sync runs of a tenant."""
    settings = _load_settings()
    rows = asyncio.run(_load_sync_logs(settings, tenant_id, limit))

    if _json_output:
        _emit_json(
            [
                {
                    "created_at": row.created_at.isoformat(),
                    "start_date": row.start_date.isoformat(),
                    "end_date": row.end_date.isoformat(),
                    "status": row.status,
                    "imported_count": row.imported_count,
                    "conciliated_count": row.conciliated_count,
                    "skipped_count": row.skipped_count,
                    "duration_ms": row.duration_ms,
                    "error_message": row.error_message,
                }
                for row in rows
            ]
        )
    else:
        display_sync_logs(console, tenant_id, rows)


async def _load_sync_logs(settings: APISettings, tenant_id: str, limit: int) -> list[Any]:
    from fleetpay_core.state.repository import SyncLogRepository

    async with _runtime(settings) as (session_factory, _client):
        async with session_factory() as session:
            return await SyncLogRepository(session, tenant_id=tenant_id).list_recent(limit=limit)

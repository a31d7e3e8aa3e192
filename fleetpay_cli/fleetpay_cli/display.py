"""Rich output formatting for the fleetpay CLI.

All functions write to a :class:`rich.console.Console` bound to *stderr*
so that ``--json`` output on *stdout* is never polluted.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from fleetpay_api.services.auto_sync import AutoSyncReport
    from fleetpay_core.models.sync import InvoiceImportResult, SyncResult
    from fleetpay_core.state.tables import SyncLogTable

_STATUS_COLOURS: dict[str, str] = {
    "success": "green",
    "error": "red",
}


def _coloured_status(status: str) -> str:
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def display_sync_result(console: Console, result: SyncResult) -> None:
    """Render the outcome of one statement sync."""
    lines = [
        f"[bold]Tenant:[/bold]      {result.tenant_id}",
        f"[bold]Window:[/bold]      {result.start_date} .. {result.end_date}",
        f"[bold]Imported:[/bold]    {result.imported_count}",
        f"[bold]Reconciled:[/bold]  {result.conciliated_count}",
        f"[bold]Skipped:[/bold]     {result.skipped_count}",
        f"[bold]Duration:[/bold]    {result.duration_ms} ms",
    ]
    console.print(Panel("\n".join(lines), title="Statement Sync", border_style="green"))


def display_import_result(console: Console, result: InvoiceImportResult) -> None:
    """Render the outcome of one invoice import."""
    lines = [
        f"[bold]Tenant:[/bold]      {result.tenant_id}",
        f"[bold]Imported:[/bold]    {result.imported_count}",
        f"[bold]Skipped:[/bold]     {result.skipped_count}",
        f"[bold]Reconciled:[/bold]  {result.conciliated_count}",
        f"[bold]Pages:[/bold]       {result.pages}",
    ]
    console.print(Panel("\n".join(lines), title="Invoice Import", border_style="blue"))


def display_auto_sync_report(console: Console, report: AutoSyncReport) -> None:
    """Render a scheduled pass as one row per tenant."""
    table = Table(
        title=f"Auto-sync: {report.successful}/{report.total_tenants} tenants succeeded",
        show_lines=False,
    )
    table.add_column("Tenant", style="cyan")
    table.add_column("Status")
    table.add_column("Invoices", justify="right")
    table.add_column("Imported", justify="right")
    table.add_column("Reconciled", justify="right")
    table.add_column("Error", style="dim")

    for outcome in report.results:
        sync = outcome.sync
        table.add_row(
            outcome.tenant_id,
            _coloured_status("success" if outcome.success else "error"),
            str(outcome.invoices_imported),
            str(sync.imported_count) if sync else "-",
            str(sync.conciliated_count) if sync else "-",
            outcome.error or outcome.invoice_error or "",
        )
    console.print(table)


def display_sync_logs(console: Console, tenant_id: str, rows: Sequence[SyncLogTable]) -> None:
    """Render the recent sync log of a tenant, newest first."""
    if not rows:
        console.print(f"[dim]No sync runs recorded for tenant {tenant_id}.[/dim]")
        return

    table = Table(title=f"Sync log: {tenant_id}")
    table.add_column("When")
    table.add_column("Window")
    table.add_column("Status")
    table.add_column("Imported", justify="right")
    table.add_column("Reconciled", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Error", style="dim")

    for row in rows:
        table.add_row(
            row.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"{row.start_date} .. {row.end_date}",
            _coloured_status(row.status),
            str(row.imported_count),
            str(row.conciliated_count),
            str(row.skipped_count),
            str(row.duration_ms),
            row.error_message or "",
        )
    console.print(table)

"""Tests for the scheduled multi-tenant sync."""

from __future__ import annotations

import asyncio
from datetime import date

import httpx
import pytest
from fleetpay_core.models.gateway import GATEWAY_SETTINGS_KEY
from fleetpay_core.state.repository import (
    BankTransactionRepository,
    InvoiceRepository,
    SyncLogRepository,
    TenantConfigRepository,
)

from fleetpay_api.services.tenant_config_service import TenantConfigService, list_configured_tenants

_TODAY = date(2024, 3, 31)


def _entry(entry_id: str) -> dict:
    return {"id": entry_id, "amount": 2500, "type": "CREDIT", "createdAt": "2024-03-20T12:00:00+00:00"}


async def _configure(session_factory, gateway_config, *tenants: str) -> None:
    async with session_factory() as db_session:
        for tenant in tenants:
            await TenantConfigService(db_session, tenant_id=tenant).save(gateway_config)
        await db_session.commit()


async def _store_raw(session_factory, tenant: str, value: dict) -> None:
    async with session_factory() as db_session:
        await TenantConfigRepository(db_session, tenant_id=tenant).put(GATEWAY_SETTINGS_KEY, value)
        await db_session.commit()


@pytest.mark.asyncio
class TestAutoSync:
    async def test_no_configured_tenants(self, scheduler) -> None:
        report = await scheduler.run_once(today=_TODAY)

        assert (report.total_tenants, report.successful, report.failed) == (0, 0, 0)
        assert report.results == []

    async def test_syncs_every_tenant(self, scheduler, session_factory, gateway_config, fake_gateway) -> None:
        await _configure(session_factory, gateway_config, "acme", "zeta")
        fake_gateway.statement_pages = [[_entry("tx-1")]]

        report = await scheduler.run_once(today=_TODAY)

        assert (report.total_tenants, report.successful, report.failed) == (2, 2, 0)
        assert sorted(outcome.tenant_id for outcome in report.results) == ["acme", "zeta"]
        async with session_factory() as db_session:
            for tenant in ("acme", "zeta"):
                assert await BankTransactionRepository(db_session, tenant_id=tenant).count() == 1
        body = fake_gateway.calls_to("/transactions")[0]
        assert (body["start"], body["end"]) == ("2024-03-01", "2024-03-31")

    async def test_failing_tenant_does_not_abort_others(
        self, scheduler, session_factory, gateway_config, fake_gateway
    ) -> None:
        await _configure(session_factory, gateway_config, "acme", "zeta")
        await _store_raw(session_factory, "broken", {"client_id": "x", "cert_file": "bad", "key_file": "bad"})
        fake_gateway.statement_pages = [[_entry("tx-1")]]

        report = await scheduler.run_once(today=_TODAY)

        assert (report.total_tenants, report.successful, report.failed) == (3, 2, 1)
        outcomes = {outcome.tenant_id: outcome for outcome in report.results}
        assert outcomes["broken"].success is False
        assert "certificate" in outcomes["broken"].error.lower()
        assert outcomes["acme"].success and outcomes["zeta"].success
        async with session_factory() as db_session:
            logs = await SyncLogRepository(db_session, tenant_id="broken").list_recent()
        assert [log.status for log in logs] == ["error"]

    async def test_unparseable_config_is_reported(self, scheduler, session_factory) -> None:
        await _store_raw(session_factory, "acme", {"environment": "moon"})

        report = await scheduler.run_once(today=_TODAY)

        assert report.failed == 1
        assert report.results[0].sync is None

    async def test_gateway_failure_is_isolated(self, scheduler, session_factory, gateway_config, fake_gateway):
        await _configure(session_factory, gateway_config, "acme", "zeta")
        # Only the first tenant's fetch fails; 5xx answers are not retried.
        fake_gateway.statement_responses.append(httpx.Response(500, text="down"))
        fake_gateway.statement_pages = [[_entry("tx-1")]]

        report = await scheduler.run_once(today=_TODAY)

        assert (report.successful, report.failed) == (1, 1)
        failed = next(outcome for outcome in report.results if not outcome.success)
        assert "500" in failed.error

    async def test_invoice_import_failure_keeps_sync(
        self, scheduler, session_factory, gateway_config, fake_gateway, api_settings
    ) -> None:
        api_settings.auto_sync_import_invoices = True
        await _configure(session_factory, gateway_config, "acme")
        fake_gateway.invoice_responses.append(httpx.Response(500, text="down"))
        fake_gateway.statement_pages = [[_entry("tx-1")]]

        report = await scheduler.run_once(today=_TODAY)

        outcome = report.results[0]
        assert outcome.success is True
        assert outcome.invoice_error is not None
        assert outcome.sync.imported_count == 1

    async def test_late_credit_settles_invoice_past_due(
        self, scheduler, session_factory, gateway_config, fake_gateway, api_settings
    ) -> None:
        api_settings.auto_sync_import_invoices = True
        await _configure(session_factory, gateway_config, "acme")
        fake_gateway.invoice_pages = [
            [{"id": "inv_1", "status": "OPEN", "total_amount": 15000, "payment_terms": {"due_date": "2024-03-10"}}]
        ]
        fake_gateway.statement_pages = [
            [{"id": "tx-1", "amount": 15000, "type": "CREDIT", "createdAt": "2024-03-11T12:00:00+00:00"}]
        ]

        report = await scheduler.run_once(today=date(2024, 3, 12))

        assert report.results[0].success is True
        assert report.results[0].invoice_error is None
        paths = [path for path, _ in fake_gateway.calls]
        assert paths.index("/transactions") < paths.index("/invoices")
        async with session_factory() as db_session:
            invoice = await InvoiceRepository(db_session, tenant_id="acme").get("inv_1")
            transaction = await BankTransactionRepository(db_session, tenant_id="acme").get_by_external_id("tx-1")
        assert invoice.status == "paid"
        assert invoice.overdue is False
        assert transaction.conciliated_invoice_id == "inv_1"

    async def test_list_configured_tenants(self, session_factory, gateway_config) -> None:
        await _configure(session_factory, gateway_config, "zeta", "acme")

        async with session_factory() as db_session:
            assert await list_configured_tenants(db_session) == ["acme", "zeta"]

    async def test_start_and_stop(self, scheduler, api_settings) -> None:
        api_settings.auto_sync_interval_seconds = 3600

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0)
        await scheduler.stop()

        assert scheduler.running is False

"""Tests for statement ingestion and automatic reconciliation.

Covers:
- The INV-1 walkthrough (credit stored, matched and settled)
- Earliest-due tie-break and the exact-amount / +-7 day rule
- Debits stored but never matched
- Idempotent re-sync
- Malformed entries skipped, fetch failures logged then raised
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import httpx
import pytest
from fleetpay_core.errors import GatewayResponseError
from fleetpay_core.state.repository import BankTransactionRepository, InvoiceRepository, SyncLogRepository
from fleetpay_core.state.tables import BankTransactionTable

from fleetpay_api.services.reconciliation_service import ReconciliationService
from fleetpay_api.services.transaction_sync import TransactionSyncService

_START = date(2024, 3, 1)
_END = date(2024, 3, 31)


def _entry(entry_id: str, amount_minor: int, day: int = 10, type_tag: str = "CREDIT") -> dict:
    return {
        "id": entry_id,
        "amount": amount_minor,
        "type": type_tag,
        "createdAt": f"2024-03-{day:02d}T12:00:00+00:00",
        "transaction": {"description": "PIX", "counterParty": {"name": "Cliente"}},
    }


async def _transaction(session, entry_id: str = "tx-1", *, day: int = 10, direction: str = "credit"):
    return await BankTransactionRepository(session, tenant_id="acme").upsert(
        external_id=entry_id,
        amount=Decimal("150.00"),
        direction=direction,
        status="settled",
        description=None,
        occurred_at=datetime(2024, 3, day, 12, tzinfo=UTC),
        raw_payload={"id": entry_id},
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestReconciliation:
    async def test_earliest_due_candidate_wins(self, session) -> None:
        invoices = InvoiceRepository(session, tenant_id="acme")
        five_days = await invoices.create(invoice_id="inv-5", amount=Decimal("150.00"), due_date=date(2024, 3, 15))
        two_days = await invoices.create(invoice_id="inv-2", amount=Decimal("150.00"), due_date=date(2024, 3, 12))
        tx = await _transaction(session)

        matched = await ReconciliationService(session, tenant_id="acme").try_reconcile(tx)

        assert matched is True
        assert tx.conciliated_invoice_id == two_days.id
        assert (await invoices.get(two_days.id)).status == "paid"
        assert (await invoices.get(five_days.id)).status == "pending"

    async def test_no_match_outside_window(self, session) -> None:
        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("150.00"), due_date=date(2024, 3, 18))
        tx = await _transaction(session)

        assert await ReconciliationService(session, tenant_id="acme").try_reconcile(tx) is False
        assert tx.conciliated is False

    async def test_window_edge_is_inclusive(self, session) -> None:
        invoice = await InvoiceRepository(session, tenant_id="acme").create(
            amount=Decimal("150.00"), due_date=date(2024, 3, 3)
        )
        tx = await _transaction(session)

        assert await ReconciliationService(session, tenant_id="acme").try_reconcile(tx) is True
        assert tx.conciliated_invoice_id == invoice.id

    async def test_no_match_on_amount_difference(self, session) -> None:
        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("149.99"), due_date=date(2024, 3, 10))
        tx = await _transaction(session)

        assert await ReconciliationService(session, tenant_id="acme").try_reconcile(tx) is False

    async def test_other_tenant_invoice_ignored(self, session) -> None:
        await InvoiceRepository(session, tenant_id="other").create(amount=Decimal("150.00"), due_date=date(2024, 3, 10))
        tx = await _transaction(session)

        assert await ReconciliationService(session, tenant_id="acme").try_reconcile(tx) is False

    async def test_debit_never_matched(self, session) -> None:
        invoice = await InvoiceRepository(session, tenant_id="acme").create(
            amount=Decimal("150.00"), due_date=date(2024, 3, 10)
        )
        tx = await _transaction(session, direction="debit")

        assert await ReconciliationService(session, tenant_id="acme").try_reconcile(tx) is False
        assert (await InvoiceRepository(session, tenant_id="acme").get(invoice.id)).status == "pending"

    async def test_conciliated_transaction_not_rematched(self, session) -> None:
        invoices = InvoiceRepository(session, tenant_id="acme")
        await invoices.create(amount=Decimal("150.00"), due_date=date(2024, 3, 10))
        second = await invoices.create(amount=Decimal("150.00"), due_date=date(2024, 3, 11))
        tx = await _transaction(session)
        matcher = ReconciliationService(session, tenant_id="acme")

        assert await matcher.try_reconcile(tx) is True
        assert await matcher.try_reconcile(tx) is False
        assert (await invoices.get(second.id)).status == "pending"

    async def test_reconcile_outstanding_picks_up_late_invoice(self, session) -> None:
        await _transaction(session)
        matcher = ReconciliationService(session, tenant_id="acme")
        assert await matcher.reconcile_outstanding() == 0

        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("150.00"), due_date=date(2024, 3, 9))

        assert await matcher.reconcile_outstanding() == 1


# ---------------------------------------------------------------------------
# Transaction sync
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestTransactionSync:
    async def _sync(self, session, make_gateway_service, gateway_config, start=_START, end=_END):
        syncer = TransactionSyncService(session, make_gateway_service(session), tenant_id="acme")
        return await syncer.sync_transactions(gateway_config, start, end)

    async def test_inv1_walkthrough(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await InvoiceRepository(session, tenant_id="acme").create(
            invoice_id="INV-1", amount=Decimal("150.00"), due_date=date(2024, 3, 10)
        )
        fake_gateway.statement_pages = [[_entry("tx-1", 15000, day=9)]]

        result = await self._sync(session, make_gateway_service, gateway_config)

        assert (result.imported_count, result.conciliated_count, result.skipped_count) == (1, 1, 0)
        tx = await BankTransactionRepository(session, tenant_id="acme").get_by_external_id("tx-1")
        assert tx.amount == Decimal("150.00")
        assert tx.direction == "credit"
        assert tx.conciliated is True
        assert tx.conciliated_invoice_id == "INV-1"
        invoice = await InvoiceRepository(session, tenant_id="acme").get("INV-1")
        assert invoice.status == "paid"
        assert invoice.paid_amount == Decimal("150.00")
        assert invoice.paid_at == datetime(2024, 3, 9, 12, tzinfo=UTC)
        assert invoice.payment_method == "gateway_automatic"

    async def test_resync_is_idempotent(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("150.00"), due_date=date(2024, 3, 10))
        fake_gateway.statement_pages = [[_entry("tx-1", 15000), _entry("tx-2", 9900)], [_entry("tx-3", 500)]]

        first = await self._sync(session, make_gateway_service, gateway_config)
        repo = BankTransactionRepository(session, tenant_id="acme")
        flags_after_first = {row.external_id: row.conciliated for row in await repo.list_transactions()}

        second = await self._sync(session, make_gateway_service, gateway_config)
        flags_after_second = {row.external_id: row.conciliated for row in await repo.list_transactions()}

        assert first.imported_count == second.imported_count == 3
        assert first.conciliated_count == 1
        assert second.conciliated_count == 0
        assert await repo.count() == 3
        assert flags_after_first == flags_after_second == {"tx-1": True, "tx-2": False, "tx-3": False}

    async def test_debit_stored_not_reconciled(self, session, make_gateway_service, gateway_config, fake_gateway):
        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("150.00"), due_date=date(2024, 3, 10))
        fake_gateway.statement_pages = [[_entry("tx-d", -15000, type_tag="DEBIT")]]

        result = await self._sync(session, make_gateway_service, gateway_config)

        assert (result.imported_count, result.conciliated_count) == (1, 0)
        tx = await BankTransactionRepository(session, tenant_id="acme").get_by_external_id("tx-d")
        assert tx.direction == "debit"
        assert tx.amount == Decimal("150.00")

    async def test_malformed_entries_skipped(self, session, make_gateway_service, gateway_config, fake_gateway):
        fake_gateway.statement_pages = [[{"id": "bad", "amount": "1.5", "type": "CREDIT"}, _entry("tx-1", 100)]]

        result = await self._sync(session, make_gateway_service, gateway_config)

        assert (result.imported_count, result.skipped_count) == (1, 1)
        logs = await SyncLogRepository(session, tenant_id="acme").list_recent()
        assert logs[0].status == "success"
        assert logs[0].skipped_count == 1

    async def test_success_writes_one_log(self, session, make_gateway_service, gateway_config, fake_gateway):
        fake_gateway.statement_pages = [[_entry("tx-1", 100)]]

        await self._sync(session, make_gateway_service, gateway_config)

        logs = await SyncLogRepository(session, tenant_id="acme").list_recent()
        assert len(logs) == 1
        assert (logs[0].start_date, logs[0].end_date) == (_START, _END)
        assert logs[0].imported_count == 1
        assert logs[0].error_message is None

    async def test_fetch_failure_logs_error_and_raises(
        self, session, make_gateway_service, gateway_config, fake_gateway
    ) -> None:
        fake_gateway.statement_pages = [[_entry("tx-1", 100), _entry("tx-2", 200)], [_entry("tx-3", 300)]]
        fake_gateway.statement_page_errors[2] = httpx.Response(500, text="upstream down")

        with pytest.raises(GatewayResponseError):
            await self._sync(session, make_gateway_service, gateway_config)

        logs = await SyncLogRepository(session, tenant_id="acme").list_recent()
        assert len(logs) == 1
        assert logs[0].status == "error"
        assert logs[0].imported_count == 2
        assert "500" in logs[0].error_message

    async def test_inverted_range_rejected(self, session, make_gateway_service, gateway_config, fake_gateway):
        with pytest.raises(ValueError):
            await self._sync(session, make_gateway_service, gateway_config, start=_END, end=_START)

        assert fake_gateway.calls == []
        assert await SyncLogRepository(session, tenant_id="acme").list_recent() == []

    async def test_single_day_range(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        fake_gateway.statement_pages = [[_entry("tx-1", 100)]]

        result = await self._sync(session, make_gateway_service, gateway_config, start=_START, end=_START)

        assert result.imported_count == 1
        body = fake_gateway.calls_to("/transactions")[0]
        assert body["start"] == body["end"] == "2024-03-01"

    async def test_entry_update_keeps_link(self, session, make_gateway_service, gateway_config, fake_gateway):
        await InvoiceRepository(session, tenant_id="acme").create(amount=Decimal("1.00"), due_date=date(2024, 3, 10))
        fake_gateway.statement_pages = [[_entry("tx-1", 100)]]
        await self._sync(session, make_gateway_service, gateway_config)

        updated = _entry("tx-1", 100)
        updated["transaction"]["description"] = "PIX corrigido"
        fake_gateway.statement_pages = [[updated]]
        await self._sync(session, make_gateway_service, gateway_config)

        tx: BankTransactionTable = await BankTransactionRepository(session, tenant_id="acme").get_by_external_id("tx-1")
        assert tx.description.startswith("PIX corrigido")
        assert tx.conciliated is True

"""Tests for pushing local invoices to the gateway as charges."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import httpx
import pytest
from fleetpay_core.errors import GatewayResponseError, UnknownInvoiceError
from fleetpay_core.models.charge import ChargeCustomer, default_idempotency_key
from fleetpay_core.state.repository import InvoiceRepository

from fleetpay_api.services.charge_creation import ChargeCreationService

_CUSTOMER = ChargeCustomer(name="Maria", email="maria@example.com", document="123.456.789-09")


async def _invoice(session, invoice_id: str = "INV-1", **kwargs):
    row = await InvoiceRepository(session, tenant_id="acme").create(
        invoice_id=invoice_id, amount=Decimal("150.00"), due_date=date(2024, 3, 20), **kwargs
    )
    await session.commit()
    return row


@pytest.mark.asyncio
class TestChargeCreation:
    def _service(self, session, make_gateway_service) -> ChargeCreationService:
        return ChargeCreationService(session, make_gateway_service(session), tenant_id="acme")

    async def test_charge_id_stored(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await _invoice(session)

        result = await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)

        assert (result.created, result.external_charge_id) == (True, "chg-1")
        assert result.idempotency_key == default_idempotency_key("acme", "INV-1")
        invoice = await InvoiceRepository(session, tenant_id="acme").get("INV-1")
        assert invoice.external_charge_id == "chg-1"
        assert invoice.customer_name == "Maria"
        body = fake_gateway.calls_to("/invoices/create")[0]
        assert body["idempotencyKey"] == result.idempotency_key
        assert body["boleto"]["services"][0]["amount"] == 15000
        assert body["boleto"]["payment_terms"]["due_date"] == "2024-03-20"
        assert fake_gateway.idempotency_headers == [result.idempotency_key]

    async def test_repeated_request_reuses_key(
        self, session, make_gateway_service, gateway_config, fake_gateway
    ) -> None:
        invoice = await _invoice(session)
        service = self._service(session, make_gateway_service)
        first = await service.create_charge(gateway_config, "INV-1", _CUSTOMER)
        # Lost response: the charge exists remotely but was never recorded.
        invoice.external_charge_id = None
        await session.flush()

        second = await service.create_charge(gateway_config, "INV-1", _CUSTOMER)

        assert second.external_charge_id == first.external_charge_id
        assert len(fake_gateway.charges) == 1

    async def test_explicit_key_sent(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await _invoice(session)

        result = await self._service(session, make_gateway_service).create_charge(
            gateway_config, "INV-1", _CUSTOMER, idempotency_key="order-42"
        )

        assert result.idempotency_key == "order-42"
        assert fake_gateway.idempotency_headers == ["order-42"]

    async def test_existing_charge_not_recreated(
        self, session, make_gateway_service, gateway_config, fake_gateway
    ) -> None:
        await _invoice(session, external_charge_id="CH-7")

        result = await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)

        assert (result.created, result.external_charge_id) == (False, "CH-7")
        assert fake_gateway.calls_to("/invoices/create") == []

    async def test_paid_invoice_rejected(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await _invoice(session, status="paid")

        with pytest.raises(ValueError, match="only pending"):
            await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)
        assert fake_gateway.calls_to("/invoices/create") == []

    async def test_unknown_invoice(self, session, make_gateway_service, gateway_config) -> None:
        with pytest.raises(UnknownInvoiceError) as excinfo:
            await self._service(session, make_gateway_service).create_charge(gateway_config, "missing", _CUSTOMER)

        assert excinfo.value.invoice_id == "missing"

    async def test_rejected_token_refreshed(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await _invoice(session)
        fake_gateway.charge_responses.append(httpx.Response(401, json={"error": "invalid_client"}))

        result = await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)

        assert result.external_charge_id == "chg-1"
        assert fake_gateway.token_requests == 2

    async def test_timeout_retry_keeps_key(self, session, make_gateway_service, gateway_config, fake_gateway) -> None:
        await _invoice(session)
        fake_gateway.charge_responses.append(httpx.ReadTimeout("slow"))

        result = await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)

        assert result.external_charge_id == "chg-1"
        assert fake_gateway.token_requests == 1
        assert fake_gateway.idempotency_headers == [result.idempotency_key, result.idempotency_key]

    async def test_response_without_charge_id(
        self, session, make_gateway_service, gateway_config, fake_gateway
    ) -> None:
        await _invoice(session)
        fake_gateway.charge_responses.append(httpx.Response(200, json={"status": "OPEN"}))

        with pytest.raises(GatewayResponseError):
            await self._service(session, make_gateway_service).create_charge(gateway_config, "INV-1", _CUSTOMER)

        invoice = await InvoiceRepository(session, tenant_id="acme").get("INV-1")
        assert invoice.external_charge_id is None

"""Creation of gateway charges for local invoices.

A pending invoice without a gateway charge is pushed to the gateway and
the returned charge id is stored as its ``external_charge_id``, which
routes later webhook deliveries to it.  An invoice that already has a
charge is returned as-is without calling the gateway.
"""

from __future__ import annotations

import logging

from fleetpay_core.errors import GatewayResponseError, UnknownInvoiceError
from fleetpay_core.models.charge import (
    ChargeCreationResult,
    ChargeCustomer,
    ChargeTerms,
    build_charge_payload,
    default_idempotency_key,
)
from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.models.invoice import InvoiceStatus
from fleetpay_core.state.repository import InvoiceRepository
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_api.services.gateway_service import GatewayService

logger = logging.getLogger(__name__)


class ChargeCreationService:
    """Push local invoices of one tenant to the gateway.

    Parameters
    ----------
    session:
        Active database session; the caller commits.
    gateway:
        Authenticated gateway operations for the same tenant.
    tenant_id:
        Tenant scope.
    """

    def __init__(self, session: AsyncSession, gateway: GatewayService, *, tenant_id: str) -> None:
        self._gateway = gateway
        self._tenant_id = tenant_id
        self._invoices = InvoiceRepository(session, tenant_id=tenant_id)

    async def create_charge(
        self,
        config: TenantGatewayConfig,
        invoice_id: str,
        customer: ChargeCustomer,
        *,
        service_name: str = "Serviço",
        terms: ChargeTerms | None = None,
        idempotency_key: str | None = None,
    ) -> ChargeCreationResult:
        """Create the gateway charge of *invoice_id* and record its id.

        Without an explicit *idempotency_key* one is derived from the
        tenant and invoice ids, so repeating the request for the same
        invoice can never produce a second charge.

        Raises
        ------
        UnknownInvoiceError
            If the tenant has no invoice *invoice_id*.
        ValueError
            If the invoice is not pending or its amount is not a whole
            number of centavos.
        GatewayError
            If the gateway call fails after the retry policy, or answers
            without a charge id.
        """
        invoice = await self._invoices.get(invoice_id)
        if invoice is None:
            raise UnknownInvoiceError(invoice_id)
        if invoice.external_charge_id:
            logger.info(
                "Invoice %s of tenant %s already has charge %s",
                invoice.id,
                self._tenant_id,
                invoice.external_charge_id,
            )
            return ChargeCreationResult(
                tenant_id=self._tenant_id,
                invoice_id=invoice.id,
                external_charge_id=invoice.external_charge_id,
                created=False,
            )
        if invoice.status != InvoiceStatus.PENDING.value:
            raise ValueError(f"Invoice {invoice.id} is {invoice.status}; only pending invoices can be charged")

        key = idempotency_key or default_idempotency_key(self._tenant_id, invoice.id)
        charge = build_charge_payload(
            code=invoice.id[:32],
            amount=invoice.amount,
            due_date=invoice.due_date,
            customer=customer,
            service_name=service_name,
            description=invoice.description,
            terms=terms,
        )
        body = await self._gateway.create_charge(config, charge, key)

        charge_id = body.get("id") or body.get("charge_id")
        if not charge_id:
            # The charge may exist; the same key finds it on the next attempt.
            raise GatewayResponseError(f"Gateway created no charge id for invoice {invoice.id} (key {key})")

        if not invoice.customer_name:
            invoice.customer_name = customer.name
        await self._invoices.assign_external_charge_id(invoice, str(charge_id))
        logger.info(
            "Created charge %s for invoice %s of tenant %s",
            charge_id,
            invoice.id,
            self._tenant_id,
        )
        return ChargeCreationResult(
            tenant_id=self._tenant_id,
            invoice_id=invoice.id,
            external_charge_id=str(charge_id),
            idempotency_key=key,
        )

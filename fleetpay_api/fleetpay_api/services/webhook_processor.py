"""Invoice state machine driven by gateway charge webhooks.

Every delivery is written to ``webhook_logs`` as ``received`` and committed
before any invoice is touched, then moved to ``processed``, ``unhandled``
or ``error``.  Replays are idempotent by overwrite: a repeated event
re-applies the same values, so ``paid_amount`` never accumulates and
``paid_at`` stays put.

Transitions are defined out of ``pending`` (and out of an ``expired``
invoice flagged ``overdue``, which the gateway still lets be paid), plus
``paid`` to ``chargeback``.  Any other event for an invoice already in a different
final state is recorded as ``processed`` and leaves the invoice alone.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fleetpay_core.errors import InvalidWebhookPayloadError, InvoiceNotFoundError
from fleetpay_core.models.events import (
    ChargeEvent,
    ChargePaid,
    UnknownEvent,
    WebhookProcessingStatus,
    extract_charge_fields,
    parse_webhook_event,
)
from fleetpay_core.models.invoice import PAYMENT_METHOD_GATEWAY, InvoiceStatus
from fleetpay_core.models.money import minor_to_major
from fleetpay_core.state.repository import InvoiceRepository, WebhookLogRepository
from fleetpay_core.state.tables import InvoiceTable
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class WebhookOutcome(BaseModel):
    """What happened to one delivery; returned to the HTTP layer."""

    status: WebhookProcessingStatus
    log_id: int
    invoice_id: str | None = None
    detail: str | None = None
    deliveries: int = 1


def transition_allowed(current: InvoiceStatus, target: InvoiceStatus, *, overdue: bool = False) -> bool:
    """Whether an event targeting *target* may be applied to *current*."""
    if current is InvoiceStatus.PENDING or current is target:
        return True
    if current is InvoiceStatus.EXPIRED and overdue:
        return True
    return current is InvoiceStatus.PAID and target is InvoiceStatus.CHARGEBACK


def _require(invoice: InvoiceTable | None, external_charge_id: str) -> InvoiceTable:
    if invoice is None:
        raise InvoiceNotFoundError(external_charge_id)
    return invoice


class WebhookProcessor:
    """Apply one webhook delivery.  Owns the commits of its session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._invoices = InvoiceRepository(session, tenant_id=None)
        self._logs = WebhookLogRepository(session)

    async def process(self, payload: Any) -> WebhookOutcome:
        """Log and apply *payload*.

        Raises
        ------
        InvalidWebhookPayloadError
            If the payload has no charge id.  The attempt is still logged
            with ``processing_status = error``.
        """
        raw = payload if isinstance(payload, dict) else {"body": payload}
        try:
            event = parse_webhook_event(payload)
        except InvalidWebhookPayloadError as exc:
            event_type, _, amount_minor = extract_charge_fields(payload)
            await self._logs.record_received(
                event_type=event_type,
                raw_payload=raw,
                external_charge_id=None,
                amount=minor_to_major(amount_minor) if amount_minor is not None else None,
                processing_status=WebhookProcessingStatus.ERROR.value,
                error_message=str(exc),
            )
            await self._session.commit()
            logger.warning("Rejected webhook delivery: %s", exc)
            raise

        log = await self._logs.record_received(
            event_type=event.event_type,
            raw_payload=raw,
            external_charge_id=event.external_charge_id,
            amount=event.amount,
        )
        log_id = log.id
        await self._session.commit()
        deliveries = await self._logs.count_deliveries(event.external_charge_id, event.event_type)
        if deliveries > 1:
            logger.info(
                "Repeated delivery %d of %s for charge %s",
                deliveries,
                event.event_type,
                event.external_charge_id,
            )

        try:
            outcome = await self._apply(event, log_id)
            await self._session.commit()
        except Exception as exc:
            await self._session.rollback()
            await self._logs.set_outcome(
                log_id,
                WebhookProcessingStatus.ERROR.value,
                error_message=str(exc) or exc.__class__.__name__,
            )
            await self._session.commit()
            logger.exception("Webhook %s for charge %s failed", event.event_type, event.external_charge_id)
            raise
        outcome.deliveries = deliveries
        return outcome

    async def _apply(self, event: ChargeEvent, log_id: int) -> WebhookOutcome:
        invoice = await self._invoices.get_by_external_charge_id(event.external_charge_id)
        tenant_id = invoice.tenant_id if invoice is not None else None
        invoice_id = invoice.id if invoice is not None else None

        if isinstance(event, UnknownEvent):
            await self._logs.set_outcome(
                log_id,
                WebhookProcessingStatus.UNHANDLED.value,
                tenant_id=tenant_id,
                invoice_id=invoice_id,
            )
            logger.info("Unhandled webhook event type %r for charge %s", event.event_type, event.external_charge_id)
            return WebhookOutcome(
                status=WebhookProcessingStatus.UNHANDLED,
                log_id=log_id,
                invoice_id=invoice_id,
                detail="unhandled_event_type",
            )

        try:
            invoice = _require(invoice, event.external_charge_id)
        except InvoiceNotFoundError as exc:
            await self._logs.set_outcome(log_id, WebhookProcessingStatus.ERROR.value, error_message=str(exc))
            logger.error("%s (event %s acknowledged)", exc, event.event_type)
            return WebhookOutcome(status=WebhookProcessingStatus.ERROR, log_id=log_id, detail="invoice_not_found")

        target = event.target_status
        if target is None:
            raise TypeError(f"{type(event).__name__} declares no target status")
        current = InvoiceStatus(invoice.status)

        if not transition_allowed(current, target, overdue=invoice.overdue):
            note = f"ignored: invoice already {current.value}"
            await self._logs.set_outcome(
                log_id,
                WebhookProcessingStatus.PROCESSED.value,
                error_message=note,
                tenant_id=tenant_id,
                invoice_id=invoice_id,
            )
            logger.info(
                "Ignoring %s for invoice %s already %s",
                event.event_type,
                invoice.id,
                current.value,
            )
            return WebhookOutcome(
                status=WebhookProcessingStatus.PROCESSED,
                log_id=log_id,
                invoice_id=invoice_id,
                detail="ignored_final_state",
            )

        await self._transition(invoice, event, target)
        await self._logs.set_outcome(
            log_id,
            WebhookProcessingStatus.PROCESSED.value,
            tenant_id=tenant_id,
            invoice_id=invoice_id,
        )
        logger.info(
            "Invoice %s: %s -> %s via %s",
            invoice.id,
            current.value,
            target.value,
            event.event_type,
        )
        return WebhookOutcome(status=WebhookProcessingStatus.PROCESSED, log_id=log_id, invoice_id=invoice_id)

    async def _transition(self, invoice: InvoiceTable, event: ChargeEvent, target: InvoiceStatus) -> None:
        if isinstance(event, ChargePaid):
            paid_at = event.occurred_at or invoice.paid_at or datetime.now(UTC)
            paid_amount = event.amount if event.amount is not None else (invoice.paid_amount or invoice.amount)
            await self._invoices.apply_status(
                invoice,
                target.value,
                paid_at=paid_at,
                paid_amount=paid_amount,
                payment_method=invoice.payment_method or PAYMENT_METHOD_GATEWAY,
            )
            return
        await self._invoices.apply_status(invoice, target.value)

"""Typed inbound webhook events.

Gateway payloads are parsed into one variant per known ``event_type``
plus :class:`UnknownEvent` for everything else, so the processor can
branch on the variant class instead of on raw strings.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from fleetpay_core.errors import InvalidWebhookPayloadError
from fleetpay_core.models.invoice import InvoiceStatus
from fleetpay_core.models.money import minor_to_major


class WebhookProcessingStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    UNHANDLED = "unhandled"
    ERROR = "error"


class ChargeEvent(BaseModel):
    """Fields shared by every charge lifecycle event."""

    model_config = ConfigDict(frozen=True)

    target_status: ClassVar[InvoiceStatus | None] = None

    event_type: str
    external_charge_id: str
    amount_minor: int | None = None
    occurred_at: datetime | None = None
    raw: dict[str, Any]

    @property
    def amount(self) -> Decimal | None:
        """Event amount in major units, if the gateway sent one."""
        if self.amount_minor is None:
            return None
        return minor_to_major(self.amount_minor)


class ChargePaid(ChargeEvent):
    target_status: ClassVar[InvoiceStatus | None] = InvoiceStatus.PAID


class ChargeRefused(ChargeEvent):
    target_status: ClassVar[InvoiceStatus | None] = InvoiceStatus.REFUSED


class ChargeExpired(ChargeEvent):
    target_status: ClassVar[InvoiceStatus | None] = InvoiceStatus.EXPIRED


class ChargeCancelled(ChargeEvent):
    target_status: ClassVar[InvoiceStatus | None] = InvoiceStatus.CANCELLED


class ChargeChargeback(ChargeEvent):
    target_status: ClassVar[InvoiceStatus | None] = InvoiceStatus.CHARGEBACK


class UnknownEvent(ChargeEvent):
    """Structurally valid event of a type the processor does not handle."""


WebhookEvent = ChargePaid | ChargeRefused | ChargeExpired | ChargeCancelled | ChargeChargeback | UnknownEvent

_EVENT_TYPES: dict[str, type[ChargeEvent]] = {
    "charge.paid": ChargePaid,
    "charge.failed": ChargeRefused,
    "charge.refused": ChargeRefused,
    "charge.expired": ChargeExpired,
    "charge.cancelled": ChargeCancelled,
    "charge.chargeback": ChargeChargeback,
}


def _optional_minor(value: Any) -> int | None:
    """Minor-unit amount as an int; integral JSON numbers such as ``15000.0`` included."""
    if value is None:
        return None
    try:
        return int(minor_to_major(value) * 100)
    except ValueError:
        return None


def _optional_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def extract_charge_fields(payload: Any) -> tuple[str, str | None, int | None]:
    """Best-effort ``(event_type, charge_id, amount_minor)`` for audit logging.

    Never raises, so even a rejected delivery can be logged.
    """
    if not isinstance(payload, dict):
        return "unknown", None, None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    event_type = str(payload.get("event_type") or payload.get("type") or "unknown")
    charge_id = data.get("id") or data.get("charge_id") or payload.get("charge_id")
    return event_type, (str(charge_id) if charge_id not in (None, "") else None), _optional_minor(data.get("amount"))


def parse_webhook_event(payload: Any) -> WebhookEvent:
    """Parse a raw webhook body into its event variant.

    Raises
    ------
    InvalidWebhookPayloadError
        If the payload is not an object or carries no charge id.
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook payload must be a JSON object")
    event_type, charge_id, amount_minor = extract_charge_fields(payload)
    if charge_id is None:
        raise InvalidWebhookPayloadError("Webhook payload has no charge id")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    event_cls = _EVENT_TYPES.get(event_type, UnknownEvent)
    return event_cls(  # type: ignore[return-value]
        event_type=event_type,
        external_charge_id=charge_id,
        amount_minor=amount_minor,
        occurred_at=_optional_timestamp(data.get("paid_at") or data.get("occurred_at")),
        raw=payload,
    )

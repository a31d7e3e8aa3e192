"""Invoice status vocabulary and gateway invoice normalization."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from fleetpay_core.models.money import minor_to_major

PAYMENT_METHOD_GATEWAY_AUTOMATIC = "gateway_automatic"
PAYMENT_METHOD_GATEWAY = "gateway"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUSED = "refused"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    CHARGEBACK = "chargeback"


# Statuses never overwritten by stale or imported data.
PROTECTED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.CHARGEBACK})

_GATEWAY_STATUS_MAP: dict[str, InvoiceStatus] = {
    "OPEN": InvoiceStatus.PENDING,
    "PENDING": InvoiceStatus.PENDING,
    "PAID": InvoiceStatus.PAID,
    "OVERDUE": InvoiceStatus.EXPIRED,
    "LATE": InvoiceStatus.EXPIRED,
    "EXPIRED": InvoiceStatus.EXPIRED,
    "CANCELLED": InvoiceStatus.CANCELLED,
    "CANCELED": InvoiceStatus.CANCELLED,
}

# The only gateway state in which a charge can no longer be paid late.
_CLOSED_GATEWAY_STATE = "EXPIRED"


def _gateway_state(raw_status: Any) -> str:
    return str(raw_status or "").strip().upper()


def map_gateway_invoice_status(
    raw_status: Any,
    *,
    due_date: date | None = None,
    today: date | None = None,
) -> InvoiceStatus:
    """Translate a gateway invoice state to the local status.

    Unknown states map to ``pending``.  A non-paid, non-cancelled invoice
    whose due date has passed is ``expired``.
    """
    status = _GATEWAY_STATUS_MAP.get(_gateway_state(raw_status), InvoiceStatus.PENDING)
    if due_date is not None and status not in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
        today = today or datetime.now(UTC).date()
        if due_date < today:
            status = InvoiceStatus.EXPIRED
    return status


def _parse_paid_at(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


class GatewayInvoice(BaseModel):
    """One invoice from the gateway invoice listing, normalized.

    ``overdue`` marks an ``expired`` invoice whose charge the gateway still
    accepts (open or late past its due date).  Such an invoice stays a
    reconciliation candidate and can still be settled by ``charge.paid``.
    """

    external_charge_id: str = Field(..., min_length=1)
    amount: Decimal
    due_date: date
    status: InvoiceStatus
    overdue: bool = False
    customer_name: str | None = None
    description: str | None = None
    paid_at: datetime | None = None
    paid_amount: Decimal | None = None

    @classmethod
    def from_gateway(cls, item: dict[str, Any], *, today: date | None = None) -> GatewayInvoice:
        """Build from a raw listing item.

        Raises ``ValueError`` (pydantic ``ValidationError`` included) when the
        item has no id, amount or due date.
        """
        terms = item.get("payment_terms") if isinstance(item.get("payment_terms"), dict) else {}
        raw_due = item.get("due_date") or terms.get("due_date")
        if not raw_due:
            raise ValueError(f"Invoice {item.get('id')!r} has no due date")
        due_date = date.fromisoformat(str(raw_due)[:10])

        customer = item.get("customer") if isinstance(item.get("customer"), dict) else {}
        paid_at = item.get("paid_at")
        total_paid = item.get("total_paid")
        state = _gateway_state(item.get("status"))
        status = map_gateway_invoice_status(state, due_date=due_date, today=today)

        return cls(
            external_charge_id=str(item.get("id") or ""),
            amount=minor_to_major(item.get("total_amount")),
            due_date=due_date,
            status=status,
            overdue=status is InvoiceStatus.EXPIRED and state != _CLOSED_GATEWAY_STATE,
            customer_name=item.get("customer_name") or customer.get("name"),
            description=item.get("description") or item.get("code"),
            paid_at=_parse_paid_at(paid_at),
            paid_amount=minor_to_major(total_paid) if total_paid else None,
        )

"""Normalization of gateway bank-statement entries."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from fleetpay_core.errors import StatementEntryError
from fleetpay_core.models.money import minor_to_major


class TransactionDirection(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class NormalizedTransaction(BaseModel):
    """A statement entry reduced to what the ledger stores."""

    external_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0, description="Major units, two decimals.")
    currency: str = "BRL"
    direction: TransactionDirection
    status: str = "settled"
    description: str | None = None
    occurred_at: datetime
    raw_payload: dict[str, Any]

    @property
    def occurred_on(self) -> date:
        return self.occurred_at.date()


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _build_description(entry: dict[str, Any], transaction: dict[str, Any]) -> str | None:
    own = transaction.get("description") or entry.get("description")
    counterparty = transaction.get("counterParty") or entry.get("counterParty") or entry.get("counter_party")
    name = counterparty.get("name") if isinstance(counterparty, dict) else None
    parts = [str(part).strip() for part in (own, name) if part and str(part).strip()]
    return " - ".join(parts) or None


def normalize_statement_entry(entry: Any) -> NormalizedTransaction:
    """Convert one raw statement entry into a :class:`NormalizedTransaction`.

    * ``amount`` is in minor units and becomes a positive major-unit value.
    * ``type`` (``CREDIT``/``DEBIT``, any case) gives the direction.
    * the description joins the transaction's own description with the
      counterparty name when present.

    Raises
    ------
    StatementEntryError
        When the entry lacks an id, amount, direction or timestamp.
    """
    if not isinstance(entry, dict):
        raise StatementEntryError(f"Statement entry must be an object, got {type(entry).__name__}")

    external_id = entry.get("id")
    if external_id in (None, ""):
        raise StatementEntryError("Statement entry has no id")

    transaction = entry.get("transaction") if isinstance(entry.get("transaction"), dict) else {}

    try:
        amount = abs(minor_to_major(entry.get("amount")))
    except ValueError as exc:
        raise StatementEntryError(f"Entry {external_id}: {exc}") from exc

    type_tag = str(entry.get("type") or "").strip().lower()
    try:
        direction = TransactionDirection(type_tag)
    except ValueError as exc:
        raise StatementEntryError(f"Entry {external_id}: unknown type tag {entry.get('type')!r}") from exc

    raw_timestamp = entry.get("createdAt") or entry.get("created_at") or entry.get("date") or entry.get("occurredAt")
    try:
        occurred_at = _parse_timestamp(raw_timestamp)
    except ValueError as exc:
        raise StatementEntryError(f"Entry {external_id}: {exc}") from exc

    return NormalizedTransaction(
        external_id=str(external_id),
        amount=amount,
        currency=str(entry.get("currency") or "BRL").upper()[:3],
        direction=direction,
        status=str(entry.get("status") or "settled").lower(),
        description=_build_description(entry, transaction),
        occurred_at=occurred_at,
        raw_payload=entry,
    )

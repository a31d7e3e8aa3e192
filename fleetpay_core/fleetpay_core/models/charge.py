"""Charge (boleto / PIX) creation requests for the gateway.

A local invoice is pushed to the gateway as a charge; the id the gateway
returns becomes the invoice's ``external_charge_id``.  Creation is keyed
by an idempotency key so a retried request never creates a second charge.
"""

from __future__ import annotations

import re
import uuid
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from fleetpay_core.models.money import major_to_minor

# Namespace for idempotency keys derived from (tenant, invoice).
_IDEMPOTENCY_NAMESPACE = uuid.UUID("6f1c2a4e-3b7d-4f0a-9c8e-5d2b1a7e4c90")

_CNPJ_DIGITS = 14

DEFAULT_NOTIFICATION_RULES = (
    "NOTIFY_TEN_DAYS_BEFORE_DUE_DATE",
    "NOTIFY_TWO_DAYS_BEFORE_DUE_DATE",
    "NOTIFY_ON_DUE_DATE",
    "NOTIFY_TWO_DAYS_AFTER_DUE_DATE",
    "NOTIFY_WHEN_PAID",
)


def default_idempotency_key(tenant_id: str, invoice_id: str) -> str:
    """Stable key for the charge of one invoice; equal across retries."""
    return str(uuid.uuid5(_IDEMPOTENCY_NAMESPACE, f"{tenant_id}:{invoice_id}"))


def document_type(document: str) -> str:
    """``CNPJ`` for 14-digit documents, ``CPF`` otherwise."""
    return "CNPJ" if len(re.sub(r"\D", "", document)) == _CNPJ_DIGITS else "CPF"


class ChargeAddress(BaseModel):
    street: str = ""
    number: str = "S/N"
    district: str = ""
    city: str = ""
    state: str = ""
    complement: str = "N/A"
    zip_code: str = ""


class ChargeCustomer(BaseModel):
    """The payer of a charge."""

    name: str = Field(..., min_length=1)
    email: str | None = None
    document: str = Field(..., min_length=1, description="CPF or CNPJ, digits or formatted.")
    address: ChargeAddress = Field(default_factory=ChargeAddress)


class ChargeTerms(BaseModel):
    """Late-payment terms.  ``fine_amount`` is in major units."""

    fine_amount: float = Field(default=0.0, ge=0)
    interest_rate: float = Field(default=3.67, ge=0, description="Monthly interest, percent.")
    notification_channels: list[str] = Field(default_factory=lambda: ["EMAIL"])


def build_charge_payload(
    *,
    code: str,
    amount: Any,
    due_date: date,
    customer: ChargeCustomer,
    service_name: str,
    description: str | None = None,
    terms: ChargeTerms | None = None,
) -> dict[str, Any]:
    """Assemble the gateway's charge body; amounts go out in centavos.

    Raises ``ValueError`` if *amount* is not a whole number of centavos.
    """
    terms = terms or ChargeTerms()
    payload: dict[str, Any] = {
        "code": code,
        "customer": {
            "name": customer.name,
            "email": customer.email,
            "document": {"identity": customer.document, "type": document_type(customer.document)},
            "address": customer.address.model_dump(),
        },
        "services": [
            {
                "name": service_name,
                "description": description or "",
                "amount": major_to_minor(amount),
            }
        ],
        "payment_terms": {
            "due_date": due_date.isoformat(),
            "fine": {"amount": major_to_minor(terms.fine_amount)},
            "interest": {"rate": terms.interest_rate},
        },
        "notifications": {
            "channels": list(terms.notification_channels),
            "destination": {"name": customer.name, "email": customer.email},
            "rules": list(DEFAULT_NOTIFICATION_RULES),
        },
    }
    return payload


class ChargeCreationResult(BaseModel):
    """Outcome of pushing one invoice to the gateway."""

    tenant_id: str
    invoice_id: str
    external_charge_id: str
    idempotency_key: str | None = None
    created: bool = Field(default=True, description="False when the invoice already had a charge.")

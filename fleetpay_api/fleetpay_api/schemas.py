"""Request and response models for the HTTP surface.

The gateway actions endpoint takes a body discriminated on ``action``;
each variant carries only the fields its operation needs.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from fleetpay_core.models.charge import ChargeCustomer, ChargeTerms
from fleetpay_core.models.gateway import TenantGatewayConfig
from fleetpay_core.state.database import validate_tenant_id
from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Gateway actions
# ---------------------------------------------------------------------------


class _TenantAction(BaseModel):
    tenant_id: str = Field(..., description="Tenant the action runs for.")
    config: TenantGatewayConfig | None = Field(
        default=None,
        description="Gateway identity; the stored tenant configuration is used when omitted.",
    )

    @field_validator("tenant_id")
    @classmethod
    def _check_tenant_id(cls, value: str) -> str:
        return validate_tenant_id(value)


class SyncTransactionsAction(_TenantAction):
    """Pull and reconcile the statement for ``[start_date, end_date]``."""

    action: Literal["sync_transactions"]
    start_date: date
    end_date: date


class ConnectionTestAction(_TenantAction):
    """Authenticate against the gateway; populates the token cache."""

    action: Literal["test_connection"]


class FetchInvoicesAction(_TenantAction):
    """Import the gateway invoice listing."""

    action: Literal["fetch_invoices"]
    start_date: date | None = None
    end_date: date | None = None
    state: str | None = Field(default=None, description="Gateway invoice state filter (e.g. OPEN, PAID).")


class CreateInvoiceAction(_TenantAction):
    """Create the gateway charge of a pending local invoice."""

    action: Literal["create_invoice"]
    invoice_id: str = Field(..., min_length=1, description="Local invoice to charge.")
    customer: ChargeCustomer
    service_name: str = Field(default="Serviço", min_length=1)
    terms: ChargeTerms = Field(default_factory=ChargeTerms)
    idempotency_key: str | None = Field(
        default=None,
        description="Overrides the key derived from the tenant and invoice ids.",
    )


class ScheduledSyncAction(BaseModel):
    """Run one auto-sync pass over every configured tenant."""

    action: Literal["scheduled_sync"]


# Discriminated on ``action`` at the endpoint.
GatewayAction = (
    SyncTransactionsAction | ConnectionTestAction | FetchInvoicesAction | CreateInvoiceAction | ScheduledSyncAction
)

# ---------------------------------------------------------------------------
# Action responses
# ---------------------------------------------------------------------------


class ActionResponse(BaseModel):
    success: bool
    message: str


class SyncActionResponse(ActionResponse):
    imported: int = 0
    conciliated: int = 0
    skipped: int = 0
    duration_ms: int = 0


class InvoiceImportResponse(ActionResponse):
    imported: int = 0
    skipped: int = 0
    conciliated: int = 0


class ChargeCreatedResponse(ActionResponse):
    invoice_id: str
    external_charge_id: str
    created: bool = True


class ErrorResponse(BaseModel):
    """Body of every handled error."""

    success: Literal[False] = False
    error: str
    message: str


# ---------------------------------------------------------------------------
# Audit listings
# ---------------------------------------------------------------------------


class SyncLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str
    start_date: date
    end_date: date
    status: str
    imported_count: int
    conciliated_count: int
    skipped_count: int
    error_message: str | None = None
    duration_ms: int
    created_at: datetime


class WebhookLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str | None = None
    external_charge_id: str | None = None
    invoice_id: str | None = None
    event_type: str
    processing_status: str
    amount: Decimal | None = None
    error_message: str | None = None
    raw_payload: dict[str, Any]
    created_at: datetime
    updated_at: datetime

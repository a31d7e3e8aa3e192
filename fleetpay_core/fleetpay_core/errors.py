"""Exception taxonomy for gateway integration and reconciliation.

Callers branch on the exception class, never on message text:

* configuration problems fail fast and are never retried;
* authentication failures (401/403) are retried once after the cached
  token is invalidated;
* timeouts are retried once without invalidation;
* any other transport or response failure is terminal for the call.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for every failure talking to the payment gateway."""


class GatewayConfigurationError(GatewayError):
    """Tenant gateway configuration is missing or malformed."""


class GatewayAuthenticationError(GatewayError):
    """The gateway (or the proxy in front of it) rejected the credentials."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayTransportError(GatewayError):
    """The request never produced a usable HTTP response."""


class GatewayTimeoutError(GatewayTransportError):
    """The request exceeded the configured gateway timeout."""


class GatewayResponseError(GatewayError):
    """The gateway answered with a non-auth error status or an unreadable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TenantConfigNotFoundError(LookupError):
    """No gateway configuration is stored for the tenant."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Gateway configuration not found for tenant '{tenant_id}'")
        self.tenant_id = tenant_id


class StatementEntryError(ValueError):
    """A statement entry could not be normalized; the entry is skipped."""


class InvalidWebhookPayloadError(ValueError):
    """An inbound webhook is structurally invalid (e.g. no charge id)."""


class ReconciliationConflictError(Exception):
    """One side of the invoice/transaction dual write did not apply."""


class InvoiceNotFoundError(LookupError):
    """No invoice carries the gateway charge id of an inbound event."""

    def __init__(self, external_charge_id: str) -> None:
        super().__init__(f"Invoice not found for charge {external_charge_id}")
        self.external_charge_id = external_charge_id


class UnknownInvoiceError(LookupError):
    """No invoice of the tenant has the requested local id."""

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id

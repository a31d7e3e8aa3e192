"""Domain models for the fleetpay core."""

from fleetpay_core.models.charge import (
    ChargeAddress,
    ChargeCreationResult,
    ChargeCustomer,
    ChargeTerms,
    build_charge_payload,
    default_idempotency_key,
)
from fleetpay_core.models.events import (
    ChargeCancelled,
    ChargeChargeback,
    ChargeEvent,
    ChargeExpired,
    ChargePaid,
    ChargeRefused,
    UnknownEvent,
    WebhookEvent,
    WebhookProcessingStatus,
    extract_charge_fields,
    parse_webhook_event,
)
from fleetpay_core.models.gateway import (
    GATEWAY_SETTINGS_KEY,
    GATEWAY_TOKEN_KEY,
    CachedToken,
    GatewayEnvironment,
    TenantGatewayConfig,
    TokenGrant,
)
from fleetpay_core.models.invoice import (
    PAYMENT_METHOD_GATEWAY,
    PAYMENT_METHOD_GATEWAY_AUTOMATIC,
    PROTECTED_STATUSES,
    GatewayInvoice,
    InvoiceStatus,
    map_gateway_invoice_status,
)
from fleetpay_core.models.money import major_to_minor, minor_to_major
from fleetpay_core.models.sync import InvoiceImportResult, SyncResult, SyncStatus
from fleetpay_core.models.transaction import (
    NormalizedTransaction,
    TransactionDirection,
    normalize_statement_entry,
)

__all__ = [
    "GATEWAY_SETTINGS_KEY",
    "GATEWAY_TOKEN_KEY",
    "PAYMENT_METHOD_GATEWAY",
    "PAYMENT_METHOD_GATEWAY_AUTOMATIC",
    "PROTECTED_STATUSES",
    "CachedToken",
    "ChargeAddress",
    "ChargeCancelled",
    "ChargeChargeback",
    "ChargeCreationResult",
    "ChargeCustomer",
    "ChargeEvent",
    "ChargeExpired",
    "ChargePaid",
    "ChargeRefused",
    "ChargeTerms",
    "GatewayEnvironment",
    "GatewayInvoice",
    "InvoiceImportResult",
    "InvoiceStatus",
    "NormalizedTransaction",
    "SyncResult",
    "SyncStatus",
    "TenantGatewayConfig",
    "TokenGrant",
    "TransactionDirection",
    "UnknownEvent",
    "WebhookEvent",
    "WebhookProcessingStatus",
    "build_charge_payload",
    "default_idempotency_key",
    "extract_charge_fields",
    "major_to_minor",
    "map_gateway_invoice_status",
    "minor_to_major",
    "normalize_statement_entry",
    "parse_webhook_event",
]

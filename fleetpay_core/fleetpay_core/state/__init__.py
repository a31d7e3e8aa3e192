"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from fleetpay_core.state.database import create_session_factory, get_engine, get_session, validate_tenant_id
from fleetpay_core.state.repository import (
    BankTransactionRepository,
    InvoiceRepository,
    SyncLogRepository,
    TenantConfigRepository,
    WebhookLogRepository,
)

__all__ = [
    "BankTransactionRepository",
    "InvoiceRepository",
    "SyncLogRepository",
    "TenantConfigRepository",
    "WebhookLogRepository",
    "create_session_factory",
    "get_engine",
    "get_session",
    "validate_tenant_id",
]

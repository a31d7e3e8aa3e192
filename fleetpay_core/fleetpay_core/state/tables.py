"""SQLAlchemy 2.0 ORM table definitions for the fleetpay state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON (TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")

# Monetary amounts in major units (BRL), two decimal places.
_Money = Numeric(14, 2, asdecimal=True)


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all fleetpay tables."""


# ---------------------------------------------------------------------------
# Tenant configuration
# ---------------------------------------------------------------------------


class TenantConfigTable(Base):
    """Opaque per-tenant key/value configuration.

    Holds the gateway credentials (``gateway_settings``) and the cached
    access token (``gateway_access_token``).  One row per tenant per key.
    """

    __tablename__ = "tenant_config"

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    config_key: Mapped[str] = mapped_column(String(128), nullable=False)
    config_value: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint("tenant_id", "config_key"),
        Index("ix_tenant_config_key", "config_key"),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class InvoiceTable(Base):
    """Receivable invoices (boletos / PIX charges) owned by a tenant.

    ``external_charge_id`` is assigned by the gateway once the charge exists
    there; webhook deliveries are routed to invoices through it.
    ``overdue`` flags an ``expired`` invoice that is past due but still
    payable at the gateway; it remains a reconciliation candidate.
    """

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_charge_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(_Money, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    overdue: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(_Money, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','paid','refused','expired','cancelled','chargeback')",
            name="ck_invoices_status",
        ),
        UniqueConstraint("tenant_id", "external_charge_id", name="uq_invoices_tenant_charge"),
        Index("ix_invoices_external_charge", "external_charge_id"),
        Index("ix_invoices_tenant_status_due", "tenant_id", "status", "due_date"),
    )


# ---------------------------------------------------------------------------
# Bank transactions
# ---------------------------------------------------------------------------


class BankTransactionTable(Base):
    """Mirror of one gateway statement entry.

    The mirrored columns are refreshed on every re-ingestion; the
    ``conciliated`` pair is written only by reconciliation.
    """

    __tablename__ = "bank_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(_Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    conciliated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conciliated_invoice_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("direction IN ('credit','debit')", name="ck_bank_transactions_direction"),
        UniqueConstraint("tenant_id", "external_id", name="uq_bank_transactions_tenant_external"),
        Index("ix_bank_transactions_tenant_occurred", "tenant_id", "occurred_at"),
        Index("ix_bank_transactions_unconciliated", "tenant_id", "conciliated"),
    )


# ---------------------------------------------------------------------------
# Sync log
# ---------------------------------------------------------------------------


class SyncLogTable(Base):
    """Append-only record of every statement sync run."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    imported_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conciliated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('success','error')", name="ck_sync_logs_status"),
        Index("ix_sync_logs_tenant_created", "tenant_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Webhook log
# ---------------------------------------------------------------------------


class WebhookLogTable(Base):
    """One row per inbound webhook delivery.

    Rows are never deleted; only ``processing_status`` (and the resolved
    tenant) move forward once the delivery has been handled.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_charge_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    processing_status: Mapped[str] = mapped_column(String(16), nullable=False, default="received")
    amount: Mapped[Decimal | None] = mapped_column(_Money, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('received','processed','unhandled','error')",
            name="ck_webhook_logs_processing_status",
        ),
        Index("ix_webhook_logs_charge_event", "external_charge_id", "event_type"),
        Index("ix_webhook_logs_created", "created_at"),
    )

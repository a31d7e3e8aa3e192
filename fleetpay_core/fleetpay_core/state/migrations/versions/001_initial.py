"""Create the gateway integration schema.

Tables: tenant_config, invoices, bank_transactions, sync_logs, webhook_logs.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_json = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "tenant_config",
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("config_key", sa.String(128), nullable=False),
        sa.Column("config_value", _json, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("tenant_id", "config_key"),
    )
    op.create_index("ix_tenant_config_key", "tenant_config", ["config_key"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("external_charge_id", sa.String(128), nullable=True),
        sa.Column("customer_name", sa.String(256), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending','paid','refused','expired','cancelled','chargeback')",
            name="ck_invoices_status",
        ),
        sa.UniqueConstraint("tenant_id", "external_charge_id", name="uq_invoices_tenant_charge"),
    )
    op.create_index("ix_invoices_external_charge", "invoices", ["external_charge_id"])
    op.create_index("ix_invoices_tenant_status_due", "invoices", ["tenant_id", "status", "due_date"])

    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="BRL"),
        sa.Column("direction", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_payload", _json, nullable=False),
        sa.Column("conciliated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "conciliated_invoice_id",
            sa.String(64),
            sa.ForeignKey("invoices.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("direction IN ('credit','debit')", name="ck_bank_transactions_direction"),
        sa.UniqueConstraint("tenant_id", "external_id", name="uq_bank_transactions_tenant_external"),
    )
    op.create_index("ix_bank_transactions_tenant_occurred", "bank_transactions", ["tenant_id", "occurred_at"])
    op.create_index("ix_bank_transactions_unconciliated", "bank_transactions", ["tenant_id", "conciliated"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("imported_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conciliated_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('success','error')", name="ck_sync_logs_status"),
    )
    op.create_index("ix_sync_logs_tenant_created", "sync_logs", ["tenant_id", "created_at"])

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("external_charge_id", sa.String(128), nullable=True),
        sa.Column("invoice_id", sa.String(64), nullable=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("raw_payload", _json, nullable=False),
        sa.Column("processing_status", sa.String(16), nullable=False, server_default="received"),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "processing_status IN ('received','processed','unhandled','error')",
            name="ck_webhook_logs_processing_status",
        ),
    )
    op.create_index("ix_webhook_logs_charge_event", "webhook_logs", ["external_charge_id", "event_type"])
    op.create_index("ix_webhook_logs_created", "webhook_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_logs_created", table_name="webhook_logs")
    op.drop_index("ix_webhook_logs_charge_event", table_name="webhook_logs")
    op.drop_table("webhook_logs")
    op.drop_index("ix_sync_logs_tenant_created", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_bank_transactions_unconciliated", table_name="bank_transactions")
    op.drop_index("ix_bank_transactions_tenant_occurred", table_name="bank_transactions")
    op.drop_table("bank_transactions")
    op.drop_index("ix_invoices_tenant_status_due", table_name="invoices")
    op.drop_index("ix_invoices_external_charge", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_tenant_config_key", table_name="tenant_config")
    op.drop_table("tenant_config")

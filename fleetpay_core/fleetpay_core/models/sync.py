"""Result models for sync and import runs."""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class SyncResult(BaseModel):
    """Outcome of one statement sync run for a tenant."""

    tenant_id: str
    start_date: date
    end_date: date
    imported_count: int = Field(default=0, ge=0, description="Entries upserted in this run.")
    conciliated_count: int = Field(default=0, ge=0, description="Credits matched to an invoice in this run.")
    skipped_count: int = Field(default=0, ge=0, description="Entries dropped by per-entry errors.")
    duration_ms: int = Field(default=0, ge=0)


class InvoiceImportResult(BaseModel):
    """Outcome of one gateway invoice import for a tenant."""

    tenant_id: str
    imported_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    conciliated_count: int = Field(default=0, ge=0, description="Open credits matched after the import.")
    pages: int = Field(default=0, ge=0)

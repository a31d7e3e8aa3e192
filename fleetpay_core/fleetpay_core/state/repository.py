"""Repository classes providing access to the fleetpay state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fleetpay_core.state.tables import (
    BankTransactionTable,
    InvoiceTable,
    SyncLogTable,
    TenantConfigTable,
    WebhookLogTable,
)

logger = logging.getLogger(__name__)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.  Columns not listed
        keep their stored value.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# Tenant configuration
# ---------------------------------------------------------------------------


class TenantConfigRepository:
    """Key/value access to the ``tenant_config`` table."""

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self, config_key: str) -> TenantConfigTable | None:
        """Fetch one config row for this tenant. Returns None if absent."""
        stmt = (
            select(TenantConfigTable)
            .where(
                TenantConfigTable.tenant_id == self._tenant_id,
                TenantConfigTable.config_key == config_key,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_value(self, config_key: str) -> dict[str, Any] | None:
        row = await self.get(config_key)
        return dict(row.config_value) if row is not None else None

    async def put(self, config_key: str, value: dict[str, Any]) -> TenantConfigTable:
        """Create or overwrite the value stored under *config_key*."""
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            TenantConfigTable,
            values={
                "tenant_id": self._tenant_id,
                "config_key": config_key,
                "config_value": value,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id", "config_key"],
            update_columns=["config_value", "updated_at"],
        )
        await self._session.flush()
        return await self.get(config_key)  # type: ignore[return-value]

    async def delete(self, config_key: str) -> bool:
        """Delete the value stored under *config_key*.

        Returns ``True`` if a row was removed.
        """
        stmt = delete(TenantConfigTable).where(
            TenantConfigTable.tenant_id == self._tenant_id,
            TenantConfigTable.config_key == config_key,
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return bool(result.rowcount)

    async def list_for_key(self, config_key: str) -> list[TenantConfigTable]:
        """Return the rows of *every* tenant holding *config_key*.

        Cross-tenant, for the scheduled sync; ``tenant_id`` of this
        repository is ignored.
        """
        stmt = (
            select(TenantConfigTable)
            .where(TenantConfigTable.config_key == config_key)
            .order_by(TenantConfigTable.tenant_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


# Invoices a credit may still settle: pending, or expired only by due date.
_OPEN_INVOICE = or_(
    InvoiceTable.status == "pending",
    and_(InvoiceTable.status == "expired", InvoiceTable.overdue.is_(True)),
)


class InvoiceRepository:
    """Access to the ``invoices`` table.

    ``tenant_id=None`` disables tenant scoping for lookups; webhook
    deliveries carry only the gateway charge id, never the tenant.
    """

    def __init__(self, session: AsyncSession, tenant_id: str | None = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    def _scoped(self, stmt: Any) -> Any:
        if self._tenant_id is None:
            return stmt
        return stmt.where(InvoiceTable.tenant_id == self._tenant_id)

    def _require_tenant(self) -> str:
        if self._tenant_id is None:
            raise ValueError("InvoiceRepository writes require a tenant_id")
        return self._tenant_id

    async def create(
        self,
        *,
        amount: Decimal,
        due_date: date,
        invoice_id: str | None = None,
        external_charge_id: str | None = None,
        status: str = "pending",
        overdue: bool = False,
        customer_name: str | None = None,
        description: str | None = None,
        paid_at: datetime | None = None,
        paid_amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> InvoiceTable:
        row = InvoiceTable(
            id=invoice_id or uuid.uuid4().hex,
            tenant_id=self._require_tenant(),
            external_charge_id=external_charge_id,
            amount=amount,
            due_date=due_date,
            status=status,
            overdue=overdue and status == "expired",
            customer_name=customer_name,
            description=description,
            paid_at=paid_at,
            paid_amount=paid_amount,
            payment_method=payment_method,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, invoice_id: str) -> InvoiceTable | None:
        stmt = self._scoped(select(InvoiceTable).where(InvoiceTable.id == invoice_id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_charge_id(self, external_charge_id: str) -> InvoiceTable | None:
        """Look up an invoice by its gateway charge id.

        Without tenant scoping the first match by creation time wins; charge
        ids are gateway-unique in practice.
        """
        stmt = self._scoped(
            select(InvoiceTable)
            .where(InvoiceTable.external_charge_id == external_charge_id)
            .order_by(InvoiceTable.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_reconciliation_candidates(
        self,
        *,
        amount: Decimal,
        due_from: date,
        due_to: date,
    ) -> list[InvoiceTable]:
        """Open invoices of exactly *amount* due within ``[due_from, due_to]``.

        Open means ``pending``, or ``expired`` with the ``overdue`` flag.
        Ordered earliest-due first; ties on due date fall back to creation
        order and then id so the choice is deterministic.
        """
        stmt = (
            select(InvoiceTable)
            .where(
                InvoiceTable.tenant_id == self._require_tenant(),
                _OPEN_INVOICE,
                InvoiceTable.amount == amount,
                InvoiceTable.due_date >= due_from,
                InvoiceTable.due_date <= due_to,
            )
            .order_by(
                InvoiceTable.due_date.asc(),
                InvoiceTable.created_at.asc(),
                InvoiceTable.id.asc(),
            )
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_unlinked_settled(
        self,
        *,
        amount: Decimal,
        due_from: date,
        due_to: date,
        payment_method: str,
    ) -> list[InvoiceTable]:
        """Paid invoices settled through *payment_method* with no credit linked yet.

        Same window and ordering as :meth:`list_reconciliation_candidates`.
        """
        linked = exists().where(
            BankTransactionTable.tenant_id == InvoiceTable.tenant_id,
            BankTransactionTable.conciliated_invoice_id == InvoiceTable.id,
        )
        stmt = (
            select(InvoiceTable)
            .where(
                InvoiceTable.tenant_id == self._require_tenant(),
                InvoiceTable.status == "paid",
                InvoiceTable.payment_method == payment_method,
                InvoiceTable.amount == amount,
                InvoiceTable.due_date >= due_from,
                InvoiceTable.due_date <= due_to,
                ~linked,
            )
            .order_by(
                InvoiceTable.due_date.asc(),
                InvoiceTable.created_at.asc(),
                InvoiceTable.id.asc(),
            )
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_paid_if_open(
        self,
        invoice_id: str,
        *,
        paid_at: datetime,
        paid_amount: Decimal,
        payment_method: str,
    ) -> bool:
        """Settle an open invoice.

        The open-status guard makes the write a no-op when the invoice was
        settled concurrently (webhook, operator).  Returns ``True`` if
        exactly one row changed.
        """
        stmt = (
            update(InvoiceTable)
            .where(
                InvoiceTable.id == invoice_id,
                InvoiceTable.tenant_id == self._require_tenant(),
                _OPEN_INVOICE,
            )
            .values(
                status="paid",
                overdue=False,
                paid_at=paid_at,
                paid_amount=paid_amount,
                payment_method=payment_method,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1

    async def apply_status(
        self,
        invoice: InvoiceTable,
        status: str,
        *,
        overdue: bool = False,
        paid_at: datetime | None = None,
        paid_amount: Decimal | None = None,
        payment_method: str | None = None,
    ) -> InvoiceTable:
        """Overwrite the status (and optional payment fields) of *invoice*.

        ``overdue`` is kept only for ``expired``; any other status clears it.
        """
        invoice.status = status
        invoice.overdue = overdue and status == "expired"
        if paid_at is not None:
            invoice.paid_at = paid_at
        if paid_amount is not None:
            invoice.paid_amount = paid_amount
        if payment_method is not None:
            invoice.payment_method = payment_method
        invoice.updated_at = datetime.now(UTC)
        await self._session.flush()
        return invoice

    async def update_details(
        self,
        invoice: InvoiceTable,
        *,
        amount: Decimal,
        due_date: date,
        customer_name: str | None,
        description: str | None,
    ) -> InvoiceTable:
        """Refresh the descriptive columns of *invoice*; status is untouched."""
        invoice.amount = amount
        invoice.due_date = due_date
        if customer_name is not None:
            invoice.customer_name = customer_name
        if description is not None:
            invoice.description = description
        invoice.updated_at = datetime.now(UTC)
        await self._session.flush()
        return invoice

    async def assign_external_charge_id(self, invoice: InvoiceTable, external_charge_id: str) -> InvoiceTable:
        """Record the gateway charge created for *invoice*."""
        invoice.external_charge_id = external_charge_id
        invoice.updated_at = datetime.now(UTC)
        await self._session.flush()
        return invoice


# ---------------------------------------------------------------------------
# Bank transactions
# ---------------------------------------------------------------------------


# Columns refreshed when a statement entry is re-ingested.  The conciliation
# pair is never overwritten.
_TRANSACTION_MIRROR_COLUMNS = [
    "amount",
    "currency",
    "direction",
    "status",
    "description",
    "occurred_at",
    "raw_payload",
    "updated_at",
]


class BankTransactionRepository:
    """Access to the ``bank_transactions`` table."""

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def upsert(
        self,
        *,
        external_id: str,
        amount: Decimal,
        direction: str,
        status: str,
        description: str | None,
        occurred_at: datetime,
        raw_payload: dict[str, Any],
        currency: str = "BRL",
    ) -> BankTransactionTable:
        """Insert or refresh the mirror of one statement entry.

        Idempotent on ``(tenant_id, external_id)``.  An existing row keeps
        its ``conciliated`` / ``conciliated_invoice_id`` values.
        """
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            BankTransactionTable,
            values={
                "tenant_id": self._tenant_id,
                "external_id": external_id,
                "amount": amount,
                "currency": currency,
                "direction": direction,
                "status": status,
                "description": description,
                "occurred_at": occurred_at,
                "raw_payload": raw_payload,
                "conciliated": False,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id", "external_id"],
            update_columns=_TRANSACTION_MIRROR_COLUMNS,
        )
        await self._session.flush()
        return await self.get_by_external_id(external_id)  # type: ignore[return-value]

    async def get(self, transaction_id: int) -> BankTransactionTable | None:
        stmt = select(BankTransactionTable).where(
            BankTransactionTable.id == transaction_id,
            BankTransactionTable.tenant_id == self._tenant_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> BankTransactionTable | None:
        stmt = (
            select(BankTransactionTable)
            .where(
                BankTransactionTable.tenant_id == self._tenant_id,
                BankTransactionTable.external_id == external_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_conciliated_if_open(self, transaction_id: int, invoice_id: str) -> bool:
        """Link the transaction to *invoice_id* unless it is already conciliated.

        Returns ``True`` if exactly one row changed.
        """
        stmt = (
            update(BankTransactionTable)
            .where(
                BankTransactionTable.id == transaction_id,
                BankTransactionTable.tenant_id == self._tenant_id,
                BankTransactionTable.conciliated.is_(False),
            )
            .values(
                conciliated=True,
                conciliated_invoice_id=invoice_id,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1

    async def count(self) -> int:
        stmt = (
            select(func.count())
            .select_from(BankTransactionTable)
            .where(BankTransactionTable.tenant_id == self._tenant_id)
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_transactions(
        self,
        *,
        conciliated: bool | None = None,
        direction: str | None = None,
        limit: int = 100,
    ) -> list[BankTransactionTable]:
        stmt = select(BankTransactionTable).where(BankTransactionTable.tenant_id == self._tenant_id)
        if conciliated is not None:
            stmt = stmt.where(BankTransactionTable.conciliated.is_(conciliated))
        if direction is not None:
            stmt = stmt.where(BankTransactionTable.direction == direction)
        stmt = stmt.order_by(BankTransactionTable.occurred_at.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Sync log
# ---------------------------------------------------------------------------


class SyncLogRepository:
    """Append-only access to the ``sync_logs`` table."""

    def __init__(self, session: AsyncSession, tenant_id: str = "default") -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def record(
        self,
        *,
        start_date: date,
        end_date: date,
        status: str,
        imported_count: int,
        conciliated_count: int,
        skipped_count: int = 0,
        duration_ms: int,
        error_message: str | None = None,
    ) -> SyncLogTable:
        row = SyncLogTable(
            tenant_id=self._tenant_id,
            start_date=start_date,
            end_date=end_date,
            status=status,
            imported_count=imported_count,
            conciliated_count=conciliated_count,
            skipped_count=skipped_count,
            duration_ms=duration_ms,
            error_message=error_message,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_recent(self, limit: int = 50) -> list[SyncLogTable]:
        stmt = (
            select(SyncLogTable)
            .where(SyncLogTable.tenant_id == self._tenant_id)
            .order_by(SyncLogTable.created_at.desc(), SyncLogTable.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Webhook log
# ---------------------------------------------------------------------------


class WebhookLogRepository:
    """Access to the ``webhook_logs`` table.

    Not tenant scoped: the tenant is only known once the invoice has been
    resolved, and is then stored on the row.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_received(
        self,
        *,
        event_type: str,
        raw_payload: dict[str, Any],
        external_charge_id: str | None,
        amount: Decimal | None = None,
        processing_status: str = "received",
        error_message: str | None = None,
    ) -> WebhookLogTable:
        row = WebhookLogTable(
            event_type=event_type,
            raw_payload=raw_payload,
            external_charge_id=external_charge_id,
            amount=amount,
            processing_status=processing_status,
            error_message=error_message,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def set_outcome(
        self,
        log_id: int,
        processing_status: str,
        *,
        error_message: str | None = None,
        tenant_id: str | None = None,
        invoice_id: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "processing_status": processing_status,
            "error_message": error_message,
            "updated_at": datetime.now(UTC),
        }
        if tenant_id is not None:
            values["tenant_id"] = tenant_id
        if invoice_id is not None:
            values["invoice_id"] = invoice_id
        stmt = (
            update(WebhookLogTable)
            .where(WebhookLogTable.id == log_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def get(self, log_id: int) -> WebhookLogTable | None:
        stmt = (
            select(WebhookLogTable)
            .where(WebhookLogTable.id == log_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_recent(
        self,
        *,
        external_charge_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[WebhookLogTable]:
        stmt = select(WebhookLogTable)
        if external_charge_id is not None:
            stmt = stmt.where(WebhookLogTable.external_charge_id == external_charge_id)
        if tenant_id is not None:
            stmt = stmt.where(WebhookLogTable.tenant_id == tenant_id)
        stmt = stmt.order_by(WebhookLogTable.created_at.desc(), WebhookLogTable.id.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_deliveries(self, external_charge_id: str, event_type: str) -> int:
        """Number of logged deliveries for one charge/event pair."""
        stmt = (
            select(func.count())
            .select_from(WebhookLogTable)
            .where(
                WebhookLogTable.external_charge_id == external_charge_id,
                WebhookLogTable.event_type == event_type,
            )
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

"""Automatic matching of incoming credits against outstanding invoices.

Match rule: an open invoice of the same tenant (``pending``, or
``expired`` but still payable), with exactly the transaction amount, due
within ``window_days`` calendar days either side of the transaction date.
The earliest-due candidate wins.  A match settles both sides inside one
savepoint so a half-applied match is never committed.

A credit with no open candidate may still belong to an invoice the
gateway already reported as paid.  Such a credit is linked to that
invoice without touching it, so it does not stay unconciliated.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from fleetpay_core.errors import ReconciliationConflictError
from fleetpay_core.models.invoice import PAYMENT_METHOD_GATEWAY, PAYMENT_METHOD_GATEWAY_AUTOMATIC
from fleetpay_core.models.transaction import TransactionDirection
from fleetpay_core.state.repository import BankTransactionRepository, InvoiceRepository
from fleetpay_core.state.tables import BankTransactionTable
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Match bank credits to invoices for one tenant.

    Parameters
    ----------
    session:
        Active database session.
    tenant_id:
        Tenant scope for all queries.
    window_days:
        Half-width of the due-date window around the transaction date.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        tenant_id: str = "default",
        window_days: int = 7,
    ) -> None:
        self._session = session
        self._tenant_id = tenant_id
        self._window = timedelta(days=window_days)
        self._invoice_repo = InvoiceRepository(session, tenant_id=tenant_id)
        self._transaction_repo = BankTransactionRepository(session, tenant_id=tenant_id)

    async def try_reconcile(
        self,
        transaction: BankTransactionTable,
        amount: Decimal | None = None,
    ) -> bool:
        """Settle the best matching invoice with *transaction*.

        Returns ``True`` on a match, including a link to an invoice the
        gateway had already settled.  Debits, already conciliated rows and
        transactions without a candidate return ``False`` and are left
        untouched.
        """
        if transaction.direction != TransactionDirection.CREDIT.value or transaction.conciliated:
            return False

        amount = transaction.amount if amount is None else amount
        occurred_on = transaction.occurred_at.date()
        due_from = occurred_on - self._window
        due_to = occurred_on + self._window
        candidates = await self._invoice_repo.list_reconciliation_candidates(
            amount=amount,
            due_from=due_from,
            due_to=due_to,
        )
        if not candidates:
            return await self._link_settled(transaction, amount, due_from, due_to)

        invoice = candidates[0]
        try:
            async with self._session.begin_nested():
                settled = await self._invoice_repo.mark_paid_if_open(
                    invoice.id,
                    paid_at=transaction.occurred_at,
                    paid_amount=amount,
                    payment_method=PAYMENT_METHOD_GATEWAY_AUTOMATIC,
                )
                if not settled:
                    raise ReconciliationConflictError(f"Invoice {invoice.id} is no longer open")
                linked = await self._transaction_repo.mark_conciliated_if_open(transaction.id, invoice.id)
                if not linked:
                    raise ReconciliationConflictError(f"Transaction {transaction.external_id} is already conciliated")
        except ReconciliationConflictError as exc:
            logger.warning("Reconciliation skipped for tenant %s: %s", self._tenant_id, exc)
            return False

        logger.info(
            "Reconciled transaction %s with invoice %s (amount=%s) for tenant %s",
            transaction.external_id,
            invoice.id,
            amount,
            self._tenant_id,
        )
        return True

    async def _link_settled(
        self,
        transaction: BankTransactionTable,
        amount: Decimal,
        due_from: date,
        due_to: date,
    ) -> bool:
        settled = await self._invoice_repo.list_unlinked_settled(
            amount=amount,
            due_from=due_from,
            due_to=due_to,
            payment_method=PAYMENT_METHOD_GATEWAY,
        )
        if not settled:
            logger.debug(
                "No invoice matches transaction %s (amount=%s date=%s) for tenant %s",
                transaction.external_id,
                amount,
                transaction.occurred_at.date(),
                self._tenant_id,
            )
            return False

        invoice = settled[0]
        if not await self._transaction_repo.mark_conciliated_if_open(transaction.id, invoice.id):
            return False
        logger.info(
            "Linked transaction %s to invoice %s already paid at the gateway (tenant %s)",
            transaction.external_id,
            invoice.id,
            self._tenant_id,
        )
        return True

    async def reconcile_outstanding(self, limit: int = 500) -> int:
        """Offer every unconciliated credit to the matcher again.

        Picks up credits that arrived before their invoice existed.
        Returns the number of new matches.
        """
        transactions = await self._transaction_repo.list_transactions(
            conciliated=False,
            direction=TransactionDirection.CREDIT.value,
            limit=limit,
        )
        matched = 0
        for transaction in transactions:
            if await self.try_reconcile(transaction):
                matched += 1
        return matched

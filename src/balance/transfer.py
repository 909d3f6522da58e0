"""
Month-End Balance Transfer

A month that closed with a positive cash balance is not moved into a
reserve right away. The surplus is recorded as a pending transfer and
swept into the first coverage reserve when the first real income of a
later month arrives.

Rules:
- Only strictly past months are recorded, and only while a coverage
  reserve exists
- Incomes created by coverage, transfers or auto card payments never
  trigger a sweep
- The sweep happens once: the pending record is cleared and a
  TransferHistory entry is written

DESIGN DECISION: When a newer month closes positive while an older surplus
is still pending, the two are merged into one pending record (newest month
plus the list of source months). A month already swept is never recorded
again.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import Clock, format_month, local_today, previous_month
from src.billing.invoices import InvoiceService
from src.investments.service import InvestmentService
from src.models.audit import AuditEventBuilder
from src.models.investment import PendingTransfer, TransferHistory, TransferStatus
from src.models.ledger import Transaction, TransactionOrigin, TransactionType
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


class BalanceTransferService:
    """Records month-end surpluses and sweeps them into a reserve."""

    def __init__(
        self,
        repository: LedgerRepository,
        invoices: InvoiceService,
        investments: InvestmentService,
        clock: Clock = local_today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._invoices = invoices
        self._investments = investments
        self._clock = clock
        self._audit = audit_logger

    async def get_pending_transfer(self) -> Optional[PendingTransfer]:
        return await self._repo.get_pending_transfer()

    async def get_transfer_history(self) -> list[TransferHistory]:
        """Completed sweeps, newest first."""
        history = await self._repo.get_transfer_history()
        return sorted(history, key=lambda entry: entry.created_at, reverse=True)

    async def check_and_record_month_end_balance(
        self,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[PendingTransfer]:
        """
        Record the surplus of a closed month.

        Returns:
            The pending transfer after recording, or None if nothing was
            recorded
        """
        if month >= format_month(self._clock()):
            return None

        pending = await self._repo.get_pending_transfer()
        if pending is not None and pending.month >= month:
            return None
        if any(entry.covers(month) for entry in await self._repo.get_transfer_history()):
            logger.debug("month_end_already_swept", month=month)
            return None

        totals = await self._invoices.get_statement_totals(month)
        balance = totals.balance
        if balance <= 0:
            return None
        if not await self._investments.get_investments_for_coverage():
            return None

        if pending is not None and pending.status == TransferStatus.PENDING:
            recorded = PendingTransfer(
                month=month,
                amount=pending.amount + balance,
                source_months=[*pending.source_months, month],
            )
        else:
            recorded = PendingTransfer(month=month, amount=balance)
        await self._repo.save_pending_transfer(recorded)

        logger.info(
            "month_end_balance_recorded",
            month=month,
            surplus=str(balance),
            pending=str(recorded.amount),
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.balance_transfer_recorded(
                month=month,
                amount=str(balance),
                correlation_id=correlation_id,
            ))
        return recorded

    async def initialize_month_end_check(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[PendingTransfer]:
        """Record last month's surplus, if any. Run at startup."""
        current = format_month(self._clock())
        return await self.check_and_record_month_end_balance(previous_month(current), correlation_id)

    async def get_pending_carry_over_balance(self, current_month: str) -> Decimal:
        """Surplus from earlier months still waiting to be swept."""
        pending = await self._repo.get_pending_transfer()
        if pending is None or pending.status != TransferStatus.PENDING:
            return Decimal("0")
        if pending.month > previous_month(current_month):
            return Decimal("0")
        return pending.amount

    async def process_income_transfer(
        self,
        income: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[TransferHistory]:
        """
        Sweep the pending surplus if `income` is the first real income of
        its month.

        Returns:
            The history entry of the sweep, or None if nothing was swept
        """
        if not income.is_income or income.is_synthetic:
            return None

        pending = await self._repo.get_pending_transfer()
        if pending is None or pending.status != TransferStatus.PENDING:
            return None
        month = income.month
        if pending.month >= month:
            return None

        transactions = await self._repo.get_transactions()
        earlier_income = any(
            tx.is_income and not tx.is_synthetic and tx.id != income.id and tx.month == month
            for tx in transactions.values()
        )
        if earlier_income:
            return None

        reserves = await self._investments.get_investments_for_coverage()
        if not reserves:
            logger.warning("month_end_transfer_dropped", month=pending.month, reason="no_reserve")
            await self._repo.save_pending_transfer(None)
            return None

        target = reserves[0]
        await self._investments.add_to_investment(target.id, pending.amount)

        today = self._clock()
        expense = Transaction(
            origin=TransactionOrigin.BALANCE_TRANSFER,
            amount=-pending.amount,
            date=today,
            type=TransactionType.EXPENSE,
            category="other",
            description=f"Automatic transfer: {target.name}",
        )
        transactions = await self._repo.get_transactions()
        transactions[expense.id] = expense
        await self._repo.save_transactions(transactions)

        entry = TransferHistory(
            from_month=pending.month,
            source_months=pending.source_months,
            amount=pending.amount,
            investment_id=target.id,
            investment_name=target.name,
            transfer_date=today,
            triggered_by_transaction_id=income.id,
            transaction_id=expense.id,
        )
        history = await self._repo.get_transfer_history()
        history.append(entry)
        await self._repo.save_transfer_history(history)
        await self._repo.save_pending_transfer(None)

        logger.info(
            "month_end_balance_swept",
            from_month=pending.month,
            amount=str(pending.amount),
            investment_id=target.id,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.balance_transfer_swept(
                investment_id=target.id,
                amount=str(pending.amount),
                from_month=pending.month,
                transaction_id=expense.id,
                correlation_id=correlation_id,
            ))
        return entry

"""
Automatic Coverage

Once a day, when the cash balance counting everything due today or
earlier is negative, money is drawn from the reserves flagged
`can_cover_negative_balance` (highest balance first) and booked as
income.

DESIGN DECISION: A CoverageRecord keyed by (date, investment) is written
for every draw, and any record for today blocks further draws that day.
When the deficit exceeds every flagged reserve combined, everything
available is drawn and the rest of the deficit stays.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import Clock, format_month, local_today
from src.billing.invoices import InvoiceService
from src.investments.service import InvestmentService
from src.models.audit import AuditEventBuilder
from src.models.balance import CoverageNeed, DueItem, FutureCoverage
from src.models.investment import CoverageRecord
from src.models.ledger import (
    ConsolidatedInvoice,
    StatementItem,
    Transaction,
    TransactionOrigin,
    TransactionType,
)
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


def due_item(item: StatementItem) -> DueItem:
    if isinstance(item, ConsolidatedInvoice):
        return DueItem(
            id=item.card_id,
            date=item.due_date,
            description=item.description,
            amount=item.total,
        )
    return DueItem(
        id=item.id,
        date=item.date,
        description=item.description or "Expense",
        amount=item.absolute_amount,
    )


def coverage_description(due_items: list[DueItem], fallback: str) -> str:
    if not due_items:
        return f"Automatic coverage: {fallback}"
    names = ", ".join(item.description for item in due_items[:2])
    suffix = "..." if len(due_items) > 2 else ""
    return f"Coverage: {names}{suffix}"[:200]


class CoverageService:
    """Applies and simulates coverage of negative balances."""

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

    async def _todays_statement(self) -> list[StatementItem]:
        return await self._invoices.get_statement(format_month(self._clock()))

    async def calculate_todays_coverage_need(self) -> CoverageNeed:
        """
        Deficit of the current month counting income received so far and
        everything due today or earlier.
        """
        if not await self._investments.get_investments_for_coverage():
            return CoverageNeed()

        today = self._clock()
        income = Decimal("0")
        expense = Decimal("0")
        due_today: list[DueItem] = []
        for item in await self._todays_statement():
            if item.effective_date > today:
                continue
            if isinstance(item, Transaction) and item.is_income:
                income += item.absolute_amount
                continue
            entry = due_item(item)
            expense += entry.amount
            if item.effective_date == today:
                due_today.append(entry)

        balance = income - expense
        if balance >= 0:
            return CoverageNeed()
        return CoverageNeed(needs_coverage=True, amount_needed=-balance, due_items=due_today)

    async def was_coverage_applied_today(self) -> bool:
        today = self._clock()
        return any(record.date == today for record in await self._repo.get_coverage_records())

    async def apply_todays_coverage(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[CoverageRecord]:
        """
        Cover today's deficit from the flagged reserves, at most once a day.

        Returns:
            The coverage records written (empty when nothing was drawn)
        """
        if await self.was_coverage_applied_today():
            logger.debug("coverage_already_applied")
            return []

        need = await self.calculate_todays_coverage_need()
        if not need.needs_coverage or need.amount_needed <= 0:
            return []

        draws = await self._investments.use_investment_for_coverage(need.amount_needed)
        if not draws:
            return []

        today = self._clock()
        transactions = await self._repo.get_transactions()
        records = await self._repo.get_coverage_records()
        written = []
        for draw in draws:
            income = Transaction(
                origin=TransactionOrigin.COVERAGE,
                amount=draw.amount,
                date=today,
                type=TransactionType.INCOME,
                category="income",
                description=coverage_description(need.due_items, draw.investment_name),
            )
            transactions[income.id] = income
            record = CoverageRecord(
                id=f"{today.isoformat()}-{draw.investment_id}",
                date=today,
                investment_id=draw.investment_id,
                investment_name=draw.investment_name,
                expense_id=need.due_items[0].id if need.due_items else None,
                expense_description=", ".join(item.description for item in need.due_items),
                amount_covered=draw.amount,
                transaction_id=income.id,
            )
            records.append(record)
            written.append(record)

        await self._repo.save_transactions(transactions)
        await self._repo.save_coverage_records(records)

        covered = sum((draw.amount for draw in draws), Decimal("0"))
        if covered < need.amount_needed:
            logger.warning(
                "coverage_insufficient",
                needed=str(need.amount_needed),
                covered=str(covered),
            )
        for record in written:
            logger.info(
                "coverage_applied",
                investment_id=record.investment_id,
                amount=str(record.amount_covered),
            )
            if self._audit:
                await self._audit.log(AuditEventBuilder.coverage_applied(
                    investment_id=record.investment_id,
                    amount=str(record.amount_covered),
                    transaction_id=record.transaction_id,
                    correlation_id=correlation_id,
                ))
        return written

    async def calculate_future_coverable_expenses(self) -> FutureCoverage:
        """
        Walk the month's future expenses in date order and report which of
        them would drive the balance negative and how much of each deficit
        the flagged reserves could absorb.
        """
        reserves = await self._investments.get_investments_for_coverage()
        if not reserves:
            return FutureCoverage()

        today = self._clock()
        available = sum((inv.current_amount for inv in reserves), Decimal("0"))
        balance = Decimal("0")
        future: list[DueItem] = []
        for item in await self._todays_statement():
            if isinstance(item, Transaction) and item.is_income:
                if item.date <= today:
                    balance += item.absolute_amount
                continue
            entry = due_item(item)
            if item.effective_date <= today:
                balance -= entry.amount
            else:
                future.append(entry)

        future.sort(key=lambda entry: entry.date)
        coverable: list[DueItem] = []
        total = Decimal("0")
        for entry in future:
            balance -= entry.amount
            if balance < 0 and available > 0:
                amount = min(-balance, available)
                coverable.append(entry.model_copy(update={"amount": amount}))
                total += amount
                available -= amount
                balance += amount
        return FutureCoverage(total_coverable=total, items=coverable)

    async def get_coverage_records(self, month: Optional[str] = None) -> list[CoverageRecord]:
        """Coverage records, optionally only those dated in `month`."""
        records = await self._repo.get_coverage_records()
        if month is None:
            return records
        return [record for record in records if format_month(record.date) == month]

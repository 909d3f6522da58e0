"""
Balance Projection

Cash balance of a month as seen from today, computed over the month's
statement (cash transactions plus consolidated invoices at their due date).

- Current balance: income dated up to today minus expenses and invoices
  due up to today.
- Projected expenses: expenses and invoices due after today.
- Projected balance: current balance minus projected expenses.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from src.billing.dates import Clock, first_day_of_month, format_month, last_day_of_month, local_today
from src.billing.invoices import InvoiceService
from src.investments.accrual import daily_yield, net_yield
from src.investments.service import InvestmentService
from src.models.balance import ProjectedBalance
from src.models.ledger import ConsolidatedInvoice, StatementItem


logger = structlog.get_logger(__name__)


def item_is_income(item: StatementItem) -> bool:
    return not isinstance(item, ConsolidatedInvoice) and item.is_income


def item_amount(item: StatementItem) -> Decimal:
    if isinstance(item, ConsolidatedInvoice):
        return item.total
    return item.absolute_amount


def balance_through(items: Iterable[StatementItem], day: date) -> Decimal:
    """Income minus expenses of every item effective on or before `day`."""
    balance = Decimal("0")
    for item in items:
        if item.effective_date > day:
            continue
        if item_is_income(item):
            balance += item_amount(item)
        else:
            balance -= item_amount(item)
    return balance


def split_expenses(items: Iterable[StatementItem], today: date) -> tuple[Decimal, Decimal]:
    """(paid, remaining) expense totals relative to `today`."""
    paid = Decimal("0")
    remaining = Decimal("0")
    for item in items:
        if item_is_income(item):
            continue
        if item.effective_date <= today:
            paid += item_amount(item)
        else:
            remaining += item_amount(item)
    return paid, remaining


class BalanceProjector:
    """Current, projected and historical balances of a month."""

    def __init__(
        self,
        invoices: InvoiceService,
        investments: InvestmentService,
        clock: Clock = local_today,
    ):
        self._invoices = invoices
        self._investments = investments
        self._clock = clock

    async def get_current_balance(self, month: Optional[str] = None) -> Decimal:
        today = self._clock()
        items = await self._invoices.get_statement(month or format_month(today))
        return balance_through(items, today)

    async def get_projected_expenses(self, month: Optional[str] = None) -> Decimal:
        today = self._clock()
        items = await self._invoices.get_statement(month or format_month(today))
        return split_expenses(items, today)[1]

    async def calculate_projected_balance(self, month: str) -> ProjectedBalance:
        """
        Current and end-of-month balance plus the daily net yield the current
        positive balance would earn at the first coverage reserve's rate.
        """
        today = self._clock()
        items = await self._invoices.get_statement(month)
        current = balance_through(items, today)
        paid, remaining = split_expenses(items, today)

        yield_today = Decimal("0")
        if current > 0:
            reserves = await self._investments.get_investments_for_coverage()
            if reserves:
                _, yield_today = net_yield(daily_yield(current, reserves[0].rate_on(today)))

        return ProjectedBalance(
            current_balance=current,
            projected_balance=current - remaining,
            paid_expenses=paid,
            remaining_expenses=remaining,
            daily_yield=yield_today,
        )

    async def get_balance_at_date(self, month: str, day: date) -> Decimal:
        """Balance of the month counting items effective up to `day`."""
        return balance_through(await self._invoices.get_statement(month), day)

    async def calculate_accumulated_yield(self, month: str) -> Decimal:
        """
        Net yield the month's positive cash balance would have earned so far.

        Each day earns on the balance at the end of the previous day. Future
        months earn nothing.
        """
        today = self._clock()
        if month > format_month(today):
            return Decimal("0")
        reserves = await self._investments.get_investments_for_coverage()
        if not reserves:
            return Decimal("0")
        reserve = reserves[0]

        items = await self._invoices.get_statement(month)
        end = min(today, last_day_of_month(month))
        day = first_day_of_month(month)
        total = Decimal("0")
        while day <= end:
            balance = balance_through(items, day - timedelta(days=1))
            if balance > 0:
                _, net = net_yield(daily_yield(balance, reserve.rate_on(day)))
                total += net
            day += timedelta(days=1)

        logger.debug("accumulated_yield_calculated", month=month, total=str(total))
        return total

"""
Investment Service

CRUD over reserves plus the balance mutations that move money in and out
of them: deposits, withdrawals, automatic transfers and coverage draws.

Business-rule failures (unknown or inactive investment, withdrawal larger
than the balance) return None and write nothing.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import Clock, format_month, local_today
from src.models.audit import AuditEventBuilder
from src.models.investment import CoverageDraw, Investment, YieldHistory, YieldRateChange
from src.models.ledger import Transaction, TransactionOrigin, TransactionType
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)

WITHDRAWAL_DESCRIPTION = "Investment withdrawal"


class InvestmentService:
    """Manages investments and their balances."""

    def __init__(
        self,
        repository: LedgerRepository,
        clock: Clock = local_today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._clock = clock
        self._audit = audit_logger

    async def _log(self, event) -> None:
        if self._audit:
            await self._audit.log(event)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def list_investments(self) -> list[Investment]:
        """All investments, newest first."""
        investments = (await self._repo.get_investments()).values()
        return sorted(investments, key=lambda inv: inv.created_at, reverse=True)

    async def get_investment(self, investment_id: str) -> Optional[Investment]:
        return (await self._repo.get_investments()).get(investment_id)

    async def get_total_invested(self) -> Decimal:
        """Sum of the balances of active investments."""
        investments = (await self._repo.get_investments()).values()
        return sum((inv.current_amount for inv in investments if inv.is_active), Decimal("0"))

    async def get_yield_history(self, investment_id: str) -> list[YieldHistory]:
        """Yield rows of one investment, newest first."""
        rows = [row for row in await self._repo.get_yield_history() if row.investment_id == investment_id]
        return sorted(rows, key=lambda row: row.date, reverse=True)

    async def get_monthly_yield_total(self, month: str) -> Decimal:
        """Net yield accrued across all investments for days in `month`."""
        return sum(
            (row.net_amount for row in await self._repo.get_yield_history() if format_month(row.date) == month),
            Decimal("0"),
        )

    async def get_default_yield_rate(self) -> Decimal:
        return await self._repo.get_default_yield_rate()

    async def set_default_yield_rate(self, rate: Decimal) -> None:
        if rate < 0:
            raise ValueError("Yield rate cannot be negative")
        await self._repo.set_default_yield_rate(rate)

    async def get_investments_for_coverage(self) -> list[Investment]:
        """Active reserves flagged for coverage that still hold money, highest balance first."""
        investments = (await self._repo.get_investments()).values()
        eligible = [
            inv for inv in investments
            if inv.is_active and inv.can_cover_negative_balance and inv.current_amount > 0
        ]
        return sorted(eligible, key=lambda inv: inv.current_amount, reverse=True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create_investment(
        self,
        name: str,
        amount: Decimal,
        yield_rate: Optional[Decimal] = None,
        start_date: Optional[date] = None,
        investment_type: Optional[str] = None,
        can_cover_negative_balance: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> Investment:
        """
        Create a new investment.

        Raises:
            pydantic.ValidationError: If the values are invalid
        """
        rate = yield_rate if yield_rate is not None else await self._repo.get_default_yield_rate()
        investment = Investment(
            name=name,
            type=investment_type,
            initial_amount=amount,
            current_amount=amount,
            yield_rate=rate,
            start_date=start_date or self._clock(),
            can_cover_negative_balance=can_cover_negative_balance,
        )
        investments = await self._repo.get_investments()
        investments[investment.id] = investment
        await self._repo.save_investments(investments)

        logger.info("investment_created", investment_id=investment.id, amount=str(amount))
        await self._log(AuditEventBuilder.investment_created(
            investment_id=investment.id,
            name=investment.name,
            amount=str(amount),
            correlation_id=correlation_id,
        ))
        return investment

    async def update_investment(self, investment: Investment) -> None:
        investments = await self._repo.get_investments()
        investments[investment.id] = investment
        await self._repo.save_investments(investments)

    async def delete_investment(
        self,
        investment_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Delete an investment together with its yield history."""
        investments = await self._repo.get_investments()
        investment = investments.pop(investment_id, None)
        if investment is None:
            return False
        await self._repo.save_investments(investments)

        history = await self._repo.get_yield_history()
        await self._repo.save_yield_history(
            [row for row in history if row.investment_id != investment_id]
        )

        logger.info("investment_deleted", investment_id=investment_id)
        await self._log(AuditEventBuilder.investment_deleted(
            investment_id=investment_id,
            name=investment.name,
            correlation_id=correlation_id,
        ))
        return True

    # -------------------------------------------------------------------------
    # Balance mutations
    # -------------------------------------------------------------------------

    async def add_to_investment(self, investment_id: str, amount: Decimal) -> Optional[Investment]:
        """Add money to an investment without any user-facing bookkeeping."""
        investments = await self._repo.get_investments()
        investment = investments.get(investment_id)
        if investment is None:
            return None
        investment.current_amount += amount
        await self._repo.save_investments(investments)
        return investment

    async def deposit(
        self,
        investment_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Investment]:
        """
        Deposit into an active investment.

        Returns:
            The updated investment, or None if it is unknown or inactive
        """
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        investment = await self.get_investment(investment_id)
        if investment is None or not investment.is_active:
            logger.info("deposit_refused", investment_id=investment_id)
            return None

        investment = await self.add_to_investment(investment_id, amount)
        logger.info("investment_deposited", investment_id=investment_id, amount=str(amount))
        await self._log(AuditEventBuilder.investment_deposited(
            investment_id=investment_id,
            amount=str(amount),
            correlation_id=correlation_id,
        ))
        return investment

    async def withdraw(
        self,
        investment_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Withdraw from an investment into the cash balance.

        A full withdrawal deactivates the investment. The withdrawn money
        shows up as an income dated today.

        Returns:
            The income transaction, or None if the investment is unknown or
            the amount exceeds its balance
        """
        if amount <= 0:
            raise ValueError("Withdrawal amount must be positive")
        investments = await self._repo.get_investments()
        investment = investments.get(investment_id)
        if investment is None or amount > investment.current_amount:
            logger.info(
                "withdrawal_refused",
                investment_id=investment_id,
                amount=str(amount),
            )
            return None

        investment.current_amount -= amount
        deactivated = investment.current_amount <= 0
        if deactivated:
            investment.current_amount = Decimal("0")
            investment.is_active = False
        await self._repo.save_investments(investments)

        income = Transaction(
            origin=TransactionOrigin.INVESTMENT_WITHDRAWAL,
            amount=amount,
            date=self._clock(),
            type=TransactionType.INCOME,
            category="income",
            description=f"{WITHDRAWAL_DESCRIPTION}: {investment.name}",
        )
        transactions = await self._repo.get_transactions()
        transactions[income.id] = income
        await self._repo.save_transactions(transactions)

        logger.info(
            "investment_withdrawn",
            investment_id=investment_id,
            amount=str(amount),
            deactivated=deactivated,
        )
        await self._log(AuditEventBuilder.investment_withdrawn(
            investment_id=investment_id,
            amount=str(amount),
            deactivated=deactivated,
            correlation_id=correlation_id,
        ))
        return income

    async def update_yield_rate(
        self,
        investment_id: str,
        new_rate: Decimal,
        effective_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Investment]:
        """
        Change the annual rate from `effective_date` (default today) onward.

        Yield rows already written keep the rate they were computed with.
        """
        if new_rate < 0:
            raise ValueError("Yield rate cannot be negative")
        investments = await self._repo.get_investments()
        investment = investments.get(investment_id)
        if investment is None:
            return None

        previous = investment.yield_rate
        investment.yield_rate_history.append(YieldRateChange(
            date=effective_date or self._clock(),
            previous_rate=previous,
            new_rate=new_rate,
        ))
        investment.yield_rate_history.sort(key=lambda change: change.date)
        investment.yield_rate = new_rate
        await self._repo.save_investments(investments)

        logger.info(
            "yield_rate_changed",
            investment_id=investment_id,
            previous_rate=str(previous),
            new_rate=str(new_rate),
        )
        await self._log(AuditEventBuilder.yield_rate_changed(
            investment_id=investment_id,
            previous_rate=str(previous),
            new_rate=str(new_rate),
            correlation_id=correlation_id,
        ))
        return investment

    async def toggle_coverage(self, investment_id: str) -> Optional[Investment]:
        """Flip whether the investment may cover negative balances."""
        investments = await self._repo.get_investments()
        investment = investments.get(investment_id)
        if investment is None:
            return None
        investment.can_cover_negative_balance = not investment.can_cover_negative_balance
        await self._repo.save_investments(investments)
        logger.info(
            "coverage_toggled",
            investment_id=investment_id,
            enabled=investment.can_cover_negative_balance,
        )
        return investment

    async def use_investment_for_coverage(self, amount: Decimal) -> list[CoverageDraw]:
        """
        Draw up to `amount` from the coverage reserves, highest balance first.

        Each reserve gives at most its balance; a reserve drained to zero is
        deactivated. Returns one draw per reserve touched (empty if nothing
        was available).
        """
        if amount <= 0:
            return []
        investments = await self._repo.get_investments()
        eligible = sorted(
            (
                inv for inv in investments.values()
                if inv.is_active and inv.can_cover_negative_balance and inv.current_amount > 0
            ),
            key=lambda inv: inv.current_amount,
            reverse=True,
        )

        draws = []
        remaining = amount
        for investment in eligible:
            if remaining <= 0:
                break
            used = min(remaining, investment.current_amount)
            investment.current_amount -= used
            deactivated = investment.current_amount <= 0
            if deactivated:
                investment.current_amount = Decimal("0")
                investment.is_active = False
            remaining -= used
            draws.append(CoverageDraw(
                investment_id=investment.id,
                investment_name=investment.name,
                amount=used,
                deactivated=deactivated,
            ))

        if draws:
            await self._repo.save_investments(investments)
            logger.info(
                "coverage_drawn",
                requested=str(amount),
                drawn=str(amount - remaining),
                reserves=len(draws),
            )
        return draws

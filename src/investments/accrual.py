"""
Daily Yield Accrual

Yield math and the catch-up engine that writes one YieldHistory row per
investment per elapsed day.

Rules:
- gross = balance x rate / 100 / 365, tax = 20% of gross, net = gross - tax
- The rate for a day is the one in force on that day (Investment.rate_on)
- A day's yield lands the next day, so processing always stops at yesterday
- Rows already written are never recomputed

DESIGN DECISION: The "already ran today" gate is a watermark owned by the
engine and persisted next to the yield log. Each investment is saved as
soon as it is caught up, so an interrupted run resumes where it stopped.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import Clock, local_today
from src.config import get_settings
from src.models.audit import AuditEventBuilder
from src.models.investment import Investment, YieldHistory
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)

YIELD_PRECISION = Decimal("0.000001")


def daily_yield(amount: Decimal, annual_rate: Decimal, days_per_year: Optional[int] = None) -> Decimal:
    """Gross yield of `amount` for one day at `annual_rate` percent per year."""
    if amount <= 0 or annual_rate <= 0:
        return Decimal("0")
    days = days_per_year or get_settings().investment.days_per_year
    return (Decimal(amount) * Decimal(annual_rate) / 100 / days).quantize(YIELD_PRECISION)


def net_yield(gross: Decimal, tax_rate: Optional[Decimal] = None) -> tuple[Decimal, Decimal]:
    """Split a gross yield into (tax, net)."""
    rate = get_settings().investment.tax_rate if tax_rate is None else tax_rate
    tax = (gross * rate).quantize(YIELD_PRECISION)
    return tax, gross - tax


class YieldAccrualEngine:
    """Catches every active investment up to yesterday."""

    def __init__(
        self,
        repository: LedgerRepository,
        clock: Clock = local_today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._clock = clock
        self._audit = audit_logger

    async def watermark(self) -> Optional[date]:
        """Day the catch-up last ran."""
        return await self._repo.get_yield_watermark()

    async def process(self, correlation_id: Optional[UUID] = None) -> int:
        """
        Write missing yield rows through yesterday.

        Returns:
            Number of rows written (0 if it already ran today)
        """
        today = self._clock()
        watermark = await self._repo.get_yield_watermark()
        if watermark is not None and watermark >= today:
            logger.debug("yield_processing_skipped", watermark=watermark.isoformat())
            return 0

        through = today - timedelta(days=1)
        investments = await self._repo.get_investments()
        history = await self._repo.get_yield_history()
        written = 0

        for investment in sorted(investments.values(), key=lambda inv: inv.created_at):
            if not investment.is_active:
                continue
            rows = self._catch_up(investment, history, through)
            if not rows:
                continue
            history.extend(rows)
            investments[investment.id] = investment
            await self._repo.save_yield_history(history)
            await self._repo.save_investments(investments)
            written += len(rows)
            logger.info(
                "investment_yield_accrued",
                investment_id=investment.id,
                days=len(rows),
                balance=str(investment.current_amount),
            )

        await self._repo.set_yield_watermark(today)

        if written and self._audit:
            await self._audit.log(AuditEventBuilder.yields_processed(
                rows_written=written,
                through_date=through.isoformat(),
                correlation_id=correlation_id,
            ))
        return written

    @staticmethod
    def _catch_up(
        investment: Investment,
        history: list[YieldHistory],
        through: date,
    ) -> list[YieldHistory]:
        """Rows for every unrecorded day of one investment; updates it in place."""
        recorded = {row.date for row in history if row.investment_id == investment.id}
        start = investment.start_date
        if recorded:
            start = max(start, max(recorded) + timedelta(days=1))

        rows = []
        balance = investment.current_amount
        day = start
        while day <= through:
            if day not in recorded:
                rate = investment.rate_on(day)
                gross = daily_yield(balance, rate)
                tax, net = net_yield(gross)
                rows.append(YieldHistory(
                    investment_id=investment.id,
                    date=day,
                    applied_date=day + timedelta(days=1),
                    rate=rate,
                    gross_amount=gross,
                    tax_amount=tax,
                    net_amount=net,
                    balance_before=balance,
                    balance_after=balance + net,
                ))
                balance += net
            day += timedelta(days=1)

        if rows:
            investment.current_amount = balance
            investment.last_yield_date = rows[-1].date
        return rows

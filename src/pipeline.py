"""
Recompute Pipeline

Derived state that has to follow every mutation, as one ordered list of
idempotent steps:

1. backfill_invoice_months - card purchases missing their invoice month
2. extend_recurrences      - materialize open recurrences up to the horizon,
                             past each family's watermark
3. auto_payments           - card-to-card settlements for auto-paid cards
4. card_limits             - available limits from the original limits

Each step reads what it needs from storage and writes only when something
changed, so running the pipeline twice in a row is a no-op the second time.
The same pipeline doubles as the data-integrity repair.
"""

from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from src.billing.auto_payment import AutoPaymentGenerator
from src.billing.invoices import invoice_month_of
from src.billing.limits import CardLimitReconciler
from src.services.storage import LedgerRepository
from src.transactions.expander import TransactionExpander


logger = structlog.get_logger(__name__)

Step = Callable[[Optional[UUID]], Awaitable[None]]


class RecomputePipeline:
    """Runs the recompute steps in order."""

    def __init__(
        self,
        repository: LedgerRepository,
        expander: TransactionExpander,
        auto_payments: AutoPaymentGenerator,
        reconciler: CardLimitReconciler,
    ):
        self._repo = repository
        self._expander = expander
        self._auto_payments = auto_payments
        self._reconciler = reconciler
        self._steps: list[tuple[str, Step]] = [
            ("backfill_invoice_months", self._backfill_invoice_months),
            ("extend_recurrences", self._extend_recurrences),
            ("auto_payments", self._generate_auto_payments),
            ("card_limits", self._recalculate_limits),
        ]

    @property
    def step_names(self) -> list[str]:
        return [name for name, _ in self._steps]

    async def run(self, correlation_id: Optional[UUID] = None) -> int:
        """Run every step. Returns the number of steps run."""
        for name, step in self._steps:
            await step(correlation_id)
            logger.debug("pipeline_step_done", step=name)
        return len(self._steps)

    async def _backfill_invoice_months(self, correlation_id: Optional[UUID]) -> None:
        cards = {card.id: card for card in await self._repo.get_cards()}
        transactions = await self._repo.get_transactions()
        fixed = 0
        for tx in transactions.values():
            if tx.is_card_payment and not tx.invoice_month:
                card = cards.get(tx.card_id)
                if card is not None:
                    tx.invoice_month = invoice_month_of(tx.date, card.closing_day)
                    fixed += 1
        if fixed:
            await self._repo.save_transactions(transactions)
            logger.info("invoice_months_backfilled", count=fixed)

    async def _extend_recurrences(self, correlation_id: Optional[UUID]) -> None:
        transactions = await self._repo.get_transactions()
        cards = await self._repo.get_cards()
        stored = await self._repo.get_recurrence_watermarks()
        watermarks = dict(stored)
        if self._expander.extend_open_recurrences(transactions, cards, watermarks):
            await self._repo.save_transactions(transactions)
        if watermarks != stored:
            await self._repo.save_recurrence_watermarks(watermarks)

    async def _generate_auto_payments(self, correlation_id: Optional[UUID]) -> None:
        await self._auto_payments.generate(correlation_id)

    async def _recalculate_limits(self, correlation_id: Optional[UUID]) -> None:
        await self._reconciler.recalculate_all(correlation_id)

"""
Card Limit Reconciliation

DESIGN DECISION: A card's available limit is never adjusted incrementally.
It is always recomputed from scratch:

    available = max(0, original_limit - sum(unpaid charges))

where a charge is unpaid while its invoice month has no settlement marker.
The original limit is stored once per card in a side table, so repeated
recalculation can never drift.

Cards created before the side table existed get their original limit
derived once from the stored available limit and then persisted.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.invoices import card_charges, paid_invoice_months
from src.models.audit import AuditEventBuilder
from src.models.ledger import CreditCard, Transaction
from src.models.validation import IntegrityReport
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)

# Differences below a cent are rounding noise, not drift
LIMIT_TOLERANCE = Decimal("0.01")


def unpaid_charge_total(transactions: Iterable[Transaction], card_id: str) -> Decimal:
    """Charges on a card whose invoice month has not been settled."""
    transactions = list(transactions)
    paid = paid_invoice_months(transactions, card_id)
    return sum(
        (
            tx.absolute_amount
            for tx in card_charges(transactions, card_id)
            if tx.invoice_month is None or tx.invoice_month not in paid
        ),
        Decimal("0"),
    )


def expected_available_limit(
    original_limit: Decimal,
    transactions: Iterable[Transaction],
    card_id: str,
) -> Decimal:
    return max(Decimal("0"), original_limit - unpaid_charge_total(transactions, card_id))


def legacy_original_limit(card: CreditCard, transactions: Iterable[Transaction]) -> Decimal:
    """
    Reconstruct the original limit of a card stored before the side table.

    current available + everything ever charged - what settled invoices restored
    """
    transactions = list(transactions)
    charges = card_charges(transactions, card.id)
    consumed = sum((tx.absolute_amount for tx in charges), Decimal("0"))
    restored = Decimal("0")
    for month in paid_invoice_months(transactions, card.id):
        restored += sum(
            (tx.absolute_amount for tx in charges if tx.invoice_month == month),
            Decimal("0"),
        )
    return card.limit + consumed - restored


class CardLimitReconciler:
    """Recomputes available limits and keeps the original-limit table."""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._audit = audit_logger

    async def get_original_limit(self, card_id: str) -> Optional[Decimal]:
        return (await self._repo.get_original_limits()).get(card_id)

    async def set_original_limit(self, card_id: str, limit: Decimal) -> None:
        limits = await self._repo.get_original_limits()
        limits[card_id] = limit
        await self._repo.save_original_limits(limits)

    async def remove_original_limit(self, card_id: str) -> None:
        limits = await self._repo.get_original_limits()
        if limits.pop(card_id, None) is not None:
            await self._repo.save_original_limits(limits)

    async def recalculate(
        self,
        card_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Decimal]:
        """Recompute one card's available limit. None if the card does not exist."""
        result = await self._reconcile({card_id}, correlation_id)
        return result.get(card_id)

    async def recalculate_all(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, Decimal]:
        """Recompute every card. Returns card id -> available limit."""
        return await self._reconcile(None, correlation_id)

    async def _reconcile(
        self,
        card_ids: Optional[set[str]],
        correlation_id: Optional[UUID],
    ) -> dict[str, Decimal]:
        cards = await self._repo.get_cards()
        transactions = list((await self._repo.get_transactions()).values())
        limits = await self._repo.get_original_limits()

        limits_changed = False
        cards_changed = False
        result: dict[str, Decimal] = {}

        for card in cards:
            if card_ids is not None and card.id not in card_ids:
                continue

            original = limits.get(card.id)
            if original is None:
                original = legacy_original_limit(card, transactions)
                limits[card.id] = original
                limits_changed = True
                logger.info(
                    "original_limit_backfilled",
                    card_id=card.id,
                    original_limit=str(original),
                )

            available = expected_available_limit(original, transactions, card.id)
            if available != card.limit:
                previous = card.limit
                card.limit = available
                cards_changed = True
                logger.debug(
                    "card_limit_recalculated",
                    card_id=card.id,
                    previous=str(previous),
                    available=str(available),
                )
                if self._audit:
                    await self._audit.log(AuditEventBuilder.card_limit_recalculated(
                        card_id=card.id,
                        previous_limit=str(previous),
                        new_limit=str(available),
                        correlation_id=correlation_id,
                    ))
            result[card.id] = available

        if limits_changed:
            await self._repo.save_original_limits(limits)
        if cards_changed:
            await self._repo.save_cards(cards)
        return result

    async def validate_integrity(self) -> IntegrityReport:
        """
        Report inconsistencies without changing anything.

        Checks:
        - Available limit drift against the recomputed value
        - Card purchases without an invoice month
        - Transactions pointing at cards that no longer exist
        - Stored records that no longer validate
        """
        cards = await self._repo.get_cards()
        transactions = list((await self._repo.get_transactions()).values())
        limits = await self._repo.get_original_limits()
        report = IntegrityReport()

        for card in cards:
            original = limits.get(card.id)
            if original is None:
                continue
            expected = expected_available_limit(original, transactions, card.id)
            if abs(card.limit - expected) > LIMIT_TOLERANCE:
                report.issues.append(
                    f"Card {card.name}: available limit {card.limit:.2f} should be {expected:.2f}"
                )

        missing_month = [
            tx for tx in transactions if tx.is_card_payment and not tx.invoice_month
        ]
        if missing_month:
            report.issues.append(
                f"{len(missing_month)} card transaction(s) without an invoice month"
            )

        card_ids = {card.id for card in cards}
        orphaned = [tx for tx in transactions if tx.card_id and tx.card_id not in card_ids]
        if orphaned:
            report.issues.append(
                f"{len(orphaned)} transaction(s) referencing cards that no longer exist"
            )

        for key, count in (await self._repo.count_unreadable_records()).items():
            report.issues.append(f"{count} stored record(s) in {key} could not be read")

        logger.info("integrity_checked", issues=len(report.issues))
        return report

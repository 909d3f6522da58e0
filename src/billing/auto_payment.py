"""
Automatic Card-to-Card Payments

A card may name a default payer card. Every invoice of the paid card is
then settled automatically by a charge on the payer card, dated on the
paid invoice's due date and billed to whichever payer invoice that date
falls in.

DESIGN DECISION: Generation is idempotent. A settlement leg is keyed by
(paid card, paid invoice month); running the generator again on unchanged
data creates nothing. When purchases on an already auto-paid invoice
change, the existing generated leg is resized (or removed when the
invoice empties) instead of adding a second one.

Limits are not touched here. The settlement leg is a charge on the payer
card and also marks the paid invoice as settled, so the next limit
reconciliation moves exactly the invoice total from one card to the other.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.invoices import (
    due_date_of,
    group_by_invoice_month,
    invoice_month_of,
    invoice_purchases,
    invoice_total,
    paid_invoice_months,
)
from src.models.audit import AuditEventBuilder
from src.models.ledger import (
    CreditCard,
    Transaction,
    TransactionKind,
    TransactionOrigin,
    TransactionType,
)
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


def build_auto_payment(
    paid_card: CreditCard,
    payer_card: CreditCard,
    invoice_month: str,
    total: Decimal,
) -> Transaction:
    """The settlement leg for one invoice of `paid_card`."""
    due = due_date_of(invoice_month, paid_card.closing_day, paid_card.due_day)
    return Transaction(
        kind=TransactionKind.CARD_TO_CARD_SETTLEMENT,
        origin=TransactionOrigin.AUTO_CARD_PAYMENT,
        amount=-total,
        date=due,
        type=TransactionType.EXPENSE,
        category="other",
        description=f"Invoice payment {paid_card.name} ({invoice_month})",
        is_card_payment=True,
        card_id=payer_card.id,
        invoice_month=invoice_month_of(due, payer_card.closing_day),
        source_card_id=payer_card.id,
        target_card_id=paid_card.id,
        paid_invoice_month=invoice_month,
    )


class AutoPaymentGenerator:
    """Creates and maintains settlement legs for cards with a default payer."""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._audit = audit_logger

    async def generate(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Bring every auto-paid card's settlement legs up to date.

        Returns the newly created legs (empty on a re-run with unchanged data).
        """
        cards = await self._repo.get_cards()
        by_id = {card.id: card for card in cards}
        transactions = await self._repo.get_transactions()
        all_tx = list(transactions.values())

        created: list[Transaction] = []
        changed = False

        for paid_card in cards:
            payer_id = paid_card.default_payer_card_id
            if not payer_id:
                continue
            payer = by_id.get(payer_id)
            if payer is None or not payer.can_pay_other_cards:
                logger.warning(
                    "auto_payment_payer_unavailable",
                    card_id=paid_card.id,
                    payer_card_id=payer_id,
                )
                continue

            legs = {
                tx.paid_invoice_month: tx
                for tx in all_tx
                if tx.is_card_to_card_payment and tx.target_card_id == paid_card.id
            }
            settled = paid_invoice_months(all_tx, paid_card.id)
            groups = group_by_invoice_month(invoice_purchases(all_tx, paid_card.id))

            for invoice_month, purchases in sorted(groups.items()):
                total = invoice_total(purchases)
                leg = legs.get(invoice_month)
                if leg is not None:
                    if (
                        leg.origin == TransactionOrigin.AUTO_CARD_PAYMENT
                        and leg.absolute_amount != total
                        and total > 0
                    ):
                        leg.amount = -total
                        changed = True
                        logger.info(
                            "auto_payment_resized",
                            transaction_id=leg.id,
                            invoice_month=invoice_month,
                            amount=str(total),
                        )
                    continue
                if invoice_month in settled or total <= 0:
                    continue

                payment = build_auto_payment(paid_card, payer, invoice_month, total)
                transactions[payment.id] = payment
                all_tx.append(payment)
                created.append(payment)
                changed = True

                logger.info(
                    "auto_payment_generated",
                    paid_card_id=paid_card.id,
                    payer_card_id=payer.id,
                    invoice_month=invoice_month,
                    amount=str(total),
                )
                if self._audit:
                    await self._audit.log(AuditEventBuilder.auto_payment_generated(
                        payer_card_id=payer.id,
                        paid_card_id=paid_card.id,
                        invoice_month=invoice_month,
                        amount=str(total),
                        correlation_id=correlation_id,
                    ))

            # Generated legs whose invoice has emptied out
            for invoice_month, leg in legs.items():
                if (
                    leg.origin == TransactionOrigin.AUTO_CARD_PAYMENT
                    and invoice_month not in groups
                ):
                    del transactions[leg.id]
                    changed = True
                    logger.info(
                        "auto_payment_removed",
                        transaction_id=leg.id,
                        invoice_month=invoice_month,
                    )

        if changed:
            await self._repo.save_transactions(transactions)
        return created

    async def has_auto_payment(self, paid_card_id: str, invoice_month: str) -> bool:
        transactions = (await self._repo.get_transactions()).values()
        return any(
            tx.is_card_to_card_payment
            and tx.target_card_id == paid_card_id
            and tx.paid_invoice_month == invoice_month
            for tx in transactions
        )

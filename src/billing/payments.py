"""
Invoice Payment

Settles one card invoice from cash, a debit account, or another card.

- Cash / debit: writes a settlement marker dated on the payment date. The
  marker only records that the invoice is settled; it never shows in the
  statement.
- Credit: writes a charge on the paying card dated on the paid invoice's
  due date and billed to the paying card's invoice for that date. The
  charge doubles as the settlement marker of the paid invoice.

Business-rule failures (unknown card, invoice already settled, unusable
paying card) return None and write nothing.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import Clock, local_today
from src.billing.invoices import due_date_of, invoice_month_of, is_invoice_paid
from src.billing.limits import CardLimitReconciler
from src.models.audit import AuditEventBuilder
from src.models.ledger import (
    PaymentSource,
    Transaction,
    TransactionKind,
    TransactionOrigin,
    TransactionType,
)
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


class InvoicePaymentService:
    """Records invoice payments and reconciles the affected limits."""

    def __init__(
        self,
        repository: LedgerRepository,
        reconciler: CardLimitReconciler,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = local_today,
    ):
        self._repo = repository
        self._reconciler = reconciler
        self._audit = audit_logger
        self._clock = clock

    async def pay_invoice(
        self,
        card_id: str,
        invoice_month: str,
        amount: Decimal,
        source: PaymentSource,
        payment_date: Optional[date] = None,
        source_card_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Pay a card invoice.

        Args:
            card_id: Card whose invoice is being paid
            invoice_month: Invoice being paid (YYYY-MM)
            amount: Amount paid (positive)
            source: cash, debit or credit
            payment_date: Date of a cash/debit payment (defaults to today)
            source_card_id: Paying card, required for credit payments

        Returns:
            The settlement transaction, or None if the payment was refused
        """
        card = await self._repo.get_card(card_id)
        if card is None:
            logger.info("invoice_payment_refused", reason="unknown_card", card_id=card_id)
            return None

        transactions = await self._repo.get_transactions()
        if is_invoice_paid(transactions.values(), card_id, invoice_month):
            logger.info(
                "invoice_payment_refused",
                reason="already_paid",
                card_id=card_id,
                invoice_month=invoice_month,
            )
            return None

        description = f"Invoice payment {card.name} ({invoice_month})"

        if source == PaymentSource.CREDIT:
            payer = await self._repo.get_card(source_card_id) if source_card_id else None
            if payer is None or payer.id == card.id or not payer.can_pay_other_cards:
                logger.info(
                    "invoice_payment_refused",
                    reason="paying_card_unavailable",
                    card_id=card_id,
                    source_card_id=source_card_id,
                )
                return None
            due = due_date_of(invoice_month, card.closing_day, card.due_day)
            payment = Transaction(
                kind=TransactionKind.CARD_TO_CARD_SETTLEMENT,
                origin=TransactionOrigin.INVOICE_PAYMENT,
                amount=-abs(amount),
                date=due,
                type=TransactionType.EXPENSE,
                category="other",
                description=description,
                is_card_payment=True,
                card_id=payer.id,
                invoice_month=invoice_month_of(due, payer.closing_day),
                source_card_id=payer.id,
                target_card_id=card.id,
                paid_invoice_month=invoice_month,
            )
        else:
            payment = Transaction(
                kind=TransactionKind.INVOICE_PAYMENT_MARKER,
                origin=TransactionOrigin.INVOICE_PAYMENT,
                amount=-abs(amount),
                date=payment_date or self._clock(),
                type=TransactionType.EXPENSE,
                category="other",
                description=description,
                paid_invoice_card_id=card.id,
                paid_invoice_month=invoice_month,
            )

        transactions[payment.id] = payment
        await self._repo.save_transactions(transactions)

        await self._reconciler.recalculate(card.id, correlation_id)
        if payment.source_card_id:
            await self._reconciler.recalculate(payment.source_card_id, correlation_id)

        logger.info(
            "invoice_paid",
            card_id=card.id,
            invoice_month=invoice_month,
            source=source.value,
            amount=str(abs(amount)),
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.invoice_paid(
                card_id=card.id,
                invoice_month=invoice_month,
                amount=str(abs(amount)),
                source=source.value,
                transaction_id=payment.id,
                correlation_id=correlation_id,
            ))
        return payment

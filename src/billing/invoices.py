"""
Invoice Math and Consolidated Invoices

Pure functions that place card purchases on invoices, plus the
InvoiceService that builds the monthly statement from stored data.

DESIGN DECISION: Invoices are never stored. A card's invoice for a month is
whatever unpaid purchases currently carry that invoice month, so editing or
deleting a purchase is immediately reflected without any bookkeeping.

Rules:
- A purchase on or before the closing day belongs to that month's invoice,
  later purchases roll to the next month.
- If the due day is after the closing day the invoice falls due inside the
  invoice month, otherwise in the month after.
- Cards paid automatically by another card never show their own invoice in
  the statement; the payer card's settlement leg takes its place.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from src.billing.dates import (
    billing_period,
    day_in_month,
    format_month,
    is_date_in_month,
    next_month,
)
from src.models.ledger import (
    CardInvoiceDetail,
    ConsolidatedInvoice,
    CreditCard,
    StatementItem,
    StatementTotals,
    Transaction,
)
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


# =============================================================================
# PURE INVOICE MATH
# =============================================================================

def invoice_month_of(purchase_date: date, closing_day: int) -> str:
    """Invoice month (YYYY-MM) a purchase made on `purchase_date` is billed under."""
    month = format_month(purchase_date)
    if purchase_date.day <= closing_day:
        return month
    return next_month(month)


def due_date_of(invoice_month: str, closing_day: int, due_day: int) -> date:
    """Due date of an invoice. Due days past the month's end clamp to its last day."""
    if due_day > closing_day:
        return day_in_month(invoice_month, due_day)
    return day_in_month(next_month(invoice_month), due_day)


def is_invoice_paid(
    transactions: Iterable[Transaction],
    card_id: str,
    invoice_month: str,
) -> bool:
    """True when a settlement marker exists for (card, invoice month)."""
    return any(
        tx.is_invoice_payment
        and tx.paid_invoice_card_id == card_id
        and tx.paid_invoice_month == invoice_month
        for tx in transactions
    )


def paid_invoice_months(transactions: Iterable[Transaction], card_id: str) -> set[str]:
    """Invoice months of a card that have a settlement marker."""
    return {
        tx.paid_invoice_month
        for tx in transactions
        if tx.is_invoice_payment and tx.paid_invoice_card_id == card_id and tx.paid_invoice_month
    }


def card_charges(transactions: Iterable[Transaction], card_id: str) -> list[Transaction]:
    """Every expense charged to a card, settlement legs included."""
    return [
        tx for tx in transactions
        if tx.is_card_payment and tx.card_id == card_id and tx.is_expense
    ]


def invoice_purchases(
    transactions: Iterable[Transaction],
    card_id: str,
    invoice_month: Optional[str] = None,
) -> list[Transaction]:
    """
    Purchases that make up a card's invoices.

    Card-to-card settlement legs are excluded: they consume the payer
    card's limit but never add to its invoice total.
    """
    return [
        tx for tx in card_charges(transactions, card_id)
        if not tx.is_card_to_card_payment
        and (invoice_month is None or tx.invoice_month == invoice_month)
    ]


def invoice_total(purchases: Iterable[Transaction]) -> Decimal:
    return sum((tx.absolute_amount for tx in purchases), Decimal("0"))


def group_by_invoice_month(purchases: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    groups: dict[str, list[Transaction]] = defaultdict(list)
    for tx in purchases:
        if tx.invoice_month:
            groups[tx.invoice_month].append(tx)
    return dict(groups)


def build_consolidated_invoices(
    transactions: list[Transaction],
    cards: list[CreditCard],
    month: str,
) -> list[ConsolidatedInvoice]:
    """
    Unpaid invoices falling due in `month`, one per (card, invoice month).

    Cards with a default payer are skipped entirely.
    """
    invoices = []
    for card in cards:
        if card.default_payer_card_id:
            continue
        paid = paid_invoice_months(transactions, card.id)
        groups = group_by_invoice_month(invoice_purchases(transactions, card.id))
        for invoice_month, purchases in sorted(groups.items()):
            due = due_date_of(invoice_month, card.closing_day, card.due_day)
            if not is_date_in_month(due, month):
                continue
            if invoice_month in paid:
                continue
            total = invoice_total(purchases)
            if total <= 0:
                continue
            invoices.append(ConsolidatedInvoice(
                card_id=card.id,
                card_name=card.name,
                invoice_month=invoice_month,
                due_date=due,
                total=total,
                transactions=purchases,
            ))
    return invoices


def is_statement_transaction(tx: Transaction, month: str) -> bool:
    """Cash transactions dated in the month; card activity shows up as invoices."""
    return (
        is_date_in_month(tx.date, month)
        and not tx.is_card_payment
        and not tx.is_card_to_card_payment
        and not tx.is_invoice_payment
    )


def build_statement(
    transactions: list[Transaction],
    cards: list[CreditCard],
    month: str,
) -> list[StatementItem]:
    """Cash transactions plus consolidated invoices, newest effective date first."""
    items: list[StatementItem] = [
        tx for tx in transactions if is_statement_transaction(tx, month)
    ]
    items.extend(build_consolidated_invoices(transactions, cards, month))
    items.sort(key=lambda item: item.effective_date, reverse=True)
    return items


def statement_totals(items: Iterable[StatementItem]) -> StatementTotals:
    totals = StatementTotals()
    for item in items:
        if isinstance(item, ConsolidatedInvoice):
            totals.expense += item.total
        elif item.is_income:
            totals.income += item.absolute_amount
        else:
            totals.expense += item.absolute_amount
    return totals


# =============================================================================
# SERVICE
# =============================================================================

class InvoiceService:
    """Statement and card-invoice queries over stored data."""

    def __init__(self, repository: LedgerRepository):
        self._repo = repository

    async def _load(self) -> tuple[list[Transaction], list[CreditCard]]:
        transactions = list((await self._repo.get_transactions()).values())
        cards = await self._repo.get_cards()
        return transactions, cards

    async def get_consolidated_invoices(self, month: str) -> list[ConsolidatedInvoice]:
        transactions, cards = await self._load()
        return build_consolidated_invoices(transactions, cards, month)

    async def get_statement(self, month: str) -> list[StatementItem]:
        transactions, cards = await self._load()
        return build_statement(transactions, cards, month)

    async def get_statement_totals(self, month: str) -> StatementTotals:
        return statement_totals(await self.get_statement(month))

    async def is_invoice_paid(self, card_id: str, invoice_month: str) -> bool:
        transactions = (await self._repo.get_transactions()).values()
        return is_invoice_paid(transactions, card_id, invoice_month)

    async def get_card_invoice(
        self,
        card_id: str,
        invoice_month: str,
    ) -> Optional[CardInvoiceDetail]:
        """Detail of one invoice of one card. None if the card does not exist."""
        card = await self._repo.get_card(card_id)
        if card is None:
            logger.info("card_invoice_unknown_card", card_id=card_id)
            return None
        transactions = list((await self._repo.get_transactions()).values())
        purchases = invoice_purchases(transactions, card_id, invoice_month)
        purchases.sort(key=lambda tx: (tx.date, tx.created_at), reverse=True)
        period_start, period_end = billing_period(invoice_month, card.closing_day)
        return CardInvoiceDetail(
            card=card,
            invoice_month=invoice_month,
            purchases=purchases,
            total=invoice_total(purchases),
            due_date=due_date_of(invoice_month, card.closing_day, card.due_day),
            period_start=period_start,
            period_end=period_end,
            is_paid=is_invoice_paid(transactions, card_id, invoice_month),
            available_limit=card.limit,
        )

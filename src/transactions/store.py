"""
Transaction Store

Keyed collection of transactions with month queries and family-scoped
edit / delete.

Families:
- Recurrence family: every transaction sharing a `recurrence_id`.
- Installment family: member #1 plus every transaction whose `parent_id`
  is member #1's id.

Scopes (see EditScope): SINGLE touches only the target, FROM_DATE touches
members dated on or after the target, ALL touches the whole family.

DESIGN DECISION: Every operation reads the whole collection, changes it in
memory and writes it back once. There is no locking; a single active
writer is assumed.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from src.billing.invoices import invoice_month_of, invoice_purchases, invoice_total
from src.models.ledger import (
    CreditCard,
    EditScope,
    StatementTotals,
    Transaction,
    TransactionKind,
)
from src.services.storage import DuplicateError, LedgerRepository, NotFoundError
from src.transactions.expander import (
    TransactionUpdate,
    installment_description,
    strip_installment_suffix,
)


logger = structlog.get_logger(__name__)


def newest_first(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda tx: (tx.date, tx.created_at), reverse=True)


def family_of(target: Transaction, transactions: Iterable[Transaction]) -> list[Transaction]:
    """All members of the target's family (just the target for standalone records)."""
    if target.recurrence_id:
        return [tx for tx in transactions if tx.recurrence_id == target.recurrence_id]
    if target.kind == TransactionKind.INSTALLMENT_MEMBER:
        root = target.parent_id or target.id
        return [
            tx for tx in transactions
            if tx.kind == TransactionKind.INSTALLMENT_MEMBER
            and (tx.id == root or tx.parent_id == root)
        ]
    return [target]


def select_scope(
    target: Transaction,
    transactions: Iterable[Transaction],
    scope: EditScope,
) -> list[Transaction]:
    """Members of the target's family affected by an operation with `scope`."""
    if scope == EditScope.SINGLE:
        return [target]
    members = family_of(target, transactions)
    if scope == EditScope.FROM_DATE:
        return [tx for tx in members if tx.date >= target.date]
    return members


class TransactionStore:
    """CRUD and queries over the `transactions` collection."""

    def __init__(self, repository: LedgerRepository):
        self._repo = repository

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_all(self) -> dict[str, Transaction]:
        return await self._repo.get_transactions()

    async def list_transactions(self) -> list[Transaction]:
        """Every transaction, newest first."""
        return newest_first((await self._repo.get_transactions()).values())

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        return (await self._repo.get_transactions()).get(transaction_id)

    async def get_by_month(self, month: str) -> list[Transaction]:
        """
        Transactions belonging to a month, newest first.

        Card purchases belong to their invoice month, everything else to
        the month of its date.
        """
        transactions = (await self._repo.get_transactions()).values()
        return newest_first(tx for tx in transactions if tx.ledger_month == month)

    async def get_card_purchases(
        self,
        card_id: str,
        invoice_month: Optional[str] = None,
    ) -> list[Transaction]:
        """Purchases on a card (settlement legs excluded), newest first."""
        transactions = (await self._repo.get_transactions()).values()
        return newest_first(invoice_purchases(transactions, card_id, invoice_month))

    async def get_card_monthly_total(self, card_id: str, invoice_month: str) -> Decimal:
        return invoice_total(await self.get_card_purchases(card_id, invoice_month))

    async def get_monthly_totals(self, month: str) -> StatementTotals:
        totals = StatementTotals()
        for tx in await self.get_by_month(month):
            if tx.is_income:
                totals.income += tx.absolute_amount
            else:
                totals.expense += tx.absolute_amount
        return totals

    async def get_category_totals(self, month: str) -> dict[str, Decimal]:
        """Expense totals per category for a month."""
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for tx in await self.get_by_month(month):
            if tx.is_expense and tx.category:
                totals[tx.category] += tx.absolute_amount
        return dict(totals)

    async def get_months_with_transactions(self) -> list[str]:
        """Every month any transaction touches, newest first."""
        months = set()
        for tx in (await self._repo.get_transactions()).values():
            months.add(tx.month)
            if tx.is_card_payment and tx.invoice_month:
                months.add(tx.invoice_month)
        return sorted(months, reverse=True)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_many(self, new_transactions: list[Transaction]) -> None:
        """
        Insert new transactions.

        Raises:
            DuplicateError: If any id already exists
        """
        transactions = await self._repo.get_transactions()
        for tx in new_transactions:
            if tx.id in transactions:
                raise DuplicateError(f"Transaction already exists: {tx.id}")
        for tx in new_transactions:
            transactions[tx.id] = tx
        await self._repo.save_transactions(transactions)
        logger.debug("transactions_added", count=len(new_transactions))

    async def save(self, transaction: Transaction) -> None:
        """Insert or replace one transaction."""
        await self.save_many([transaction])

    async def save_many(self, items: list[Transaction]) -> None:
        """Insert or replace several transactions."""
        transactions = await self._repo.get_transactions()
        for tx in items:
            transactions[tx.id] = tx
        await self._repo.save_transactions(transactions)

    async def update(self, transaction: Transaction) -> None:
        """
        Replace an existing transaction.

        Raises:
            NotFoundError: If it doesn't exist
        """
        transactions = await self._repo.get_transactions()
        if transaction.id not in transactions:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        transactions[transaction.id] = transaction
        await self._repo.save_transactions(transactions)

    async def delete(self, transaction_id: str) -> bool:
        transactions = await self._repo.get_transactions()
        if transactions.pop(transaction_id, None) is None:
            return False
        await self._repo.save_transactions(transactions)
        return True

    async def delete_with_scope(
        self,
        transaction_id: str,
        scope: EditScope,
    ) -> list[Transaction]:
        """
        Delete a transaction and, depending on scope, its family.

        When a recurrence is cut "from this date forward", the surviving
        members get an end date the day before the cut so the family is
        no longer extended.

        Returns:
            The deleted transactions (empty if the target doesn't exist)
        """
        transactions = await self._repo.get_transactions()
        target = transactions.get(transaction_id)
        if target is None:
            return []

        removed = select_scope(target, transactions.values(), scope)
        for tx in removed:
            del transactions[tx.id]

        if scope == EditScope.FROM_DATE and target.recurrence_id:
            end = target.date - timedelta(days=1)
            for tx in transactions.values():
                if tx.recurrence_id == target.recurrence_id:
                    tx.recurrence_end_date = end

        await self._repo.save_transactions(transactions)
        logger.info(
            "transactions_deleted",
            transaction_id=transaction_id,
            scope=scope.value,
            count=len(removed),
        )
        return removed

    async def update_with_scope(
        self,
        transaction_id: str,
        update: TransactionUpdate,
        scope: EditScope,
        cards: list[CreditCard],
    ) -> list[Transaction]:
        """
        Apply an edit to a transaction and, depending on scope, its family.

        - A new date shifts every affected member by the same number of days.
        - Installment members keep their "(i/N)" suffix.
        - Card purchases whose date moves get their invoice month recomputed,
          unless the edit sets `invoice_month` explicitly (target only).

        Returns:
            The updated transactions (empty if the target doesn't exist)

        Raises:
            ValueError: If the edit produces an invalid transaction
        """
        transactions = await self._repo.get_transactions()
        target = transactions.get(transaction_id)
        if target is None:
            return []

        cards_by_id = {card.id: card for card in cards}
        delta = (update.date - target.date) if update.date else None
        updated = []

        for member in select_scope(target, transactions.values(), scope):
            changes = self._changes_for(member, target, update, delta, cards_by_id)
            edited = Transaction.model_validate({**member.model_dump(), **changes})
            transactions[edited.id] = edited
            updated.append(edited)

        await self._repo.save_transactions(transactions)
        logger.info(
            "transactions_updated",
            transaction_id=transaction_id,
            scope=scope.value,
            count=len(updated),
        )
        return updated

    @staticmethod
    def _changes_for(
        member: Transaction,
        target: Transaction,
        update: TransactionUpdate,
        delta: Optional[timedelta],
        cards_by_id: dict[str, CreditCard],
    ) -> dict:
        changes: dict = {}
        if update.amount is not None:
            changes["amount"] = update.amount
        if update.type is not None:
            changes["type"] = update.type
        if update.category is not None:
            changes["category"] = update.category

        if update.description is not None:
            changes["description"] = update.description
        if member.kind == TransactionKind.INSTALLMENT_MEMBER:
            base = update.description if update.description is not None else member.description
            changes["description"] = installment_description(
                strip_installment_suffix(base),
                member.current_installment,
                member.installments,
            )

        new_date: date = member.date + delta if delta else member.date
        if delta:
            changes["date"] = new_date

        if member.is_card_payment:
            if update.invoice_month is not None and member.id == target.id:
                changes["invoice_month"] = update.invoice_month
            elif delta:
                card = cards_by_id.get(member.card_id)
                if card is not None:
                    changes["invoice_month"] = invoice_month_of(new_date, card.closing_day)
        return changes


__all__ = [
    "TransactionStore",
    "family_of",
    "newest_first",
    "select_scope",
]

"""
Main Orchestrator for the Finance Ledger

This module ties together all the components and defines the
operations a user interface calls:
1. Transactions (add / edit / delete with family scope)
2. Cards (create / edit / delete, invoice detail, invoice payment)
3. Investments (create / deposit / withdraw / delete, rate, coverage flag)
4. Statement, balances, backup, integrity

DESIGN DECISION: The orchestrator enforces the boundaries:
- Input is validated before anything is written
- Every mutation is followed by the recompute pipeline
- Every step is audited

This is the "glue" that keeps derived state (limits, auto payments,
open recurrences) consistent no matter which operation changed the data.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from src.audit import AuditLogger, create_correlation_id
from src.backup import BackupService
from src.balance import BalanceProjector, BalanceTransferService, CoverageService
from src.billing.auto_payment import AutoPaymentGenerator
from src.billing.dates import Clock, local_today
from src.billing.invoices import InvoiceService
from src.billing.limits import CardLimitReconciler
from src.billing.payments import InvoicePaymentService
from src.config import get_settings
from src.investments import InvestmentService, YieldAccrualEngine
from src.migrations import SchemaMigrator
from src.models.audit import AuditEventBuilder
from src.models.investment import CoverageRecord, Investment, PendingTransfer
from src.models.ledger import (
    AppPreferences,
    CardInvoiceDetail,
    CardUpdate,
    CreditCard,
    EditScope,
    PaymentSource,
    StatementItem,
    StatementTotals,
    Transaction,
)
from src.models.validation import IntegrityReport
from src.pipeline import RecomputePipeline
from src.services.storage import (
    InMemoryStorage,
    JsonFileStorage,
    KeyValueAuditStorage,
    KeyValueStorage,
    LedgerRepository,
)
from src.transactions import (
    TransactionDraft,
    TransactionExpander,
    TransactionStore,
    TransactionUpdate,
)
from src.validation import CardValidator, TransactionValidator, raise_for_errors


logger = structlog.get_logger(__name__)


class StartupSummary(BaseModel):
    """What the startup routine did."""

    schema_version: int
    yield_rows_written: int = 0
    coverage: list[CoverageRecord] = []
    pending_transfer: Optional[PendingTransfer] = None


class Ledger:
    """
    Facade over the ledger engine.

    Every mutating operation:
    1. Validates its input (raises LedgerValidationError)
    2. Writes the change
    3. Runs the recompute pipeline
    4. Logs an audit event

    Business-rule refusals return None / False / an empty list.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock = local_today,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._clock = clock
        self._audit = audit_logger

        self.repository = LedgerRepository(storage)
        self.store = TransactionStore(self.repository)
        self.expander = TransactionExpander(clock=clock)
        self.invoices = InvoiceService(self.repository)
        self.reconciler = CardLimitReconciler(self.repository, audit_logger)
        self.auto_payments = AutoPaymentGenerator(self.repository, audit_logger)
        self.payments = InvoicePaymentService(
            self.repository, self.reconciler, audit_logger, clock=clock
        )
        self.investments = InvestmentService(self.repository, clock, audit_logger)
        self.yields = YieldAccrualEngine(self.repository, clock, audit_logger)
        self.projection = BalanceProjector(self.invoices, self.investments, clock)
        self.coverage = CoverageService(
            self.repository, self.invoices, self.investments, clock, audit_logger
        )
        self.transfers = BalanceTransferService(
            self.repository, self.invoices, self.investments, clock, audit_logger
        )
        self.backups = BackupService(self.repository, audit_logger)
        self.migrator = SchemaMigrator(storage, audit_logger)
        self.pipeline = RecomputePipeline(
            self.repository, self.expander, self.auto_payments, self.reconciler
        )
        self._transaction_validator = TransactionValidator(clock)
        self._card_validator = CardValidator()

    async def _log(self, event) -> None:
        if self._audit:
            await self._audit.log(event)

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    async def startup(self, correlation_id: Optional[UUID] = None) -> StartupSummary:
        """
        Bring stored data up to date. Run once when the app opens.

        1. Schema migrations
        2. Recompute pipeline
        3. Daily yield catch-up
        4. Last month's surplus
        5. Today's coverage
        """
        correlation_id = correlation_id or create_correlation_id()
        version = await self.migrator.run(correlation_id)
        await self.pipeline.run(correlation_id)
        rows = await self.yields.process(correlation_id)
        pending = await self.transfers.initialize_month_end_check(correlation_id)
        coverage = await self.coverage.apply_todays_coverage(correlation_id)
        logger.info(
            "ledger_started",
            schema_version=version,
            yield_rows=rows,
            coverage_draws=len(coverage),
        )
        return StartupSummary(
            schema_version=version,
            yield_rows_written=rows,
            coverage=coverage,
            pending_transfer=pending,
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(
        self,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Add a transaction, expanding installments and recurrences.

        Returns:
            Every transaction created, in date order

        Raises:
            LedgerValidationError: If the draft is invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        cards = await self.repository.get_cards()
        raise_for_errors(self._transaction_validator.validate(draft, cards))

        card = next((c for c in cards if c.id == draft.card_id), None)
        instances = self.expander.expand(draft, card)
        await self.store.add_many(instances)

        first = instances[0]
        await self._log(AuditEventBuilder.transaction_created(
            transaction_id=first.id,
            amount=str(first.amount),
            kind=first.kind.value,
            instance_count=len(instances),
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)

        if first.is_income:
            await self.transfers.process_income_transfer(first, correlation_id)
        return instances

    async def requires_scope_choice(self, transaction_id: str) -> bool:
        """True when edits and deletes must ask single / from this date / all."""
        transaction = await self.store.get(transaction_id)
        return transaction is not None and transaction.requires_scope_choice

    async def edit_transaction(
        self,
        transaction_id: str,
        update: TransactionUpdate,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Edit a transaction and, depending on scope, its family.

        Returns:
            The updated transactions (empty if it doesn't exist)

        Raises:
            LedgerValidationError: If the edit is invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        target = await self.store.get(transaction_id)
        if target is None:
            return []
        if not target.requires_scope_choice:
            scope = EditScope.SINGLE
        raise_for_errors(self._transaction_validator.validate_update(target, update))

        cards = await self.repository.get_cards()
        updated = await self.store.update_with_scope(transaction_id, update, scope, cards)
        await self._log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            scope=scope.value,
            affected=len(updated),
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)
        return updated

    async def delete_transaction(
        self,
        transaction_id: str,
        scope: EditScope = EditScope.SINGLE,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Delete a transaction and, depending on scope, its family.

        Returns:
            The deleted transactions (empty if it doesn't exist)
        """
        correlation_id = correlation_id or create_correlation_id()
        target = await self.store.get(transaction_id)
        if target is None:
            return []
        if not target.requires_scope_choice:
            scope = EditScope.SINGLE

        removed = await self.store.delete_with_scope(transaction_id, scope)
        await self._log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            scope=scope.value,
            affected=len(removed),
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)
        return removed

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    async def get_cards(self) -> list[CreditCard]:
        return await self.repository.get_cards()

    async def create_card(
        self,
        name: str,
        limit: Decimal,
        closing_day: int,
        due_day: int,
        last4: Optional[str] = None,
        can_pay_other_cards: bool = True,
        default_payer_card_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CreditCard:
        """
        Create a card. `limit` is its total limit.

        Raises:
            pydantic.ValidationError: If a field is out of range
            LedgerValidationError: If the payer card setup is invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        card = CreditCard(
            name=name,
            limit=limit,
            closing_day=closing_day,
            due_day=due_day,
            last4=last4,
            can_pay_other_cards=can_pay_other_cards,
            default_payer_card_id=default_payer_card_id,
        )
        cards = await self.repository.get_cards()
        raise_for_errors(self._card_validator.validate(card, cards))

        cards.append(card)
        await self.repository.save_cards(cards)
        await self.reconciler.set_original_limit(card.id, limit)

        logger.info("card_created", card_id=card.id, limit=str(limit))
        await self._log(AuditEventBuilder.card_created(
            card_id=card.id,
            name=card.name,
            limit=str(limit),
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)
        return await self.repository.get_card(card.id)

    async def edit_card(
        self,
        card_id: str,
        update: CardUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[CreditCard]:
        """
        Edit a card. A new `limit` replaces the stored original limit.

        Existing purchases keep their invoice month when the closing day
        changes; only new purchases use the new closing day.

        Returns:
            The updated card, or None if it doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()
        cards = await self.repository.get_cards()
        index = next((i for i, c in enumerate(cards) if c.id == card_id), None)
        if index is None:
            return None

        edited = update.apply(cards[index])
        raise_for_errors(self._card_validator.validate(edited, cards))
        cards[index] = edited
        await self.repository.save_cards(cards)
        if update.limit is not None:
            await self.reconciler.set_original_limit(card_id, update.limit)

        await self._log(AuditEventBuilder.card_updated(
            card_id=card_id,
            name=edited.name,
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)
        return await self.repository.get_card(card_id)

    async def delete_card(
        self,
        card_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a card and its original-limit entry.

        Cards it paid automatically lose their default payer. Transactions
        charged to it are kept (the integrity check reports them).
        """
        correlation_id = correlation_id or create_correlation_id()
        cards = await self.repository.get_cards()
        card = next((c for c in cards if c.id == card_id), None)
        if card is None:
            return False

        remaining = [c for c in cards if c.id != card_id]
        for other in remaining:
            if other.default_payer_card_id == card_id:
                other.default_payer_card_id = None
                logger.info("default_payer_cleared", card_id=other.id)
        await self.repository.save_cards(remaining)
        await self.reconciler.remove_original_limit(card_id)

        await self._log(AuditEventBuilder.card_deleted(
            card_id=card_id,
            name=card.name,
            correlation_id=correlation_id,
        ))
        await self.pipeline.run(correlation_id)
        return True

    async def get_card_invoice(self, card_id: str, invoice_month: str) -> Optional[CardInvoiceDetail]:
        return await self.invoices.get_card_invoice(card_id, invoice_month)

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
        Pay a card invoice from cash, debit or another card.

        Returns:
            The settlement transaction, or None if the payment was refused
        """
        correlation_id = correlation_id or create_correlation_id()
        payment = await self.payments.pay_invoice(
            card_id,
            invoice_month,
            amount,
            source,
            payment_date=payment_date,
            source_card_id=source_card_id,
            correlation_id=correlation_id,
        )
        if payment is not None:
            await self.pipeline.run(correlation_id)
        return payment

    # -------------------------------------------------------------------------
    # Statement
    # -------------------------------------------------------------------------

    async def get_statement(self, month: str) -> list[StatementItem]:
        """Cash transactions and consolidated invoices of a month, newest first."""
        return await self.invoices.get_statement(month)

    async def get_statement_totals(self, month: str) -> StatementTotals:
        return await self.invoices.get_statement_totals(month)

    # -------------------------------------------------------------------------
    # Investments
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
        return await self.investments.create_investment(
            name,
            amount,
            yield_rate=yield_rate,
            start_date=start_date,
            investment_type=investment_type,
            can_cover_negative_balance=can_cover_negative_balance,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def deposit(
        self,
        investment_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Investment]:
        return await self.investments.deposit(
            investment_id, amount, correlation_id or create_correlation_id()
        )

    async def withdraw(
        self,
        investment_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """Withdraw into the cash balance. None if the amount exceeds the balance."""
        return await self.investments.withdraw(
            investment_id, amount, correlation_id or create_correlation_id()
        )

    async def delete_investment(
        self,
        investment_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        return await self.investments.delete_investment(
            investment_id, correlation_id or create_correlation_id()
        )

    async def update_yield_rate(
        self,
        investment_id: str,
        new_rate: Decimal,
        effective_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Investment]:
        return await self.investments.update_yield_rate(
            investment_id,
            new_rate,
            effective_date=effective_date,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def toggle_coverage(self, investment_id: str) -> Optional[Investment]:
        return await self.investments.toggle_coverage(investment_id)

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def get_preferences(self) -> AppPreferences:
        return await self.repository.get_preferences()

    async def save_preferences(self, preferences: AppPreferences) -> None:
        await self.repository.save_preferences(preferences)

    # -------------------------------------------------------------------------
    # Backup and maintenance
    # -------------------------------------------------------------------------

    async def export_backup(self, correlation_id: Optional[UUID] = None) -> str:
        """The whole ledger as a JSON document."""
        return await self.backups.export_all_data(correlation_id or create_correlation_id())

    async def import_backup(self, payload: str, correlation_id: Optional[UUID] = None) -> None:
        """
        Replace stored data with a backup.

        Raises:
            BackupFormatError: If the document is invalid; nothing is written
        """
        correlation_id = correlation_id or create_correlation_id()
        await self.backups.import_all_data(payload, correlation_id)
        await self.pipeline.run(correlation_id)

    async def check_integrity(self) -> IntegrityReport:
        return await self.reconciler.validate_integrity()

    async def repair_integrity(self, correlation_id: Optional[UUID] = None) -> int:
        """Run every recompute step. Returns the number of steps run."""
        correlation_id = correlation_id or create_correlation_id()
        before = await self.reconciler.validate_integrity()
        steps = await self.pipeline.run(correlation_id)
        await self._log(AuditEventBuilder.integrity_repaired(
            steps=steps,
            issues_before=len(before.issues),
            correlation_id=correlation_id,
        ))
        return steps

    async def clear_all_data(self, correlation_id: Optional[UUID] = None) -> None:
        """Delete every stored key."""
        await self.repository.clear()
        logger.warning("ledger_cleared")
        await self._log(AuditEventBuilder.data_cleared(correlation_id or create_correlation_id()))


def create_storage() -> KeyValueStorage:
    """Storage backend selected by LEDGER_STORAGE_BACKEND."""
    settings = get_settings().storage
    if settings.backend == "memory":
        return InMemoryStorage()
    return JsonFileStorage(settings.data_dir, settings.key_prefix)


def create_ledger(
    storage: Optional[KeyValueStorage] = None,
    clock: Clock = local_today,
    persist_audit: bool = True,
) -> Ledger:
    """
    Factory function to create a fully wired ledger.

    Args:
        storage: Key-value backend. Defaults to the configured one.
        clock: Source of "today".
        persist_audit: Whether audit events are stored next to the data.
                      Set to False to only log them locally.
    """
    storage = storage or create_storage()
    if persist_audit:
        audit_storage = KeyValueAuditStorage(
            storage, max_events=get_settings().app.audit_log_max_events
        )
        audit_logger = AuditLogger(audit_storage)
    else:
        audit_logger = AuditLogger()
    return Ledger(storage, clock=clock, audit_logger=audit_logger)

"""
Tests for the Finance Ledger

Test strategy:
1. Unit tests for individual components (models, math, validators)
2. Service tests against the in-memory store with a frozen clock
3. End-to-end tests through the Ledger facade
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from src.models.ledger import (
    AppPreferences,
    CardUpdate,
    CreditCard,
    Transaction,
    TransactionKind,
    TransactionOrigin,
    TransactionType,
    get_categories,
    get_category,
    infer_kind,
    round_money,
)
from src.models.investment import (
    Investment,
    PendingTransfer,
    TransferHistory,
    YieldRateChange,
)
from src.models.validation import IntegrityReport, ValidationIssue, ValidationResult
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTransactionModel:
    """Tests for the Transaction model and its kind rules."""

    def test_expense_amount_is_negative(self):
        """Test that expenses store a negative amount whatever sign was passed."""
        tx = Transaction(
            amount=Decimal("50"),
            date=date(2024, 3, 1),
            type=TransactionType.EXPENSE,
            category="food",
        )
        assert tx.amount == Decimal("-50")
        assert tx.absolute_amount == Decimal("50")
        assert tx.is_expense is True

    def test_income_amount_is_positive(self):
        """Test that incomes store a positive amount."""
        tx = Transaction(
            amount=Decimal("-1200"),
            date=date(2024, 3, 1),
            type=TransactionType.INCOME,
        )
        assert tx.amount == Decimal("1200")
        assert tx.kind == TransactionKind.PLAIN
        assert tx.origin == TransactionOrigin.USER

    def test_empty_description_becomes_none(self):
        """Test that blank strings are stored as missing."""
        tx = Transaction(
            amount=Decimal("10"),
            date=date(2024, 3, 1),
            type=TransactionType.EXPENSE,
            category="food",
            description="   ",
        )
        assert tx.description is None

    def test_plain_transaction_rejects_installment_fields(self):
        """Test that fields of another kind are rejected."""
        with pytest.raises(ValueError):
            Transaction(
                kind=TransactionKind.PLAIN,
                amount=Decimal("10"),
                date=date(2024, 3, 1),
                type=TransactionType.EXPENSE,
                category="food",
                installments=3,
                current_installment=1,
            )

    def test_plain_transaction_rejects_recurrence_fields(self):
        """Test that a plain record cannot carry a recurrence id."""
        with pytest.raises(ValueError):
            Transaction(
                kind=TransactionKind.PLAIN,
                amount=Decimal("10"),
                date=date(2024, 3, 1),
                type=TransactionType.EXPENSE,
                category="food",
                recurrence_id="abc",
            )

    def test_installment_member_needs_parent_after_first(self):
        """Test that member #2 without a parent id is rejected."""
        with pytest.raises(ValueError):
            Transaction(
                kind=TransactionKind.INSTALLMENT_MEMBER,
                amount=Decimal("10"),
                date=date(2024, 3, 1),
                type=TransactionType.EXPENSE,
                category="food",
                installments=3,
                current_installment=2,
            )

    def test_invoice_month_requires_card_purchase(self):
        """Test that invoice_month is only valid on card purchases."""
        with pytest.raises(ValueError):
            Transaction(
                amount=Decimal("10"),
                date=date(2024, 3, 1),
                type=TransactionType.EXPENSE,
                category="food",
                invoice_month="2024-03",
            )

    def test_card_to_card_settlement_sets_flags(self):
        """Test that a settlement leg is also an invoice payment of the target card."""
        tx = Transaction(
            kind=TransactionKind.CARD_TO_CARD_SETTLEMENT,
            amount=Decimal("300"),
            date=date(2024, 4, 5),
            type=TransactionType.EXPENSE,
            category="other",
            is_card_payment=True,
            card_id="payer",
            invoice_month="2024-04",
            source_card_id="payer",
            target_card_id="paid",
            paid_invoice_month="2024-03",
        )
        assert tx.is_card_to_card_payment is True
        assert tx.is_invoice_payment is True
        assert tx.paid_invoice_card_id == "paid"

    def test_settlement_cannot_target_its_own_card(self):
        """Test that a card cannot settle its own invoice."""
        with pytest.raises(ValueError):
            Transaction(
                kind=TransactionKind.CARD_TO_CARD_SETTLEMENT,
                amount=Decimal("300"),
                date=date(2024, 4, 5),
                type=TransactionType.EXPENSE,
                is_card_payment=True,
                card_id="same",
                source_card_id="same",
                target_card_id="same",
                paid_invoice_month="2024-03",
            )

    def test_ledger_month_uses_invoice_month_for_card_purchases(self):
        """Test that card purchases belong to their invoice month."""
        tx = Transaction(
            amount=Decimal("80"),
            date=date(2024, 1, 26),
            type=TransactionType.EXPENSE,
            category="food",
            is_card_payment=True,
            card_id="card",
            invoice_month="2024-02",
        )
        assert tx.month == "2024-01"
        assert tx.ledger_month == "2024-02"

    def test_legacy_record_gets_kind_on_load(self):
        """Test that stored camelCase data without a kind is classified."""
        tx = Transaction.model_validate({
            "id": "t2",
            "amount": "-100",
            "date": "2024-02-10",
            "type": "expense",
            "category": "food",
            "installments": 3,
            "currentInstallment": 2,
            "parentId": "t1",
        })
        assert tx.kind == TransactionKind.INSTALLMENT_MEMBER
        assert tx.family_id == "t1"
        assert tx.requires_scope_choice is True

    def test_infer_kind(self):
        """Test classification of raw dicts."""
        assert infer_kind({"isCardToCardPayment": True}) == TransactionKind.CARD_TO_CARD_SETTLEMENT
        assert infer_kind({"is_invoice_payment": True}) == TransactionKind.INVOICE_PAYMENT_MARKER
        assert infer_kind({"recurrenceId": "r1"}) == TransactionKind.RECURRENCE_INSTANCE
        assert infer_kind({"installments": "4"}) == TransactionKind.INSTALLMENT_MEMBER
        assert infer_kind({"installments": 1}) == TransactionKind.PLAIN

    def test_to_storage_uses_camel_case(self):
        """Test the persisted JSON shape."""
        tx = Transaction(
            amount=Decimal("12.50"),
            date=date(2024, 3, 1),
            type=TransactionType.EXPENSE,
            category="food",
        )
        stored = tx.to_storage()
        assert stored["amount"] == "-12.50"
        assert stored["date"] == "2024-03-01"
        assert stored["isCardPayment"] is False
        assert "createdAt" in stored
        assert "cardId" not in stored

    def test_round_money(self):
        """Test rounding half up to cents."""
        assert round_money(Decimal("33.335")) == Decimal("33.34")
        assert round_money(Decimal("33.334")) == Decimal("33.33")


class TestCardModels:
    """Tests for credit card models."""

    def test_closing_day_range(self):
        """Test that closing days beyond 28 are rejected."""
        with pytest.raises(ValueError):
            CreditCard(name="Card", limit=Decimal("100"), closing_day=29, due_day=5)

    def test_card_cannot_pay_itself(self):
        """Test that a card is never its own default payer."""
        with pytest.raises(ValueError):
            CreditCard(
                id="c1",
                name="Card",
                limit=Decimal("100"),
                closing_day=10,
                due_day=20,
                default_payer_card_id="c1",
            )

    def test_card_update_apply(self):
        """Test that CardUpdate changes only what it carries."""
        card = CreditCard(
            name="Card",
            limit=Decimal("1000"),
            closing_day=10,
            due_day=20,
            default_payer_card_id="other",
        )
        edited = CardUpdate(name="Renamed", limit=Decimal("9999"), clear_default_payer=True).apply(card)
        assert edited.id == card.id
        assert edited.name == "Renamed"
        assert edited.limit == Decimal("1000")
        assert edited.default_payer_card_id is None
        assert edited.closing_day == 10


class TestInvestmentModels:
    """Tests for investment-related models."""

    def _investment(self, history=None) -> Investment:
        return Investment(
            name="Reserve",
            initial_amount=Decimal("1000"),
            current_amount=Decimal("1000"),
            yield_rate=Decimal("10"),
            start_date=date(2024, 1, 1),
            yield_rate_history=history or [],
        )

    def test_rate_on_without_history(self):
        """Test that the current rate applies without any history."""
        assert self._investment().rate_on(date(2024, 1, 1)) == Decimal("10")

    def test_rate_on_follows_history(self):
        """Test the rate in force before, on and after changes."""
        investment = self._investment([
            YieldRateChange(date=date(2024, 3, 1), previous_rate=Decimal("8"), new_rate=Decimal("10")),
            YieldRateChange(date=date(2024, 2, 1), previous_rate=Decimal("6.5"), new_rate=Decimal("8")),
        ])
        assert investment.rate_on(date(2024, 1, 15)) == Decimal("6.5")
        assert investment.rate_on(date(2024, 2, 1)) == Decimal("8")
        assert investment.rate_on(date(2024, 2, 29)) == Decimal("8")
        assert investment.rate_on(date(2024, 3, 10)) == Decimal("10")

    def test_pending_transfer_includes_its_month(self):
        """Test that the newest month is always among the source months."""
        pending = PendingTransfer(month="2024-02", amount=Decimal("500"), source_months=["2024-01"])
        assert pending.source_months == ["2024-01", "2024-02"]

    def test_pending_transfer_amount_must_be_positive(self):
        """Test that an empty surplus cannot be recorded."""
        with pytest.raises(ValueError):
            PendingTransfer(month="2024-02", amount=Decimal("0"))

    def test_transfer_history_covers(self):
        """Test month coverage of a completed sweep."""
        entry = TransferHistory(
            from_month="2024-02",
            source_months=["2024-02", "2024-01"],
            amount=Decimal("700"),
            investment_id="i1",
            investment_name="Reserve",
            transfer_date=date(2024, 3, 5),
            triggered_by_transaction_id="t1",
        )
        assert entry.source_months == ["2024-01", "2024-02"]
        assert entry.covers("2024-01") is True
        assert entry.covers("2023-12") is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.CARD_CREATED,
            description="Card created",
        )
        assert event.event_type == AuditEventType.CARD_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_PAID,
            description="Invoice paid",
            details={"card_id": "c1", "amount": "1000"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "invoice_paid"
        assert log_dict["details"]["amount"] == "1000"

    def test_audit_event_to_storage_dict(self):
        """Test that the stored shape round-trips."""
        event = AuditEventBuilder.data_cleared(correlation_id=uuid4())
        restored = AuditEvent.model_validate(event.to_storage_dict())
        assert restored == event
        assert restored.severity == AuditSeverity.WARNING

    def test_audit_event_builder_transaction_created(self):
        """Test AuditEventBuilder.transaction_created."""
        correlation_id = uuid4()

        event = AuditEventBuilder.transaction_created(
            transaction_id="t1",
            amount="-300.00",
            kind="installment_member",
            instance_count=3,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.TRANSACTION_CREATED
        assert event.entity_id == "t1"
        assert event.correlation_id == correlation_id
        assert event.details["instance_count"] == 3
        assert event.is_user_action is True

    def test_audit_event_builder_coverage_applied(self):
        """Test that engine-driven events are not user actions."""
        event = AuditEventBuilder.coverage_applied(
            investment_id="i1",
            amount="200",
            transaction_id="t1",
        )
        assert event.event_type == AuditEventType.COVERAGE_APPLIED
        assert event.is_user_action is False


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            entity_type="transaction",
            issues=[
                ValidationIssue(
                    field="category",
                    issue_type="missing",
                    message="Expenses need a category",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.is_valid is False
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            entity_type="transaction",
            issues=[
                ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.warnings == ["Date in future"]

    def test_integrity_report(self):
        """Test that a report without issues is valid."""
        assert IntegrityReport().is_valid is True
        assert IntegrityReport(issues=["drift"]).is_valid is False


class TestCategoriesAndPreferences:
    """Tests for the category catalogue and preferences."""

    def test_all_categories_exist(self):
        """Test that expected categories exist."""
        ids = [category.id for category in get_categories()]
        assert ids == [
            "income", "food", "transport", "housing",
            "health", "education", "leisure", "other",
        ]

    def test_unknown_category_falls_back_to_other(self):
        """Test category lookup fallback."""
        assert get_category("food").id == "food"
        assert get_category("nope").id == "other"
        assert get_category(None).id == "other"

    def test_preferences_reject_unknown_theme(self):
        """Test theme values."""
        assert AppPreferences().theme == "light"
        with pytest.raises(ValueError):
            AppPreferences(theme="neon")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

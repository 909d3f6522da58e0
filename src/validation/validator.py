"""
Two-Stage Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- References to other records (card ids, payer cards)
- Field combinations that cannot be stored

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Far-future date detection
- Suspicious card setups
- These are warnings: reported, never blocking

Stage 2 only runs when stage 1 passes. Pydantic field constraints run
before either stage, when the draft model is built.

IMPORTANT: Validation NEVER silently fixes issues.
Mutations raise LedgerValidationError before writing anything.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from src.billing.dates import Clock, local_today
from src.config import get_settings
from src.models.ledger import CreditCard, Transaction, TransactionType
from src.models.validation import ValidationIssue, ValidationResult
from src.transactions.expander import TransactionDraft, TransactionUpdate


class LedgerValidationError(Exception):
    """Input rejected before any write."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Invalid {result.entity_type}: {messages}")


def raise_for_errors(result: ValidationResult) -> ValidationResult:
    """Raise LedgerValidationError when the result has errors, else return it."""
    if result.has_errors:
        raise LedgerValidationError(result)
    return result


class TransactionValidator:
    """Validates new transactions and edits against the stored cards."""

    def __init__(self, clock: Clock = local_today):
        self._clock = clock
        self._settings = get_settings().app

    def _validate_schema(
        self,
        draft: TransactionDraft,
        cards: list[CreditCard],
    ) -> list[ValidationIssue]:
        issues = []

        if draft.type == TransactionType.EXPENSE and not draft.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Expenses need a category",
                severity="error",
                suggested_fix="Pick one of the expense categories",
            ))

        if draft.card_id is not None:
            if draft.type != TransactionType.EXPENSE:
                issues.append(ValidationIssue(
                    field="card_id",
                    issue_type="invalid_value",
                    message="Only expenses can be charged to a card",
                    severity="error",
                ))
            if not any(card.id == draft.card_id for card in cards):
                issues.append(ValidationIssue(
                    field="card_id",
                    issue_type="not_found",
                    message=f"Card {draft.card_id} does not exist",
                    severity="error",
                    suggested_fix="Choose an existing card",
                ))

        return issues

    def _validate_semantic(self, amount: Optional[Decimal], day) -> list[ValidationIssue]:
        issues = []

        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if amount is not None and abs(amount) > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({abs(amount):,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        max_future = self._clock() + timedelta(days=self._settings.future_date_tolerance_days)
        if day is not None and day > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({day}) is far in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        return issues

    def validate(
        self,
        draft: TransactionDraft,
        cards: list[CreditCard],
    ) -> ValidationResult:
        """
        Validate a new transaction.

        Args:
            draft: What the user entered
            cards: Stored cards, for card purchase checks
        """
        issues = self._validate_schema(draft, cards)
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_semantic(draft.amount, draft.date))
        return ValidationResult(entity_type="transaction", issues=issues)

    def validate_update(
        self,
        target: Transaction,
        update: TransactionUpdate,
    ) -> ValidationResult:
        """Validate an edit of an existing transaction."""
        issues = []

        if update.is_empty:
            issues.append(ValidationIssue(
                field="update",
                issue_type="empty",
                message="Nothing to change",
                severity="error",
            ))

        new_type = update.type or target.type
        category = update.category if update.category is not None else target.category
        if new_type == TransactionType.EXPENSE and not category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Expenses need a category",
                severity="error",
            ))
        if target.is_card_payment and new_type != TransactionType.EXPENSE:
            issues.append(ValidationIssue(
                field="type",
                issue_type="invalid_value",
                message="A card purchase cannot become an income",
                severity="error",
            ))
        if update.invoice_month is not None and not target.is_card_payment:
            issues.append(ValidationIssue(
                field="invoice_month",
                issue_type="invalid_value",
                message="Only card purchases have an invoice month",
                severity="error",
            ))

        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_semantic(update.amount, update.date))
        return ValidationResult(entity_type="transaction", entity_id=target.id, issues=issues)


class CardValidator:
    """Validates cards against the other stored cards."""

    def validate(
        self,
        card: CreditCard,
        cards: list[CreditCard],
    ) -> ValidationResult:
        """
        Validate a new or edited card.

        Args:
            card: The card as it would be stored
            cards: Every stored card (the card itself may be among them)
        """
        others = {other.id: other for other in cards if other.id != card.id}
        issues = []

        payer_id = card.default_payer_card_id
        if payer_id:
            payer = others.get(payer_id)
            if payer is None:
                issues.append(ValidationIssue(
                    field="default_payer_card_id",
                    issue_type="not_found",
                    message=f"Paying card {payer_id} does not exist",
                    severity="error",
                ))
            elif not payer.can_pay_other_cards:
                issues.append(ValidationIssue(
                    field="default_payer_card_id",
                    issue_type="invalid_value",
                    message=f"Card {payer.name} cannot pay other cards",
                    severity="error",
                    suggested_fix="Enable 'can pay other cards' on the paying card",
                ))
            elif payer.default_payer_card_id == card.id:
                issues.append(ValidationIssue(
                    field="default_payer_card_id",
                    issue_type="inconsistent",
                    message=f"Card {payer.name} is already paid by this card",
                    severity="error",
                ))

        if not card.can_pay_other_cards:
            dependants = [other.name for other in others.values() if other.default_payer_card_id == card.id]
            if dependants:
                issues.append(ValidationIssue(
                    field="can_pay_other_cards",
                    issue_type="inconsistent",
                    message=f"Card pays the invoices of: {', '.join(dependants)}",
                    severity="error",
                    suggested_fix="Change the paying card of those cards first",
                ))

        if not any(issue.severity == "error" for issue in issues):
            if any(other.name.lower() == card.name.lower() for other in others.values()):
                issues.append(ValidationIssue(
                    field="name",
                    issue_type="potential_duplicate",
                    message=f"Another card is already named {card.name}",
                    severity="warning",
                ))
            if card.due_day == card.closing_day:
                issues.append(ValidationIssue(
                    field="due_day",
                    issue_type="suspicious_value",
                    message="Due day equals closing day; the invoice falls due a month later",
                    severity="warning",
                ))

        return ValidationResult(entity_type="card", entity_id=card.id, issues=issues)


def get_user_friendly_summary(result: ValidationResult) -> str:
    """Short text listing the problems of a validation result."""
    if result.is_valid and not result.warnings:
        return "All checks passed."

    lines = []
    if result.has_errors:
        lines.append("Please fix the following:")
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     {issue.suggested_fix}")

    if result.warnings:
        if lines:
            lines.append("")
        lines.append("Please verify the following:")
        for warning in result.warnings:
            lines.append(f"   • {warning}")

    return "\n".join(lines)

"""
Core Ledger Models

These models define the strict schemas for everything the ledger persists
or derives: transactions, credit cards, consolidated invoices and the small
amount of user preference data.

DESIGN DECISION: A transaction is one record with an explicit `kind`
discriminant. Each kind owns a fixed set of fields (installment fields only
on installment members, settlement fields only on settlement legs and
payment markers) and the model rejects fields that do not belong to the
record's kind. Older data without a `kind` is classified on load.

All models persist with camelCase keys so stored JSON keeps the wire
format of earlier versions of the data.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


CENT = Decimal("0.01")
MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid4())


def round_money(value: Decimal) -> Decimal:
    """Round a currency amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class LedgerModel(BaseModel):
    """Base for persisted ledger records (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_storage(self) -> dict:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionKind(str, Enum):
    """
    Role a transaction plays in the ledger.

    Exactly one role per record.
    """
    PLAIN = "plain"
    INSTALLMENT_MEMBER = "installment_member"
    RECURRENCE_INSTANCE = "recurrence_instance"
    CARD_TO_CARD_SETTLEMENT = "card_to_card_settlement"
    INVOICE_PAYMENT_MARKER = "invoice_payment_marker"


class TransactionOrigin(str, Enum):
    """Who created a transaction."""
    USER = "user"
    AUTO_CARD_PAYMENT = "auto_card_payment"
    INVOICE_PAYMENT = "invoice_payment"
    COVERAGE = "coverage"
    BALANCE_TRANSFER = "balance_transfer"
    INVESTMENT_WITHDRAWAL = "investment_withdrawal"


# Incomes with these origins never count as "the first income of the month"
SYNTHETIC_ORIGINS = frozenset({
    TransactionOrigin.COVERAGE,
    TransactionOrigin.BALANCE_TRANSFER,
    TransactionOrigin.AUTO_CARD_PAYMENT,
})


class RecurrenceType(str, Enum):
    """Cadence of a recurrence family."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class EditScope(str, Enum):
    """
    How far an edit or delete propagates through a family.

    SINGLE touches one record, FROM_DATE touches members dated on or after
    the target, ALL touches the whole family.
    """
    SINGLE = "single"
    FROM_DATE = "from_date"
    ALL = "all"


class PaymentSource(str, Enum):
    """Where the money for an invoice payment comes from."""
    CASH = "cash"
    DEBIT = "debit"
    CREDIT = "credit"


# Fields that belong to a single kind; anything else on the record is rejected
_INSTALLMENT_FIELDS = ("installments", "current_installment", "parent_id")
_RECURRENCE_FIELDS = ("recurrence_type", "recurrence_id", "recurrence_end_date")
_SETTLEMENT_FIELDS = ("source_card_id", "target_card_id")
_MARKER_FIELDS = ("paid_invoice_card_id", "paid_invoice_month")


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def infer_kind(data: dict) -> TransactionKind:
    """
    Classify a raw transaction dict that predates the `kind` field.

    Accepts either camelCase or snake_case keys.
    """
    if _pick(data, "isCardToCardPayment", "is_card_to_card_payment"):
        return TransactionKind.CARD_TO_CARD_SETTLEMENT
    if _pick(data, "isInvoicePayment", "is_invoice_payment"):
        return TransactionKind.INVOICE_PAYMENT_MARKER
    if _pick(data, "recurrenceId", "recurrence_id"):
        return TransactionKind.RECURRENCE_INSTANCE
    installments = _pick(data, "installments") or 0
    try:
        installments = int(installments)
    except (TypeError, ValueError):
        installments = 0
    if installments > 1 or _pick(data, "parentId", "parent_id"):
        return TransactionKind.INSTALLMENT_MEMBER
    return TransactionKind.PLAIN


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(LedgerModel):
    """
    Atomic ledger entry.

    `amount` is signed: positive for income, negative for expense. The sign
    is normalized to `type` on construction so callers may pass either.
    """

    # Identity
    id: str = Field(default_factory=new_id)
    kind: TransactionKind = Field(
        default=TransactionKind.PLAIN,
        description="Role of this record in the ledger"
    )
    origin: TransactionOrigin = Field(
        default=TransactionOrigin.USER,
        description="User entry or one of the automatic generators"
    )

    # Core fields
    amount: Decimal
    date: date
    type: TransactionType
    category: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)

    # Card purchase
    is_card_payment: bool = False
    card_id: Optional[str] = None
    invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)

    # Installment family
    installments: Optional[int] = Field(default=None, ge=1)
    current_installment: Optional[int] = Field(default=None, ge=1)
    parent_id: Optional[str] = None

    # Recurrence family
    is_recurring: bool = False
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_id: Optional[str] = None
    recurrence_end_date: Optional[date] = None

    # Settlement
    is_card_to_card_payment: bool = False
    source_card_id: Optional[str] = None
    target_card_id: Optional[str] = None
    is_invoice_payment: bool = False
    paid_invoice_card_id: Optional[str] = None
    paid_invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="before")
    @classmethod
    def classify_legacy_record(cls, data: Any) -> Any:
        """Fill in `kind` for records stored before it existed."""
        if isinstance(data, dict) and data.get("kind") is None:
            data = dict(data)
            data["kind"] = infer_kind(data)
        return data

    @field_validator("category", "description")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def validate_kind_fields(self) -> "Transaction":
        """Enforce which fields each kind may carry and normalize the sign."""
        kind = self.kind

        def present(names) -> list[str]:
            return [n for n in names if getattr(self, n) is not None]

        if kind != TransactionKind.INSTALLMENT_MEMBER and present(_INSTALLMENT_FIELDS):
            # A lone "installments=1" left by older data is harmless
            if present(_INSTALLMENT_FIELDS) != ["installments"] or self.installments != 1:
                raise ValueError(f"Installment fields are not allowed on a {kind.value} transaction")
        if kind != TransactionKind.RECURRENCE_INSTANCE and (
            self.is_recurring or present(_RECURRENCE_FIELDS)
        ):
            raise ValueError(f"Recurrence fields are not allowed on a {kind.value} transaction")
        if kind != TransactionKind.CARD_TO_CARD_SETTLEMENT and (
            self.is_card_to_card_payment or present(_SETTLEMENT_FIELDS)
        ):
            raise ValueError(f"Card-to-card fields are not allowed on a {kind.value} transaction")
        if kind not in (
            TransactionKind.CARD_TO_CARD_SETTLEMENT,
            TransactionKind.INVOICE_PAYMENT_MARKER,
        ) and (self.is_invoice_payment or present(_MARKER_FIELDS)):
            raise ValueError(f"Invoice payment fields are not allowed on a {kind.value} transaction")

        if kind == TransactionKind.INSTALLMENT_MEMBER:
            if self.installments is None or self.current_installment is None:
                raise ValueError("Installment members need installments and current_installment")
            if self.current_installment > self.installments:
                raise ValueError("current_installment cannot exceed installments")
            if self.current_installment > 1 and self.parent_id is None:
                raise ValueError("Installments after the first need a parent_id")

        if kind == TransactionKind.RECURRENCE_INSTANCE:
            if self.recurrence_id is None or self.recurrence_type is None:
                raise ValueError("Recurrence instances need recurrence_id and recurrence_type")
            self.is_recurring = True

        if kind == TransactionKind.CARD_TO_CARD_SETTLEMENT:
            if not (self.source_card_id and self.target_card_id and self.paid_invoice_month):
                raise ValueError(
                    "Card-to-card settlements need source_card_id, target_card_id "
                    "and paid_invoice_month"
                )
            if self.source_card_id == self.target_card_id:
                raise ValueError("A card cannot settle its own invoice")
            self.is_card_to_card_payment = True
            self.is_invoice_payment = True
            self.paid_invoice_card_id = self.target_card_id

        if kind == TransactionKind.INVOICE_PAYMENT_MARKER:
            if not (self.paid_invoice_card_id and self.paid_invoice_month):
                raise ValueError("Invoice payment markers need paid_invoice_card_id and paid_invoice_month")
            if self.is_card_payment:
                raise ValueError("Invoice payment markers are not card purchases")
            self.is_invoice_payment = True

        if self.invoice_month is not None and not self.is_card_payment:
            raise ValueError("invoice_month is only valid on card purchases")
        if self.is_card_payment and not self.card_id:
            raise ValueError("Card purchases need a card_id")

        if self.type == TransactionType.EXPENSE:
            self.amount = -abs(self.amount)
        else:
            self.amount = abs(self.amount)
        return self

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.INCOME

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    @property
    def is_synthetic(self) -> bool:
        """Created by coverage, balance transfer or auto card payment."""
        return self.origin in SYNTHETIC_ORIGINS

    @property
    def month(self) -> str:
        """Calendar month of `date` as YYYY-MM."""
        return self.date.strftime("%Y-%m")

    @property
    def ledger_month(self) -> str:
        """Card purchases belong to their invoice month, everything else to its date."""
        if self.is_card_payment and self.invoice_month:
            return self.invoice_month
        return self.month

    @property
    def family_id(self) -> Optional[str]:
        """Shared identifier of the installment or recurrence family, if any."""
        if self.recurrence_id:
            return self.recurrence_id
        if self.kind == TransactionKind.INSTALLMENT_MEMBER:
            return self.parent_id or self.id
        return None

    @property
    def requires_scope_choice(self) -> bool:
        """Edits and deletes must ask single / from this date / all."""
        return bool(
            (self.installments or 0) > 1
            or self.parent_id
            or self.recurrence_id
        )

    @property
    def effective_date(self) -> date:
        return self.date


# =============================================================================
# CREDIT CARDS AND INVOICES
# =============================================================================

class CreditCard(LedgerModel):
    """
    A credit card.

    `limit` is the currently AVAILABLE limit. The original limit lives in a
    side table so the available limit can always be recomputed.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    last4: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    limit: Decimal = Field(..., ge=0)
    closing_day: int = Field(..., ge=1, le=28)
    due_day: int = Field(..., ge=1, le=31)
    can_pay_other_cards: bool = True
    default_payer_card_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("last4", "default_payer_card_id")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def validate_payer(self) -> "CreditCard":
        if self.default_payer_card_id == self.id:
            raise ValueError("A card cannot be its own default payer")
        return self


class CardUpdate(BaseModel):
    """
    Fields to change on a card (None = keep).

    `limit` is the card's total limit; the available limit is recomputed
    from it. `clear_default_payer` removes the default payer card.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last4: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    limit: Optional[Decimal] = Field(default=None, ge=0)
    closing_day: Optional[int] = Field(default=None, ge=1, le=28)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    can_pay_other_cards: Optional[bool] = None
    default_payer_card_id: Optional[str] = None
    clear_default_payer: bool = False

    def apply(self, card: CreditCard) -> CreditCard:
        """A validated copy of `card` with the changes applied."""
        changes = self.model_dump(exclude_none=True, exclude={"limit", "clear_default_payer"})
        if self.clear_default_payer:
            changes["default_payer_card_id"] = None
        return CreditCard.model_validate({**card.model_dump(), **changes})


class ConsolidatedInvoice(BaseModel):
    """
    One card's unpaid purchases for one invoice month.

    Derived on demand, never persisted.
    """

    card_id: str
    card_name: str
    invoice_month: str = Field(..., pattern=MONTH_PATTERN)
    due_date: date
    total: Decimal = Field(..., ge=0)
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def effective_date(self) -> date:
        return self.due_date

    @property
    def description(self) -> str:
        return f"Invoice {self.card_name}"


StatementItem = Union[Transaction, ConsolidatedInvoice]


class StatementTotals(BaseModel):
    """Income and expense totals for a month."""

    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


class CardInvoiceDetail(BaseModel):
    """Everything a card statement screen shows for one invoice month."""

    card: CreditCard
    invoice_month: str = Field(..., pattern=MONTH_PATTERN)
    purchases: list[Transaction] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    due_date: date
    period_start: date
    period_end: date
    is_paid: bool = False
    available_limit: Decimal = Decimal("0")


# =============================================================================
# PREFERENCES AND CATEGORIES
# =============================================================================

class AppPreferences(LedgerModel):
    """User preferences persisted under `app_settings`."""

    theme: str = Field(default="light", pattern="^(light|dark|system)$")
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    currency_symbol: str = Field(default="R$", min_length=1, max_length=5)
    locale: Optional[str] = Field(default="pt-BR")


class Category(BaseModel):
    """A fixed transaction category."""

    id: str
    name: str
    icon: str
    type: TransactionType


CATEGORIES: tuple[Category, ...] = (
    Category(id="income", name="Receita", icon="TrendingUp", type=TransactionType.INCOME),
    Category(id="food", name="Alimentação", icon="UtensilsCrossed", type=TransactionType.EXPENSE),
    Category(id="transport", name="Transporte", icon="Car", type=TransactionType.EXPENSE),
    Category(id="housing", name="Moradia", icon="Home", type=TransactionType.EXPENSE),
    Category(id="health", name="Saúde", icon="Heart", type=TransactionType.EXPENSE),
    Category(id="education", name="Educação", icon="GraduationCap", type=TransactionType.EXPENSE),
    Category(id="leisure", name="Lazer", icon="Gamepad2", type=TransactionType.EXPENSE),
    Category(id="other", name="Outros", icon="MoreHorizontal", type=TransactionType.EXPENSE),
)


def get_categories() -> list[Category]:
    return list(CATEGORIES)


def get_category(category_id: Optional[str]) -> Category:
    """Look up a category, falling back to `other`."""
    for category in CATEGORIES:
        if category.id == category_id:
            return category
    return CATEGORIES[-1]

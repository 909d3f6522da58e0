"""
Recurring and Installment Expansion

Turns one user-entered draft into the concrete dated transactions it
stands for:

- Installments: N members one month apart sharing the id of member #1 as
  `parent_id`, descriptions suffixed "(i/N)". In total mode the amount is
  split into cents with any remainder on the last member.
- Recurrences: one instance per week / month / year from the base date
  through the end date inclusive, sharing a `recurrence_id`. Without an
  end date only a horizon is materialized; `extend_open_recurrences` tops
  it up as time passes, starting after a per-family watermark.

Every date is computed from the base date (base + k months), never from
the previous instance, so month-end clamping does not accumulate.
"""

from datetime import date, datetime
from datetime import date as Date
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.billing.dates import Clock, add_months, add_weeks, add_years, local_today
from src.billing.invoices import invoice_month_of
from src.config import get_settings
from src.models.ledger import (
    MONTH_PATTERN,
    CreditCard,
    RecurrenceType,
    Transaction,
    TransactionKind,
    TransactionType,
    new_id,
    round_money,
)


logger = structlog.get_logger(__name__)


class TransactionDraft(BaseModel):
    """
    What the user entered when adding a transaction.

    Sign of `amount` is irrelevant; it follows `type`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal
    date: date
    type: TransactionType
    category: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)

    # Card purchase
    card_id: Optional[str] = None

    # Installments
    installments: int = Field(default=1, ge=1, le=480)
    amount_is_total: bool = True

    # Recurrence
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_end_date: Optional[date] = None

    @field_validator("amount")
    @classmethod
    def non_zero_amount(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("Amount must not be zero")
        if not v.is_finite():
            raise ValueError("Amount must be a finite number")
        return v

    @model_validator(mode="after")
    def single_role(self) -> "TransactionDraft":
        if self.installments > 1 and self.recurrence_type is not None:
            raise ValueError("A transaction cannot be both an installment plan and a recurrence")
        if self.recurrence_end_date is not None:
            if self.recurrence_type is None:
                raise ValueError("recurrence_end_date requires recurrence_type")
            if self.recurrence_end_date < self.date:
                raise ValueError("recurrence_end_date cannot be before the start date")
        return self

    @property
    def is_card_purchase(self) -> bool:
        return self.card_id is not None


class TransactionUpdate(BaseModel):
    """
    Fields to change on an existing transaction (None = keep).

    A new date moves family members by the same number of days. For card
    purchases the invoice month follows the new date unless an explicit
    `invoice_month` is given.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    date: Optional[Date] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)

    @field_validator("amount")
    @classmethod
    def non_zero_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and (v == 0 or not v.is_finite()):
            raise ValueError("Amount must be a non-zero finite number")
        return v

    @property
    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


def recurrence_date(base: date, recurrence_type: RecurrenceType, index: int) -> date:
    """Date of the `index`-th instance (0-based) of a recurrence starting on `base`."""
    if recurrence_type == RecurrenceType.WEEKLY:
        return add_weeks(base, index)
    if recurrence_type == RecurrenceType.YEARLY:
        return add_years(base, index)
    return add_months(base, index)


def split_installments(total: Decimal, count: int) -> list[Decimal]:
    """Split a total into `count` cent amounts; the last one absorbs the remainder."""
    total = abs(total)
    share = round_money(total / count)
    amounts = [share] * (count - 1)
    amounts.append(round_money(total - share * (count - 1)))
    return amounts


def installment_description(description: Optional[str], index: int, count: int) -> str:
    base = (description or "").strip()
    return f"{base} ({index}/{count})".strip()


def strip_installment_suffix(description: Optional[str]) -> str:
    """Remove a trailing "(i/N)" suffix."""
    text = (description or "").rstrip()
    if text.endswith(")") and "(" in text:
        head, _, tail = text.rpartition("(")
        numbers = tail[:-1].split("/")
        if len(numbers) == 2 and all(part.isdigit() for part in numbers):
            return head.rstrip()
    return text


class TransactionExpander:
    """Expands drafts into transactions and keeps open recurrences materialized."""

    def __init__(
        self,
        clock: Clock = local_today,
        horizon_months: Optional[int] = None,
        max_instances: Optional[int] = None,
    ):
        settings = get_settings().recurrence
        self._clock = clock
        self._horizon_months = horizon_months or settings.open_ended_horizon_months
        self._max_instances = max_instances or settings.max_instances

    def horizon_end(self, base: date) -> date:
        """Last date materialized for an open-ended recurrence starting on `base`."""
        return add_months(max(base, self._clock()), self._horizon_months)

    def expand(
        self,
        draft: TransactionDraft,
        card: Optional[CreditCard] = None,
    ) -> list[Transaction]:
        """
        Build every transaction a draft stands for.

        Args:
            draft: Validated user input
            card: The card when the draft is a card purchase

        Returns:
            The instances, in date order
        """
        if draft.installments > 1:
            instances = self._expand_installments(draft, card)
        elif draft.recurrence_type is not None:
            instances = self._expand_recurrence(draft, card)
        else:
            instances = [self._build(draft, card, draft.date, draft.amount)]

        logger.debug(
            "draft_expanded",
            instances=len(instances),
            kind=instances[0].kind.value,
        )
        return instances

    def _build(
        self,
        draft: TransactionDraft,
        card: Optional[CreditCard],
        day: date,
        amount: Decimal,
        **fields,
    ) -> Transaction:
        card_fields = {}
        if card is not None:
            card_fields = {
                "is_card_payment": True,
                "card_id": card.id,
                "invoice_month": invoice_month_of(day, card.closing_day),
            }
        values = {
            "amount": amount,
            "date": day,
            "type": draft.type,
            "category": draft.category,
            "description": draft.description,
            **card_fields,
        }
        values.update(fields)
        return Transaction(**values)

    def _expand_installments(
        self,
        draft: TransactionDraft,
        card: Optional[CreditCard],
    ) -> list[Transaction]:
        count = draft.installments
        if draft.amount_is_total:
            amounts = split_installments(draft.amount, count)
        else:
            amounts = [abs(draft.amount)] * count

        root_id = new_id()
        instances = []
        for index in range(1, count + 1):
            instances.append(self._build(
                draft,
                card,
                add_months(draft.date, index - 1),
                amounts[index - 1],
                id=root_id if index == 1 else new_id(),
                kind=TransactionKind.INSTALLMENT_MEMBER,
                installments=count,
                current_installment=index,
                parent_id=None if index == 1 else root_id,
                description=installment_description(draft.description, index, count),
            ))
        return instances

    def _expand_recurrence(
        self,
        draft: TransactionDraft,
        card: Optional[CreditCard],
    ) -> list[Transaction]:
        end = draft.recurrence_end_date or self.horizon_end(draft.date)
        recurrence_id = new_id()
        instances = []
        index = 0
        while index < self._max_instances:
            day = recurrence_date(draft.date, draft.recurrence_type, index)
            if day > end:
                break
            instances.append(self._build(
                draft,
                card,
                day,
                draft.amount,
                kind=TransactionKind.RECURRENCE_INSTANCE,
                is_recurring=True,
                recurrence_type=draft.recurrence_type,
                recurrence_id=recurrence_id,
                recurrence_end_date=draft.recurrence_end_date,
            ))
            index += 1
        if index >= self._max_instances:
            logger.warning(
                "recurrence_truncated",
                recurrence_id=recurrence_id,
                max_instances=self._max_instances,
            )
        return instances

    def extend_open_recurrences(
        self,
        transactions: dict[str, Transaction],
        cards: list[CreditCard],
        watermarks: Optional[dict[str, date]] = None,
    ) -> list[Transaction]:
        """
        Materialize open-ended recurrences up to the current horizon.

        `watermarks` maps each recurrence id to the last date already
        materialized for it and is updated in place. Only dates after the
        watermark are created, so a deleted or moved instance is never
        filled back in. A family without a watermark starts from its
        latest member.

        New instances copy the latest member of their family (so edits
        applied "from this date forward" carry over) and follow the
        cadence of the most recent run of members that share one. Returns
        the new instances; the caller saves.
        """
        if watermarks is None:
            watermarks = {}
        cards_by_id = {card.id: card for card in cards}
        families: dict[str, list[Transaction]] = {}
        for tx in transactions.values():
            if tx.kind == TransactionKind.RECURRENCE_INSTANCE and tx.recurrence_end_date is None:
                families.setdefault(tx.recurrence_id, []).append(tx)

        for recurrence_id in list(watermarks):
            if recurrence_id not in families:
                del watermarks[recurrence_id]

        created = []
        for recurrence_id, members in families.items():
            members.sort(key=lambda tx: tx.date)
            latest = members[-1]
            recurrence_type = latest.recurrence_type
            anchor = cadence_anchor([tx.date for tx in members], recurrence_type)
            materialized = max(watermarks.get(recurrence_id, latest.date), latest.date)
            end = self.horizon_end(members[0].date)
            card = cards_by_id.get(latest.card_id) if latest.is_card_payment else None

            index = 1
            count = len(members)
            while count < self._max_instances:
                day = recurrence_date(anchor, recurrence_type, index)
                if day > end:
                    break
                index += 1
                if day <= materialized:
                    continue
                instance = latest.model_copy(update={
                    "id": new_id(),
                    "date": day,
                    "created_at": datetime.utcnow(),
                })
                if card is not None:
                    instance.invoice_month = invoice_month_of(day, card.closing_day)
                transactions[instance.id] = instance
                created.append(instance)
                materialized = day
                count += 1
            watermarks[recurrence_id] = materialized

        if created:
            logger.info("recurrences_extended", instances=len(created))
        return created


def cadence_anchor(dates: list[date], recurrence_type: RecurrenceType) -> date:
    """
    Earliest of the sorted `dates` from which every later date lies on its cadence.

    Members moved "from this date forward" form a run with its own cadence;
    anchoring on the start of that run keeps month-end clamping from
    accumulating. Falls back to the last date.
    """
    for start, anchor in enumerate(dates):
        rest = dates[start + 1:]
        if not rest:
            return anchor
        expected = set()
        index = 1
        while True:
            day = recurrence_date(anchor, recurrence_type, index)
            if day > rest[-1]:
                break
            expected.add(day)
            index += 1
        if all(day in expected for day in rest):
            return anchor
    return dates[-1]

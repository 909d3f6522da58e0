"""
Investment Models

Interest-bearing reserves, their daily accrual log, and the records left
behind by automatic coverage and month-end balance transfers.

DESIGN DECISION: Yield history is one row per (investment, day). Rows are
never recomputed after they are written, so a rate change only affects days
that have not been processed yet.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.ledger import MONTH_PATTERN, LedgerModel, new_id


class YieldRateChange(LedgerModel):
    """One entry of an investment's rate history."""

    date: date
    previous_rate: Decimal = Field(..., ge=0)
    new_rate: Decimal = Field(..., ge=0)


class Investment(LedgerModel):
    """
    An interest-bearing reserve.

    Lifecycle: active while it has a balance, inactive (terminal) once the
    balance reaches zero through coverage use or a full withdrawal.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    type: Optional[str] = Field(default=None, max_length=50)
    initial_amount: Decimal = Field(..., ge=0)
    current_amount: Decimal = Field(..., ge=0)
    yield_rate: Decimal = Field(..., ge=0, description="Annual rate in percent")
    yield_rate_history: list[YieldRateChange] = Field(default_factory=list)
    start_date: date
    last_yield_date: Optional[date] = None
    is_active: bool = True
    can_cover_negative_balance: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def sort_rate_history(self) -> "Investment":
        self.yield_rate_history.sort(key=lambda change: change.date)
        return self

    def rate_on(self, day: date) -> Decimal:
        """
        Annual rate in force on `day`.

        The new rate of the last change dated on or before `day`. Days before
        the first change use the rate that change replaced; without any
        history the current rate applies.
        """
        if not self.yield_rate_history:
            return self.yield_rate
        rate = self.yield_rate_history[0].previous_rate
        for change in self.yield_rate_history:
            if change.date > day:
                break
            rate = change.new_rate
        return rate


class YieldHistory(LedgerModel):
    """Yield accrued by one investment for one day."""

    id: str = Field(default_factory=new_id)
    investment_id: str
    date: date
    applied_date: date
    rate: Optional[Decimal] = Field(default=None, description="Annual rate used")
    gross_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal


class CoverageRecord(LedgerModel):
    """A draw from a reserve that topped up a negative balance."""

    id: str
    date: date
    investment_id: str
    investment_name: str
    expense_id: Optional[str] = None
    expense_description: str = ""
    amount_covered: Decimal = Field(..., gt=0)
    transaction_id: str


class CoverageDraw(BaseModel):
    """Amount taken from one reserve to cover a deficit. Not persisted."""

    investment_id: str
    investment_name: str
    amount: Decimal = Field(..., gt=0)
    deactivated: bool = False


class TransferStatus(str, Enum):
    """State of the month-end transfer."""
    PENDING = "pending"
    TRANSFERRED = "transferred"


class PendingTransfer(LedgerModel):
    """
    Positive closing balance waiting to be swept into a reserve.

    Singleton. `source_months` lists every month whose surplus is included
    in `amount`; `month` is the newest of them.
    """

    month: str = Field(..., pattern=MONTH_PATTERN)
    amount: Decimal = Field(..., gt=0)
    status: TransferStatus = TransferStatus.PENDING
    recorded_at: datetime = Field(default_factory=datetime.utcnow)
    source_months: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def include_month(self) -> "PendingTransfer":
        if self.month not in self.source_months:
            self.source_months.append(self.month)
        self.source_months.sort()
        return self


class TransferHistory(LedgerModel):
    """A completed sweep of a month-end surplus into a reserve."""

    id: str = Field(default_factory=new_id)
    from_month: str = Field(..., pattern=MONTH_PATTERN)
    source_months: list[str] = Field(default_factory=list)
    amount: Decimal
    investment_id: str
    investment_name: str
    transfer_date: date
    triggered_by_transaction_id: str
    transaction_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("source_months")
    @classmethod
    def sort_months(cls, v: list[str]) -> list[str]:
        return sorted(v)

    def covers(self, month: str) -> bool:
        return month == self.from_month or month in self.source_months

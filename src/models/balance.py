"""
Balance Models

Derived, never persisted: projections of the cash balance and the
results of the coverage calculations.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ProjectedBalance(BaseModel):
    """Where the month's cash balance stands today and where it is heading."""

    current_balance: Decimal = Decimal("0")
    projected_balance: Decimal = Decimal("0")
    paid_expenses: Decimal = Decimal("0")
    remaining_expenses: Decimal = Decimal("0")
    daily_yield: Decimal = Decimal("0")


class DueItem(BaseModel):
    """An expense or invoice falling due on a given day."""

    id: Optional[str] = None
    date: date
    description: str
    amount: Decimal


class CoverageNeed(BaseModel):
    """How much has to be drawn from reserves today."""

    needs_coverage: bool = False
    amount_needed: Decimal = Decimal("0")
    due_items: list[DueItem] = Field(default_factory=list)


class FutureCoverage(BaseModel):
    """Future deficits the coverage reserves could absorb, in date order."""

    total_coverable: Decimal = Decimal("0")
    items: list[DueItem] = Field(default_factory=list)

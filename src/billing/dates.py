"""
Calendar Utilities

Local calendar-date arithmetic. Everything here works on naive `date`
objects and "YYYY-MM" month keys; nothing ever touches a timezone, so a
purchase made late in the evening can never slide into the next day.

Month arithmetic uses dateutil's relativedelta, which clamps to the last
day of shorter months (Jan 31 + 1 month = Feb 28/29).
"""

import calendar
from datetime import date, timedelta
from typing import Callable

from dateutil.relativedelta import relativedelta


Clock = Callable[[], date]


def local_today() -> date:
    """Today's local calendar date."""
    return date.today()


# =============================================================================
# PARSING AND FORMATTING
# =============================================================================

def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD."""
    return date.fromisoformat(value)


def parse_month(value: str) -> tuple[int, int]:
    """Parse YYYY-MM into (year, month)."""
    try:
        year_str, month_str = value.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        raise ValueError(f"Invalid month: {value!r} (expected YYYY-MM)")
    if not 1 <= month <= 12 or len(year_str) != 4:
        raise ValueError(f"Invalid month: {value!r} (expected YYYY-MM)")
    return year, month


def format_month(value: date) -> str:
    """Format the month of a date as YYYY-MM."""
    return f"{value.year:04d}-{value.month:02d}"


# =============================================================================
# ARITHMETIC
# =============================================================================

def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def add_weeks(value: date, weeks: int) -> date:
    return value + timedelta(weeks=weeks)


def add_months(value: date, months: int) -> date:
    return value + relativedelta(months=months)


def add_years(value: date, years: int) -> date:
    return value + relativedelta(years=years)


def shift_month(month: str, months: int) -> str:
    """Move a YYYY-MM key by a number of months."""
    year, mon = parse_month(month)
    return format_month(date(year, mon, 1) + relativedelta(months=months))


def previous_month(month: str) -> str:
    return shift_month(month, -1)


def next_month(month: str) -> str:
    return shift_month(month, 1)


def month_range(start: str, end: str) -> list[str]:
    """All months from `start` to `end`, inclusive. Empty if end < start."""
    months = []
    current = start
    while current <= end:
        months.append(current)
        current = next_month(current)
    return months


# =============================================================================
# MONTH BOUNDARIES
# =============================================================================

def days_in_month(month: str) -> int:
    year, mon = parse_month(month)
    return calendar.monthrange(year, mon)[1]


def first_day_of_month(month: str) -> date:
    year, mon = parse_month(month)
    return date(year, mon, 1)


def last_day_of_month(month: str) -> date:
    year, mon = parse_month(month)
    return date(year, mon, days_in_month(month))


def day_in_month(month: str, day: int) -> date:
    """The given day of a month, clamped to the month's last day."""
    year, mon = parse_month(month)
    return date(year, mon, min(day, days_in_month(month)))


def is_date_in_month(value: date, month: str) -> bool:
    return format_month(value) == month


def billing_period(invoice_month: str, closing_day: int) -> tuple[date, date]:
    """
    First and last purchase dates that fall into an invoice month.

    The period runs from the day after the previous month's closing day
    through the closing day of the invoice month.
    """
    start = add_days(day_in_month(previous_month(invoice_month), closing_day), 1)
    end = day_in_month(invoice_month, closing_day)
    return start, end

"""
Credit Card Statement Cycle

Maps a purchase instant to the card statement (month/year) it is billed on,
and a statement to its closing and due instants.

DESIGN DECISION: Invalid days are clamped to the month, never rejected.
A card closing on the 31st closes on the 28th/29th in February.

Closing and due instants are placed at local noon so that converting them
to another timezone never moves them to a different calendar day.
"""

import calendar
import math
from datetime import datetime, tzinfo
from typing import Any, Optional

from couple_ledger.models.workspace import StatementDates, StatementReference


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: Any) -> int:
    """Clamp a day-of-month to [1, days_in_month]. Non-numeric days become 1."""
    try:
        safe_day = math.trunc(float(day))
    except (TypeError, ValueError, OverflowError):
        safe_day = 1
    return min(max(safe_day, 1), days_in_month(year, month))


def _next_month(month: int, year: int) -> tuple[int, int]:
    if month == 12:
        return 1, year + 1
    return month + 1, year


def _noon_timestamp(year: int, month: int, day: Any, tz: Optional[tzinfo]) -> int:
    moment = datetime(year, month, clamp_day(year, month, day), 12, 0, 0, tzinfo=tz)
    return int(moment.timestamp() * 1000)


def resolve_card_statement_reference(
    timestamp: int,
    closing_day: Any,
    tz: Optional[tzinfo] = None,
) -> StatementReference:
    """
    Find the statement a purchase belongs to.

    Purchases made after the (clamped) closing day roll over to the next
    month's statement, December rolling into January of the next year.

    Args:
        timestamp: Purchase instant (epoch ms)
        closing_day: Monthly closing day of the card (1-31)
        tz: Timezone used to read the calendar day. Local time when None.
    """
    purchase = datetime.fromtimestamp(timestamp / 1000, tz)
    month, year = purchase.month, purchase.year

    if purchase.day > clamp_day(year, month, closing_day):
        month, year = _next_month(month, year)

    return StatementReference(month=month, year=year)


def resolve_statement_dates(
    month: int,
    year: int,
    closing_day: Any,
    due_day: Any,
    tz: Optional[tzinfo] = None,
) -> StatementDates:
    """
    Compute the closing and due instants of a statement.

    The due date falls in the statement month when the due day comes after
    the closing day, otherwise in the following month.
    """
    closing_date = _noon_timestamp(year, month, closing_day, tz)

    due_month, due_year = month, year
    if not _due_in_same_month(closing_day, due_day):
        due_month, due_year = _next_month(month, year)

    due_date = _noon_timestamp(due_year, due_month, due_day, tz)
    return StatementDates(closing_date=closing_date, due_date=due_date)


def _due_in_same_month(closing_day: Any, due_day: Any) -> bool:
    try:
        return float(due_day) > float(closing_day)
    except (TypeError, ValueError):
        return False

"""Calendar helpers for the scrape drivers."""

import calendar
from datetime import date, timedelta
from typing import Iterator

ONE_DAY = timedelta(days=1)


def add_months(day: date, months: int) -> date:
    """
    Shift a date by whole months, clamping to the last day of the target month.

    >>> add_months(date(2025, 8, 31), 6)
    datetime.date(2026, 2, 28)
    """
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def horizon_end(today: date, months: int = 6) -> date:
    """Last day of the rolling window starting at today."""
    return add_months(today, months)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date from start through end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += ONE_DAY


def next_rolling_date(current: date, today: date, months: int = 6) -> date:
    """
    Advance the continuous cursor by one day.

    Wraps back to today once the next day would fall beyond the horizon,
    so the rolling window is re-scraped forever.
    """
    next_day = current + ONE_DAY
    if next_day > horizon_end(today, months):
        return today
    return next_day

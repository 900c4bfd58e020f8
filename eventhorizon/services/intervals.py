"""Calendar arithmetic shared by the expander and the conflict checker.

All values are naive datetimes in one implicit local calendar.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta


def overlaps(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test.

    Intervals that only touch (``end_a == start_b``) do NOT overlap.
    """
    return start_a < end_b and end_a > start_b


def start_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def end_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


def day_window(value: datetime | date) -> tuple[datetime, datetime]:
    return start_of_day(value), end_of_day(value)


def month_window(year: int, month: int) -> tuple[datetime, datetime]:
    first = date(year, month, 1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return start_of_day(first), end_of_day(last)


def sunday_weekday(day: date) -> int:
    """Weekday index with 0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def start_of_week(day: date) -> date:
    """The Sunday that starts the week containing *day*."""
    return day - timedelta(days=sunday_weekday(day))


def at_time_of(day: date, reference: datetime) -> datetime:
    """Put *reference*'s time of day on *day*."""
    return datetime.combine(day, reference.time())


def add_months(value, months: int):
    # relativedelta clamps to the last day of shorter months.
    return value + relativedelta(months=months)


def add_years(value, years: int):
    return value + relativedelta(years=years)

"""Service for expanding event definitions into the concrete occurrences
visible inside a time window."""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterator
from datetime import date, datetime, timedelta

from eventhorizon.config import get_settings
from eventhorizon.domain.models import (
    EventDefinition,
    Frequency,
    MalformedEventError,
    Occurrence,
    RecurrenceRule,
)
from eventhorizon.services.intervals import (
    add_months,
    at_time_of,
    start_of_week,
    sunday_weekday,
)

logger = logging.getLogger(__name__)

_ID_SEPARATOR = "@"
_STAMP_FORMAT = "%Y%m%dT%H%M%S"


def occurrence_id(source_id: str, start: datetime) -> str:
    """Deterministic id for the occurrence of *source_id* starting at *start*."""
    stamp = start.strftime(_STAMP_FORMAT)
    if start.microsecond:
        stamp += f".{start.microsecond:06d}"
    return f"{source_id}{_ID_SEPARATOR}{stamp}"


def parse_occurrence_id(value: str) -> tuple[str, datetime]:
    """Split an occurrence id into ``(source_id, start)``.

    Raises ``ValueError`` if *value* is not an occurrence id.
    """
    source_id, sep, stamp = value.rpartition(_ID_SEPARATOR)
    if not sep or not source_id:
        raise ValueError(f"Not an occurrence id: {value!r}")
    fmt = f"{_STAMP_FORMAT}.%f" if "." in stamp else _STAMP_FORMAT
    return source_id, datetime.strptime(stamp, fmt)


def resolve_source_id(value: str) -> str:
    """Map an event id or an occurrence id to the definition id."""
    try:
        source_id, _ = parse_occurrence_id(value)
    except ValueError:
        return value
    return source_id


def iter_occurrences(
    event: EventDefinition,
    window_start: datetime,
    window_end: datetime,
    max_periods: int | None = None,
) -> Iterator[Occurrence]:
    """Yield the occurrences of *event* touching ``[window_start, window_end]``.

    Occurrences come out in ascending start order with no repeated start.
    A recurring series is unrolled one period (day, week or month) at a
    time, for at most *max_periods* periods (``MAX_EXPANSION_PERIODS`` by
    default); nothing past that horizon is produced.

    Calling the function again restarts the expansion from scratch.
    """
    duration = _checked_duration(event)
    if window_start > window_end:
        return

    if not event.is_recurring:
        if event.start <= window_end and event.end >= window_start:
            yield _occurrence(event, event.start, event.end, event.id)
        return

    settings = get_settings()
    if max_periods is None:
        max_periods = settings.MAX_EXPANSION_PERIODS

    rule = event.recurrence
    first_day = event.start.date()
    lookahead = add_months(window_end, settings.WINDOW_LOOKAHEAD_MONTHS).date()
    seen: set[datetime] = set()

    cursor = first_day
    for _ in range(max_periods):
        if rule.until is not None and cursor > rule.until:
            break
        if cursor > lookahead:
            break

        for day in _candidate_days(event, cursor):
            if day < first_day:
                continue
            if rule.until is not None and day > rule.until:
                continue
            start = at_time_of(day, event.start)
            end = start + duration
            if start in seen or not (start <= window_end and end >= window_start):
                continue
            seen.add(start)
            yield _occurrence(event, start, end, occurrence_id(event.id, start))

        cursor = _advance(cursor, rule)
    else:
        logger.debug(
            "Expansion of event %s truncated after %d periods", event.id, max_periods
        )


def expand(
    event: EventDefinition,
    window_start: datetime,
    window_end: datetime,
    max_periods: int | None = None,
) -> list[Occurrence]:
    """Return the ordered, deduplicated occurrences of *event* in the window."""
    return list(iter_occurrences(event, window_start, window_end, max_periods))


def _checked_duration(event: EventDefinition) -> timedelta:
    if event.end <= event.start:
        raise MalformedEventError(
            f"Event {event.id} ends at or before its start ({event.start} >= {event.end})"
        )
    duration = event.end - event.start
    gap = event.recurrence.shortest_gap()
    if gap is not None and duration > gap:
        raise MalformedEventError(
            f"Event {event.id} lasts {duration}, longer than the {gap} between occurrences"
        )
    return duration


def _candidate_days(event: EventDefinition, cursor: date) -> list[date]:
    rule = event.recurrence

    if rule.frequency == Frequency.DAILY:
        return [cursor]

    if rule.frequency == Frequency.WEEKLY:
        # An emptied weekday selection falls back to the start's own weekday.
        weekdays = rule.by_weekday or [sunday_weekday(event.start.date())]
        week = start_of_week(cursor)
        return sorted({week + timedelta(days=d) for d in weekdays})

    if rule.frequency == Frequency.MONTHLY:
        day_of_month = rule.by_month_day or event.start.day
        # No roll-over: day 31 simply does not happen in a 30-day month.
        if day_of_month > calendar.monthrange(cursor.year, cursor.month)[1]:
            return []
        return [cursor.replace(day=day_of_month)]

    return []


def _advance(cursor: date, rule: RecurrenceRule) -> date:
    if rule.frequency == Frequency.DAILY:
        return cursor + timedelta(days=rule.interval)
    if rule.frequency == Frequency.WEEKLY:
        return cursor + timedelta(weeks=rule.interval)
    return add_months(cursor, rule.interval)


def _occurrence(
    event: EventDefinition, start: datetime, end: datetime, occ_id: str
) -> Occurrence:
    data = event.model_dump()
    data.update(start=start, end=end, occurrence_id=occ_id, source_id=event.id)
    return Occurrence(**data)

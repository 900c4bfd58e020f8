"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime

from eventhorizon.config import get_settings
from eventhorizon.domain.models import (
    ConflictDescription,
    EventDefinition,
    Frequency,
    RecurrenceRule,
)
from eventhorizon.services.intervals import (
    add_years,
    at_time_of,
    day_window,
    end_of_day,
    overlaps,
)
from eventhorizon.services.recurrence import expand

logger = logging.getLogger(__name__)


def analysis_window(
    candidate: EventDefinition, horizon_years: int | None = None
) -> tuple[datetime, datetime]:
    """Return the window over which *candidate*'s occurrences are checked.

    A single event is checked on its own day. A series is checked from its
    start for *horizon_years* (default ``CONFLICT_HORIZON_YEARS``), cut short
    at the end of its ``until`` day.
    """
    if not candidate.is_recurring:
        return day_window(candidate.start)

    if horizon_years is None:
        horizon_years = get_settings().CONFLICT_HORIZON_YEARS

    window_start = candidate.start
    window_end = add_years(candidate.start, horizon_years)
    until = candidate.recurrence.until
    if until is not None:
        window_end = min(window_end, end_of_day(until))
    if window_end < window_start:
        window_end = end_of_day(window_start)
    return window_start, window_end


def find_conflict(
    candidate: EventDefinition,
    existing_events: Iterable[EventDefinition],
    exclude_id: str | None = None,
) -> ConflictDescription | None:
    """Return the first collision between *candidate* and *existing_events*.

    Every occurrence of the candidate inside its analysis window is compared
    against the occurrences each other event has on that same day. Overlap
    is half-open: back-to-back events do not conflict. *exclude_id* removes
    the event being edited so it cannot collide with its own prior state.
    """
    settings = get_settings()
    others = [e for e in existing_events if e.id != exclude_id]
    if not others:
        return None

    window_start, window_end = analysis_window(candidate)
    candidate_occurrences = expand(
        candidate,
        window_start,
        window_end,
        max_periods=settings.MAX_EXPANSION_PERIODS * settings.CONFLICT_HORIZON_YEARS,
    )

    for cand in candidate_occurrences:
        day_start, day_end = day_window(cand.start)
        for other in others:
            for existing in expand(other, day_start, day_end):
                if overlaps(cand.start, cand.end, existing.start, existing.end):
                    logger.info(
                        "Conflict: %r at %s overlaps %r at %s",
                        candidate.title,
                        cand.start.isoformat(),
                        other.title,
                        existing.start.isoformat(),
                    )
                    return ConflictDescription(
                        candidate_title=candidate.title,
                        conflicting_title=other.title,
                        conflicting_event_id=other.id,
                        candidate_occurrence_start=cand.start,
                        candidate_occurrence_end=cand.end,
                        existing_occurrence_start=existing.start,
                        existing_occurrence_end=existing.end,
                    )
    return None


def relocate(event: EventDefinition, target_day: date) -> EventDefinition:
    """Return *event* as a single instance on *target_day*.

    Time of day and duration are kept. Any recurrence is dropped: moving one
    occurrence collapses the whole series to that instance.
    """
    start = at_time_of(target_day, event.start)
    return event.model_copy(
        update={
            "start": start,
            "end": start + event.duration,
            "recurrence": RecurrenceRule(frequency=Frequency.NONE),
        }
    )


def find_relocation_conflicts(
    event: EventDefinition,
    target_day: date,
    existing_events: Iterable[EventDefinition],
) -> list[EventDefinition]:
    """Return every other event with an occurrence on *target_day* that
    overlaps *event* once relocated there."""
    moved = relocate(event, target_day)
    day_start, day_end = day_window(target_day)

    conflicting: list[EventDefinition] = []
    for other in existing_events:
        if other.id == event.id:
            continue
        if any(
            overlaps(moved.start, moved.end, occ.start, occ.end)
            for occ in expand(other, day_start, day_end)
        ):
            conflicting.append(other)
    return conflicting

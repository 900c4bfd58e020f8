"""Domain models for the scheduling engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator


class MalformedEventError(ValueError):
    """Raised when an event definition does not describe a valid interval."""


class EventNotFoundError(LookupError):
    """Raised when an event id does not resolve to a stored definition."""


class Frequency(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TimelineEntryType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    MOVED = "moved"
    CONFLICT_REJECTED = "conflict_rejected"


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _new_id() -> str:
    return str(uuid.uuid4())


def _local(value: datetime) -> datetime:
    # Offsets carry no meaning here: keep the wall clock, drop the zone.
    return value.replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class RecurrenceRule(BaseModel):
    frequency: Frequency = Frequency.NONE
    interval: int = Field(default=1, ge=1)
    by_weekday: list[int] | None = None
    by_month_day: int | None = Field(default=None, ge=1, le=31)
    until: date | None = None

    @field_validator("by_weekday")
    @classmethod
    def _weekday_range(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("by_weekday entries must be 0 (Sunday) .. 6 (Saturday)")
        return value

    @field_validator("until", mode="before")
    @classmethod
    def _until_date_only(cls, value):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value

    @property
    def is_recurring(self) -> bool:
        return self.frequency != Frequency.NONE

    def shortest_gap(self) -> timedelta | None:
        """Smallest distance between the starts of two consecutive occurrences.

        Monthly rules never roll over, so February bounds the monthly case.
        """
        if self.frequency == Frequency.DAILY:
            return timedelta(days=self.interval)
        if self.frequency == Frequency.WEEKLY:
            days = sorted(set(self.by_weekday or [])) or [0]
            gaps = [b - a for a, b in zip(days, days[1:])]
            gaps.append(7 * self.interval - (days[-1] - days[0]))
            return timedelta(days=min(gaps))
        if self.frequency == Frequency.MONTHLY:
            return timedelta(days=28 * self.interval)
        return None


class EventDefinition(BaseModel):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    title: str
    description: str | None = None
    color: str | None = None
    start: datetime
    end: datetime
    recurrence: RecurrenceRule = Field(default_factory=RecurrenceRule)
    created_at: datetime = Field(default_factory=_now)

    # Descriptive fields filled in by the assistant; never used for scheduling.
    ai_suggested_agenda: str | None = None
    ai_extracted_locations: list[str] = Field(default_factory=list)
    ai_extracted_attendees: list[str] = Field(default_factory=list)
    ai_suggested_timeslots: list[str] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def _naive(cls, value: datetime) -> datetime:
        return _local(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> EventDefinition:
        if self.end <= self.start:
            raise MalformedEventError("end must be after start")
        gap = self.recurrence.shortest_gap()
        if gap is not None and self.duration > gap:
            raise MalformedEventError(
                "duration must not exceed the gap between occurrences"
            )
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_recurring(self) -> bool:
        return self.recurrence.is_recurring


class Occurrence(EventDefinition):
    """A concrete instance of an EventDefinition inside a window."""

    occurrence_id: str
    source_id: str


class ConflictDescription(BaseModel):
    candidate_title: str
    conflicting_title: str
    conflicting_event_id: str
    candidate_occurrence_start: datetime
    candidate_occurrence_end: datetime
    existing_occurrence_start: datetime
    existing_occurrence_end: datetime

    @property
    def message(self) -> str:
        return (
            f'"{self.candidate_title}" on '
            f"{self.candidate_occurrence_start:%A %B %d, %Y %H:%M} conflicts with "
            f'"{self.conflicting_title}" (instance on '
            f"{self.existing_occurrence_start:%A %B %d, %Y %H:%M})."
        )


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    owner_id: str
    timestamp: datetime = Field(default_factory=_now)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventDraft(BaseModel):
    """Client-supplied fields of a new event (id and owner are assigned)."""

    title: str
    description: str | None = None
    color: str | None = None
    start: datetime
    end: datetime
    recurrence: RecurrenceRule = Field(default_factory=RecurrenceRule)
    ai_suggested_agenda: str | None = None
    ai_extracted_locations: list[str] = Field(default_factory=list)
    ai_extracted_attendees: list[str] = Field(default_factory=list)
    ai_suggested_timeslots: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _end_after_start(self) -> EventDraft:
        if _local(self.end) <= _local(self.start):
            raise MalformedEventError("end must be after start")
        return self


class EventPatch(BaseModel):
    """Partial update; unset fields keep their stored value."""

    title: str | None = None
    description: str | None = None
    color: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    recurrence: RecurrenceRule | None = None
    ai_suggested_agenda: str | None = None
    ai_extracted_locations: list[str] | None = None
    ai_extracted_attendees: list[str] | None = None
    ai_suggested_timeslots: list[str] | None = None


class MoveRequest(BaseModel):
    target_day: date


class ConflictCheckRequest(BaseModel):
    candidate: EventDraft
    exclude_id: str | None = None


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflict: ConflictDescription | None = None
    message: str | None = None


class MutationResult(BaseModel):
    """Outcome of a gated write: either the stored event or the blocking conflict."""

    event: EventDefinition | None = None
    conflict: ConflictDescription | None = None

    @property
    def ok(self) -> bool:
        return self.conflict is None


class MoveResult(BaseModel):
    event: EventDefinition | None = None
    conflicting_titles: list[str] = Field(default_factory=list)
    recurrence_removed: bool = False

    @property
    def ok(self) -> bool:
        return not self.conflicting_titles


class DetailsRequest(BaseModel):
    description: str


class EventDetails(BaseModel):
    dates: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    attendees: list[str] = Field(default_factory=list)
    agenda_suggestions: list[str] = Field(default_factory=list)


class AgendaRequest(BaseModel):
    title: str


class AgendaResponse(BaseModel):
    suggested_agenda: str


class AvailabilityRequest(BaseModel):
    attendees: list[str] = Field(min_length=1)
    title: str
    description: str = ""
    duration_minutes: int = Field(default=60, gt=0)


class AvailabilitySuggestion(BaseModel):
    suggested_time_slots: list[str] = Field(default_factory=list)
    summary: str = ""
    free_time_slots: list[datetime] = Field(default_factory=list)

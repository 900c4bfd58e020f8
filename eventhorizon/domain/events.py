"""Domain events emitted when an owner's calendar changes."""

from __future__ import annotations

from pydantic import BaseModel


class EventCreated(BaseModel):
    """Fired when a new EventDefinition is stored."""

    owner_id: str
    event_id: str


class EventUpdated(BaseModel):
    """Fired after a definition is replaced by its edited state."""

    owner_id: str
    event_id: str
    changed_fields: list[str]


class EventDeleted(BaseModel):
    owner_id: str
    event_id: str
    title: str


class EventMoved(BaseModel):
    """Fired when an event is relocated to another day by direct manipulation."""

    owner_id: str
    event_id: str
    target_day: str
    recurrence_removed: bool


class ConflictRejected(BaseModel):
    """Fired when a write is refused because it would overlap existing events."""

    owner_id: str
    event_id: str | None
    operation: str
    message: str
    conflicting_event_ids: list[str]

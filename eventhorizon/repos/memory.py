"""In-memory repositories for event definitions and timeline entries."""

from __future__ import annotations

from datetime import datetime, timedelta

from eventhorizon.domain.models import (
    EventDefinition,
    Frequency,
    RecurrenceRule,
    TimelineEntry,
)


class EventRepository:
    """Dict-backed key-value store of EventDefinitions, keyed by owner then id."""

    def __init__(self) -> None:
        self._store: dict[str, dict[str, EventDefinition]] = {}

    def add(self, event: EventDefinition) -> None:
        self._store.setdefault(event.owner_id, {})[event.id] = event

    def get(self, owner_id: str, event_id: str) -> EventDefinition | None:
        return self._store.get(owner_id, {}).get(event_id)

    def list_for_owner(self, owner_id: str) -> list[EventDefinition]:
        return list(self._store.get(owner_id, {}).values())

    def delete(self, owner_id: str, event_id: str) -> EventDefinition | None:
        return self._store.get(owner_id, {}).pop(event_id, None)

    def count(self) -> int:
        return sum(len(events) for events in self._store.values())


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, owner_id: str, event_id: str) -> list[TimelineEntry]:
        return sorted(
            [
                e
                for e in self._entries
                if e.event_id == event_id and e.owner_id == owner_id
            ],
            key=lambda e: e.timestamp,
        )


# ---------------------------------------------------------------------------
# Seed data – a small calendar useful for trying out conflicts by hand
# ---------------------------------------------------------------------------


def _seed_events(repo: EventRepository, owner_id: str, now: datetime) -> None:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    repo.add(
        EventDefinition(
            owner_id=owner_id,
            title="Team standup",
            start=today + timedelta(hours=9),
            end=today + timedelta(hours=9, minutes=15),
            recurrence=RecurrenceRule(frequency=Frequency.DAILY),
        )
    )
    repo.add(
        EventDefinition(
            owner_id=owner_id,
            title="Soccer practice",
            start=today + timedelta(hours=17, minutes=30),
            end=today + timedelta(hours=19),
            recurrence=RecurrenceRule(
                frequency=Frequency.WEEKLY,
                by_weekday=[2, 4],
                until=(today + timedelta(weeks=8)).date(),
            ),
        )
    )
    repo.add(
        EventDefinition(
            owner_id=owner_id,
            title="Dentist appointment",
            start=today + timedelta(days=1, hours=14),
            end=today + timedelta(days=1, hours=15),
            description="Downtown Dental",
        )
    )


def create_event_repository(
    owner_id: str = "demo", now: datetime | None = None
) -> EventRepository:
    """Return an EventRepository pre-loaded with sample data for *owner_id*."""
    repo = EventRepository()
    _seed_events(repo, owner_id, now or datetime.now())
    return repo

"""Tests for the calendar service: gated writes, moves, queries and timeline."""

from __future__ import annotations

import gc
import threading
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from eventhorizon.domain.bus import EventBus
from eventhorizon.domain.events import ConflictRejected, EventCreated, EventMoved
from eventhorizon.domain.handlers import HandlerRegistry
from eventhorizon.domain.models import (
    EventDraft,
    EventNotFoundError,
    EventPatch,
    Frequency,
    RecurrenceRule,
    TimelineEntryType,
)
from eventhorizon.repos.memory import (
    EventRepository,
    TimelineRepository,
    create_event_repository,
)
from eventhorizon.services.calendar import CalendarService
from eventhorizon.services.recurrence import occurrence_id

OWNER = "alice"


@pytest.fixture()
def env():
    """Fresh bus + repos + registry + service for each test."""
    bus = EventBus()
    event_repo = EventRepository()
    timeline_repo = TimelineRepository()
    registry = HandlerRegistry(bus=bus, event_repo=event_repo, timeline_repo=timeline_repo)

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.event_repo = event_repo
    e.timeline_repo = timeline_repo
    e.registry = registry
    e.service = CalendarService(event_repo=event_repo, bus=bus)
    e.published = []
    for event_type in (EventCreated, EventMoved, ConflictRejected):
        bus.subscribe(event_type, e.published.append)
    return e


def _draft(**overrides) -> EventDraft:
    defaults = dict(
        title="Test event",
        start=datetime(2026, 3, 5, 14, 0),
        end=datetime(2026, 3, 5, 15, 0),
    )
    defaults.update(overrides)
    return EventDraft(**defaults)


def _timeline_types(env, event_id: str) -> list[TimelineEntryType]:
    return [e.type for e in env.timeline_repo.list_for_event(OWNER, event_id)]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_stores_event_and_records_timeline(env):
    result = env.service.create_event(OWNER, _draft())

    assert result.ok
    assert env.event_repo.get(OWNER, result.event.id) == result.event
    assert result.event.owner_id == OWNER
    assert _timeline_types(env, result.event.id) == [TimelineEntryType.CREATED]
    assert isinstance(env.published[0], EventCreated)


def test_create_conflict_is_returned_not_written(env):
    env.service.create_event(OWNER, _draft(title="Existing meeting"))

    result = env.service.create_event(
        OWNER,
        _draft(
            title="Clash",
            start=datetime(2026, 3, 5, 14, 30),
            end=datetime(2026, 3, 5, 14, 45),
        ),
    )

    assert not result.ok
    assert result.event is None
    assert result.conflict.conflicting_title == "Existing meeting"
    assert len(env.event_repo.list_for_owner(OWNER)) == 1
    rejected = [p for p in env.published if isinstance(p, ConflictRejected)]
    assert rejected[0].operation == "create"


def test_back_to_back_create_is_allowed(env):
    env.service.create_event(OWNER, _draft())
    result = env.service.create_event(
        OWNER,
        _draft(start=datetime(2026, 3, 5, 15, 0), end=datetime(2026, 3, 5, 16, 0)),
    )

    assert result.ok


def test_owners_do_not_conflict_with_each_other(env):
    env.service.create_event("bob", _draft())

    assert env.service.create_event(OWNER, _draft()).ok


def test_concurrent_creates_admit_exactly_one(env):
    workers = 8
    barrier = threading.Barrier(workers)
    results = []

    def create():
        barrier.wait()
        results.append(env.service.create_event(OWNER, _draft()))

    threads = [threading.Thread(target=create) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == workers
    assert sum(1 for r in results if r.ok) == 1
    assert len(env.event_repo.list_for_owner(OWNER)) == 1


def test_owner_locks_are_released(env):
    for owner in ("alice", "bob", "carol"):
        env.service.create_event(owner, _draft())
    gc.collect()

    assert len(env.service._locks) == 0


def test_recurring_create_blocked_by_later_single_event(env):
    env.service.create_event(
        OWNER,
        _draft(title="Offsite", start=datetime(2026, 4, 6, 9, 0), end=datetime(2026, 4, 6, 17, 0)),
    )

    result = env.service.create_event(
        OWNER,
        _draft(
            title="Monday standup",
            start=datetime(2026, 3, 2, 9, 30),
            end=datetime(2026, 3, 2, 9, 45),
            recurrence=RecurrenceRule(frequency=Frequency.WEEKLY),
        ),
    )

    assert not result.ok
    assert result.conflict.candidate_occurrence_start == datetime(2026, 4, 6, 9, 30)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def test_update_excludes_own_prior_state(env):
    created = env.service.create_event(OWNER, _draft()).event

    result = env.service.update_event(
        OWNER,
        created.id,
        EventPatch(start=datetime(2026, 3, 5, 14, 30), end=datetime(2026, 3, 5, 15, 30)),
    )

    assert result.ok
    assert result.event.id == created.id
    assert result.event.title == created.title
    assert env.event_repo.get(OWNER, created.id).start == datetime(2026, 3, 5, 14, 30)
    entries = env.timeline_repo.list_for_event(OWNER, created.id)
    assert entries[-1].type == TimelineEntryType.UPDATED
    assert entries[-1].payload["changed_fields"] == ["end", "start"]


def test_update_conflict_keeps_stored_state(env):
    env.service.create_event(OWNER, _draft(title="Lunch", start=datetime(2026, 3, 5, 12, 0), end=datetime(2026, 3, 5, 13, 0)))
    created = env.service.create_event(OWNER, _draft()).event

    result = env.service.update_event(
        OWNER,
        created.id,
        EventPatch(start=datetime(2026, 3, 5, 12, 30)),
    )

    assert not result.ok
    assert result.conflict.conflicting_title == "Lunch"
    assert env.event_repo.get(OWNER, created.id).start == datetime(2026, 3, 5, 14, 0)
    assert TimelineEntryType.CONFLICT_REJECTED in _timeline_types(env, created.id)


def test_update_through_occurrence_id_edits_source(env):
    series = env.service.create_event(
        OWNER,
        _draft(
            title="Standup",
            start=datetime(2026, 3, 2, 9, 0),
            end=datetime(2026, 3, 2, 9, 15),
            recurrence=RecurrenceRule(frequency=Frequency.DAILY),
        ),
    ).event
    occ_id = occurrence_id(series.id, datetime(2026, 3, 4, 9, 0))

    result = env.service.update_event(OWNER, occ_id, EventPatch(title="Daily standup"))

    assert result.ok
    assert result.event.id == series.id
    assert env.event_repo.get(OWNER, series.id).title == "Daily standup"
    assert len(env.event_repo.list_for_owner(OWNER)) == 1


def test_update_unknown_event(env):
    with pytest.raises(EventNotFoundError):
        env.service.update_event(OWNER, "missing", EventPatch(title="x"))


def test_update_rejects_inverted_interval(env):
    created = env.service.create_event(OWNER, _draft()).event

    with pytest.raises(ValidationError):
        env.service.update_event(OWNER, created.id, EventPatch(end=datetime(2026, 3, 5, 13, 0)))


def test_update_rejects_series_longer_than_its_gap(env):
    created = env.service.create_event(
        OWNER,
        _draft(start=datetime(2026, 3, 5, 14, 0), end=datetime(2026, 3, 6, 15, 0)),
    ).event

    with pytest.raises(ValidationError):
        env.service.update_event(
            OWNER,
            created.id,
            EventPatch(recurrence=RecurrenceRule(frequency=Frequency.DAILY)),
        )
    assert not env.event_repo.get(OWNER, created.id).is_recurring


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def test_delete_removes_event(env):
    created = env.service.create_event(OWNER, _draft()).event

    deleted = env.service.delete_event(OWNER, created.id)

    assert deleted.id == created.id
    assert env.event_repo.list_for_owner(OWNER) == []
    assert _timeline_types(env, created.id)[-1] == TimelineEntryType.DELETED
    with pytest.raises(EventNotFoundError):
        env.service.delete_event(OWNER, created.id)


# ---------------------------------------------------------------------------
# Move
# ---------------------------------------------------------------------------


def test_move_collapses_series(env):
    series = env.service.create_event(
        OWNER,
        _draft(
            title="Gym",
            start=datetime(2026, 3, 2, 18, 0),
            end=datetime(2026, 3, 2, 19, 0),
            recurrence=RecurrenceRule(frequency=Frequency.WEEKLY, by_weekday=[1, 3]),
        ),
    ).event
    occ_id = occurrence_id(series.id, datetime(2026, 3, 4, 18, 0))

    result = env.service.move_event(OWNER, occ_id, date(2026, 3, 7))

    assert result.ok
    assert result.recurrence_removed is True
    stored = env.event_repo.get(OWNER, series.id)
    assert stored.recurrence.frequency == Frequency.NONE
    assert stored.start == datetime(2026, 3, 7, 18, 0)
    assert stored.end == datetime(2026, 3, 7, 19, 0)
    moved_entries = [
        e for e in env.timeline_repo.list_for_event(OWNER, series.id)
        if e.type == TimelineEntryType.MOVED
    ]
    assert moved_entries[0].payload == {"target_day": "2026-03-07", "recurrence_removed": True}


def test_move_conflict_lists_titles(env):
    env.service.create_event(
        OWNER,
        _draft(title="Dentist", start=datetime(2026, 3, 9, 14, 30), end=datetime(2026, 3, 9, 15, 30)),
    )
    created = env.service.create_event(OWNER, _draft(title="Review")).event

    result = env.service.move_event(OWNER, created.id, date(2026, 3, 9))

    assert not result.ok
    assert result.conflicting_titles == ["Dentist"]
    assert env.event_repo.get(OWNER, created.id).start == datetime(2026, 3, 5, 14, 0)
    assert TimelineEntryType.CONFLICT_REJECTED in _timeline_types(env, created.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_list_occurrences_merges_and_sorts(env):
    env.service.create_event(
        OWNER,
        _draft(
            title="Standup",
            start=datetime(2026, 3, 2, 9, 0),
            end=datetime(2026, 3, 2, 9, 15),
            recurrence=RecurrenceRule(frequency=Frequency.DAILY),
        ),
    )
    env.service.create_event(
        OWNER,
        _draft(title="Dentist", description="Downtown Dental", start=datetime(2026, 3, 3, 8, 0), end=datetime(2026, 3, 3, 8, 30)),
    )

    occurrences = env.service.list_occurrences(
        OWNER, datetime(2026, 3, 2), datetime(2026, 3, 3, 23, 59)
    )

    assert [(o.title, o.start) for o in occurrences] == [
        ("Standup", datetime(2026, 3, 2, 9, 0)),
        ("Dentist", datetime(2026, 3, 3, 8, 0)),
        ("Standup", datetime(2026, 3, 3, 9, 0)),
    ]

    searched = env.service.list_occurrences(
        OWNER, datetime(2026, 3, 2), datetime(2026, 3, 3, 23, 59), query="downtown"
    )
    assert [o.title for o in searched] == ["Dentist"]


def test_occurrences_on_day_and_month_grid(env):
    env.service.create_event(
        OWNER,
        _draft(
            title="Rent",
            start=datetime(2026, 1, 31, 8, 0),
            end=datetime(2026, 1, 31, 8, 15),
            recurrence=RecurrenceRule(frequency=Frequency.MONTHLY, by_month_day=31),
        ),
    )

    assert [o.title for o in env.service.occurrences_on(OWNER, date(2026, 3, 31))] == ["Rent"]
    assert env.service.occurrences_on(OWNER, date(2026, 3, 30)) == []
    assert env.service.month_grid(OWNER, 2026, 2) == {}
    grid = env.service.month_grid(OWNER, 2026, 3)
    assert list(grid) == ["2026-03-31"]


def test_seeded_repository_is_usable():
    repo = create_event_repository(owner_id="demo", now=datetime(2026, 3, 2, 7, 0))
    service = CalendarService(event_repo=repo, bus=EventBus())

    titles = {o.title for o in service.occurrences_on("demo", date(2026, 3, 3))}

    assert "Team standup" in titles
    assert "Dentist appointment" in titles


def test_bus_delivers_in_registration_order():
    bus = EventBus()
    calls = []
    bus.subscribe(EventCreated, lambda e: calls.append(("first", e.event_id)))
    bus.subscribe(EventCreated, lambda e: calls.append(("second", e.event_id)))

    assert bus.publish(EventCreated(owner_id=OWNER, event_id="e1")) == 2
    moved = EventMoved(
        owner_id=OWNER, event_id="e1", target_day="2026-03-05", recurrence_removed=False
    )
    assert bus.publish(moved) == 0
    assert calls == [("first", "e1"), ("second", "e1")]

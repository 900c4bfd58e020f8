"""Calendar operations for one owner at a time: conflict-gated writes and
occurrence queries over the event store."""

from __future__ import annotations

import logging
import threading
import weakref
from collections import defaultdict
from datetime import date, datetime

from eventhorizon.domain.bus import EventBus
from eventhorizon.domain.events import (
    ConflictRejected,
    EventCreated,
    EventDeleted,
    EventMoved,
    EventUpdated,
)
from eventhorizon.domain.models import (
    ConflictDescription,
    EventDefinition,
    EventDraft,
    EventNotFoundError,
    EventPatch,
    MoveResult,
    MutationResult,
    Occurrence,
)
from eventhorizon.repos.memory import EventRepository
from eventhorizon.services.conflicts import (
    find_conflict,
    find_relocation_conflicts,
    relocate,
)
from eventhorizon.services.intervals import day_window, month_window
from eventhorizon.services.recurrence import expand, resolve_source_id

logger = logging.getLogger(__name__)


class CalendarService:
    """Create, edit, move and query an owner's events.

    The conflict check and the write that follows it run under a per-owner
    lock, so two concurrent writes for the same owner cannot both pass the
    check against a stale event set.
    """

    def __init__(self, event_repo: EventRepository, bus: EventBus) -> None:
        self.event_repo = event_repo
        self.bus = bus
        # Entries vanish once no caller holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = self._locks[owner_id] = threading.Lock()
            return lock

    def _require(self, owner_id: str, event_id: str) -> EventDefinition:
        stored = self.event_repo.get(owner_id, resolve_source_id(event_id))
        if stored is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return stored

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_event(self, owner_id: str, event_id: str) -> EventDefinition:
        return self._require(owner_id, event_id)

    def list_events(self, owner_id: str) -> list[EventDefinition]:
        return sorted(self.event_repo.list_for_owner(owner_id), key=lambda e: e.start)

    def check_conflict(
        self,
        owner_id: str,
        candidate: EventDefinition,
        exclude_id: str | None = None,
    ) -> ConflictDescription | None:
        """Dry-run conflict check; nothing is written."""
        if exclude_id is not None:
            exclude_id = resolve_source_id(exclude_id)
        return find_conflict(
            candidate, self.event_repo.list_for_owner(owner_id), exclude_id
        )

    def list_occurrences(
        self,
        owner_id: str,
        window_start: datetime,
        window_end: datetime,
        query: str | None = None,
    ) -> list[Occurrence]:
        """All of the owner's occurrences touching the window, by start time.

        *query* keeps only events whose title or description contains it,
        case-insensitively.
        """
        events = self.event_repo.list_for_owner(owner_id)
        if query:
            events = [e for e in events if _matches(e, query)]

        occurrences: list[Occurrence] = []
        for event in events:
            occurrences.extend(expand(event, window_start, window_end))
        occurrences.sort(key=lambda o: (o.start, o.title))
        return occurrences

    def occurrences_on(self, owner_id: str, day: date) -> list[Occurrence]:
        day_start, day_end = day_window(day)
        return self.list_occurrences(owner_id, day_start, day_end)

    def month_grid(
        self, owner_id: str, year: int, month: int, query: str | None = None
    ) -> dict[str, list[Occurrence]]:
        """Occurrences of one month keyed by the ISO date of their start."""
        window_start, window_end = month_window(year, month)
        grid: dict[str, list[Occurrence]] = defaultdict(list)
        for occ in self.list_occurrences(owner_id, window_start, window_end, query):
            grid[occ.start.date().isoformat()].append(occ)
        return dict(grid)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_event(self, owner_id: str, draft: EventDraft) -> MutationResult:
        candidate = EventDefinition(owner_id=owner_id, **draft.model_dump())

        with self._owner_lock(owner_id):
            conflict = find_conflict(
                candidate, self.event_repo.list_for_owner(owner_id)
            )
            if conflict is not None:
                self._reject(owner_id, None, "create", conflict)
                return MutationResult(conflict=conflict)
            self.event_repo.add(candidate)

        logger.info("Created event %s for %s", candidate.id, owner_id)
        self.bus.publish(EventCreated(owner_id=owner_id, event_id=candidate.id))
        return MutationResult(event=candidate)

    def update_event(
        self, owner_id: str, event_id: str, patch: EventPatch
    ) -> MutationResult:
        """Apply *patch* to the stored definition behind *event_id*.

        *event_id* may be an occurrence id; the edit always lands on the
        source definition. Raises ``EventNotFoundError`` for unknown ids and
        a pydantic ``ValidationError`` if the merged state is malformed.
        """
        changes = patch.model_dump(exclude_unset=True)

        with self._owner_lock(owner_id):
            stored = self._require(owner_id, event_id)
            merged = stored.model_dump()
            merged.update(changes)
            candidate = EventDefinition.model_validate(merged)

            conflict = find_conflict(
                candidate,
                self.event_repo.list_for_owner(owner_id),
                exclude_id=stored.id,
            )
            if conflict is not None:
                self._reject(owner_id, stored.id, "update", conflict)
                return MutationResult(conflict=conflict)
            self.event_repo.add(candidate)

        logger.info("Updated event %s for %s: %s", stored.id, owner_id, sorted(changes))
        self.bus.publish(
            EventUpdated(
                owner_id=owner_id, event_id=stored.id, changed_fields=sorted(changes)
            )
        )
        return MutationResult(event=candidate)

    def delete_event(self, owner_id: str, event_id: str) -> EventDefinition:
        with self._owner_lock(owner_id):
            stored = self._require(owner_id, event_id)
            self.event_repo.delete(owner_id, stored.id)

        logger.info("Deleted event %s for %s", stored.id, owner_id)
        self.bus.publish(
            EventDeleted(owner_id=owner_id, event_id=stored.id, title=stored.title)
        )
        return stored

    def move_event(self, owner_id: str, event_id: str, target_day: date) -> MoveResult:
        """Relocate an event (or the series behind an occurrence) to *target_day*.

        Only the target day is scanned for overlaps. A successful move keeps
        the time of day and duration and always collapses a series into a
        single, non-recurring event.
        """
        with self._owner_lock(owner_id):
            stored = self._require(owner_id, event_id)
            conflicting = find_relocation_conflicts(
                stored, target_day, self.event_repo.list_for_owner(owner_id)
            )
            if conflicting:
                titles = [e.title for e in conflicting]
                message = (
                    f'"{stored.title}" conflicts with: {", ".join(titles)}. '
                    "Event not moved."
                )
                logger.info("Move of %s to %s rejected: %s", stored.id, target_day, titles)
                self.bus.publish(
                    ConflictRejected(
                        owner_id=owner_id,
                        event_id=stored.id,
                        operation="move",
                        message=message,
                        conflicting_event_ids=[e.id for e in conflicting],
                    )
                )
                return MoveResult(conflicting_titles=titles)

            moved = relocate(stored, target_day)
            self.event_repo.add(moved)

        logger.info("Moved event %s to %s", stored.id, target_day.isoformat())
        self.bus.publish(
            EventMoved(
                owner_id=owner_id,
                event_id=moved.id,
                target_day=target_day.isoformat(),
                recurrence_removed=stored.is_recurring,
            )
        )
        return MoveResult(event=moved, recurrence_removed=stored.is_recurring)

    def _reject(
        self,
        owner_id: str,
        event_id: str | None,
        operation: str,
        conflict: ConflictDescription,
    ) -> None:
        logger.info("Rejected %s for %s: %s", operation, owner_id, conflict.message)
        self.bus.publish(
            ConflictRejected(
                owner_id=owner_id,
                event_id=event_id,
                operation=operation,
                message=conflict.message,
                conflicting_event_ids=[conflict.conflicting_event_id],
            )
        )


def _matches(event: EventDefinition, query: str) -> bool:
    needle = query.lower()
    return needle in event.title.lower() or needle in (event.description or "").lower()

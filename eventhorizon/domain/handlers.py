"""Domain event handlers: wired up at application startup."""

from __future__ import annotations

from eventhorizon.domain.bus import EventBus
from eventhorizon.domain.events import (
    ConflictRejected,
    EventCreated,
    EventDeleted,
    EventMoved,
    EventUpdated,
)
from eventhorizon.domain.models import TimelineEntry, TimelineEntryType
from eventhorizon.repos.memory import EventRepository, TimelineRepository


class HandlerRegistry:
    """Wires domain-event handlers to the bus and records the activity timeline."""

    def __init__(
        self,
        bus: EventBus,
        event_repo: EventRepository,
        timeline_repo: TimelineRepository,
    ) -> None:
        self.bus = bus
        self.event_repo = event_repo
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventUpdated, self.on_event_updated)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)
        self.bus.subscribe(EventMoved, self.on_event_moved)
        self.bus.subscribe(ConflictRejected, self.on_conflict_rejected)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        stored = self.event_repo.get(event.owner_id, event.event_id)
        if stored is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                owner_id=event.owner_id,
                type=TimelineEntryType.CREATED,
                payload={
                    "title": stored.title,
                    "recurring": stored.is_recurring,
                },
            )
        )

    def on_event_updated(self, event: EventUpdated) -> None:
        if self.event_repo.get(event.owner_id, event.event_id) is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                owner_id=event.owner_id,
                type=TimelineEntryType.UPDATED,
                payload={"changed_fields": event.changed_fields},
            )
        )

    def on_event_deleted(self, event: EventDeleted) -> None:
        # The definition is already gone; the entry keeps its title for display.
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                owner_id=event.owner_id,
                type=TimelineEntryType.DELETED,
                payload={"title": event.title},
            )
        )

    def on_event_moved(self, event: EventMoved) -> None:
        if self.event_repo.get(event.owner_id, event.event_id) is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                owner_id=event.owner_id,
                type=TimelineEntryType.MOVED,
                payload={
                    "target_day": event.target_day,
                    "recurrence_removed": event.recurrence_removed,
                },
            )
        )

    def on_conflict_rejected(self, event: ConflictRejected) -> None:
        # Rejected creates have no id yet and nothing to attach the entry to.
        if event.event_id is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                owner_id=event.owner_id,
                type=TimelineEntryType.CONFLICT_REJECTED,
                payload={
                    "operation": event.operation,
                    "message": event.message,
                    "conflicting_event_ids": event.conflicting_event_ids,
                },
            )
        )

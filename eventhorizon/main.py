"""FastAPI application: entry point for the calendar scheduling service."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from eventhorizon.config import get_settings
from eventhorizon.domain.bus import EventBus
from eventhorizon.domain.handlers import HandlerRegistry
from eventhorizon.domain.models import (
    AgendaRequest,
    AgendaResponse,
    AvailabilityRequest,
    AvailabilitySuggestion,
    ConflictCheckRequest,
    ConflictCheckResponse,
    DetailsRequest,
    EventDefinition,
    EventDetails,
    EventDraft,
    EventNotFoundError,
    EventPatch,
    MalformedEventError,
    MoveRequest,
    Occurrence,
    TimelineEntry,
)
from eventhorizon.repos.memory import (
    EventRepository,
    TimelineRepository,
    create_event_repository,
)
from eventhorizon.services import assistant
from eventhorizon.services.calendar import CalendarService

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
if settings.SEED_DEMO_DATA:
    event_repo = create_event_repository()
    logger.info("Seeded demo calendar for owner 'demo'")
else:
    event_repo = EventRepository()
timeline_repo = TimelineRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    event_repo=event_repo,
    timeline_repo=timeline_repo,
)
calendar_service = CalendarService(event_repo=event_repo, bus=event_bus)


# ── Error mapping ─────────────────────────────────────────────────────


@app.exception_handler(EventNotFoundError)
def _not_found(request: Request, exc: EventNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MalformedEventError)
def _malformed(request: Request, exc: MalformedEventError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.errors(
                include_url=False, include_context=False, include_input=False
            )
        },
    )


@app.exception_handler(assistant.AssistantError)
def _assistant_failed(request: Request, exc: assistant.AssistantError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def current_owner(x_user_id: str | None = Header(default=None)) -> str:
    """Opaque owner id supplied by the authentication layer."""
    owner_id = (x_user_id or "").strip().lower()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return owner_id


def _conflict_response(detail: dict) -> HTTPException:
    return HTTPException(status_code=409, detail=detail)


def _dry_run_candidate(payload: ConflictCheckRequest, owner_id: str) -> EventDefinition:
    # An edit keeps the id of the event it replaces; a new draft gets a fresh one.
    fields = payload.candidate.model_dump()
    if payload.exclude_id:
        fields["id"] = payload.exclude_id
    return EventDefinition(owner_id=owner_id, **fields)


# ── Events ────────────────────────────────────────────────────────────


@app.post("/events", response_model=EventDefinition, status_code=201)
def create_event(
    payload: EventDraft, owner_id: str = Depends(current_owner)
) -> EventDefinition:
    """Store a new event unless it collides with an existing occurrence."""
    result = calendar_service.create_event(owner_id, payload)
    if not result.ok:
        raise _conflict_response(
            {
                "message": result.conflict.message,
                "conflict": result.conflict.model_dump(mode="json"),
            }
        )
    return result.event


@app.get("/events", response_model=list[EventDefinition])
def list_events(owner_id: str = Depends(current_owner)) -> list[EventDefinition]:
    """Return all stored definitions of the owner."""
    return calendar_service.list_events(owner_id)


@app.get("/events/{event_id}", response_model=EventDefinition)
def get_event(event_id: str, owner_id: str = Depends(current_owner)) -> EventDefinition:
    """Return a definition by id; occurrence ids resolve to their series."""
    return calendar_service.get_event(owner_id, event_id)


@app.patch("/events/{event_id}", response_model=EventDefinition)
def update_event(
    event_id: str, payload: EventPatch, owner_id: str = Depends(current_owner)
) -> EventDefinition:
    result = calendar_service.update_event(owner_id, event_id, payload)
    if not result.ok:
        raise _conflict_response(
            {
                "message": result.conflict.message,
                "conflict": result.conflict.model_dump(mode="json"),
            }
        )
    return result.event


@app.delete("/events/{event_id}", status_code=200)
def delete_event(event_id: str, owner_id: str = Depends(current_owner)) -> dict:
    deleted = calendar_service.delete_event(owner_id, event_id)
    return {"status": "deleted", "id": deleted.id}


@app.post("/events/{event_id}/move", response_model=EventDefinition)
def move_event(
    event_id: str, payload: MoveRequest, owner_id: str = Depends(current_owner)
) -> EventDefinition:
    """Move an event to another day, collapsing any recurrence."""
    result = calendar_service.move_event(owner_id, event_id, payload.target_day)
    if not result.ok:
        raise _conflict_response(
            {
                "message": f"Conflicts with: {', '.join(result.conflicting_titles)}",
                "conflicting_titles": result.conflicting_titles,
            }
        )
    return result.event


@app.get("/events/{event_id}/timeline", response_model=list[TimelineEntry])
def event_timeline(
    event_id: str, owner_id: str = Depends(current_owner)
) -> list[TimelineEntry]:
    return timeline_repo.list_for_event(owner_id, event_id)


# ── Occurrences ───────────────────────────────────────────────────────


@app.get("/occurrences", response_model=list[Occurrence])
def list_occurrences(
    start: datetime,
    end: datetime,
    q: str | None = None,
    owner_id: str = Depends(current_owner),
) -> list[Occurrence]:
    """Return every occurrence touching ``[start, end]``."""
    start, end = start.replace(tzinfo=None), end.replace(tzinfo=None)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return calendar_service.list_occurrences(owner_id, start, end, q)


@app.get("/days/{day}", response_model=list[Occurrence])
def occurrences_on_day(day: date, owner_id: str = Depends(current_owner)) -> list[Occurrence]:
    return calendar_service.occurrences_on(owner_id, day)


@app.get("/months/{year}/{month}", response_model=dict[str, list[Occurrence]])
def month_grid(
    year: int,
    month: int,
    q: str | None = None,
    owner_id: str = Depends(current_owner),
) -> dict[str, list[Occurrence]]:
    """Return the month's occurrences grouped by ISO date."""
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be 1..12")
    return calendar_service.month_grid(owner_id, year, month, q)


@app.post("/conflicts/check", response_model=ConflictCheckResponse)
def check_conflict(
    payload: ConflictCheckRequest, owner_id: str = Depends(current_owner)
) -> ConflictCheckResponse:
    """Report whether a candidate would conflict, without writing anything."""
    candidate = _dry_run_candidate(payload, owner_id)
    conflict = calendar_service.check_conflict(owner_id, candidate, payload.exclude_id)
    if conflict is None:
        return ConflictCheckResponse(has_conflict=False)
    return ConflictCheckResponse(
        has_conflict=True, conflict=conflict, message=conflict.message
    )


# ── Assistant ─────────────────────────────────────────────────────────


@app.post("/assistant/details", response_model=EventDetails)
def extract_details(
    payload: DetailsRequest, owner_id: str = Depends(current_owner)
) -> EventDetails:
    return assistant.extract_event_details(payload.description)


@app.post("/assistant/agenda", response_model=AgendaResponse)
def suggest_agenda(
    payload: AgendaRequest, owner_id: str = Depends(current_owner)
) -> AgendaResponse:
    return AgendaResponse(suggested_agenda=assistant.suggest_meeting_agenda(payload.title))


@app.post("/assistant/availability", response_model=AvailabilitySuggestion)
def find_availability(
    payload: AvailabilityRequest, owner_id: str = Depends(current_owner)
) -> AvailabilitySuggestion:
    """Ask for common slots, keeping only those free in the owner's calendar."""
    suggestion = assistant.find_common_availability(
        payload.attendees, payload.title, payload.description
    )
    suggestion.free_time_slots = assistant.filter_free_slots(
        suggestion.suggested_time_slots,
        timedelta(minutes=payload.duration_minutes),
        calendar_service.list_events(owner_id),
        owner_id,
        datetime.now(),
    )
    return suggestion

"""Service for the text-generation assistant: detail extraction, agenda
suggestions and availability hints.

Nothing here changes scheduling semantics. The results only ever fill the
descriptive ``ai_*`` fields of an event or propose slots that the caller
still has to create through the normal conflict-gated path.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

import dateparser

from eventhorizon.config import get_settings
from eventhorizon.domain.models import (
    AvailabilitySuggestion,
    EventDefinition,
    EventDetails,
)
from eventhorizon.services.conflicts import find_conflict

logger = logging.getLogger(__name__)


class AssistantError(RuntimeError):
    """Raised when the text-generation service fails or answers nonsense."""


_DETAILS_PROMPT = """\
You are an AI assistant tasked with extracting key details from event \
descriptions. Given an event description, return a JSON object:

{
  "dates": ["<each date mentioned, verbatim>"],
  "locations": ["<each location mentioned>"],
  "attendees": ["<each attendee mentioned>"],
  "agenda_suggestions": ["<agenda item>"]
}

Rules:
- Only suggest agenda items if the event is a meeting or conference; \
otherwise return an empty list.
- Use empty lists for anything not present in the text.
- Respond with ONLY the JSON object, no other text.
"""

_AGENDA_PROMPT = """\
You are an AI assistant designed to suggest meeting agendas based on the \
meeting title. Return a JSON object {"suggested_agenda": "<agenda>"} where \
the agenda is a short list of bullet points, one per line, each starting \
with "- ". Respond with ONLY the JSON object.
"""

_AVAILABILITY_PROMPT = """\
You are an AI assistant tasked with finding common availability for a \
meeting among a group of attendees. Suggest a few possible time slots that \
would work for everyone, considering publicly known or previously \
user-defined free slots. Return a JSON object:

{
  "suggested_time_slots": ["<slot start as a date and time, e.g. 'Tuesday 10am'>"],
  "summary": "<brief summary of your reasoning and any limitations>"
}

Respond with ONLY the JSON object, no other text.
"""


def _complete_json(system_prompt: str, user_content: str) -> dict:
    """Call OpenAI and decode its JSON answer."""
    from openai import OpenAI, OpenAIError

    settings = get_settings()
    try:
        client = OpenAI(api_key=settings.OPENAI_API_KEY)
        response = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=0,
            response_format={"type": "json_object"},
        )
        return json.loads(response.choices[0].message.content)
    except (OpenAIError, json.JSONDecodeError, TypeError) as exc:
        logger.warning("Assistant request failed: %s", exc)
        raise AssistantError("Text-generation service unavailable") from exc


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def extract_event_details(description: str) -> EventDetails:
    """Pull dates, locations, attendees and agenda ideas out of free text."""
    extracted = _complete_json(_DETAILS_PROMPT, f"Description: {description}")
    return EventDetails(
        dates=_string_list(extracted.get("dates")),
        locations=_string_list(extracted.get("locations")),
        attendees=_string_list(extracted.get("attendees")),
        agenda_suggestions=_string_list(extracted.get("agenda_suggestions")),
    )


def suggest_meeting_agenda(title: str) -> str:
    extracted = _complete_json(_AGENDA_PROMPT, f"Meeting title: {title}")
    agenda = extracted.get("suggested_agenda")
    if not isinstance(agenda, str) or not agenda.strip():
        raise AssistantError("No agenda suggested")
    return agenda.strip()


def find_common_availability(
    attendees: list[str],
    title: str,
    description: str,
) -> AvailabilitySuggestion:
    content = (
        f"Event Title: {title}\n"
        f"Event Description: {description}\n"
        f"Attendees: {', '.join(attendees)}"
    )
    extracted = _complete_json(_AVAILABILITY_PROMPT, content)
    return AvailabilitySuggestion(
        suggested_time_slots=_string_list(extracted.get("suggested_time_slots")),
        summary=str(extracted.get("summary") or ""),
    )


def _parse_slot(raw: str, now: datetime) -> datetime | None:
    """Parse a suggested slot string with dateparser, as a naive local time."""
    settings = {
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": now.replace(tzinfo=None),
        "RETURN_AS_TIMEZONE_AWARE": False,
    }
    result = dateparser.parse(raw, settings=settings)
    if result is None:
        return None
    return result.replace(tzinfo=None)


def filter_free_slots(
    slots: list[str],
    duration: timedelta,
    existing_events: list[EventDefinition],
    owner_id: str,
    now: datetime,
) -> list[datetime]:
    """Return the starts of suggested *slots* that fit the owner's calendar.

    Unparseable slots, slots in the past and slots that would conflict with
    an existing occurrence are dropped.
    """
    free: list[datetime] = []
    for raw in slots:
        start = _parse_slot(raw, now)
        if start is None or start < now:
            logger.debug("Dropping slot %r: not a future date/time", raw)
            continue
        probe = EventDefinition(
            owner_id=owner_id, title=raw, start=start, end=start + duration
        )
        if find_conflict(probe, existing_events) is not None:
            logger.debug("Dropping slot %r: conflicts with the calendar", raw)
            continue
        free.append(start)
    return sorted(set(free))

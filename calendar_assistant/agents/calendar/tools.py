from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ... import gcal
from ..tools import Tool, ToolSet, tool_set

CONFLICT_WARNING_TOOL = "conflictWarning"
CREATE_EVENT_TOOL = "createEvent"


class _ToolInput(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel,
                            populate_by_name=True,
                            extra="ignore")


class Reminder(_ToolInput):
  method: Literal["popup", "email"] = Field(
      description="Reminder method: 'popup' for notification or 'email' for email")
  minutes: int = Field(
      description="Minutes before the event to send the reminder (e.g., 10, 30, 60, 1440 for 1 day)")


class Guest(_ToolInput):
  email: str = Field(description="Email address of the guest")
  display_name: Optional[str] = Field(default=None, description="Display name of the guest")
  optional: Optional[bool] = Field(
      default=None, description="Whether this guest is optional (default: false)")


class ListEventsInput(_ToolInput):
  time_min: Optional[str] = Field(default=None,
                                  description="Start time in ISO format (defaults to now)")
  time_max: Optional[str] = Field(default=None, description="End time in ISO format (optional)")
  max_results: int = Field(default=10, ge=1, le=250,
                           description="Maximum number of events to return")


class CreateEventInput(_ToolInput):
  summary: str = Field(description="Title of the event")
  description: Optional[str] = Field(default=None, description="Description of the event")
  start_date_time: str = Field(
      description="Start time in ISO format (e.g., 2024-01-15T10:00:00-05:00)")
  end_date_time: str = Field(
      description="End time in ISO format (e.g., 2024-01-15T11:00:00-05:00)")
  location: Optional[str] = Field(default=None, description="Location of the event")
  time_zone: Optional[str] = Field(default=None, description="Time zone for the event")
  recurrence: Optional[List[str]] = Field(
      default=None,
      description="RRULE lines for a recurring event, e.g. ['RRULE:FREQ=WEEKLY;COUNT=10']")
  reminders: Optional[List[Reminder]] = Field(
      default=None,
      description="Custom reminders. If not provided, the calendar default is used.")
  guests: Optional[List[Guest]] = Field(
      default=None,
      description="Guests to invite. Each guest receives an email invitation.")


class UpdateEventInput(_ToolInput):
  event_id: str = Field(description="The ID of the event to update")
  summary: Optional[str] = Field(default=None, description="New title of the event")
  description: Optional[str] = Field(default=None, description="New description of the event")
  start_date_time: Optional[str] = Field(default=None, description="New start time in ISO format")
  end_date_time: Optional[str] = Field(default=None, description="New end time in ISO format")
  location: Optional[str] = Field(default=None, description="New location of the event")
  time_zone: Optional[str] = Field(default=None, description="Time zone for the event")
  reminders: Optional[List[Reminder]] = Field(default=None, description="Custom reminders")
  guests: Optional[List[Guest]] = Field(
      default=None,
      description="Guests for the event. This replaces all existing guests.")


class DeleteEventInput(_ToolInput):
  event_id: str = Field(description="The ID of the event to delete")


class SearchEventsInput(_ToolInput):
  query: str = Field(description="Search query to find events")
  max_results: int = Field(default=10, ge=1, le=250,
                           description="Maximum number of events to return")


class ConflictingEvent(_ToolInput):
  title: str
  start_time: str
  end_time: str


class ConflictWarningInput(_ToolInput):
  summary: str = Field(description="Brief description of the scheduling conflict")
  conflicting_events: List[ConflictingEvent] = Field(
      default_factory=list, description="Existing events that overlap the requested time")


def _attendees(guests: Optional[List[Guest]]) -> Optional[List[Dict[str, Any]]]:
  if guests is None:
    return None
  return [guest.model_dump(by_alias=True, exclude_none=True) for guest in guests]


def _reminders(reminders: Optional[List[Reminder]]) -> Optional[Dict[str, Any]]:
  if reminders is None:
    return None
  return {
      "useDefault": False,
      "overrides": [reminder.model_dump() for reminder in reminders],
  }


def _guest_emails(event: Dict[str, Any]) -> List[str]:
  return [a.get("email") for a in event.get("attendees") or [] if a.get("email")]


def build_calendar_tools(timezone_name: str) -> ToolSet:
  """Calendar tools bound to the request's time zone."""

  async def list_events(params: ListEventsInput) -> List[Dict[str, Any]]:
    events = await asyncio.to_thread(gcal.list_events, params.time_min,
                                     params.time_max, params.max_results)
    return [gcal.event_record(event) for event in events]

  async def create_event(params: CreateEventInput) -> Dict[str, Any]:
    tz = params.time_zone or timezone_name
    body: Dict[str, Any] = {
        "summary": params.summary,
        "start": {"dateTime": params.start_date_time, "timeZone": tz},
        "end": {"dateTime": params.end_date_time, "timeZone": tz},
    }
    if params.description:
      body["description"] = params.description
    if params.location:
      body["location"] = params.location
    if params.recurrence:
      body["recurrence"] = params.recurrence
    if params.reminders is not None:
      body["reminders"] = _reminders(params.reminders)
    if params.guests is not None:
      body["attendees"] = _attendees(params.guests)
    event = await asyncio.to_thread(gcal.create_event, body)
    return {
        "id": event.get("id"),
        "summary": event.get("summary"),
        "htmlLink": event.get("htmlLink"),
        "start": (event.get("start") or {}).get("dateTime"),
        "end": (event.get("end") or {}).get("dateTime"),
        "guests": _guest_emails(event),
    }

  async def update_event(params: UpdateEventInput) -> Dict[str, Any]:
    tz = params.time_zone or timezone_name
    body: Dict[str, Any] = {}
    if params.summary:
      body["summary"] = params.summary
    if params.description:
      body["description"] = params.description
    if params.location:
      body["location"] = params.location
    if params.start_date_time:
      body["start"] = {"dateTime": params.start_date_time, "timeZone": tz}
    if params.end_date_time:
      body["end"] = {"dateTime": params.end_date_time, "timeZone": tz}
    if params.reminders is not None:
      body["reminders"] = _reminders(params.reminders)
    if params.guests is not None:
      body["attendees"] = _attendees(params.guests)
    event = await asyncio.to_thread(gcal.update_event, params.event_id, body)
    return {
        "id": event.get("id"),
        "summary": event.get("summary"),
        "htmlLink": event.get("htmlLink"),
        "updated": True,
        "guests": _guest_emails(event),
    }

  async def delete_event(params: DeleteEventInput) -> Dict[str, Any]:
    await asyncio.to_thread(gcal.delete_event, params.event_id)
    return {"deleted": True, "eventId": params.event_id}

  async def search_events(params: SearchEventsInput) -> List[Dict[str, Any]]:
    events = await asyncio.to_thread(gcal.search_events, params.query,
                                     params.max_results)
    return [gcal.event_record(event) for event in events]

  return tool_set(
      Tool(name="listEvents",
           description="List upcoming calendar events. Use this to see what events are scheduled.",
           input_model=ListEventsInput,
           execute=list_events),
      Tool(name=CREATE_EVENT_TOOL,
           description=("Create a new calendar event. Use this to schedule meetings, "
                        "appointments, or reminders. Custom notification times go in "
                        "reminders and invitations in guests."),
           input_model=CreateEventInput,
           needs_approval=True,
           execute=create_event),
      Tool(name="updateEvent",
           description=("Update an existing calendar event by its ID. Reminders and "
                        "guests can be replaced too."),
           input_model=UpdateEventInput,
           needs_approval=True,
           execute=update_event),
      Tool(name="deleteEvent",
           description="Delete a calendar event by its ID.",
           input_model=DeleteEventInput,
           needs_approval=True,
           execute=delete_event),
      Tool(name="searchEvents",
           description="Search for calendar events by keyword. Use this to find specific events.",
           input_model=SearchEventsInput,
           execute=search_events),
      Tool(name=CONFLICT_WARNING_TOOL,
           description=("Warn the user that the requested time overlaps existing events. "
                        "The user answers with a decision such as create_anyway or "
                        "choose_different_time."),
           input_model=ConflictWarningInput),
  )


CALENDAR_TOOL_NAMES = frozenset(build_calendar_tools("UTC"))

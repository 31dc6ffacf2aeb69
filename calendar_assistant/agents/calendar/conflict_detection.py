"""
Scheduling conflict check run before the calendar agent answers a turn.

A fresh user request is analysed for an event-creation intent with a concrete
time window. The window is compared with the events already on the calendar
and, when something overlaps, the agent is told to raise a conflict warning
instead of creating the event. When the user has answered such a warning the
agent is told to go ahead with the time originally requested.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ... import gcal
from ...config import AGENT_CONFLICT_MODEL, DEFAULT_EVENT_DURATION_MINUTES
from ...utils import dumps_compact, now_iso_in_timezone, parse_timestamp, resolve_timezone
from ..llm_provider import get_agent_llm_settings, run_structured_completion
from ..messages import Message, extract_text, find_last_message, is_tool_part
from ..types import TurnKind
from .tools import CONFLICT_WARNING_TOOL, ConflictingEvent

logger = logging.getLogger(__name__)

_SETTINGS = get_agent_llm_settings("CONFLICT")
_EXISTING_EVENTS_LIMIT = 50

EVENT_INTENT_SYSTEM_PROMPT_TEMPLATE = """You decide whether a user message asks to CREATE or SCHEDULE a new calendar event.
Return JSON only. No markdown.
Current: {now_iso}. Timezone: {timezone}.
"""

EVENT_INTENT_DEVELOPER_PROMPT_TEMPLATE = """Input: user_text, now_iso, timezone.

Output: {{"is_create_event": bool, "proposed_start_time": str|null, "proposed_end_time": str|null}}

Rules:
1) is_create_event is true only for creating/scheduling a new event (not list, search, update or delete).
2) Times are ISO 8601 with the UTC offset of {timezone}. For Europe/Athens (UTC+2) "10am" is "2026-02-15T10:00:00+02:00", NOT "2026-02-15T10:00:00Z".
3) If only a start time is mentioned, the event lasts {duration} minutes.
4) If the times cannot be determined, set them to null.
"""


class EventIntent(BaseModel):
  model_config = ConfigDict(extra="ignore")

  is_create_event: bool = False
  proposed_start_time: Optional[str] = None
  proposed_end_time: Optional[str] = None


class ExistingEvent(BaseModel):
  title: str
  start: Optional[str] = None
  end: Optional[str] = None


class ConflictDecision(BaseModel):
  has_overlap: bool = False
  conflicting_events: List[ConflictingEvent] = Field(default_factory=list)
  summary: str = ""


class ConflictCheckResult(BaseModel):
  has_conflict: bool = False
  prompt_context: str = ""
  conflicting_events: List[ConflictingEvent] = Field(default_factory=list)


async def extract_event_intent(user_text: str, timezone_name: str) -> Optional[EventIntent]:
  """Ask the model whether ``user_text`` creates an event, and when.

  Both ends come back with the UTC offset of ``timezone_name``, and a start
  without an end is completed with the default event duration. Returns None when the model call produced nothing usable.
  """
  now_iso = now_iso_in_timezone(timezone_name)
  parsed, _raw, meta = await run_structured_completion(
      model=AGENT_CONFLICT_MODEL,
      system_prompt=EVENT_INTENT_SYSTEM_PROMPT_TEMPLATE.format(
          now_iso=now_iso, timezone=timezone_name),
      developer_prompt=EVENT_INTENT_DEVELOPER_PROMPT_TEMPLATE.format(
          timezone=timezone_name, duration=DEFAULT_EVENT_DURATION_MINUTES),
      user_payload={
          "user_text": user_text,
          "now_iso": now_iso,
          "timezone": timezone_name,
      },
      response_model=EventIntent,
      max_completion_tokens=800,
      reasoning_effort=_SETTINGS.get("reasoning_effort"),
      gemini_thinking_level=_SETTINGS.get("gemini_thinking_level"),
  )
  if parsed is None:
    reason = meta.get("llm_error") or meta.get("unavailable_reason") or "unparseable output"
    logger.warning("Event intent extraction failed: %s", reason)
    return None

  # Calendar queries need RFC 3339 with an offset; naive times are local.
  start = parse_timestamp(parsed.proposed_start_time, timezone_name)
  end = parse_timestamp(parsed.proposed_end_time, timezone_name)
  if start is None:
    end = None
  elif end is None:
    end = start + timedelta(minutes=DEFAULT_EVENT_DURATION_MINUTES)
  return parsed.model_copy(update={
      "proposed_start_time": start.isoformat() if start else None,
      "proposed_end_time": end.isoformat() if end else None,
  })


async def get_existing_events(proposed_start: str, proposed_end: str) -> List[ExistingEvent]:
  """Events on the calendar that intersect ``[proposed_start, proposed_end)``."""
  raw_events = await asyncio.to_thread(gcal.list_events, proposed_start,
                                       proposed_end, _EXISTING_EVENTS_LIMIT)
  existing = []
  for raw in raw_events:
    record = gcal.event_record(raw)
    existing.append(ExistingEvent(title=record.get("summary") or "Untitled Event",
                                  start=record.get("start"),
                                  end=record.get("end")))
  return existing


def events_overlap(existing_start: datetime, existing_end: datetime,
                   proposed_start: datetime, proposed_end: datetime) -> bool:
  # Half-open intervals: touching boundaries do not overlap.
  return existing_start < proposed_end and existing_end > proposed_start


def find_conflicting_events(existing_events: List[ExistingEvent],
                            proposed_start: datetime,
                            proposed_end: datetime,
                            timezone_name: str) -> List[ConflictingEvent]:
  conflicting = []
  for event in existing_events:
    start = parse_timestamp(event.start, timezone_name)
    end = parse_timestamp(event.end, timezone_name)
    if start is None or end is None:
      logger.debug("Skipping event with unreadable times: %s", event.title)
      continue
    if events_overlap(start, end, proposed_start, proposed_end):
      conflicting.append(ConflictingEvent(title=event.title,
                                          start_time=event.start,
                                          end_time=event.end))
  return conflicting


def _summarize_conflicts(conflicting: List[ConflictingEvent]) -> str:
  described = ", ".join(f"{event.title} ({event.start_time} to {event.end_time})"
                        for event in conflicting)
  noun = "event" if len(conflicting) == 1 else "events"
  return f"The requested time overlaps {len(conflicting)} existing {noun}: {described}."


def detect_conflict(existing_events: List[ExistingEvent],
                    proposed_start: str,
                    proposed_end: str,
                    timezone_name: str) -> ConflictDecision:
  """Adjudicate overlap between a proposed window and existing events."""
  start = parse_timestamp(proposed_start, timezone_name)
  end = parse_timestamp(proposed_end, timezone_name)
  if start is None or end is None:
    raise ValueError(f"Unreadable proposed window: {proposed_start!r} - {proposed_end!r}")
  conflicting = find_conflicting_events(existing_events, start, end, timezone_name)
  if not conflicting:
    return ConflictDecision()
  return ConflictDecision(has_overlap=True,
                          conflicting_events=conflicting,
                          summary=_summarize_conflicts(conflicting))


def is_responding_to_conflict_warning(messages: List[Message]) -> bool:
  last_assistant = find_last_message(messages, "assistant")
  if last_assistant is None:
    return False
  return any(is_tool_part(part) and part.tool_name == CONFLICT_WARNING_TOOL
             for part in last_assistant.parts)


def build_conflict_approved_context() -> str:
  return ("\n\nIMPORTANT: The user was just shown a scheduling conflict warning and has "
          "APPROVED creating the event anyway. You MUST now call createEvent with the exact "
          "time the user originally requested. Do NOT suggest alternative times, do NOT warn "
          "about conflicts again, do NOT refuse. The user has made their decision and you "
          "must respect it.")


def build_conflict_detected_context(summary: str,
                                    conflicting_events: List[ConflictingEvent]) -> str:
  events_json = dumps_compact([event.model_dump(by_alias=True) for event in conflicting_events])
  return ("\n\n<conflict-detected>\n"
          f"A scheduling conflict was found. You MUST call the {CONFLICT_WARNING_TOOL} tool "
          "with this data:\n"
          f"- summary: {dumps_compact(summary)}\n"
          f"- conflictingEvents: {events_json}\n"
          "Do NOT call createEvent. After the user responds to the conflict warning, "
          "follow their instructions.\n"
          "</conflict-detected>")


async def _check_fresh_request(user_text: str, timezone_name: str) -> ConflictCheckResult:
  intent = await extract_event_intent(user_text, timezone_name)
  logger.debug("Event intent: %s", intent)
  if intent is None or not intent.is_create_event:
    return ConflictCheckResult()
  if not intent.proposed_start_time or not intent.proposed_end_time:
    return ConflictCheckResult()

  existing = await get_existing_events(intent.proposed_start_time, intent.proposed_end_time)
  if not existing:
    return ConflictCheckResult()

  decision = detect_conflict(existing, intent.proposed_start_time,
                             intent.proposed_end_time, timezone_name)
  if not decision.has_overlap:
    return ConflictCheckResult()
  logger.info("Scheduling conflict with %d event(s)", len(decision.conflicting_events))
  return ConflictCheckResult(
      has_conflict=True,
      prompt_context=build_conflict_detected_context(decision.summary,
                                                     decision.conflicting_events),
      conflicting_events=decision.conflicting_events,
  )


async def check_for_scheduling_conflict(messages: List[Message],
                                        is_connected: bool,
                                        timezone_name: Optional[str] = None,
                                        *,
                                        turn_kind: Optional[TurnKind] = None) -> ConflictCheckResult:
  """Decide whether the terminal calendar agent must warn about a conflict.

  An answered conflict warning takes precedence over a new check. Failures
  while checking a fresh request are logged and reported as no conflict.
  """
  if is_responding_to_conflict_warning(messages):
    return ConflictCheckResult(prompt_context=build_conflict_approved_context())

  if turn_kind is None:
    turn_kind = "fresh" if messages and messages[-1].role == "user" else "continuation"
  if not is_connected or turn_kind != "fresh":
    return ConflictCheckResult()

  user_text = extract_text(find_last_message(messages, "user")).strip()
  if not user_text:
    return ConflictCheckResult()

  tz = resolve_timezone(timezone_name)
  try:
    return await _check_fresh_request(user_text, tz)
  except asyncio.CancelledError:
    raise
  except Exception:
    logger.exception("Conflict detection failed; continuing without a conflict check")
    return ConflictCheckResult()

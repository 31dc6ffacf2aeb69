from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from .config import (
    GCAL_SCOPES,
    GOOGLE_CALENDAR_ID,
    GOOGLE_TOKEN_FILE,
)
from .errors import CalendarNotConnected

logger = logging.getLogger(__name__)


# -------------------------
# Credentials
# -------------------------
def load_saved_token() -> Optional[Dict[str, Any]]:
  if not GOOGLE_TOKEN_FILE.exists():
    return None
  try:
    with GOOGLE_TOKEN_FILE.open("r", encoding="utf-8") as f:
      data = json.load(f)
  except (OSError, ValueError):
    logger.warning("Stored Google token at %s is unreadable", GOOGLE_TOKEN_FILE)
    return None
  return data if isinstance(data, dict) else None


def save_token(data: Dict[str, Any]) -> None:
  GOOGLE_TOKEN_FILE.parent.mkdir(parents=True, exist_ok=True)
  GOOGLE_TOKEN_FILE.write_text(json.dumps(data, ensure_ascii=False),
                               encoding="utf-8")


def is_authenticated() -> bool:
  """Connectivity check: a stored credential is present and readable.

  Loaded on every call; nothing is cached between turns.
  """
  return load_saved_token() is not None


def get_gcal_service():
  token_data = load_saved_token()
  if not token_data:
    raise CalendarNotConnected(
        "Google Calendar is not connected. No stored OAuth token was found.")

  creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)

  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
    save_token(json.loads(creds.to_json()))

  return build("calendar", "v3", credentials=creds, cache_discovery=False)


# -------------------------
# Event records
# -------------------------
def _event_time(obj: Any) -> Optional[str]:
  if not isinstance(obj, dict):
    return None
  return obj.get("dateTime") or obj.get("date")


def event_record(raw: Dict[str, Any]) -> Dict[str, Any]:
  return {
      "id": raw.get("id"),
      "summary": raw.get("summary"),
      "start": _event_time(raw.get("start")),
      "end": _event_time(raw.get("end")),
      "location": raw.get("location"),
      "description": raw.get("description"),
  }


def _now_rfc3339() -> str:
  return datetime.now(timezone.utc).isoformat()


# -------------------------
# Calendar operations
# -------------------------
def list_events(time_min: Optional[str] = None,
                time_max: Optional[str] = None,
                max_results: int = 10) -> List[Dict[str, Any]]:
  service = get_gcal_service()
  params: Dict[str, Any] = {
      "calendarId": GOOGLE_CALENDAR_ID,
      "timeMin": time_min or _now_rfc3339(),
      "maxResults": max_results,
      "singleEvents": True,
      "orderBy": "startTime",
  }
  if time_max:
    params["timeMax"] = time_max
  response = service.events().list(**params).execute()
  return response.get("items", []) or []


def search_events(query: str, max_results: int = 10) -> List[Dict[str, Any]]:
  service = get_gcal_service()
  response = service.events().list(
      calendarId=GOOGLE_CALENDAR_ID,
      q=query,
      maxResults=max_results,
      singleEvents=True,
      orderBy="startTime",
      timeMin=_now_rfc3339(),
  ).execute()
  return response.get("items", []) or []


def create_event(body: Dict[str, Any], send_updates: str = "all") -> Dict[str, Any]:
  service = get_gcal_service()
  return service.events().insert(calendarId=GOOGLE_CALENDAR_ID,
                                 body=body,
                                 sendUpdates=send_updates).execute()


def update_event(event_id: str,
                 body: Dict[str, Any],
                 send_updates: str = "all") -> Dict[str, Any]:
  if not event_id:
    raise ValueError("event_id is empty")
  service = get_gcal_service()
  return service.events().patch(calendarId=GOOGLE_CALENDAR_ID,
                                eventId=event_id,
                                body=body,
                                sendUpdates=send_updates).execute()


def delete_event(event_id: str) -> Dict[str, Any]:
  if not event_id:
    raise ValueError("event_id is empty")
  service = get_gcal_service()
  service.events().delete(calendarId=GOOGLE_CALENDAR_ID,
                          eventId=event_id).execute()
  return {"success": True}

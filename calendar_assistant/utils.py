from __future__ import annotations

import json
import logging
from datetime import date, datetime, time as dt_time
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import LLM_DEBUG, DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)


def _log_debug(message: str) -> None:
  if LLM_DEBUG:
    logger.debug(message)
    print(message, flush=True)


def resolve_timezone(requested_timezone: Optional[str] = None) -> str:
  for candidate in (requested_timezone, DEFAULT_TIMEZONE, "UTC"):
    if not isinstance(candidate, str):
      continue
    cleaned = candidate.strip()
    if not cleaned:
      continue
    try:
      ZoneInfo(cleaned)
      return cleaned
    except (ZoneInfoNotFoundError, ValueError):
      continue
  return "UTC"


def now_iso_in_timezone(timezone_name: str) -> str:
  return datetime.now(ZoneInfo(timezone_name)).isoformat(timespec="seconds")


def format_current_date(timezone_name: str) -> str:
  now = datetime.now(ZoneInfo(timezone_name))
  return (f"Current date: {now.strftime('%A, %B')} {now.day}, {now.year} "
          f"({now.date().isoformat()})\nUser's timezone: {timezone_name}")


def parse_timestamp(value: Any, timezone_name: str) -> Optional[datetime]:
  """Parse an ISO 8601 timestamp or date into an aware datetime.

  Date-only values (all-day events) resolve to local midnight. Naive values
  are interpreted in ``timezone_name``.
  """
  if isinstance(value, datetime):
    parsed = value
  elif isinstance(value, date):
    parsed = datetime.combine(value, dt_time.min)
  elif isinstance(value, str):
    raw = value.strip()
    if not raw:
      return None
    try:
      parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
      return None
  else:
    return None
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=ZoneInfo(timezone_name))
  return parsed


def dumps_compact(value: Any) -> str:
  return json.dumps(value, ensure_ascii=False, default=str)


def safe_json_loads(raw: Optional[str]) -> Dict[str, Any]:
  if not raw:
    return {}
  try:
    data = json.loads(raw)
  except (TypeError, ValueError):
    raise ValueError(f"Tool arguments are not valid JSON: {raw[:200]}") from None
  if not isinstance(data, dict):
    raise ValueError("Tool arguments must be a JSON object.")
  return data


def _format_sse_event(event_type: str, payload: Dict[str, Any]) -> str:
  body = json.dumps(payload, ensure_ascii=False, default=str)
  return f"event: {event_type}\ndata: {body}\n\n"

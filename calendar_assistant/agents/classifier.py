from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Sequence

from ..config import AGENT_CLASSIFIER_MODEL
from .llm_provider import get_agent_llm_settings, run_structured_completion
from .types import DEFAULT_ROUTE, ClassificationResult

logger = logging.getLogger(__name__)

_SETTINGS = get_agent_llm_settings("CLASSIFIER")

ROUTE_DESCRIPTIONS: Dict[str, str] = {
    "calendar_only": "Calendar operations: viewing, creating, updating, deleting, or searching calendar events and meetings",
    "gmail_only": "Email operations: reading, sending, searching, or managing emails",
    "gmail_then_cal": "Tasks that involve both email and calendar (e.g., \"check my emails and schedule meetings based on them\")",
    "general": "General conversation, questions, or help that don't involve calendar or email",
}

CLASSIFIER_SYSTEM_PROMPT = """You are an intent classifier for a calendar assistant.
Given a user message, decide which agent route should handle it.
Return JSON only. No markdown.
"""

CLASSIFIER_DEVELOPER_PROMPT_TEMPLATE = """Input: user_text.

Available routes:
{routes}

Output: {{"route": one of the routes above, "reasoning": short string}}

Rules:
1) If the message involves the calendar at all (scheduling, events, meetings, appointments), use "calendar_only".
2) If unsure, use "general".
"""


def _fallback(reasoning: str) -> ClassificationResult:
  return ClassificationResult(route=DEFAULT_ROUTE, reasoning=reasoning)


def _route_lines(available_routes: Sequence[str]) -> str:
  return "\n".join(f'- "{route}" - {ROUTE_DESCRIPTIONS.get(route, route)}'
                   for route in available_routes)


async def classify_intent(user_text: str,
                          available_routes: List[str]) -> ClassificationResult:
  """Pick the route for the latest user utterance.

  Single attempt. Empty text, a failed call or a route outside
  ``available_routes`` all resolve to the general route.
  """
  text = (user_text or "").strip()
  if not text:
    return _fallback("No user text to classify.")

  try:
    parsed, _raw, meta = await run_structured_completion(
        model=AGENT_CLASSIFIER_MODEL,
        system_prompt=CLASSIFIER_SYSTEM_PROMPT,
        developer_prompt=CLASSIFIER_DEVELOPER_PROMPT_TEMPLATE.format(
            routes=_route_lines(available_routes)),
        user_payload={"user_text": text},
        response_model=ClassificationResult,
        max_completion_tokens=600,
        reasoning_effort=_SETTINGS.get("reasoning_effort"),
        gemini_thinking_level=_SETTINGS.get("gemini_thinking_level"),
    )
  except asyncio.CancelledError:
    raise
  except Exception:
    logger.exception("Intent classification failed")
    return _fallback("Classification failed.")

  if parsed is None:
    logger.warning("Intent classification returned nothing usable: %s",
                   meta.get("llm_error") or meta.get("unavailable_reason") or "unparseable output")
    return _fallback("Fallback")
  if parsed.route not in available_routes:
    logger.warning("Classifier chose unavailable route %r", parsed.route)
    return _fallback(f"Route {parsed.route!r} is not available.")
  return parsed

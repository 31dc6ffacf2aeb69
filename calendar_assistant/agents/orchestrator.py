from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from ..config import AGENT_MODEL
from ..errors import AgentExecutionError
from ..utils import resolve_timezone
from .calendar.tools import CALENDAR_TOOL_NAMES
from .classifier import classify_intent
from .llm_provider import run_agent_completion, stream_agent_completion
from .messages import Message, extract_text, find_last_message, is_tool_part
from .registry import get_agent_pipeline, get_available_routes
from .types import DEFAULT_ROUTE, AgentConfig, AgentContext, TurnKind

logger = logging.getLogger(__name__)

CALENDAR_ROUTE = "calendar_only"


def infer_turn_kind(messages: List[Message]) -> TurnKind:
  if messages and messages[-1].role == "user":
    return "fresh"
  return "continuation"


def recover_route(messages: List[Message]) -> str:
  """Route of the pipeline a continuation turn belongs to.

  The route is read back from the last assistant message's metadata. Older
  messages without it fall back to the calendar route when they carry a
  calendar tool call.
  """
  last_assistant = find_last_message(messages, "assistant")
  if last_assistant is None:
    return DEFAULT_ROUTE
  route = (last_assistant.metadata or {}).get("route")
  if route in get_available_routes():
    return route
  if any(is_tool_part(part) and part.tool_name in CALENDAR_TOOL_NAMES
         for part in last_assistant.parts):
    return CALENDAR_ROUTE
  return DEFAULT_ROUTE


async def resolve_route(messages: List[Message], turn_kind: TurnKind) -> str:
  if turn_kind == "continuation":
    return recover_route(messages)
  user_text = extract_text(find_last_message(messages, "user"))
  result = await classify_intent(user_text, get_available_routes())
  logger.info("Classified route=%s reasoning=%s", result.route, result.reasoning)
  return result.route


class TurnStream:
  """Events of the terminal agent for one turn.

  Iterate it to drive the streaming run. Everything decided before streaming
  (route, pipeline, final context) is available as attributes.
  """

  def __init__(self, *, route: str, pipeline: List[AgentConfig],
               context: AgentContext, messages: List[Message],
               model: str = AGENT_MODEL) -> None:
    self.route = route
    self.pipeline = pipeline
    self.context = context
    self.messages = messages
    self.model = model
    self.message_id = f"msg_{uuid.uuid4().hex}"

  @property
  def agent(self) -> AgentConfig:
    return self.pipeline[-1]

  def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
    return self.events()

  async def events(self) -> AsyncIterator[Dict[str, Any]]:
    yield {
        "type": "start",
        "messageId": self.message_id,
        "messageMetadata": {"route": self.route, "agent": self.agent.id},
    }
    async for event in stream_agent_completion(
        system_prompt=self.agent.system_prompt(self.context),
        messages=self.messages,
        tools=self.agent.tools(self.context),
        tool_choice=self.context.force_tool,
        model=self.model):
      yield event


async def _run_headless(agent: AgentConfig, context: AgentContext,
                        messages: List[Message]) -> str:
  try:
    return await run_agent_completion(agent_id=agent.id,
                                      system_prompt=agent.system_prompt(context),
                                      messages=messages,
                                      tools=agent.tools(context))
  except (AgentExecutionError, asyncio.CancelledError):
    raise
  except Exception as exc:
    raise AgentExecutionError(agent.id, str(exc) or type(exc).__name__) from exc


async def process_turn(messages: List[Message],
                       is_connected: bool,
                       *,
                       turn_kind: Optional[TurnKind] = None,
                       timezone_name: Optional[str] = None) -> TurnStream:
  """Route a reduced transcript and prepare the terminal agent's stream.

  Non-terminal agents of a chained pipeline run to completion here, each
  handing its final text to the next one. Their failures raise
  AgentExecutionError before anything is streamed.
  """
  kind = turn_kind or infer_turn_kind(messages)
  route = await resolve_route(messages, kind)
  pipeline = get_agent_pipeline(route)
  logger.info("Turn kind=%s route=%s pipeline=%s", kind, route,
              [agent.id for agent in pipeline])

  context = AgentContext(is_connected=is_connected,
                         timezone=resolve_timezone(timezone_name),
                         turn_kind=kind)

  for agent in pipeline[:-1]:
    result_text = await _run_headless(agent, context, messages)
    logger.info("Headless agent %s produced %d chars", agent.id, len(result_text))
    context = context.with_prior_result(result_text)

  terminal = pipeline[-1]
  context = context.with_pre_process(await terminal.pre_process(context, messages))
  if context.force_tool:
    logger.info("Forcing tool %s for agent %s", context.force_tool, terminal.id)

  return TurnStream(route=route, pipeline=pipeline, context=context, messages=messages)

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type, TypeVar

from google import genai
from google.genai import types as genai_types
from pydantic import BaseModel, ValidationError

from ..config import AGENT_MODEL, GEMINI_API_KEY, MAX_TOOL_STEPS
from ..errors import AgentExecutionError
from ..llm import get_async_client
from ..utils import _log_debug, safe_json_loads
from .messages import (
    APPROVAL_RESPONDED,
    OUTPUT_AVAILABLE,
    OUTPUT_DENIED,
    OUTPUT_ERROR,
    Message,
    ToolCallPart,
    extract_text,
    is_terminal_state,
    is_text_part,
    is_tool_part,
)
from .tools import Tool, ToolSet

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_gemini_client: Any = None
_gemini_api_key_cached: str = ""
_GEMINI_DEFAULT_THINKING_LEVEL = "MINIMAL"
_DENIED_TOOL_MESSAGE = "The user rejected this tool call."


def _get_openai_reasoning_effort() -> str:
  """Get OpenAI reasoning_effort from environment or default to 'low'."""
  return os.getenv("OPENAI_REASONING_EFFORT", "low").strip() or "low"


def _get_openai_verbosity() -> str:
  """Get OpenAI verbosity from environment or default to 'low'."""
  return os.getenv("OPENAI_VERBOSITY", "low").strip() or "low"


def _print_raw_output(*,
                      kind: str,
                      provider: str,
                      model: str,
                      raw_output: str,
                      schema: Optional[str] = None) -> None:
  meta_parts = [
      f"kind={kind}",
      f"provider={provider}",
      f"model={model}",
  ]
  if schema:
    meta_parts.append(f"schema={schema}")
  _log_debug(f"[AGENT LLM RAW] {' '.join(meta_parts)}\n"
             f"{raw_output if raw_output else '(empty)'}\n[AGENT LLM RAW END]")


def _extract_message_text(content: Any) -> str:
  if isinstance(content, str):
    return content.strip()
  if isinstance(content, list):
    chunks = []
    for item in content:
      if isinstance(item, dict):
        text_val = item.get("text")
        if isinstance(text_val, str) and text_val.strip():
          chunks.append(text_val.strip())
      elif isinstance(item, str) and item.strip():
        chunks.append(item.strip())
    return " ".join(chunks).strip()
  return ""


def _provider_for_model(model: str) -> str:
  provider = os.getenv("AGENT_LLM_PROVIDER", "auto").strip().lower()
  if provider in ("openai", "gemini"):
    return provider
  model_name = str(model or "").strip().lower()
  if model_name.startswith("gemini") or model_name.startswith("models/gemini"):
    return "gemini"
  return "openai"


def _canonical_gemini_model(model: str) -> str:
  model_name = str(model or "").strip()
  if not model_name or not model_name.startswith(("gemini", "models/")):
    return "models/gemini-flash-latest"
  if model_name.startswith("models/"):
    return model_name
  return f"models/{model_name}"


def _supports_reasoning(model: str) -> bool:
  name = str(model or "").strip().lower()
  return name.startswith("gpt-5") or bool(re.match(r"^o\d", name))


def get_agent_llm_settings(prefix: str) -> Dict[str, Optional[str]]:
  """
  Unified helper to fetch agent-specific LLM settings from environment.
  Supports both OpenAI reasoning_effort and Gemini thinking_level.
  """
  prefix = prefix.upper().strip()
  return {
      "reasoning_effort": os.getenv(f"AGENT_{prefix}_OPENAI_REASONING_EFFORT") or os.getenv(f"AGENT_{prefix}_REASONING_EFFORT"),
      "gemini_thinking_level": os.getenv(f"AGENT_{prefix}_GEMINI_THINKING_LEVEL") or os.getenv(f"AGENT_{prefix}_THINKING_LEVEL"),
  }


def _reasoning_params(model: str,
                      reasoning_effort: Optional[str],
                      verbosity: Optional[str]) -> Dict[str, Any]:
  if not _supports_reasoning(model):
    return {}
  return {
      "reasoning_effort": reasoning_effort or _get_openai_reasoning_effort(),
      "verbosity": verbosity or _get_openai_verbosity(),
  }


# ---------------------------------------------------------------------------
#  Structured extraction
# ---------------------------------------------------------------------------

def _gemini_text_from_response(response: Any) -> str:
  text = getattr(response, "text", None)
  if isinstance(text, str) and text.strip():
    return text.strip()
  candidates = getattr(response, "candidates", None)
  if not isinstance(candidates, list):
    return ""
  chunks = []
  for candidate in candidates:
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) if content is not None else None
    if not isinstance(parts, list):
      continue
    for part in parts:
      text_val = getattr(part, "text", None)
      if isinstance(text_val, str) and text_val.strip():
        chunks.append(text_val.strip())
  return " ".join(chunks).strip()


def _gemini_client_or_reason() -> Tuple[Any, Optional[str]]:
  global _gemini_client, _gemini_api_key_cached
  gemini_api_key = GEMINI_API_KEY or os.getenv("GEMINI_API_KEY", "").strip()
  if not gemini_api_key:
    return None, "gemini_api_key_missing"
  if _gemini_client is None or _gemini_api_key_cached != gemini_api_key:
    _gemini_client = genai.Client(api_key=gemini_api_key)
    _gemini_api_key_cached = gemini_api_key
  return _gemini_client, None


def _compose_prompt(system_prompt: str,
                    user_content: str,
                    developer_prompt: Optional[str]) -> str:
  instruction = system_prompt
  if isinstance(developer_prompt, str) and developer_prompt.strip():
    instruction = f"{instruction}\n\n{developer_prompt.strip()}"
  return f"{instruction}\n\nUser:\n{user_content}"


def _clean_json_text(text: str) -> str:
  cleaned = (text or "").strip()
  if cleaned.startswith("```"):
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned).strip()
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
  return cleaned


def _validate_structured_response(response_model: Type[T],
                                  raw_output: str) -> Optional[T]:
  if not raw_output:
    return None
  candidates = [raw_output, _clean_json_text(raw_output)]
  cleaned = candidates[-1]
  if cleaned:
    left = cleaned.find("{")
    right = cleaned.rfind("}")
    if left != -1 and right != -1 and right > left:
      candidates.append(cleaned[left:right + 1])
  seen = set()
  for candidate in candidates:
    text = (candidate or "").strip()
    if not text or text in seen:
      continue
    seen.add(text)
    try:
      return response_model.model_validate_json(text)
    except ValidationError:
      continue
  return None


def _coerce_gemini_parsed_response(response_model: Type[T],
                                   parsed_value: Any) -> Optional[T]:
  if parsed_value is None:
    return None
  if isinstance(parsed_value, response_model):
    return parsed_value
  if isinstance(parsed_value, str):
    return _validate_structured_response(response_model, parsed_value)
  try:
    return response_model.model_validate(parsed_value)
  except ValidationError:
    return None


def _gemini_thinking_level(override_level: Optional[str] = None) -> Optional[str]:
  raw = override_level
  if raw is None:
    raw = os.getenv("GEMINI_THINKING_LEVEL", _GEMINI_DEFAULT_THINKING_LEVEL)
  value = str(raw or "").strip().upper()
  if value in ("NONE", "MINIMAL", "LOW", "MEDIUM", "HIGH"):
    return value
  return None


def _build_gemini_structured_config(max_completion_tokens: int,
                                    gemini_thinking_level: Optional[str] = None) -> Any:
  config: Dict[str, Any] = {
      "response_mime_type": "application/json",
  }
  if isinstance(max_completion_tokens, int) and max_completion_tokens > 0:
    config["max_output_tokens"] = max_completion_tokens
  level = _gemini_thinking_level(override_level=gemini_thinking_level)
  if level:
    config["thinking_config"] = {"thinking_level": level}
  return genai_types.GenerateContentConfig(**config)


def _gemini_structured_sync(client: Any,
                            model: str,
                            prompt: str,
                            response_model: Type[T],
                            max_completion_tokens: int,
                            gemini_thinking_level: Optional[str] = None) -> Tuple[Optional[T], str, str]:
  used_model = _canonical_gemini_model(model)
  config = _build_gemini_structured_config(
      max_completion_tokens=max_completion_tokens,
      gemini_thinking_level=gemini_thinking_level,
  )
  response = client.models.generate_content(
      model=used_model,
      contents=prompt,
      config=config,
  )
  raw_output = _gemini_text_from_response(response)
  parsed = _coerce_gemini_parsed_response(
      response_model, getattr(response, "parsed", None))
  if parsed is None:
    parsed = _validate_structured_response(response_model, raw_output)
  return parsed, raw_output, used_model


def _compose_openai_messages(system_prompt: str,
                             developer_prompt: Optional[str],
                             user_content: str) -> List[Dict[str, str]]:
  instruction = system_prompt
  if isinstance(developer_prompt, str) and developer_prompt.strip():
    instruction = f"{instruction}\n\n{developer_prompt.strip()}"

  # JSON mode requires the word "json" somewhere in the instructions.
  if "json" not in instruction.lower():
    instruction += "\n\nResponse must be a valid JSON object."

  return [
      {
          "role": "system",
          "content": instruction,
      },
      {
          "role": "user",
          "content": user_content,
      },
  ]


async def run_structured_completion(
    *,
    model: str,
    system_prompt: str,
    developer_prompt: Optional[str],
    user_payload: Dict[str, Any],
    response_model: Type[T],
    max_completion_tokens: int = 4000,
    reasoning_effort: Optional[str] = None,
    verbosity: Optional[str] = None,
    gemini_thinking_level: Optional[str] = None,
) -> Tuple[Optional[T], str, Dict[str, Any]]:
  """One structured-extraction call. Never retries and never raises.

  Returns ``(parsed_or_None, raw_text, meta)``; ``meta["llm_error"]`` carries
  the failure reason when the call itself failed.
  """
  provider = _provider_for_model(model)
  user_content = json.dumps(user_payload, ensure_ascii=False)

  if provider == "gemini":
    client, unavailable_reason = _gemini_client_or_reason()
    if client is None:
      return None, "", {
          "model": model,
          "provider": provider,
          "llm_available": False,
          "unavailable_reason": unavailable_reason,
      }
    prompt = _compose_prompt(system_prompt, user_content, developer_prompt)
    try:
      parsed, raw_output, resolved_model = await asyncio.to_thread(
          _gemini_structured_sync,
          client,
          model,
          prompt,
          response_model,
          max_completion_tokens,
          gemini_thinking_level,
      )
    except Exception as exc:
      logger.exception("[AGENT LLM ERROR] Gemini structured model=%s", model)
      return None, "", {
          "model": model,
          "provider": provider,
          "llm_available": True,
          "llm_output_empty_or_error": True,
          "llm_error": str(exc),
      }
    _print_raw_output(kind="structured",
                      provider=provider,
                      model=resolved_model,
                      raw_output=raw_output,
                      schema=response_model.__name__)
    return parsed, raw_output, {
        "model": model,
        "resolved_model": resolved_model,
        "provider": provider,
        "llm_available": True,
    }

  try:
    client = get_async_client()
  except RuntimeError as exc:
    return None, "", {
        "model": model,
        "provider": provider,
        "llm_available": False,
        "unavailable_reason": str(exc),
    }

  messages = _compose_openai_messages(system_prompt, developer_prompt,
                                      user_content)
  try:
    completion = await client.chat.completions.create(
        model=model,
        messages=messages,
        response_format={"type": "json_object"},
        max_completion_tokens=max_completion_tokens,
        **_reasoning_params(model, reasoning_effort, verbosity),
    )
  except Exception as exc:
    logger.exception("[AGENT LLM ERROR] model=%s provider=%s", model, provider)
    return None, "", {
        "model": model,
        "provider": provider,
        "llm_available": True,
        "llm_output_empty_or_error": True,
        "llm_error": str(exc),
    }
  raw_output = _extract_message_text(completion.choices[0].message.content)
  parsed = _validate_structured_response(response_model, raw_output)
  _print_raw_output(kind="structured",
                    provider=provider,
                    model=model,
                    raw_output=raw_output,
                    schema=response_model.__name__)
  return parsed, raw_output, {
      "model": model,
      "provider": provider,
      "llm_available": True,
  }


# ---------------------------------------------------------------------------
#  Transcript -> chat messages
# ---------------------------------------------------------------------------

def _tool_result_content(part: ToolCallPart) -> str:
  if part.state == OUTPUT_AVAILABLE:
    return json.dumps(part.output, ensure_ascii=False, default=str)
  if part.state == OUTPUT_DENIED:
    reason = (part.approval.reason if part.approval else None) or _DENIED_TOOL_MESSAGE
    return json.dumps({"denied": True, "reason": reason}, ensure_ascii=False)
  return json.dumps({"error": part.error_text or "Tool execution failed."},
                    ensure_ascii=False)


def to_openai_messages(system_prompt: str,
                       messages: List[Message]) -> List[Dict[str, Any]]:
  """Convert a reduced transcript into chat-completions messages.

  Only settled tool calls are sent; calls still awaiting approval or a client
  result have nothing the model could pair them with.
  """
  converted: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
  for message in messages:
    if message.role != "assistant":
      text = extract_text(message)
      if text:
        converted.append({"role": message.role, "content": text})
      continue

    text_chunks: List[str] = []
    tool_calls: List[Dict[str, Any]] = []
    tool_results: List[Dict[str, Any]] = []

    def _flush() -> None:
      if not text_chunks and not tool_calls:
        return
      entry: Dict[str, Any] = {
          "role": "assistant",
          "content": "".join(text_chunks) or None,
      }
      if tool_calls:
        entry["tool_calls"] = list(tool_calls)
      converted.append(entry)
      converted.extend(tool_results)
      text_chunks.clear()
      tool_calls.clear()
      tool_results.clear()

    for part in message.parts:
      if is_text_part(part):
        if tool_calls:
          _flush()
        text_chunks.append(part.text)
        continue
      if not is_tool_part(part) or not is_terminal_state(part.state):
        continue
      tool_calls.append({
          "id": part.tool_call_id,
          "type": "function",
          "function": {
              "name": part.tool_name,
              "arguments": json.dumps(part.input, ensure_ascii=False, default=str),
          },
      })
      tool_results.append({
          "role": "tool",
          "tool_call_id": part.tool_call_id,
          "content": _tool_result_content(part),
      })
    _flush()
  return converted


def _openai_tool_choice(tool_name: Optional[str]) -> Any:
  if not tool_name:
    return "auto"
  return {"type": "function", "function": {"name": tool_name}}


# ---------------------------------------------------------------------------
#  Tool execution
# ---------------------------------------------------------------------------

def _output_event(tool_call_id: str, output: Any) -> Dict[str, Any]:
  return {"type": "tool-output-available", "toolCallId": tool_call_id, "output": output}


def _error_event(tool_call_id: str, error_text: str) -> Dict[str, Any]:
  return {"type": "tool-output-error", "toolCallId": tool_call_id, "errorText": error_text}


async def _execute_tool(tool: Tool, tool_call_id: str,
                        parsed_input: BaseModel) -> Tuple[Dict[str, Any], str]:
  """Run a tool; returns the lifecycle event and the chat tool-result content."""
  try:
    output = await tool.execute(parsed_input)
  except Exception as exc:
    logger.exception("Tool %s (%s) failed", tool.name, tool_call_id)
    error_text = str(exc) or type(exc).__name__
    return _error_event(tool_call_id, error_text), json.dumps(
        {"error": error_text}, ensure_ascii=False)
  return _output_event(tool_call_id, output), json.dumps(
      output, ensure_ascii=False, default=str)


async def settle_tool_approvals(messages: List[Message],
                                tools: ToolSet) -> Tuple[List[Message], List[Dict[str, Any]]]:
  """Resolve tool calls the user has answered in the approval dialog.

  Approved calls are executed, rejected ones become ``output-denied``. Returns
  the updated transcript (new message objects, history is not mutated) and the
  lifecycle events for the caller to persist.
  """
  events: List[Dict[str, Any]] = []
  settled: List[Message] = []
  for message in messages:
    if message.role != "assistant":
      settled.append(message)
      continue
    new_parts = []
    changed = False
    for part in message.parts:
      if not is_tool_part(part) or part.state != APPROVAL_RESPONDED:
        new_parts.append(part)
        continue
      changed = True
      approved = bool(part.approval and part.approval.approved)
      if not approved:
        events.append({"type": "tool-output-denied", "toolCallId": part.tool_call_id})
        new_parts.append(part.model_copy(update={"state": OUTPUT_DENIED}))
        continue
      tool = tools.get(part.tool_name)
      if tool is None or tool.client_resolved:
        error_text = f"Tool '{part.tool_name}' is not available."
        events.append(_error_event(part.tool_call_id, error_text))
        new_parts.append(part.model_copy(update={"state": OUTPUT_ERROR,
                                                 "error_text": error_text}))
        continue
      try:
        parsed_input = tool.parse_input(part.input)
      except ValidationError as exc:
        error_text = f"Invalid input for {tool.name}: {exc}"
        events.append(_error_event(part.tool_call_id, error_text))
        new_parts.append(part.model_copy(update={"state": OUTPUT_ERROR,
                                                 "error_text": error_text}))
        continue
      event, _content = await _execute_tool(tool, part.tool_call_id, parsed_input)
      events.append(event)
      if event["type"] == "tool-output-available":
        new_parts.append(part.model_copy(update={"state": OUTPUT_AVAILABLE,
                                                 "output": event["output"]}))
      else:
        new_parts.append(part.model_copy(update={"state": OUTPUT_ERROR,
                                                 "error_text": event["errorText"]}))
    settled.append(message.model_copy(update={"parts": new_parts}) if changed else message)
  return settled, events


class _StepBuffer:
  """Accumulates one model step: text plus tool calls keyed by index."""

  def __init__(self) -> None:
    self.text_chunks: List[str] = []
    self.calls: Dict[int, Dict[str, str]] = {}

  def add_call(self, index: int, call_id: Optional[str], name: Optional[str],
               arguments: Optional[str]) -> None:
    entry = self.calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
    if call_id:
      entry["id"] = call_id
    if name:
      entry["name"] = name
    if arguments:
      entry["arguments"] += arguments

  def ordered_calls(self) -> List[Dict[str, str]]:
    calls = [self.calls[index] for index in sorted(self.calls)]
    for call in calls:
      if not call["id"]:
        call["id"] = f"call_{uuid.uuid4().hex[:24]}"
    return calls


def _extract_stream_delta_text(delta_content: Any) -> str:
  if isinstance(delta_content, str):
    return delta_content
  if isinstance(delta_content, list):
    chunks: List[str] = []
    for item in delta_content:
      if isinstance(item, str):
        chunks.append(item)
        continue
      text_val = item.get("text") if isinstance(item, dict) else getattr(item, "text", None)
      if isinstance(text_val, str):
        chunks.append(text_val)
    return "".join(chunks)
  return ""


async def _run_step(client: Any, params: Dict[str, Any], buffer: _StepBuffer,
                    stream: bool) -> AsyncIterator[Dict[str, Any]]:
  if not stream:
    completion = await client.chat.completions.create(**params)
    message = completion.choices[0].message
    text = _extract_message_text(message.content)
    if text:
      buffer.text_chunks.append(text)
      yield {"type": "text-delta", "delta": text}
    for index, call in enumerate(message.tool_calls or []):
      buffer.add_call(index, call.id, call.function.name, call.function.arguments)
    return

  response = await client.chat.completions.create(stream=True, **params)
  async for chunk in response:
    choices = getattr(chunk, "choices", None)
    if not choices:
      continue
    delta = getattr(choices[0], "delta", None)
    if delta is None:
      continue
    piece = _extract_stream_delta_text(getattr(delta, "content", None))
    if piece:
      buffer.text_chunks.append(piece)
      yield {"type": "text-delta", "delta": piece}
    for call_delta in getattr(delta, "tool_calls", None) or []:
      function = getattr(call_delta, "function", None)
      buffer.add_call(call_delta.index,
                      getattr(call_delta, "id", None),
                      getattr(function, "name", None),
                      getattr(function, "arguments", None))


async def _handle_tool_call(call: Dict[str, str], tools: ToolSet,
                            headless: bool) -> Tuple[List[Dict[str, Any]], Optional[str], bool]:
  """Returns (events, tool-result content or None, awaits_caller)."""
  call_id = call["id"]
  name = call["name"]
  try:
    raw_input = safe_json_loads(call["arguments"])
  except ValueError as exc:
    return [
        {"type": "tool-input-available", "toolCallId": call_id, "toolName": name, "input": {}},
        _error_event(call_id, str(exc)),
    ], json.dumps({"error": str(exc)}), False

  events: List[Dict[str, Any]] = [{
      "type": "tool-input-available",
      "toolCallId": call_id,
      "toolName": name,
      "input": raw_input,
  }]
  tool = tools.get(name)
  if tool is None:
    error_text = f"Unknown tool '{name}'."
    events.append(_error_event(call_id, error_text))
    return events, json.dumps({"error": error_text}), False
  try:
    parsed_input = tool.parse_input(raw_input)
  except ValidationError as exc:
    error_text = f"Invalid input for {name}: {exc}"
    events.append(_error_event(call_id, error_text))
    return events, json.dumps({"error": error_text}), False

  if tool.needs_approval or tool.client_resolved:
    if headless:
      error_text = f"{name} needs a response from the user and cannot run in this step."
      events.append(_error_event(call_id, error_text))
      return events, json.dumps({"error": error_text}), False
    if tool.needs_approval:
      events.append({
          "type": "tool-approval-request",
          "toolCallId": call_id,
          "approvalId": f"approval_{uuid.uuid4().hex}",
      })
    return events, None, True

  event, content = await _execute_tool(tool, call_id, parsed_input)
  events.append(event)
  return events, content, False


async def stream_agent_completion(
    *,
    system_prompt: str,
    messages: List[Message],
    tools: Optional[ToolSet] = None,
    tool_choice: Optional[str] = None,
    model: str = AGENT_MODEL,
    headless: bool = False,
    max_steps: int = MAX_TOOL_STEPS,
    reasoning_effort: Optional[str] = None,
    settle_approvals: bool = True,
) -> AsyncIterator[Dict[str, Any]]:
  """Run an agent as a sequence of model/tool round trips, yielding events.

  Failures are reported as a single ``error`` event; text already yielded is
  not retracted. The forced ``tool_choice`` applies to the first step only.
  """
  active_tools: ToolSet = tools or {}
  settled_messages = messages
  if settle_approvals:
    settled_messages, settle_events = await settle_tool_approvals(messages, active_tools)
    for event in settle_events:
      yield event

  try:
    client = get_async_client()
  except RuntimeError as exc:
    yield {"type": "error", "errorText": str(exc)}
    return

  chat_messages = to_openai_messages(system_prompt, settled_messages)
  tool_schemas = [tool.openai_schema() for tool in active_tools.values()]

  for step in range(max_steps):
    params: Dict[str, Any] = {
        "model": model,
        "messages": chat_messages,
        **_reasoning_params(model, reasoning_effort, None),
    }
    if tool_schemas:
      params["tools"] = tool_schemas
      params["tool_choice"] = _openai_tool_choice(tool_choice if step == 0 else None)

    buffer = _StepBuffer()
    try:
      async for event in _run_step(client, params, buffer, stream=not headless):
        yield event
    except asyncio.CancelledError:
      raise
    except Exception as exc:
      logger.exception("[AGENT LLM ERROR] model=%s step=%d", model, step)
      yield {"type": "error", "errorText": str(exc) or type(exc).__name__}
      return

    calls = buffer.ordered_calls()
    if not calls:
      yield {"type": "finish-step"}
      yield {"type": "finish", "finishReason": "stop"}
      return

    chat_messages.append({
        "role": "assistant",
        "content": "".join(buffer.text_chunks) or None,
        "tool_calls": [{
            "id": call["id"],
            "type": "function",
            "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
        } for call in calls],
    })
    awaiting_caller = False
    for call in calls:
      events, content, awaits = await _handle_tool_call(call, active_tools, headless)
      for event in events:
        yield event
      if content is not None:
        chat_messages.append({"role": "tool", "tool_call_id": call["id"], "content": content})
      awaiting_caller = awaiting_caller or awaits
    yield {"type": "finish-step"}
    if awaiting_caller:
      yield {"type": "finish", "finishReason": "tool-calls"}
      return

  yield {"type": "finish", "finishReason": "max-steps"}


async def run_agent_completion(*,
                               agent_id: str,
                               system_prompt: str,
                               messages: List[Message],
                               tools: Optional[ToolSet] = None,
                               model: str = AGENT_MODEL) -> str:
  """Headless run: drive the agent to completion and return its final text.

  Raises AgentExecutionError on any failure.
  """
  step_chunks: List[str] = []
  final_text = ""
  async for event in stream_agent_completion(system_prompt=system_prompt,
                                             messages=messages,
                                             tools=tools,
                                             model=model,
                                             headless=True,
                                             settle_approvals=False):
    event_type = event.get("type")
    if event_type == "text-delta":
      step_chunks.append(event["delta"])
    elif event_type == "finish-step":
      if step_chunks:
        final_text = "".join(step_chunks)
      step_chunks = []
    elif event_type == "error":
      raise AgentExecutionError(agent_id, str(event.get("errorText") or "unknown error"))
  if step_chunks:
    final_text = "".join(step_chunks)
  _print_raw_output(kind="headless", provider="openai", model=model, raw_output=final_text)
  return final_text

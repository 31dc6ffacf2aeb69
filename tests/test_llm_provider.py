import json
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel

from calendar_assistant.agents import llm_provider
from calendar_assistant.agents.llm_provider import (
    run_agent_completion,
    run_structured_completion,
    settle_tool_approvals,
    stream_agent_completion,
    to_openai_messages,
)
from calendar_assistant.agents.tools import Tool, tool_set
from calendar_assistant.errors import AgentExecutionError
from tests.factories import (
    FakeChatClient,
    assistant,
    completion,
    text,
    text_chunk,
    tool,
    tool_chunk,
    user,
)


class EventIdInput(BaseModel):
  event_id: str


class QueryInput(BaseModel):
  query: str


def _tools(search=None, delete=None):
  return tool_set(
      Tool(name="searchEvents", description="search", input_model=QueryInput,
           execute=search or AsyncMock(return_value=[{"id": "e1", "summary": "Dentist"}])),
      Tool(name="deleteEvent", description="delete", input_model=EventIdInput,
           needs_approval=True,
           execute=delete or AsyncMock(return_value={"deleted": True})),
      Tool(name="conflictWarning", description="warn", input_model=QueryInput),
  )


async def _drain(stream):
  return [event async for event in stream]


def _types(events):
  return [event["type"] for event in events]


def test_to_openai_messages_pairs_settled_calls_with_results():
  messages = [
      user("Find my dentist appointment"),
      assistant(text("Looking."),
                tool("s1", "output-available", name="searchEvents",
                     tool_input={"query": "dentist"}, output=[{"id": "e1"}]),
                text("Found it.")),
      assistant(tool("d1", "output-denied", name="deleteEvent",
                     tool_input={"event_id": "e1"}, approved=False)),
      assistant(tool("d2", "approval-requested", name="deleteEvent")),
      assistant(tool("d3", "output-error", name="deleteEvent", error_text="404")),
  ]

  converted = to_openai_messages("SYSTEM", messages)

  assert converted[0] == {"role": "system", "content": "SYSTEM"}
  assert converted[1] == {"role": "user", "content": "Find my dentist appointment"}
  assert converted[2]["content"] == "Looking."
  assert converted[2]["tool_calls"][0]["id"] == "s1"
  assert json.loads(converted[2]["tool_calls"][0]["function"]["arguments"]) == {"query": "dentist"}
  assert converted[3] == {"role": "tool", "tool_call_id": "s1", "content": '[{"id": "e1"}]'}
  assert converted[4] == {"role": "assistant", "content": "Found it."}
  assert json.loads(converted[6]["content"])["denied"] is True
  # The call still awaiting approval is not sent.
  assert all(call["id"] != "d2"
             for m in converted for call in m.get("tool_calls", []))
  assert json.loads(converted[-1]["content"]) == {"error": "404"}


@pytest.mark.asyncio
async def test_settle_tool_approvals_executes_approved_and_denies_rejected():
  delete = AsyncMock(return_value={"deleted": True})
  messages = [
      user("delete both"),
      assistant(tool("d1", "approval-responded", name="deleteEvent",
                     tool_input={"event_id": "e1"}, approved=True),
                tool("d2", "approval-responded", name="deleteEvent",
                     tool_input={"event_id": "e2"}, approved=False)),
  ]

  settled, events = await settle_tool_approvals(messages, _tools(delete=delete))

  delete.assert_awaited_once()
  assert delete.await_args.args[0].event_id == "e1"
  assert events == [
      {"type": "tool-output-available", "toolCallId": "d1", "output": {"deleted": True}},
      {"type": "tool-output-denied", "toolCallId": "d2"},
  ]
  assert [p.state for p in settled[1].parts] == ["output-available", "output-denied"]
  assert messages[1].parts[0].state == "approval-responded"


@pytest.mark.asyncio
async def test_stream_auto_executes_tools_then_answers():
  search = AsyncMock(return_value=[{"id": "e1", "summary": "Dentist"}])
  client = FakeChatClient([
      [tool_chunk(0, "call_1", "searchEvents", '{"que'), tool_chunk(0, arguments='ry": "dentist"}')],
      [text_chunk("You have "), text_chunk("a dentist appointment.")],
  ])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    events = await _drain(stream_agent_completion(system_prompt="S",
                                                  messages=[user("find dentist")],
                                                  tools=_tools(search=search)))

  assert _types(events) == [
      "tool-input-available", "tool-output-available", "finish-step",
      "text-delta", "text-delta", "finish-step", "finish",
  ]
  assert events[0]["input"] == {"query": "dentist"}
  assert search.await_args.args[0].query == "dentist"
  second_call = client.completions.calls[1]["messages"]
  assert second_call[-1]["role"] == "tool"
  assert second_call[-1]["tool_call_id"] == "call_1"


@pytest.mark.asyncio
async def test_stream_stops_for_approval():
  delete = AsyncMock()
  client = FakeChatClient([[tool_chunk(0, "call_9", "deleteEvent", '{"event_id": "e1"}')]])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    events = await _drain(stream_agent_completion(system_prompt="S",
                                                  messages=[user("delete it")],
                                                  tools=_tools(delete=delete)))

  assert _types(events) == ["tool-input-available", "tool-approval-request",
                            "finish-step", "finish"]
  assert events[1]["toolCallId"] == "call_9"
  assert events[1]["approvalId"].startswith("approval_")
  assert events[-1]["finishReason"] == "tool-calls"
  delete.assert_not_called()
  assert len(client.completions.calls) == 1


@pytest.mark.asyncio
async def test_forced_tool_applies_to_first_step_only():
  client = FakeChatClient([
      [tool_chunk(0, "call_1", "searchEvents", '{"query": "x"}')],
      [text_chunk("done")],
  ])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    await _drain(stream_agent_completion(system_prompt="S", messages=[user("x")],
                                         tools=_tools(), tool_choice="searchEvents"))

  first, second = client.completions.calls
  assert first["tool_choice"] == {"type": "function", "function": {"name": "searchEvents"}}
  assert second["tool_choice"] == "auto"


@pytest.mark.asyncio
async def test_client_resolved_tool_ends_the_stream():
  client = FakeChatClient([[tool_chunk(0, "call_w", "conflictWarning", '{"query": "x"}')]])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    events = await _drain(stream_agent_completion(system_prompt="S", messages=[user("x")],
                                                  tools=_tools(),
                                                  tool_choice="conflictWarning"))

  assert _types(events) == ["tool-input-available", "finish-step", "finish"]


@pytest.mark.asyncio
async def test_invalid_tool_input_becomes_output_error():
  client = FakeChatClient([
      [tool_chunk(0, "call_1", "searchEvents", '{"wrong": 1}')],
      [text_chunk("sorry")],
  ])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    events = await _drain(stream_agent_completion(system_prompt="S", messages=[user("x")],
                                                  tools=_tools()))

  assert events[1]["type"] == "tool-output-error"
  assert "Invalid input" in events[1]["errorText"]


@pytest.mark.asyncio
async def test_model_failure_is_an_error_event():
  client = FakeChatClient([RuntimeError("rate limited")])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    events = await _drain(stream_agent_completion(system_prompt="S", messages=[user("x")]))

  assert events == [{"type": "error", "errorText": "rate limited"}]


@pytest.mark.asyncio
async def test_headless_run_returns_final_text_and_refuses_approval_tools():
  client = FakeChatClient([
      completion("Let me check.", [{"id": "c1", "name": "deleteEvent",
                                    "arguments": '{"event_id": "e1"}'}]),
      completion("Could not delete without approval."),
  ])
  delete = AsyncMock()

  with patch.object(llm_provider, "get_async_client", return_value=client):
    result = await run_agent_completion(agent_id="mail", system_prompt="S",
                                        messages=[user("x")], tools=_tools(delete=delete))

  assert result == "Could not delete without approval."
  delete.assert_not_called()
  assert "stream" not in client.completions.calls[0]
  refused = client.completions.calls[1]["messages"][-1]
  assert refused["role"] == "tool" and "cannot run" in refused["content"]


@pytest.mark.asyncio
async def test_headless_run_raises_on_error():
  client = FakeChatClient([RuntimeError("boom")])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    with pytest.raises(AgentExecutionError) as excinfo:
      await run_agent_completion(agent_id="mail", system_prompt="S", messages=[user("x")])

  assert excinfo.value.agent_id == "mail"


class Decision(BaseModel):
  route: str


@pytest.mark.asyncio
async def test_structured_completion_is_a_single_attempt():
  client = FakeChatClient([completion('```json\n{"route": "general"}\n```')])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    parsed, raw, meta = await run_structured_completion(
        model="gpt-5-nano", system_prompt="Classify.", developer_prompt=None,
        user_payload={"user_text": "hi"}, response_model=Decision)

  assert parsed == Decision(route="general")
  assert meta["provider"] == "openai"
  call = client.completions.calls[0]
  assert call["response_format"] == {"type": "json_object"}
  assert "json" in call["messages"][0]["content"].lower()
  assert len(client.completions.calls) == 1


@pytest.mark.asyncio
async def test_structured_completion_reports_failures_without_raising():
  client = FakeChatClient([RuntimeError("timeout")])

  with patch.object(llm_provider, "get_async_client", return_value=client):
    parsed, raw, meta = await run_structured_completion(
        model="gpt-5-nano", system_prompt="Classify.", developer_prompt=None,
        user_payload={}, response_model=Decision)

  assert parsed is None and raw == ""
  assert meta["llm_error"] == "timeout"

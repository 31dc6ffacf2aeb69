import pytest

from calendar_assistant.agents.messages import (
    Message,
    ToolCallPart,
    extract_text,
    find_last_message,
    get_completed_tool_call_ids,
    is_terminal_state,
    needs_approval,
    prepare_transcript,
    reduce_transcript,
)
from calendar_assistant.errors import TranscriptValidationError
from tests.factories import assistant, text, tool, user


def _tool_states(messages):
  return [(part.tool_call_id, part.state)
          for message in messages
          for part in message.parts
          if isinstance(part, ToolCallPart)]


def test_reduce_keeps_only_terminal_part_for_settled_call():
  messages = [
      user("Book lunch at noon"),
      assistant(text("Creating it."), tool("c1", "approval-requested")),
      assistant(tool("c1", "approval-responded", approved=True)),
      assistant(tool("c1", "output-available", output={"id": "evt"})),
  ]

  reduced = reduce_transcript(messages)

  assert _tool_states(reduced) == [("c1", "output-available")]
  # The message that only held the superseded part disappears.
  assert [m.role for m in reduced] == ["user", "assistant", "assistant"]
  assert extract_text(reduced[1]) == "Creating it."


def test_reduce_drops_duplicate_terminal_parts():
  messages = [
      assistant(tool("c1", "output-available", output={"n": 1})),
      assistant(tool("c1", "output-error", error_text="late")),
      user("thanks"),
  ]

  reduced = reduce_transcript(messages)

  assert _tool_states(reduced) == [("c1", "output-available")]
  assert reduced[0].parts[0].output == {"n": 1}


def test_reduce_keeps_in_flight_and_unknown_states():
  messages = [
      assistant(tool("c1", "approval-requested"),
                tool("c2", "input-streaming"),
                tool("c3", "some-future-state")),
  ]

  reduced = reduce_transcript(messages)

  assert _tool_states(reduced) == [
      ("c1", "approval-requested"),
      ("c2", "input-streaming"),
      ("c3", "some-future-state"),
  ]


def test_reduce_is_idempotent():
  messages = [
      user("Move my dentist appointment"),
      assistant(tool("s1", "output-available", name="searchEvents", output=[])),
      assistant(text("Found it"), tool("u1", "approval-requested", name="updateEvent")),
      assistant(tool("u1", "output-denied", name="updateEvent", approved=False)),
      assistant(tool("u1", "output-denied", name="updateEvent", approved=False)),
      user("ok"),
  ]

  once = reduce_transcript(messages)
  twice = reduce_transcript(once)

  assert twice == once
  ids = [call_id for call_id, _ in _tool_states(once)]
  assert len(ids) == len(set(ids))
  assert all(is_terminal_state(state) for _, state in _tool_states(once))


def test_reduce_preserves_order_and_untouched_messages():
  first = user("hi")
  second = assistant(text("a"), tool("c1", "output-available"), text("b"))
  third = user("bye")

  reduced = reduce_transcript([first, second, third])

  assert reduced[0] is first
  assert reduced[1] is second
  assert reduced[2] is third
  assert [type(p).__name__ for p in reduced[1].parts] == ["TextPart", "ToolCallPart", "TextPart"]


def test_reduce_does_not_mutate_history():
  original = assistant(tool("c1", "approval-requested"), text("x"))
  messages = [original, assistant(tool("c1", "output-available"))]

  reduce_transcript(messages)

  assert len(original.parts) == 2


def test_non_assistant_messages_pass_through():
  odd = Message(role="user", parts=[tool("c1", "approval-requested")])
  messages = [odd, assistant(tool("c1", "output-available"))]

  reduced = reduce_transcript(messages)

  assert reduced[0] is odd


def test_completed_ids_collects_all_terminal_states():
  messages = [
      assistant(tool("a", "output-available"), tool("b", "output-error")),
      assistant(tool("c", "output-denied"), tool("d", "approval-requested")),
  ]

  assert get_completed_tool_call_ids(messages) == {"a", "b", "c"}


def test_needs_approval_and_find_last_message():
  pending = tool("c1", "approval-requested")
  messages = [user("one"), assistant(pending), user("two")]

  assert needs_approval(pending)
  assert not needs_approval(tool("c2", "output-available"))
  assert extract_text(find_last_message(messages, "user")) == "two"
  assert find_last_message(messages, "system") is None


def test_prepare_transcript_parses_wire_format():
  raw = [
      {"id": "m1", "role": "user", "parts": [{"type": "text", "text": "Hello"}]},
      {"id": "m2", "role": "assistant", "parts": []},
      {
          "id": "m3",
          "role": "assistant",
          "metadata": {"route": "calendar_only"},
          "parts": [{
              "type": "tool",
              "toolName": "deleteEvent",
              "toolCallId": "d1",
              "state": "approval-responded",
              "input": {"eventId": "e1"},
              "approval": {"id": "ap1", "approved": True},
          }],
      },
  ]

  messages = prepare_transcript(raw)

  assert [m.id for m in messages] == ["m1", "m3"]
  part = messages[1].parts[0]
  assert part.tool_name == "deleteEvent"
  assert part.approval_id == "ap1"
  assert part.to_wire()["toolCallId"] == "d1"


@pytest.mark.parametrize("raw", [
    [],
    [{"role": "user", "parts": []}],
    [{"role": "user", "parts": [{"type": "text", "text": "x"}]},
     {"role": "system", "parts": [{"type": "text", "text": "y"}]}],
    [{"role": "robot", "parts": [{"type": "text", "text": "x"}]}],
    [{"role": "user", "parts": [{"type": "image", "url": "x"}]}],
    "not a list",
])
def test_prepare_transcript_rejects_unusable_input(raw):
  with pytest.raises(TranscriptValidationError):
    prepare_transcript(raw)

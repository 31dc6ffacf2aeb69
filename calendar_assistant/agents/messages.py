"""
Conversation transcript model and the tool-call ledger reducer.

A transcript is an ordered list of messages. Assistant messages may carry tool
call parts; the same ``tool_call_id`` can show up several times as the call moves
through its lifecycle (approval-requested -> approval-responded -> output-*).
Before any model call the transcript is reduced so every settled call appears
exactly once, in its terminal state.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import TranscriptValidationError

Role = Literal["user", "assistant", "system"]

APPROVAL_REQUESTED = "approval-requested"
APPROVAL_RESPONDED = "approval-responded"
INPUT_AVAILABLE = "input-available"
OUTPUT_AVAILABLE = "output-available"
OUTPUT_ERROR = "output-error"
OUTPUT_DENIED = "output-denied"

# No more state transitions are expected once a call reaches one of these.
FINAL_TOOL_STATES = frozenset({OUTPUT_AVAILABLE, OUTPUT_ERROR, OUTPUT_DENIED})


class _WireModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel,
                            populate_by_name=True,
                            frozen=True)

  def to_wire(self) -> Dict[str, Any]:
    return self.model_dump(by_alias=True, exclude_none=True)


class TextPart(_WireModel):
  type: Literal["text"] = "text"
  text: str


class ToolApproval(_WireModel):
  id: str
  approved: Optional[bool] = None
  reason: Optional[str] = None


class ToolCallPart(_WireModel):
  type: Literal["tool"] = "tool"
  tool_name: str
  tool_call_id: str
  # Kept as a plain string: unknown states must survive validation.
  state: str
  input: Dict[str, Any] = Field(default_factory=dict)
  output: Optional[Any] = None
  error_text: Optional[str] = None
  approval: Optional[ToolApproval] = None

  @property
  def approval_id(self) -> Optional[str]:
    return self.approval.id if self.approval else None


Part = Annotated[Union[TextPart, ToolCallPart], Field(discriminator="type")]


class Message(_WireModel):
  id: Optional[str] = None
  role: Role
  parts: List[Part] = Field(default_factory=list)
  metadata: Optional[Dict[str, Any]] = None


def is_tool_part(part: Any) -> bool:
  return isinstance(part, ToolCallPart)


def is_text_part(part: Any) -> bool:
  return isinstance(part, TextPart)


def is_terminal_state(state: str) -> bool:
  return state in FINAL_TOOL_STATES


def needs_approval(part: ToolCallPart) -> bool:
  return part.state == APPROVAL_REQUESTED and part.approval is not None


def extract_text(message: Optional[Message]) -> str:
  """Concatenated text of a message's text parts."""
  if message is None:
    return ""
  return " ".join(part.text for part in message.parts if is_text_part(part))


def find_last_message(messages: List[Message], role: str) -> Optional[Message]:
  for message in reversed(messages):
    if message.role == role:
      return message
  return None


def get_completed_tool_call_ids(messages: List[Message]) -> Set[str]:
  completed: Set[str] = set()
  for message in messages:
    for part in message.parts:
      if is_tool_part(part) and is_terminal_state(part.state):
        completed.add(part.tool_call_id)
  return completed


def filter_superseded_tool_parts(messages: List[Message],
                                 completed_tool_call_ids: Set[str]) -> List[Message]:
  """Drop superseded and duplicate tool parts from assistant messages.

  Calls still in flight (including any state we do not recognise) are kept.
  For settled calls only the first terminal part survives. Messages left
  without parts are removed; everything else keeps its original order.
  """
  included: Set[str] = set()
  reduced: List[Message] = []
  for message in messages:
    if message.role != "assistant":
      reduced.append(message)
      continue

    kept_parts = []
    for part in message.parts:
      if not is_tool_part(part):
        kept_parts.append(part)
        continue
      if part.tool_call_id not in completed_tool_call_ids:
        kept_parts.append(part)
        continue
      if not is_terminal_state(part.state):
        continue
      if part.tool_call_id in included:
        continue
      included.add(part.tool_call_id)
      kept_parts.append(part)

    if not kept_parts:
      continue
    if len(kept_parts) == len(message.parts):
      reduced.append(message)
    else:
      reduced.append(message.model_copy(update={"parts": kept_parts}))
  return reduced


def reduce_transcript(messages: List[Message]) -> List[Message]:
  return filter_superseded_tool_parts(messages,
                                      get_completed_tool_call_ids(messages))


def parse_transcript(raw_messages: Any) -> List[Message]:
  if not isinstance(raw_messages, list):
    raise TranscriptValidationError("messages must be a list.")
  parsed: List[Message] = []
  for index, raw in enumerate(raw_messages):
    if isinstance(raw, Message):
      parsed.append(raw)
      continue
    try:
      parsed.append(Message.model_validate(raw))
    except ValidationError as exc:
      raise TranscriptValidationError(
          f"messages[{index}] is malformed: {exc}") from exc
  return parsed


def prepare_transcript(raw_messages: Any) -> List[Message]:
  """Validate and reduce an incoming transcript.

  Raises TranscriptValidationError when nothing usable is left.
  """
  messages = [msg for msg in parse_transcript(raw_messages) if msg.parts]
  messages = reduce_transcript(messages)
  if not messages:
    raise TranscriptValidationError("No messages provided")
  if messages[-1].role == "system":
    raise TranscriptValidationError("The last message cannot be a system message.")
  return messages

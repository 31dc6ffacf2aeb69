from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel

ToolExecutor = Callable[[BaseModel], Awaitable[Any]]
ToolSet = Dict[str, "Tool"]


@dataclass(frozen=True)
class Tool:
  """A function the model may call.

  ``execute`` is None for client-resolved tools: the call is surfaced to the
  caller and its output arrives with a later transcript.
  """
  name: str
  description: str
  input_model: Type[BaseModel]
  needs_approval: bool = False
  execute: Optional[ToolExecutor] = None

  @property
  def client_resolved(self) -> bool:
    return self.execute is None

  def parse_input(self, raw: Dict[str, Any]) -> BaseModel:
    return self.input_model.model_validate(raw)

  def openai_schema(self) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_model.model_json_schema(),
        },
    }


def tool_set(*tools: Tool) -> ToolSet:
  return {tool.name: tool for tool in tools}

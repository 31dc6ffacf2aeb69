from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field

from .messages import Message
from .tools import ToolSet

AgentRoute = Literal["calendar_only", "gmail_only", "gmail_then_cal", "general"]
ALL_ROUTES: List[str] = list(get_args(AgentRoute))
DEFAULT_ROUTE: AgentRoute = "general"
TurnKind = Literal["fresh", "continuation"]


class AgentContext(BaseModel):
  """Per-request context threaded through a pipeline.

  Frozen: every stage hands the next one a new copy.
  """
  model_config = ConfigDict(frozen=True)

  is_connected: bool = False
  timezone: str = "UTC"
  turn_kind: Optional[TurnKind] = None
  prior_agent_result: Optional[str] = None
  additional_context: str = ""
  force_tool: Optional[str] = None

  def with_prior_result(self, text: str) -> "AgentContext":
    return self.model_copy(update={"prior_agent_result": text})

  def with_pre_process(self, result: Optional["PreProcessResult"]) -> "AgentContext":
    if result is None:
      return self
    return self.model_copy(update={
        "additional_context": self.additional_context + result.additional_context,
        "force_tool": result.force_tool or self.force_tool,
    })


class PreProcessResult(BaseModel):
  additional_context: str = ""
  force_tool: Optional[str] = None


class ClassificationResult(BaseModel):
  model_config = ConfigDict(extra="ignore")

  route: AgentRoute = DEFAULT_ROUTE
  reasoning: str = Field(default="")


class AgentConfig(ABC):
  """One agent persona: instructions, tools and an optional pre-processing hook."""

  id: str = ""
  name: str = ""

  @abstractmethod
  def system_prompt(self, context: AgentContext) -> str:
    ...

  def tools(self, context: AgentContext) -> Optional[ToolSet]:
    return None

  async def pre_process(self, context: AgentContext,
                        messages: List[Message]) -> Optional[PreProcessResult]:
    return None

  def __repr__(self) -> str:
    return f"<{type(self).__name__} id={self.id!r}>"

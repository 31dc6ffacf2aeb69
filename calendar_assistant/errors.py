from __future__ import annotations


class TranscriptValidationError(ValueError):
  """Raised when a transcript cannot be handed to any model call."""


class AgentExecutionError(RuntimeError):
  """A headless (non-terminal) agent failed; the turn cannot continue."""

  def __init__(self, agent_id: str, detail: str) -> None:
    super().__init__(f"Agent '{agent_id}' failed: {detail}")
    self.agent_id = agent_id
    self.detail = detail


class CalendarNotConnected(RuntimeError):
  """No stored calendar credential is available."""


class ClientDisconnected(RuntimeError):
  """The caller went away before the turn was ready to stream."""

from __future__ import annotations

from ...utils import format_current_date
from ..types import AgentConfig, AgentContext

GENERAL_AGENT_BASE_PROMPT = """You are a helpful AI assistant. You can help with general questions and conversation.

You have access to calendar management capabilities. If the user asks about email/Gmail features, let them know that email integration is coming soon."""


class GeneralAgent(AgentConfig):
  """Fallback persona: plain conversation, no tools."""

  id = "general"
  name = "General Assistant"

  def system_prompt(self, context: AgentContext) -> str:
    prompt = f"{GENERAL_AGENT_BASE_PROMPT}\n\n{format_current_date(context.timezone)}"
    if context.prior_agent_result:
      prompt += f"\n\nContext from previous step:\n{context.prior_agent_result}"
    if context.additional_context:
      prompt += context.additional_context
    return prompt


general_agent = GeneralAgent()

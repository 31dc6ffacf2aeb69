from __future__ import annotations

from typing import List, Optional

from ...config import CONNECT_CALENDAR_PATH
from ...utils import format_current_date
from ..messages import Message
from ..tools import ToolSet
from ..types import AgentConfig, AgentContext, PreProcessResult
from .conflict_detection import check_for_scheduling_conflict
from .tools import CONFLICT_WARNING_TOOL, build_calendar_tools

CALENDAR_AGENT_BASE_PROMPT = f"""You are a helpful AI assistant with access to the user's Google Calendar.

You can help users:
- View their upcoming events
- Create new events and meetings
- Update existing events
- Delete events
- Search for specific events

IMPORTANT: When creating an event, if the user does not specify a time range (start and end time), you MUST ask them for the time before calling the createEvent tool. Do not assume or randomly select times. Example: "What time would you like the event to start and end?"

IMPORTANT: When updating an event, remember the event ID from when it was created. If you don't have the ID, use searchEvents to find it first, then use updateEvent.

IMPORTANT: When the user asks you to create, update, or delete an event, call the appropriate tool directly without asking for confirmation first. The user interface shows an approval dialog with all the event details before the action is executed. Do NOT ask "Shall I proceed?" or "Would you like me to create this?". Just call the tool.

IMPORTANT: If a tool call is rejected or denied by the user, they clicked "Reject" on the approval dialog. Acknowledge their decision politely (e.g., "No problem, I won't create that event") and ask if they'd like to make any changes or do something else. Do NOT assume the calendar is disconnected when a tool is rejected.

IMPORTANT: When creating recurring events, the start date should be the NEXT occurrence that matches the pattern. For example, if today is February 6th and the user wants "monthly on the 15th", start the event on February 15th, not a random future month.

IMPORTANT: When creating a recurring event, if the user does not specify how long the recurrence should last (no end date, no number of occurrences, no "for X months"), you MUST ask them before calling the createEvent tool. Example: "How long should this event repeat? For example: forever, for 10 occurrences, or until a specific date?"

IMPORTANT: The system automatically checks for scheduling conflicts before event creation. If a conflict was detected, the user has already been notified via the {CONFLICT_WARNING_TOOL} tool. When the {CONFLICT_WARNING_TOOL} tool result shows userDecision "create_anyway", the user has explicitly approved creating the event despite the overlap. You MUST immediately call createEvent with the originally requested time. Never override the user's decision by changing times or refusing to create the event.

Format dates and times clearly when displaying information to the user.
If the user hasn't connected their Google Calendar yet, let them know they need to visit {CONNECT_CALENDAR_PATH} to connect it."""


class CalendarAgent(AgentConfig):
  id = "calendar"
  name = "Calendar Agent"

  def system_prompt(self, context: AgentContext) -> str:
    prompt = f"{CALENDAR_AGENT_BASE_PROMPT}\n\n{format_current_date(context.timezone)}"
    if not context.is_connected:
      prompt += ("\n\nNote: Google Calendar is not connected yet. Ask the user to visit "
                 f"{CONNECT_CALENDAR_PATH} to connect it.")
    if context.prior_agent_result:
      prompt += f"\n\nContext from previous step:\n{context.prior_agent_result}"
    if context.additional_context:
      prompt += context.additional_context
    return prompt

  def tools(self, context: AgentContext) -> Optional[ToolSet]:
    if not context.is_connected:
      return None
    return build_calendar_tools(context.timezone)

  async def pre_process(self, context: AgentContext,
                        messages: List[Message]) -> Optional[PreProcessResult]:
    result = await check_for_scheduling_conflict(messages,
                                                 context.is_connected,
                                                 context.timezone,
                                                 turn_kind=context.turn_kind)
    return PreProcessResult(
        additional_context=result.prompt_context,
        force_tool=CONFLICT_WARNING_TOOL if result.has_conflict else None,
    )


calendar_agent = CalendarAgent()

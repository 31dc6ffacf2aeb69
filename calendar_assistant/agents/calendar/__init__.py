from .prompt import CalendarAgent, calendar_agent
from .tools import CONFLICT_WARNING_TOOL, build_calendar_tools

__all__ = [
    "CalendarAgent",
    "calendar_agent",
    "CONFLICT_WARNING_TOOL",
    "build_calendar_tools",
]

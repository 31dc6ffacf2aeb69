from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping, Tuple

from .calendar import calendar_agent
from .general import general_agent
from .types import AgentConfig

# Route -> ordered pipeline. The last agent streams; earlier ones run headless.
ROUTE_MAP: Mapping[str, Tuple[AgentConfig, ...]] = MappingProxyType({
    "calendar_only": (calendar_agent,),
    "general": (general_agent,),
    # Email routes fall back to the general agent until an email agent exists.
    "gmail_only": (general_agent,),
    "gmail_then_cal": (general_agent,),
})


def get_agent_pipeline(route: str) -> List[AgentConfig]:
  return list(ROUTE_MAP.get(route, (general_agent,)))


def get_available_routes() -> List[str]:
  return list(ROUTE_MAP)

from .prompt import GeneralAgent, general_agent

__all__ = ["GeneralAgent", "general_agent"]

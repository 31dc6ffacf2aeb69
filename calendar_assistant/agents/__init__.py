"""
Calendar assistant agents: routing, conflict checks and the tool loop.
"""

from .classifier import classify_intent
from .messages import Message, prepare_transcript, reduce_transcript
from .orchestrator import TurnStream, process_turn
from .registry import get_agent_pipeline, get_available_routes

__all__ = [
    "classify_intent",
    "Message",
    "prepare_transcript",
    "reduce_transcript",
    "TurnStream",
    "process_turn",
    "get_agent_pipeline",
    "get_available_routes",
]

from __future__ import annotations

import os
import pathlib

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

# -------------------------
# Agent models
# -------------------------
AGENT_MODEL = os.getenv("AGENT_MODEL", "gpt-5-mini").strip() or "gpt-5-mini"
AGENT_CLASSIFIER_MODEL = os.getenv("AGENT_CLASSIFIER_MODEL",
                                   "gpt-5-nano").strip() or "gpt-5-nano"
AGENT_CONFLICT_MODEL = os.getenv("AGENT_CONFLICT_MODEL",
                                 "gpt-5-nano").strip() or "gpt-5-nano"
MAX_TOOL_STEPS = int(os.getenv("MAX_TOOL_STEPS", "10"))
DEFAULT_EVENT_DURATION_MINUTES = 60
DEFAULT_TIMEZONE = os.getenv("AGENT_TIMEZONE", "UTC").strip() or "UTC"

# -------------------------
# Google Calendar
# -------------------------
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = ["https://www.googleapis.com/auth/calendar"]
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
GOOGLE_TOKEN_FILE = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_FILE", str(BASE_DIR / "token.json")))
CONNECT_CALENDAR_PATH = os.getenv("CONNECT_CALENDAR_PATH", "/api/auth/google")

# -------------------------
# HTTP
# -------------------------
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "")
cors_origins: list[str] = [
    origin.strip() for origin in CORS_ALLOW_ORIGINS.split(",") if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
DISCONNECT_POLL_SECONDS = 0.5

# -------------------------
# Transcription
# -------------------------
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1").strip() or "whisper-1"
TRANSCRIPTION_LANGUAGE = "en"

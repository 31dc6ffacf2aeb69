from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  # Validated by prepare_transcript so malformed turns map to 400.
  messages: List[Any] = Field(default_factory=list)
  timezone: Optional[str] = None
  turn_kind: Optional[Literal["fresh", "continuation"]] = Field(default=None,
                                                               alias="turnKind")


class GoogleStatus(BaseModel):
  connected: bool


class TranscriptionResult(BaseModel):
  text: str

from __future__ import annotations

from typing import Optional

from openai import AsyncOpenAI

from .config import OPENAI_API_KEY

async_client: Optional[AsyncOpenAI] = AsyncOpenAI(
    api_key=OPENAI_API_KEY) if OPENAI_API_KEY else None


def get_async_client() -> AsyncOpenAI:
  if async_client is None:
    raise RuntimeError("OPENAI_API_KEY is not set")
  return async_client

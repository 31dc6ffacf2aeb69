from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import StreamingResponse

from . import config
from .agents.messages import prepare_transcript
from .agents.orchestrator import process_turn
from .config import TRANSCRIPTION_LANGUAGE, TRANSCRIPTION_MODEL
from .errors import AgentExecutionError, ClientDisconnected, TranscriptValidationError
from .gcal import is_authenticated
from .llm import get_async_client
from .models import ChatRequest, GoogleStatus, TranscriptionResult
from .utils import _format_sse_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/healthz")
def healthz():
  return {"ok": True}


@router.get("/api/google/status", response_model=GoogleStatus)
def google_status():
  return GoogleStatus(connected=is_authenticated())


async def _unless_disconnected(request: Request, awaitable: Awaitable[Any]) -> Any:
  """Await ``awaitable``, cancelling it if the client goes away meanwhile."""
  task = asyncio.ensure_future(awaitable)
  try:
    while True:
      done, _ = await asyncio.wait({task}, timeout=config.DISCONNECT_POLL_SECONDS)
      if done:
        return task.result()
      if await request.is_disconnected():
        task.cancel()
        raise ClientDisconnected()
  finally:
    if not task.done():
      task.cancel()


@router.post("/api/chat")
async def chat(body: ChatRequest, request: Request):
  try:
    messages = prepare_transcript(body.messages)
  except TranscriptValidationError as exc:
    raise HTTPException(status_code=400, detail=str(exc))

  is_connected = await asyncio.to_thread(is_authenticated)
  try:
    turn = await _unless_disconnected(
        request,
        process_turn(messages,
                     is_connected,
                     turn_kind=body.turn_kind,
                     timezone_name=body.timezone))
  except AgentExecutionError as exc:
    logger.error("Turn aborted: %s", exc)
    raise HTTPException(status_code=502, detail=str(exc))
  except ClientDisconnected:
    logger.info("Client disconnected before the turn was ready")
    return Response(status_code=499)

  async def event_generator():
    events = turn.events()
    try:
      async for event in events:
        if await request.is_disconnected():
          logger.info("Client disconnected; abandoning %s", turn.message_id)
          break
        yield _format_sse_event(str(event.get("type") or "message"), event)
    finally:
      await events.aclose()

  return StreamingResponse(
      event_generator(),
      media_type="text/event-stream",
      headers={
          "Cache-Control": "no-cache",
          "Connection": "keep-alive",
          "X-Accel-Buffering": "no",
      },
  )


@router.post("/api/transcribe", response_model=TranscriptionResult)
async def transcribe(file: Optional[UploadFile] = File(None)):
  if file is None:
    raise HTTPException(status_code=400, detail="No audio file provided")
  audio = await file.read()
  try:
    result = await get_async_client().audio.transcriptions.create(
        model=TRANSCRIPTION_MODEL,
        file=(file.filename or "audio.webm", audio,
              file.content_type or "application/octet-stream"),
        language=TRANSCRIPTION_LANGUAGE,
    )
  except Exception as exc:
    logger.exception("Transcription failed")
    raise HTTPException(status_code=500,
                        detail="Transcription failed. Please try again.") from exc
  return TranscriptionResult(text=result.text)

"""
Gateway API.

Protected routes (bearer credential required):
- POST /api/v1/transcriptions            batch transcription of a WAV body
- WS   /api/v1/transcribe/stream         streaming transcription
- POST /voice-chat                       one voice turn: audio in, spoken reply out
- POST /api/v1/voice-sessions            create a voice session
- GET  /api/v1/voice-sessions/{id}       session with its turns
- GET  /api/v1/voice-sessions/{id}/events pipeline events for a live session

Errors use the stable body from gateway.errors. Client disconnects cancel
in-flight pipeline work.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, List, Optional, TypeVar

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from starlette.datastructures import FormData
from starlette.formparsers import FormParser, MultiPartException, MultiPartParser

from logging_setup import get_logger, Component
from observability.event_store import event_store
from voice_pipeline.errors import DecodeError, InvalidAudio, StreamClosed
from voice_pipeline.pipeline import VoicePipeline
from voice_pipeline.session_store import SessionHandle, normalize_session_id
from voice_pipeline.streaming import EventType, StreamingTranscriber, TranscriptEvent
from .auth import Unauthorized, authenticate_websocket, require_api_key
from .errors import ErrorCategory, GatewayError

T = TypeVar("T")

router = APIRouter(dependencies=[Depends(require_api_key)], tags=["voice"])
stream_router = APIRouter(tags=["voice"])
logger = get_logger(Component.GATEWAY)

# Client-side close codes
WS_CLOSE_UNAUTHORIZED = 4401
WS_CLOSE_INVALID_DATA = 1007
WS_CLOSE_INTERNAL_ERROR = 1011

# Multipart framing around the audio part
_MULTIPART_OVERHEAD = 64 * 1024


def _pipeline(request: Request) -> VoicePipeline:
    return request.app.state.pipeline


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_declared_length(request: Request, limit: int) -> None:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise GatewayError(413, ErrorCategory.PAYLOAD_TOO_LARGE)


async def _limited_stream(request: Request, limit: int) -> AsyncIterator[bytes]:
    """Yield body chunks, failing with 413 as soon as the total exceeds `limit`."""
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise GatewayError(413, ErrorCategory.PAYLOAD_TOO_LARGE)
        yield chunk


async def _read_body(request: Request, limit: int) -> bytes:
    _check_declared_length(request, limit)
    return b"".join([chunk async for chunk in _limited_stream(request, limit)])


async def _read_form(request: Request, limit: int) -> FormData:
    """
    Parse a form body, enforcing `limit` while the body streams in.

    Chunked uploads carry no Content-Length, so the cap has to hold before
    anything is spooled.
    """
    _check_declared_length(request, limit)
    content_type = request.headers.get("content-type", "")
    stream = _limited_stream(request, limit)
    try:
        if content_type.startswith("multipart/form-data"):
            return await MultiPartParser(request.headers, stream).parse()
        if content_type.startswith("application/x-www-form-urlencoded"):
            return await FormParser(request.headers, stream).parse()
    except MultiPartException as e:
        raise GatewayError(400, ErrorCategory.MISSING_AUDIO, "malformed_form") from e
    return FormData()


async def _run_until_disconnect(request: Request, operation: Awaitable[T]) -> T:
    """
    Await `operation`, cancelling it if the client goes away first.
    """
    poll_seconds = request.app.state.gateway_config.disconnect_poll_seconds
    task = asyncio.ensure_future(operation)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_seconds)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling request work", path=request.url.path)
                task.cancel()
                raise GatewayError(499, ErrorCategory.CLIENT_DISCONNECTED)
    finally:
        if not task.done():
            task.cancel()


# --- Batch transcription ---


class TranscriptionResponse(BaseModel):
    id: str
    status: str
    text: str
    language: str
    duration: float
    timestamp: str


@router.post("/api/v1/transcriptions", response_model=TranscriptionResponse)
async def transcribe_batch(request: Request) -> TranscriptionResponse:
    """Transcribe a 16kHz mono 16-bit WAV sent as the raw request body."""
    config = request.app.state.gateway_config
    body = await _read_body(request, config.max_transcription_bytes)
    if not body:
        raise InvalidAudio("Audio payload is empty")

    pipeline = _pipeline(request)
    result = await _run_until_disconnect(request, pipeline.batch.transcribe_detailed(body))

    return TranscriptionResponse(
        id=str(uuid.uuid4()),
        status="success",
        text=result.text,
        language=pipeline.config.stt_language,
        duration=round(result.duration_seconds, 3),
        timestamp=_now_iso(),
    )


# --- Streaming transcription ---


def _is_end_of_utterance(text: str) -> bool:
    text = text.strip()
    if text.upper() == "FINISH":
        return True
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return False
    return isinstance(message, dict) and message.get("type") in ("end_of_utterance", "finish")


async def _receive_audio(websocket: WebSocket, stream: StreamingTranscriber) -> bool:
    """
    Forward client frames into the stream.

    Returns True if the client disconnected, False once the utterance ended
    (end signal received or the stream closed itself).
    """
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return True

        try:
            if message.get("bytes") is not None:
                await stream.push_frame(message["bytes"])
            elif message.get("text") is not None:
                if _is_end_of_utterance(message["text"]):
                    await stream.finish()
                    return False
                logger.debug("Ignoring unknown text message on transcription stream")
        except StreamClosed:
            return False


async def _send_events(websocket: WebSocket, stream: StreamingTranscriber) -> Optional[TranscriptEvent]:
    """Relay transcript events to the client; returns the last event sent."""
    last: Optional[TranscriptEvent] = None
    async for event in stream.events():
        await websocket.send_json(event.to_dict())
        last = event
    return last


def _close_code_for(event: Optional[TranscriptEvent]) -> int:
    if event is None or event.type is not EventType.ERROR:
        return 1000
    if event.error == ErrorCategory.INVALID_AUDIO:
        return WS_CLOSE_INVALID_DATA
    return WS_CLOSE_INTERNAL_ERROR


async def _relay_stream(websocket: WebSocket, stream: StreamingTranscriber) -> Optional[int]:
    """
    Run receive and send concurrently. Returns the close code to use, or None
    when the client is already gone.
    """
    receiver = asyncio.create_task(_receive_audio(websocket, stream))
    sender = asyncio.create_task(_send_events(websocket, stream))
    try:
        done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
        if receiver in done:
            if receiver.result():
                return None
            last = await sender
        else:
            last = sender.result()
        return _close_code_for(last)
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info("Transcription client went away", connection_id=stream.connection_id, error_type=type(e).__name__)
        return None
    finally:
        for task in (receiver, sender):
            if not task.done():
                task.cancel()
        await asyncio.gather(receiver, sender, return_exceptions=True)


@stream_router.websocket("/api/v1/transcribe/stream")
async def transcribe_stream(websocket: WebSocket) -> None:
    """
    Streaming transcription over WebSocket.

    Client -> server: binary frames of 16kHz mono 16-bit PCM, then the text
    message "FINISH" (or {"type": "end_of_utterance"}).
    Server -> client: JSON events {type: partial|final|error, seq, result, error, timestamp}.
    The server closes the socket after the final or error event.
    """
    try:
        authenticate_websocket(websocket)
    except Unauthorized:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    pipeline: VoicePipeline = websocket.app.state.pipeline

    try:
        async with pipeline.open_stream() as stream:
            close_code = await _relay_stream(websocket, stream)
    except DecodeError as e:
        # Decoder could not be created; nothing was decoded
        logger.error("Transcription stream unavailable", error=str(e))
        event = TranscriptEvent(type=EventType.ERROR, seq=1, error=e.code, message="Speech decoder unavailable")
        try:
            await websocket.send_json(event.to_dict())
        except (WebSocketDisconnect, RuntimeError):
            return
        close_code = WS_CLOSE_INTERNAL_ERROR

    if close_code is not None:
        try:
            await websocket.close(code=close_code)
        except RuntimeError:
            # Socket already closed by the client
            pass


# --- Voice chat ---


@router.post("/voice-chat")
async def voice_chat(request: Request) -> Response:
    """
    One voice turn.

    Multipart fields:
    - audio: 16kHz mono 16-bit WAV file
    - voice_session_id: UUID identifying the conversation

    Returns audio/mpeg on success, or a JSON body with status "degraded" when
    the reply was generated but could not be spoken.
    """
    config = request.app.state.gateway_config
    limit = config.max_voice_chat_bytes
    form = await _read_form(request, limit + _MULTIPART_OVERHEAD)
    try:
        upload = form.get("audio")
        if upload is None or isinstance(upload, str):
            raise GatewayError(400, ErrorCategory.MISSING_AUDIO)
        audio = await upload.read(limit + 1)
        if len(audio) > limit:
            raise GatewayError(413, ErrorCategory.PAYLOAD_TOO_LARGE)
        if not audio:
            raise GatewayError(400, ErrorCategory.MISSING_AUDIO)

        raw_session_id = form.get("voice_session_id")
        if not isinstance(raw_session_id, str) or not raw_session_id.strip():
            raise GatewayError(400, ErrorCategory.MISSING_SESSION_ID)
        session_id = normalize_session_id(raw_session_id)
    finally:
        await form.close()

    result = await _run_until_disconnect(request, _pipeline(request).orchestrator.handle_turn(session_id, audio))

    headers = {
        "X-Voice-Session-Id": result.session_id,
        "X-Turn-Id": result.turn_id,
        "X-Turn-Status": result.status,
    }
    if result.degraded:
        return JSONResponse(
            status_code=200,
            content={
                "status": "degraded",
                "session_id": result.session_id,
                "turn_id": result.turn_id,
                "transcript": result.transcript,
                "reply": result.reply,
                "error": ErrorCategory.SYNTHESIS_FAILED,
                "reason": result.synthesis_error,
            },
            headers=headers,
        )
    return Response(content=result.audio, media_type=result.content_type or "audio/mpeg", headers=headers)


# --- Voice session read API ---


class CreateSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Caller-chosen UUID")


class TurnModel(BaseModel):
    transcript: str
    reply: str
    timestamp: str


class VoiceSessionDetail(BaseModel):
    session_id: str
    created_at: str
    last_activity: str
    expires_at: str
    turn_count: int
    turns: List[TurnModel] = Field(default_factory=list)


def _session_detail(handle: SessionHandle) -> VoiceSessionDetail:
    return VoiceSessionDetail(
        session_id=handle.session_id,
        created_at=handle.created_at.isoformat(),
        last_activity=handle.last_activity.isoformat(),
        expires_at=handle.expires_at.isoformat(),
        turn_count=len(handle.turns),
        turns=[TurnModel(**turn.to_dict()) for turn in handle.turns],
    )


@router.post("/api/v1/voice-sessions", status_code=201, response_model=VoiceSessionDetail)
async def create_voice_session(req: CreateSessionRequest, request: Request) -> VoiceSessionDetail:
    return _session_detail(_pipeline(request).store.create(req.session_id))


@router.get("/api/v1/voice-sessions/{session_id}", response_model=VoiceSessionDetail)
async def get_voice_session(session_id: str, request: Request) -> VoiceSessionDetail:
    return _session_detail(_pipeline(request).store.get(session_id))


@router.get("/api/v1/voice-sessions/{session_id}/events")
async def get_voice_session_events(
    session_id: str,
    request: Request,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """Pipeline events for a live session, oldest first."""
    handle = _pipeline(request).store.get(session_id)
    events: List[Any] = event_store.query(
        session_id=handle.session_id,
        event_type=event_type,
        limit=limit,
    )
    return {
        "session_id": handle.session_id,
        "events": events,
        "count": len(events),
    }

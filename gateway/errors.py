"""
Maps voice pipeline errors to stable HTTP error responses.

Error bodies never carry internal traces or provider details:
    {"error": <category>, "reason": <reason>, "message": ..., "code": <status>, "timestamp": ...}
"""
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from logging_setup import get_logger, Component
from voice_pipeline.errors import (
    DecodeError,
    GenerationError,
    InvalidAudio,
    InvalidSessionId,
    NoSpeechDetected,
    SessionAlreadyExists,
    SessionError,
    SessionNotFound,
    SynthesisError,
    TranscriptionError,
    VoicePipelineError,
)

logger = get_logger(Component.GATEWAY)


class ErrorCategory:
    """Stable error categories returned to clients."""

    UNAUTHORIZED = "unauthorized"
    INVALID_AUDIO = "invalid_audio"
    MISSING_AUDIO = "missing_audio"
    MISSING_SESSION_ID = "missing_session_id"
    INVALID_SESSION_ID = "invalid_session_id"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    SESSION_EXISTS = "session_exists"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_UNAVAILABLE = "session_unavailable"
    NO_SPEECH_DETECTED = "no_speech_detected"
    TRANSCRIPTION_FAILED = "transcription_failed"
    DECODE_ERROR = "decode_error"
    GENERATION_FAILED = "generation_failed"
    SYNTHESIS_FAILED = "synthesis_failed"
    CLIENT_DISCONNECTED = "client_disconnected"
    INTERNAL_ERROR = "internal_error"


# Ordered: subclasses before their bases
_ERROR_MAP = (
    (InvalidAudio, 400, ErrorCategory.INVALID_AUDIO),
    (InvalidSessionId, 400, ErrorCategory.INVALID_SESSION_ID),
    (SessionAlreadyExists, 409, ErrorCategory.SESSION_EXISTS),
    (SessionNotFound, 404, ErrorCategory.SESSION_NOT_FOUND),
    (SessionError, 503, ErrorCategory.SESSION_UNAVAILABLE),
    (NoSpeechDetected, 422, ErrorCategory.NO_SPEECH_DETECTED),
    (TranscriptionError, 422, ErrorCategory.TRANSCRIPTION_FAILED),
    (DecodeError, 500, ErrorCategory.DECODE_ERROR),
    (GenerationError, 502, ErrorCategory.GENERATION_FAILED),
    (SynthesisError, 502, ErrorCategory.SYNTHESIS_FAILED),
)


def classify_error(error: VoicePipelineError) -> Tuple[int, str]:
    """Return (http_status, category) for a pipeline error."""
    for error_cls, status, category in _ERROR_MAP:
        if isinstance(error, error_cls):
            if status == 502 and error.reason == "timeout":
                return 504, category
            return status, category
    return 500, ErrorCategory.INTERNAL_ERROR


_MESSAGES = {
    ErrorCategory.UNAUTHORIZED: "Missing or invalid API credential",
    ErrorCategory.INVALID_AUDIO: "Audio must be a 16kHz mono 16-bit PCM WAV",
    ErrorCategory.MISSING_AUDIO: "Missing 'audio' field",
    ErrorCategory.MISSING_SESSION_ID: "Missing 'voice_session_id' field",
    ErrorCategory.INVALID_SESSION_ID: "voice_session_id must be a UUID",
    ErrorCategory.PAYLOAD_TOO_LARGE: "Request body too large",
    ErrorCategory.SESSION_EXISTS: "Voice session already exists",
    ErrorCategory.SESSION_NOT_FOUND: "Voice session not found or expired",
    ErrorCategory.SESSION_UNAVAILABLE: "Voice session store unavailable",
    ErrorCategory.NO_SPEECH_DETECTED: "No speech detected in audio",
    ErrorCategory.TRANSCRIPTION_FAILED: "Audio could not be transcribed",
    ErrorCategory.DECODE_ERROR: "Speech decoder failed",
    ErrorCategory.GENERATION_FAILED: "Reply generation failed",
    ErrorCategory.SYNTHESIS_FAILED: "Speech synthesis failed",
    ErrorCategory.CLIENT_DISCONNECTED: "Client closed the request",
    ErrorCategory.INTERNAL_ERROR: "Internal server error",
}


def error_body(status: int, category: str, reason: Optional[str] = None) -> dict:
    return {
        "error": category,
        "reason": reason or category,
        "message": _MESSAGES.get(category, _MESSAGES[ErrorCategory.INTERNAL_ERROR]),
        "code": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def error_response(status: int, category: str, reason: Optional[str] = None, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status, content=error_body(status, category, reason), headers=headers)


class GatewayError(Exception):
    """Request-level failure raised by routes (auth, validation, limits)."""

    def __init__(self, status: int, category: str, reason: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(category)
        self.status = status
        self.category = category
        self.reason = reason or category
        self.headers = headers


class Unauthorized(GatewayError):
    def __init__(self, reason: str = "missing_credential"):
        super().__init__(401, ErrorCategory.UNAUTHORIZED, reason, headers={"WWW-Authenticate": "Bearer"})


async def pipeline_error_handler(request: Request, exc: VoicePipelineError) -> JSONResponse:
    status, category = classify_error(exc)
    log = logger.warning if status < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        status_code=status,
        error=category,
        reason=exc.reason,
        error_type=type(exc).__name__,
    )
    return error_response(status, category, exc.reason)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    logger.warning(
        "Request rejected",
        path=request.url.path,
        status_code=exc.status,
        error=exc.category,
        reason=exc.reason,
    )
    return error_response(exc.status, exc.category, exc.reason, headers=exc.headers)

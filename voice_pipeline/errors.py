"""
Voice pipeline error taxonomy.

Every error carries a stable `code` (per class) and a `reason` (per instance)
so the gateway can map it to an HTTP response without inspecting messages.
"""
from typing import Optional


class VoicePipelineError(Exception):
    """Base class for all voice pipeline failures."""

    code = "pipeline_error"

    def __init__(self, message: str = "", *, reason: Optional[str] = None):
        super().__init__(message or self.code)
        self.reason = reason or self.code


# --- Audio / decoding ---

class InvalidAudio(VoicePipelineError):
    """Audio payload is malformed or not 16kHz mono 16-bit PCM."""

    code = "invalid_audio"


class DecodeError(VoicePipelineError):
    """The speech decoder faulted internally."""

    code = "decode_error"


class NoSpeechDetected(VoicePipelineError):
    """Decoding finished but produced no words."""

    code = "no_speech_detected"


class StreamClosed(VoicePipelineError):
    """A frame or signal was pushed into a stream that is already closed."""

    code = "stream_closed"


# --- Sessions ---

class SessionError(VoicePipelineError):
    """The session store could not serve the request."""

    code = "session_unavailable"


class InvalidSessionId(SessionError):
    code = "invalid_session_id"


class SessionAlreadyExists(SessionError):
    code = "session_exists"


class SessionNotFound(VoicePipelineError):
    """The session is unknown or has expired."""

    code = "session_not_found"


# --- Stages ---

class TranscriptionError(VoicePipelineError):
    code = "transcription_failed"


class RetrievalError(VoicePipelineError):
    code = "retrieval_failed"


class GenerationError(VoicePipelineError):
    code = "generation_failed"


class SynthesisError(VoicePipelineError):
    code = "synthesis_failed"

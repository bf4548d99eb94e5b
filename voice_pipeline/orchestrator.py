"""
Voice orchestrator.

Runs one voice-chat turn end to end:

    resolve session -> transcribe -> retrieve -> generate -> persist turn -> synthesize

Failure policy per stage:
- transcription, generation: mandatory (the turn fails, nothing is persisted)
- retrieval: best-effort (the turn continues without context)
- synthesis: degraded (the turn is persisted and returned without audio)

No stage is retried, and replays are not deduplicated: every accepted call
appends a new turn.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from logging_setup import get_logger, Component
from .batch import BatchTranscriber
from .config import VoiceConfig
from .errors import (
    GenerationError,
    RetrievalError,
    SessionError,
    SynthesisError,
    TranscriptionError,
    VoicePipelineError,
)
from .generation import Generator, GenerationResult, build_messages
from .instructions import Persona
from .observability import TurnObserver
from .retrieval import RetrievedSnippet, Retriever
from .session_store import SessionHandle, SessionStore, Turn
from .stages import FailurePolicy, Stage, StageOutcome, run_stage
from .synthesis import SynthesizedAudio, Synthesizer

logger = get_logger(Component.ORCHESTRATOR)


@dataclass(frozen=True)
class TurnResult:
    session_id: str
    turn_id: str
    transcript: str
    reply: str
    audio: Optional[bytes] = None
    content_type: Optional[str] = None
    degraded: bool = False
    synthesis_error: Optional[str] = None
    context_snippets: int = 0

    @property
    def status(self) -> str:
        return "degraded" if self.degraded else "complete"


def build_stages(config: VoiceConfig) -> dict:
    """Stage declarations with timeouts from config."""
    return {
        "transcription": Stage("transcription", FailurePolicy.MANDATORY,
                               config.transcription_timeout_seconds, TranscriptionError),
        "retrieval": Stage("retrieval", FailurePolicy.BEST_EFFORT,
                           config.retrieval_timeout_seconds, RetrievalError),
        "generation": Stage("generation", FailurePolicy.MANDATORY,
                            config.generation_timeout_seconds, GenerationError),
        "synthesis": Stage("synthesis", FailurePolicy.DEGRADED,
                           config.synthesis_timeout_seconds, SynthesisError),
    }


class VoiceOrchestrator:
    """Composes the voice-chat pipeline around the session store."""

    def __init__(
        self,
        store: SessionStore,
        transcriber: BatchTranscriber,
        retriever: Retriever,
        generator: Generator,
        synthesizer: Synthesizer,
        *,
        persona: Persona,
        config: Optional[VoiceConfig] = None,
    ):
        config = config or VoiceConfig()
        self.store = store
        self.transcriber = transcriber
        self.retriever = retriever
        self.generator = generator
        self.synthesizer = synthesizer
        self.persona = persona
        self.top_k = config.retrieval_top_k
        self.stages = build_stages(config)

    def _resolve_session(self, session_id: str) -> SessionHandle:
        try:
            return self.store.get_or_create(session_id)
        except SessionError:
            raise
        except Exception as e:
            logger.error("Session store unavailable", error=str(e), error_type=type(e).__name__)
            raise SessionError("Voice session store unavailable") from e

    async def handle_turn(self, session_id: str, audio: bytes) -> TurnResult:
        """
        Run one turn for `session_id` with the uploaded WAV `audio`.

        Raises:
            SessionError / InvalidSessionId: the session could not be resolved
            TranscriptionError: audio could not be transcribed (nothing persisted)
            GenerationError: no reply could be generated (nothing persisted)
            SessionNotFound: the session expired before the turn was persisted
        """
        session = self._resolve_session(session_id)
        observer = TurnObserver(session.session_id)
        observer.turn_started(audio_bytes=len(audio), history_turns=len(session.turns))

        stage = "transcription"
        try:
            stt: StageOutcome[str] = await run_stage(
                self.stages["transcription"],
                lambda: self.transcriber.transcribe(audio),
                observer,
            )
            transcript = stt.value or ""
            observer.transcript_final(transcript)

            stage = "retrieval"
            retrieval: StageOutcome[List[RetrievedSnippet]] = await run_stage(
                self.stages["retrieval"],
                lambda: self.retriever.search(transcript, self.top_k),
                observer,
                fallback=[],
            )
            context = retrieval.value or []

            stage = "generation"
            messages = build_messages(self.persona.prompt, session.turns, transcript, context)
            generation: StageOutcome[GenerationResult] = await run_stage(
                self.stages["generation"],
                lambda: self.generator.generate(messages),
                observer,
            )
            reply = generation.value.text

            stage = "persist"
            self.store.append_turn(session.session_id, Turn(transcript=transcript, reply=reply))
        except VoicePipelineError as e:
            observer.turn_failed(stage, e.reason)
            raise

        synthesis: StageOutcome[SynthesizedAudio] = await run_stage(
            self.stages["synthesis"],
            lambda: self.synthesizer.synthesize(reply, self.persona.voice_id),
            observer,
        )

        if not synthesis.ok:
            reason = synthesis.error.reason if synthesis.error else "unknown"
            observer.turn_completed(reply, degraded=True, reason=reason)
            return TurnResult(
                session_id=session.session_id,
                turn_id=observer.turn_id,
                transcript=transcript,
                reply=reply,
                degraded=True,
                synthesis_error=reason,
                context_snippets=len(context),
            )

        observer.turn_completed(reply, degraded=False)
        return TurnResult(
            session_id=session.session_id,
            turn_id=observer.turn_id,
            transcript=transcript,
            reply=reply,
            audio=synthesis.value.audio,
            content_type=synthesis.value.content_type,
            context_snippets=len(context),
        )

"""
Voice turn observability.

Emits one structured event per lifecycle step of a voice-chat turn:
turn.started -> stage.completed / stage.suppressed / stage.failed ... ->
turn.completed | turn.degraded | turn.failed

All events of a turn share the turn_id as correlation_id. Transcript and
reply text are only included in events flagged as PII.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity, pii_block


logger = get_logger(LogComponent.ORCHESTRATOR)


def new_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex[:16]}"


class TurnObserver:
    """Tracks timing for one turn and emits its events."""

    def __init__(
        self,
        session_id: str,
        *,
        turn_id: Optional[str] = None,
        now: Callable[[], float] = time.perf_counter,
    ):
        self.session_id = session_id
        self.turn_id = turn_id or new_turn_id()
        self.emitter = EventEmitter(ObsComponent.VOICE_PIPELINE)
        self.logger = logger.with_session(session_id)
        self._now = now
        self._started_ts = now()

    def elapsed_ms(self) -> int:
        return int((self._now() - self._started_ts) * 1000)

    def _emit(self, event_type: str, severity: Severity = Severity.INFO, **kwargs: Any) -> None:
        self.emitter.emit(
            event_type,
            session_id=self.session_id,
            severity=severity,
            correlation_id=self.turn_id,
            turn_id=self.turn_id,
            **kwargs,
        )

    def turn_started(self, audio_bytes: int, history_turns: int) -> None:
        self._started_ts = self._now()
        self._emit("turn.started", audio_bytes=audio_bytes, history_turns=history_turns)

    def stage_completed(self, stage: str, latency_ms: int, **fields: Any) -> None:
        self.logger.info(f"{stage} stage completed", stage=stage, latency_ms=latency_ms, **fields)
        self._emit("stage.completed", stage=stage, latency_ms=latency_ms, **fields)

    def stage_suppressed(self, stage: str, latency_ms: int, reason: str) -> None:
        self.logger.warning(f"{stage} stage failed; continuing without it", stage=stage, reason=reason, latency_ms=latency_ms)
        self._emit("stage.suppressed", Severity.WARN, stage=stage, reason=reason, latency_ms=latency_ms)

    def stage_failed(self, stage: str, latency_ms: int, reason: str) -> None:
        self.logger.error(f"{stage} stage failed", stage=stage, reason=reason, latency_ms=latency_ms)
        self._emit("stage.failed", Severity.ERROR, stage=stage, reason=reason, latency_ms=latency_ms)

    def transcript_final(self, transcript: str) -> None:
        self._emit(
            "stt.final",
            pii=pii_block("transcript"),
            transcript=transcript,
            transcript_length=len(transcript),
        )

    def turn_completed(self, reply: str, *, degraded: bool, reason: Optional[str] = None) -> None:
        latency_ms = self.elapsed_ms()
        if degraded:
            self.logger.warning("Turn completed without audio", reason=reason, latency_ms=latency_ms)
            self._emit(
                "turn.degraded",
                Severity.WARN,
                pii=pii_block("reply"),
                reply=reply,
                reason=reason,
                latency_ms=latency_ms,
            )
            return
        self.logger.info("Turn completed", latency_ms=latency_ms)
        self._emit("turn.completed", pii=pii_block("reply"), reply=reply, latency_ms=latency_ms)

    def turn_failed(self, stage: str, reason: str) -> None:
        self._emit("turn.failed", Severity.ERROR, stage=stage, reason=reason, latency_ms=self.elapsed_ms())

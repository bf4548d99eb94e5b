"""
Streaming transcription engine.

One StreamingTranscriber per connection. Raw PCM frames are pushed into a
bounded queue, a worker task feeds them to the connection's decoder in
arrival order, and transcript events come out of a second bounded queue.

State machine:
    OPEN -> ACCUMULATING -> FINALIZING -> CLOSED
    (any state) -> CLOSED on invalid audio, decoder fault or close

Guarantees:
- Events carry strictly increasing sequence numbers in audio order
- At most one final event per stream; none after an error
- The decoder is released exactly once, on every path into CLOSED
- A slow event consumer backs up into the frame queue and then the producer
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Dict, Optional

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity
from .audio import AudioFormat, PCM_16K_MONO, validate_frame
from .decoder import Decoder, DecoderFactory
from .errors import DecodeError, InvalidAudio, StreamClosed, VoicePipelineError

logger = get_logger(Component.STT)
emitter = EventEmitter(ObsComponent.VOICE_PIPELINE)

# Queued after the last frame to request finalization
_END_OF_UTTERANCE = object()


class StreamState(str, Enum):
    OPEN = "open"
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class EventType(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptEvent:
    type: EventType
    seq: int
    text: str = ""
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Wire format sent to streaming clients."""
        return {
            "type": self.type.value,
            "seq": self.seq,
            "result": None if self.type is EventType.ERROR else self.text,
            "error": self.error,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class StreamingTranscriber:
    """
    Per-connection streaming transcription.

    Usage:
        async with StreamingTranscriber(factory) as stream:
            await stream.push_frame(pcm)
            await stream.finish()
            async for event in stream.events():
                ...
    """

    def __init__(
        self,
        decoder_factory: DecoderFactory,
        *,
        queue_capacity: int = 32,
        max_frame_bytes: int = 32000,
        audio_format: AudioFormat = PCM_16K_MONO,
        connection_id: Optional[str] = None,
    ):
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be at least 1")
        self.connection_id = connection_id or f"stream_{uuid.uuid4().hex[:12]}"
        self.max_frame_bytes = max_frame_bytes
        self.audio_format = audio_format
        self.logger = logger.with_session(self.connection_id)

        self._factory = decoder_factory
        self._decoder: Optional[Decoder] = None
        self._frames: asyncio.Queue = asyncio.Queue(maxsize=queue_capacity)
        self._events: asyncio.Queue = asyncio.Queue(maxsize=queue_capacity)
        self._closed = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None

        self._state = StreamState.OPEN
        self._seq = 0
        self._hypothesis = ""
        self._final_emitted = False
        self._finish_requested = False
        self._aborted = False
        self._opened = False
        self._frames_consumed = 0
        self._started_ts = time.perf_counter()

    # --- Introspection ---

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def frames_consumed(self) -> int:
        return self._frames_consumed

    @property
    def decoder_released(self) -> bool:
        return self._opened and self._decoder is None

    # --- Lifecycle ---

    async def open(self) -> "StreamingTranscriber":
        if self._opened:
            raise StreamClosed("Stream already opened")
        self._opened = True
        try:
            self._decoder = await asyncio.to_thread(self._factory.create)
        except Exception as e:
            self._enter_closed("decoder_unavailable")
            if isinstance(e, DecodeError):
                raise
            raise DecodeError(f"Failed to create decoder: {e}") from e

        self._worker = asyncio.create_task(self._run(), name=f"stt-{self.connection_id}")
        self.logger.info("Transcription stream opened")
        emitter.emit("stream.opened", session_id=self.connection_id)
        return self

    async def aclose(self) -> None:
        """Close the stream now. Pending producers and consumers are released."""
        if self._state is not StreamState.CLOSED:
            self._aborted = True
            self._enter_closed("aborted")

        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        await self._release_decoder()

    async def __aenter__(self) -> "StreamingTranscriber":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --- Producer side ---

    async def push_frame(self, frame: bytes) -> None:
        """Queue one PCM frame. Suspends while the queue is full."""
        if self._worker is None or self._closed.is_set():
            raise StreamClosed("Transcription stream is closed")
        if self._finish_requested:
            raise StreamClosed("End of utterance already signalled")
        await self._until_closed(self._frames.put(bytes(frame)))

    async def finish(self) -> None:
        """Signal end of utterance. The final event follows the last queued frame."""
        if self._finish_requested:
            return
        if self._worker is None or self._closed.is_set():
            raise StreamClosed("Transcription stream is closed")
        self._finish_requested = True
        await self._until_closed(self._frames.put(_END_OF_UTTERANCE))

    # --- Consumer side ---

    async def next_event(self) -> Optional[TranscriptEvent]:
        """Next transcript event, or None once the stream is over."""
        if self._aborted:
            return None
        if not self._events.empty():
            return self._events.get_nowait()
        if self._closed.is_set():
            return None

        getter = asyncio.ensure_future(self._events.get())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            getter.cancel()
            closed.cancel()
            raise
        closed.cancel()
        if getter in done:
            return getter.result()

        getter.cancel()
        if self._aborted or self._events.empty():
            return None
        return self._events.get_nowait()

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event

    # --- Worker ---

    async def _run(self) -> None:
        try:
            while True:
                item = await self._frames.get()
                if item is _END_OF_UTTERANCE:
                    await self._finalize()
                    return
                if not await self._consume(item):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.exception("Transcription worker crashed", error=str(e))
            await self._fail(DecodeError(f"Transcription worker failed: {e}"))

    async def _consume(self, frame: bytes) -> bool:
        try:
            validate_frame(frame, self.max_frame_bytes, self.audio_format)
        except InvalidAudio as e:
            await self._fail(e)
            return False

        if self._state is StreamState.OPEN:
            self._state = StreamState.ACCUMULATING

        try:
            hypothesis = await asyncio.to_thread(self._decoder.accept, frame)
        except DecodeError as e:
            await self._fail(e)
            return False
        except Exception as e:
            await self._fail(DecodeError(f"Decoder failed: {e}"))
            return False

        self._frames_consumed += 1
        hypothesis = (hypothesis or "").strip()
        if hypothesis and hypothesis != self._hypothesis:
            self._hypothesis = hypothesis
            await self._emit(EventType.PARTIAL, text=hypothesis)
        return True

    async def _finalize(self) -> None:
        self._state = StreamState.FINALIZING
        try:
            text = await asyncio.to_thread(self._decoder.finish)
        except DecodeError as e:
            await self._fail(e)
            return
        except Exception as e:
            await self._fail(DecodeError(f"Decoder failed to finalize: {e}"))
            return

        self._final_emitted = True
        await self._emit(EventType.FINAL, text=(text or "").strip())
        await self._terminate("final")

    async def _fail(self, error: VoicePipelineError) -> None:
        self.logger.warning(
            "Transcription stream failed",
            error=error.code,
            detail=str(error),
            frames_consumed=self._frames_consumed,
        )
        await self._emit(EventType.ERROR, error=error.code, message=str(error))
        await self._terminate(error.code)

    async def _emit(self, event_type: EventType, **fields: Any) -> None:
        if self._state is StreamState.CLOSED:
            return
        self._seq += 1
        await self._events.put(TranscriptEvent(type=event_type, seq=self._seq, **fields))

    async def _terminate(self, reason: str) -> None:
        await self._events.put(None)
        self._enter_closed(reason)
        await self._release_decoder()

    def _enter_closed(self, reason: str) -> None:
        if self._state is StreamState.CLOSED:
            return
        self._state = StreamState.CLOSED
        self._closed.set()
        while not self._frames.empty():
            self._frames.get_nowait()

        latency_ms = int((time.perf_counter() - self._started_ts) * 1000)
        self.logger.info(
            "Transcription stream closed",
            reason=reason,
            frames_consumed=self._frames_consumed,
            events_emitted=self._seq,
            latency_ms=latency_ms,
        )
        emitter.emit(
            "stream.closed",
            session_id=self.connection_id,
            severity=Severity.INFO if reason in ("final", "aborted") else Severity.WARN,
            reason=reason,
            frames_consumed=self._frames_consumed,
            latency_ms=latency_ms,
        )

    async def _release_decoder(self) -> None:
        decoder, self._decoder = self._decoder, None
        if decoder is None:
            return
        # close() waits for any decode step still running in a worker thread
        await asyncio.to_thread(decoder.close)

    async def _until_closed(self, operation: Awaitable[Any]) -> Any:
        """Await `operation`, raising StreamClosed if the stream closes first."""
        task = asyncio.ensure_future(operation)
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({task, closed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            closed.cancel()
            raise
        closed.cancel()
        # Closing drains the frame queue, which can unblock a pending put in the same tick
        if task in done and not self._closed.is_set():
            return task.result()
        task.cancel()
        raise StreamClosed("Transcription stream closed")

"""
Batch transcription adapter.

Transcribes a complete WAV upload by driving a fresh decoder through the PCM
in fixed-size chunks on a worker thread. Only the final hypothesis is returned.
"""
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass

from logging_setup import get_logger, Component
from .audio import AudioFormat, PCM_16K_MONO, parse_wav
from .decoder import DecoderFactory
from .errors import DecodeError, NoSpeechDetected

logger = get_logger(Component.STT)

DEFAULT_CHUNK_SAMPLES = 2000


@dataclass(frozen=True)
class BatchTranscript:
    text: str
    duration_seconds: float
    latency_ms: int


class BatchTranscriber:
    """Whole-buffer transcription on top of the streaming decoder."""

    def __init__(
        self,
        decoder_factory: DecoderFactory,
        *,
        audio_format: AudioFormat = PCM_16K_MONO,
        chunk_samples: int = DEFAULT_CHUNK_SAMPLES,
    ):
        self.decoder_factory = decoder_factory
        self.audio_format = audio_format
        self.chunk_samples = chunk_samples

    async def transcribe(self, audio: bytes) -> str:
        """Return the transcript of a WAV buffer."""
        result = await self.transcribe_detailed(audio)
        return result.text

    async def transcribe_detailed(self, audio: bytes) -> BatchTranscript:
        """
        Transcribe a WAV buffer.

        Raises:
            InvalidAudio: buffer is not 16kHz mono 16-bit WAV (no decoder is created)
            DecodeError: the decoder faulted
            NoSpeechDetected: decoding produced no words
        """
        pcm = parse_wav(audio, self.audio_format)
        duration = self.audio_format.duration_seconds(pcm)

        cancelled = threading.Event()
        start = time.perf_counter()
        try:
            text = await asyncio.to_thread(self._decode, pcm, cancelled)
        except asyncio.CancelledError:
            # Stops the worker thread at the next chunk boundary
            cancelled.set()
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)

        if not text:
            logger.info("Batch transcription found no speech", audio_seconds=round(duration, 2), latency_ms=latency_ms)
            raise NoSpeechDetected("No speech detected in audio")

        logger.info(
            "Batch transcription completed",
            audio_seconds=round(duration, 2),
            transcript_length=len(text),
            latency_ms=latency_ms,
        )
        return BatchTranscript(text=text, duration_seconds=duration, latency_ms=latency_ms)

    def _decode(self, pcm: bytes, cancelled: threading.Event) -> str:
        decoder = self.decoder_factory.create()
        try:
            step = self.chunk_samples * self.audio_format.frame_bytes
            for offset in range(0, len(pcm), step):
                if cancelled.is_set():
                    raise DecodeError("Transcription cancelled", reason="cancelled")
                decoder.accept(pcm[offset:offset + step])
            return (decoder.finish() or "").strip()
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Decoder failed: {e}") from e
        finally:
            decoder.close()

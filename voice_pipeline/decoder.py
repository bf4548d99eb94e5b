"""
Speech decoder abstraction and the Vosk-backed implementation.

A decoder is single-owner and sequential: one connection (or one batch job)
feeds it audio in order and releases it exactly once. The acoustic model is
loaded once per process and shared by all decoders.
"""
from __future__ import annotations

import json
import os
import threading
from typing import List, Optional, Protocol

import vosk

from logging_setup import get_logger, Component
from .errors import DecodeError

logger = get_logger(Component.STT)


class Decoder(Protocol):
    """Incremental speech decoder. Calls are blocking; run them off the event loop."""

    def accept(self, pcm: bytes) -> str:
        """Feed PCM audio and return the current running hypothesis."""
        ...

    def finish(self) -> str:
        """Flush remaining audio and return the final hypothesis."""
        ...

    def close(self) -> None:
        """Release decoder resources. Idempotent."""
        ...


class DecoderFactory(Protocol):
    def create(self) -> Decoder:
        ...


class VoskDecoder:
    """
    Wraps one KaldiRecognizer.

    Vosk splits long audio into segments at silences: AcceptWaveform returns
    True when a segment ends, after which Result() holds that segment's text
    and the recognizer starts a new one. Segments are concatenated so the
    hypothesis always covers the whole utterance.
    """

    def __init__(self, recognizer: "vosk.KaldiRecognizer"):
        self._recognizer: Optional["vosk.KaldiRecognizer"] = recognizer
        self._segments: List[str] = []
        # Serializes decode steps against close()
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._recognizer is None

    def _require(self) -> "vosk.KaldiRecognizer":
        if self._recognizer is None:
            raise DecodeError("Decoder already released")
        return self._recognizer

    def _join(self, tail: str) -> str:
        parts = self._segments + ([tail] if tail else [])
        return " ".join(parts)

    def accept(self, pcm: bytes) -> str:
        with self._lock:
            recognizer = self._require()
            try:
                if recognizer.AcceptWaveform(pcm):
                    segment = _text_of(recognizer.Result(), "text")
                    if segment:
                        self._segments.append(segment)
                    return self._join("")
                return self._join(_text_of(recognizer.PartialResult(), "partial"))
            except DecodeError:
                raise
            except Exception as e:
                raise DecodeError(f"Vosk failed to process audio: {e}") from e

    def finish(self) -> str:
        with self._lock:
            recognizer = self._require()
            try:
                tail = _text_of(recognizer.FinalResult(), "text")
            except Exception as e:
                raise DecodeError(f"Vosk failed to finalize: {e}") from e
            return self._join(tail)

    def close(self) -> None:
        with self._lock:
            self._recognizer = None
            self._segments = []


def _text_of(raw: str, key: str) -> str:
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise DecodeError(f"Unreadable decoder output: {e}") from e
    return (data.get(key) or "").strip()


class VoskDecoderFactory:
    """Creates per-connection decoders sharing one lazily loaded Vosk model."""

    def __init__(self, model_path: str, sample_rate: int = 16000):
        self.model_path = model_path
        self.sample_rate = sample_rate
        self._model: Optional["vosk.Model"] = None
        self._lock = threading.Lock()

    def _load_model(self) -> "vosk.Model":
        with self._lock:
            if self._model is None:
                if not os.path.isdir(self.model_path):
                    raise DecodeError(f"Vosk model not found at {self.model_path}")
                vosk.SetLogLevel(-1)
                try:
                    self._model = vosk.Model(self.model_path)
                except Exception as e:
                    raise DecodeError(f"Failed to load Vosk model: {e}") from e
                logger.info("Vosk model loaded", model_path=self.model_path)
            return self._model

    def create(self) -> VoskDecoder:
        model = self._load_model()
        recognizer = vosk.KaldiRecognizer(model, self.sample_rate)
        return VoskDecoder(recognizer)

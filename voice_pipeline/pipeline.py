"""
Voice pipeline wiring.

Builds the concrete services (decoder, store, providers, orchestrator) from
VoiceConfig and owns their lifecycle: start() launches the session reaper,
aclose() stops it and releases provider connections.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from openai import AsyncOpenAI
from qdrant_client import AsyncQdrantClient

from logging_setup import get_logger, Component
from observability.event_store import event_store
from .batch import BatchTranscriber
from .config import VoiceConfig
from .decoder import DecoderFactory, VoskDecoderFactory
from .generation import ChatCompletionGenerator, Generator
from .instructions import Persona, get_persona
from .orchestrator import VoiceOrchestrator
from .retrieval import NullRetriever, QdrantRetriever, Retriever
from .session_store import SessionReaper, SessionStore
from .streaming import StreamingTranscriber
from .synthesis import Synthesizer, build_synthesizer

logger = get_logger(Component.GATEWAY)


@dataclass
class VoicePipeline:
    config: VoiceConfig
    decoder_factory: DecoderFactory
    store: SessionStore
    reaper: SessionReaper
    batch: BatchTranscriber
    retriever: Retriever
    generator: Generator
    synthesizer: Synthesizer
    orchestrator: VoiceOrchestrator

    def open_stream(self, connection_id: Optional[str] = None) -> StreamingTranscriber:
        """New per-connection streaming transcriber (not yet opened)."""
        return StreamingTranscriber(
            self.decoder_factory,
            queue_capacity=self.config.stream_queue_capacity,
            max_frame_bytes=self.config.stream_max_frame_bytes,
            connection_id=connection_id,
        )

    def start(self) -> None:
        self.reaper.start()

    async def aclose(self) -> None:
        await self.reaper.stop()
        for name, component in (
            ("retriever", self.retriever),
            ("generator", self.generator),
            ("synthesizer", self.synthesizer),
        ):
            try:
                await component.aclose()
            except Exception as e:
                logger.warning(
                    "Error closing pipeline component",
                    component_name=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )


def assemble_pipeline(
    config: VoiceConfig,
    *,
    decoder_factory: DecoderFactory,
    retriever: Retriever,
    generator: Generator,
    synthesizer: Synthesizer,
    persona: Optional[Persona] = None,
    on_evict: Optional[Callable[[str], None]] = None,
) -> VoicePipeline:
    """Wire a pipeline from already-built providers."""
    store = SessionStore(
        ttl=timedelta(minutes=config.session_ttl_minutes),
        on_evict=on_evict if on_evict is not None else event_store.purge_session,
    )
    batch = BatchTranscriber(decoder_factory)
    orchestrator = VoiceOrchestrator(
        store,
        batch,
        retriever,
        generator,
        synthesizer,
        persona=persona or get_persona(config.persona),
        config=config,
    )
    return VoicePipeline(
        config=config,
        decoder_factory=decoder_factory,
        store=store,
        reaper=SessionReaper(store, interval_seconds=config.session_sweep_interval_seconds),
        batch=batch,
        retriever=retriever,
        generator=generator,
        synthesizer=synthesizer,
        orchestrator=orchestrator,
    )


def build_retriever(config: VoiceConfig, embeddings: AsyncOpenAI) -> Retriever:
    if not config.qdrant_url:
        logger.info("QDRANT_URL not set; retrieval disabled")
        return NullRetriever()
    return QdrantRetriever(
        AsyncQdrantClient(url=config.qdrant_url, api_key=config.qdrant_api_key),
        embeddings,
        collection=config.qdrant_collection,
        embedding_model=config.embedding_model,
        score_threshold=config.retrieval_score_threshold,
    )


def build_pipeline(config: VoiceConfig) -> VoicePipeline:
    """Build the production pipeline: Vosk, Qdrant, OpenRouter and the configured TTS."""
    openai_client = AsyncOpenAI(
        api_key=config.openrouter_api_key or "missing",
        base_url=config.openrouter_base_url,
    )
    if not config.openrouter_api_key:
        logger.warning("OPENROUTER_API_KEY not set; reply generation will fail")

    pipeline = assemble_pipeline(
        config,
        decoder_factory=VoskDecoderFactory(config.vosk_model_path),
        retriever=build_retriever(config, openai_client),
        generator=ChatCompletionGenerator(
            openai_client,
            model=config.chat_model,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
        ),
        synthesizer=build_synthesizer(config),
    )
    logger.info(
        "Voice pipeline ready",
        chat_model=config.chat_model,
        tts_provider=config.tts_provider,
        retrieval_enabled=bool(config.qdrant_url),
        session_ttl_minutes=config.session_ttl_minutes,
    )
    return pipeline

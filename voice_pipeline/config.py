"""
Voice Pipeline configuration.

Loads provider, audio and timing configuration from environment variables.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env_files() -> None:
    """
    Load .env_local / .env.local / .env from the project root (local dev convenience).

    Never overrides variables that are already exported.
    """
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local", ".env"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _clean_env(key: str) -> Optional[str]:
    """Return the env value with inline comments and whitespace stripped, or None."""
    value = os.environ.get(key)
    if not value:
        return None

    # Strip comments (everything after #)
    if "#" in value:
        value = value.split("#")[0]

    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "300  # comment" -> 300
    - "300" -> 300
    - None -> default
    """
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    """Float variant of _parse_int_env."""
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class VoiceConfig:
    """Voice pipeline configuration."""

    # Speech recognition (Vosk)
    vosk_model_path: str = "/models/vosk-model-small-en-us-0.15"
    stt_language: str = "en"

    # Streaming transcription
    stream_queue_capacity: int = 32
    stream_max_frame_bytes: int = 32000  # 1 second of 16kHz 16-bit mono

    # Voice sessions
    session_ttl_minutes: int = 30
    session_sweep_interval_seconds: int = 300

    # Retrieval (Qdrant + embeddings); retrieval is skipped when qdrant_url is empty
    qdrant_url: Optional[str] = None
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = "voice_context"
    retrieval_top_k: int = 3
    retrieval_score_threshold: float = 0.5
    embedding_model: str = "openai/text-embedding-3-small"

    # Generation (OpenRouter, OpenAI-compatible)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    chat_model: str = "meta-llama/llama-3.1-8b-instruct"
    llm_max_tokens: int = 150
    llm_temperature: float = 0.7
    persona: str = "default"

    # TTS provider selection
    tts_provider: str = "elevenlabs"  # "elevenlabs" | "google"

    # ElevenLabs
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "EGNfK8LKuwEbqjx3yWz1"
    elevenlabs_model_id: str = "eleven_turbo_v2_5"

    # Google Cloud TTS (REST API with API key authentication)
    google_tts_api_key: Optional[str] = None
    google_tts_voice: str = "en-US-Chirp3-HD-Aoede"
    google_tts_language: str = "en-US"

    # Per-stage timeouts
    transcription_timeout_seconds: float = 30.0
    retrieval_timeout_seconds: float = 2.0
    generation_timeout_seconds: float = 20.0
    synthesis_timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        """Load configuration from environment variables."""
        return cls(
            vosk_model_path=os.environ.get("VOSK_MODEL_PATH", "/models/vosk-model-small-en-us-0.15"),
            stt_language=os.environ.get("STT_LANGUAGE", "en"),
            stream_queue_capacity=_parse_int_env("STREAM_QUEUE_CAPACITY", default=32),
            stream_max_frame_bytes=_parse_int_env("STREAM_MAX_FRAME_BYTES", default=32000),
            session_ttl_minutes=_parse_int_env("VOICE_SESSION_TTL_MINUTES", default=30),
            session_sweep_interval_seconds=_parse_int_env("VOICE_SESSION_SWEEP_INTERVAL_SECONDS", default=300),
            qdrant_url=_clean_env("QDRANT_URL"),
            qdrant_api_key=os.environ.get("QDRANT_API_KEY") or None,
            qdrant_collection=os.environ.get("QDRANT_COLLECTION", "voice_context"),
            retrieval_top_k=_parse_int_env("RETRIEVAL_TOP_K", default=3),
            retrieval_score_threshold=_parse_float_env("RETRIEVAL_SCORE_THRESHOLD", default=0.5),
            embedding_model=os.environ.get("EMBEDDING_MODEL", "openai/text-embedding-3-small"),
            openrouter_api_key=os.environ.get("OPENROUTER_API_KEY", ""),
            openrouter_base_url=os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            chat_model=os.environ.get("OPENROUTER_CHAT_MODEL_LITE", "meta-llama/llama-3.1-8b-instruct"),
            llm_max_tokens=_parse_int_env("LLM_MAX_TOKENS", default=150),
            llm_temperature=_parse_float_env("LLM_TEMPERATURE", default=0.7),
            persona=os.environ.get("VOICE_PERSONA", "default"),
            tts_provider=os.environ.get("TTS_PROVIDER", "elevenlabs").lower(),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY", ""),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID", "EGNfK8LKuwEbqjx3yWz1"),
            elevenlabs_model_id=os.environ.get("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5"),
            google_tts_api_key=os.environ.get("GOOGLE_TTS_API_KEY") or os.environ.get("GOOGLE_API_KEY"),
            google_tts_voice=os.environ.get("GOOGLE_TTS_VOICE", "en-US-Chirp3-HD-Aoede"),
            google_tts_language=os.environ.get("GOOGLE_TTS_LANGUAGE", "en-US"),
            transcription_timeout_seconds=_parse_float_env("TRANSCRIPTION_TIMEOUT_SECONDS", default=30.0),
            retrieval_timeout_seconds=_parse_float_env("RETRIEVAL_TIMEOUT_SECONDS", default=2.0),
            generation_timeout_seconds=_parse_float_env("GENERATION_TIMEOUT_SECONDS", default=20.0),
            synthesis_timeout_seconds=_parse_float_env("SYNTHESIS_TIMEOUT_SECONDS", default=15.0),
        )


def get_config() -> VoiceConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        load_env_files()
        _config = VoiceConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[VoiceConfig] = None

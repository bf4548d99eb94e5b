"""
Tests for voice pipeline and gateway configuration.

Verifies:
- Configuration loading from environment
- Default values
- Comment/whitespace tolerant numeric parsing
"""
import pytest

from gateway.config import DEFAULT_API_KEY, GatewayConfig
from voice_pipeline.config import VoiceConfig, _parse_float_env, _parse_int_env

_VOICE_ENV = (
    "VOSK_MODEL_PATH", "STT_LANGUAGE", "STREAM_QUEUE_CAPACITY", "STREAM_MAX_FRAME_BYTES",
    "VOICE_SESSION_TTL_MINUTES", "VOICE_SESSION_SWEEP_INTERVAL_SECONDS",
    "QDRANT_URL", "QDRANT_API_KEY", "QDRANT_COLLECTION", "RETRIEVAL_TOP_K", "RETRIEVAL_SCORE_THRESHOLD",
    "EMBEDDING_MODEL", "OPENROUTER_API_KEY", "OPENROUTER_BASE_URL", "OPENROUTER_CHAT_MODEL_LITE",
    "LLM_MAX_TOKENS", "LLM_TEMPERATURE", "VOICE_PERSONA", "TTS_PROVIDER",
    "ELEVENLABS_API_KEY", "ELEVENLABS_VOICE_ID", "ELEVENLABS_MODEL_ID",
    "GOOGLE_TTS_API_KEY", "GOOGLE_API_KEY", "GOOGLE_TTS_VOICE", "GOOGLE_TTS_LANGUAGE",
    "TRANSCRIPTION_TIMEOUT_SECONDS", "RETRIEVAL_TIMEOUT_SECONDS",
    "GENERATION_TIMEOUT_SECONDS", "SYNTHESIS_TIMEOUT_SECONDS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _VOICE_ENV + ("API_KEY", "SERVER_HOST", "SERVER_PORT", "LOG_LEVEL",
                             "MAX_TRANSCRIPTION_BYTES", "MAX_VOICE_CHAT_BYTES"):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_voice_config_defaults(clean_env):
    config = VoiceConfig.from_env()

    assert config.stream_queue_capacity == 32
    assert config.session_ttl_minutes == 30
    assert config.session_sweep_interval_seconds == 300
    assert config.qdrant_url is None
    assert config.retrieval_top_k == 3
    assert config.tts_provider == "elevenlabs"
    assert config.google_tts_api_key is None
    assert config.retrieval_timeout_seconds == 2.0
    assert config.synthesis_timeout_seconds == 15.0
    assert config == VoiceConfig()


def test_voice_config_from_env_all_fields(clean_env):
    clean_env.setenv("VOSK_MODEL_PATH", "/models/vosk-en")
    clean_env.setenv("VOICE_SESSION_TTL_MINUTES", "10")
    clean_env.setenv("QDRANT_URL", "http://qdrant:6333")
    clean_env.setenv("QDRANT_COLLECTION", "notes")
    clean_env.setenv("RETRIEVAL_SCORE_THRESHOLD", "0.35")
    clean_env.setenv("OPENROUTER_API_KEY", "or-key")
    clean_env.setenv("OPENROUTER_CHAT_MODEL_LITE", "openai/gpt-4o-mini")
    clean_env.setenv("VOICE_PERSONA", "coach")
    clean_env.setenv("TTS_PROVIDER", "Google")
    clean_env.setenv("GOOGLE_API_KEY", "g-key")
    clean_env.setenv("GENERATION_TIMEOUT_SECONDS", "8.5")

    config = VoiceConfig.from_env()

    assert config.vosk_model_path == "/models/vosk-en"
    assert config.session_ttl_minutes == 10
    assert config.qdrant_url == "http://qdrant:6333"
    assert config.qdrant_collection == "notes"
    assert config.retrieval_score_threshold == 0.35
    assert config.openrouter_api_key == "or-key"
    assert config.chat_model == "openai/gpt-4o-mini"
    assert config.persona == "coach"
    assert config.tts_provider == "google"
    assert config.google_tts_api_key == "g-key"
    assert config.generation_timeout_seconds == 8.5


def test_google_tts_key_prefers_dedicated_variable(clean_env):
    clean_env.setenv("GOOGLE_API_KEY", "generic")
    clean_env.setenv("GOOGLE_TTS_API_KEY", "dedicated")

    assert VoiceConfig.from_env().google_tts_api_key == "dedicated"


@pytest.mark.parametrize("raw,expected", [
    ("300", 300),
    ("300  # five minutes", 300),
    ("  45 ", 45),
    ("abc", 7),
    ("", 7),
])
def test_parse_int_env(monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_INT", raw)
    assert _parse_int_env("SOME_INT", default=7) == expected


def test_parse_int_env_unset(monkeypatch):
    monkeypatch.delenv("SOME_INT", raising=False)
    assert _parse_int_env("SOME_INT", default=7) == 7


def test_parse_float_env(monkeypatch):
    monkeypatch.setenv("SOME_FLOAT", "1.5 # seconds")
    assert _parse_float_env("SOME_FLOAT", default=0.0) == 1.5


def test_gateway_config_defaults(clean_env):
    config = GatewayConfig.from_env()

    assert config.api_key == DEFAULT_API_KEY
    assert config.uses_default_api_key
    assert config.host == "0.0.0.0"
    assert config.port == 3000
    assert config.log_level == "INFO"
    assert config.max_transcription_bytes == 100 * 1024 * 1024
    assert config.max_voice_chat_bytes == 10 * 1024 * 1024


def test_gateway_config_from_env(clean_env):
    clean_env.setenv("API_KEY", "s3cret")
    clean_env.setenv("SERVER_PORT", "8080  # local")
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("MAX_VOICE_CHAT_BYTES", "1024")

    config = GatewayConfig.from_env()

    assert config.api_key == "s3cret"
    assert not config.uses_default_api_key
    assert config.port == 8080
    assert config.log_level == "DEBUG"
    assert config.max_voice_chat_bytes == 1024

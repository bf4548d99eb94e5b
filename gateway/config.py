"""
Configuration for the HTTP gateway.
Loads from environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass
from typing import Optional

from voice_pipeline.config import _parse_int_env, load_env_files

DEFAULT_API_KEY = "dev_key_12345_change_in_production"


@dataclass
class GatewayConfig:
    """Gateway configuration."""

    api_key: str = DEFAULT_API_KEY
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    # Request body limits
    max_transcription_bytes: int = 100 * 1024 * 1024
    max_voice_chat_bytes: int = 10 * 1024 * 1024

    # How often the voice-chat route checks for a disconnected client
    disconnect_poll_seconds: float = 0.5

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Load configuration from environment variables."""
        return cls(
            api_key=os.environ.get("API_KEY", DEFAULT_API_KEY),
            host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            port=_parse_int_env("SERVER_PORT", default=3000),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            max_transcription_bytes=_parse_int_env("MAX_TRANSCRIPTION_BYTES", default=100 * 1024 * 1024),
            max_voice_chat_bytes=_parse_int_env("MAX_VOICE_CHAT_BYTES", default=10 * 1024 * 1024),
        )

    @property
    def uses_default_api_key(self) -> bool:
        return self.api_key == DEFAULT_API_KEY


def get_config() -> GatewayConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        load_env_files()
        _config = GatewayConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[GatewayConfig] = None

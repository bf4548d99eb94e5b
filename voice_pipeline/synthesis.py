"""
Text-to-speech clients.

Both providers are called over REST with a pooled aiohttp session and return
MP3 audio:
- ElevenLabs (default): POST /v1/text-to-speech/{voice_id}
- Google Cloud TTS: POST /v1/text:synthesize with API key authentication
"""
import base64
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import aiohttp

from logging_setup import get_logger, Component
from .config import VoiceConfig
from .errors import SynthesisError

logger = get_logger(Component.TTS)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
GOOGLE_TTS_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


@dataclass(frozen=True)
class SynthesizedAudio:
    audio: bytes
    content_type: str = "audio/mpeg"


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        ...

    async def aclose(self) -> None:
        ...


class _PooledHttpSynthesizer:
    """Shared HTTP session handling for REST-based TTS providers."""

    provider = "tts"

    def __init__(self):
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create shared HTTP session with connection pooling.

        Reuses TCP connections between requests to reduce latency.
        """
        if self._http_session is None or self._http_session.closed:
            pool_size = int(os.getenv("TTS_CONNECTION_POOL_SIZE", "10"))
            connect_timeout = float(os.getenv("TTS_CONNECTION_TIMEOUT", "3.0"))
            total_timeout = float(os.getenv("TTS_CONNECTION_TOTAL_TIMEOUT", "10.0"))

            connector = aiohttp.TCPConnector(
                limit=pool_size,
                limit_per_host=pool_size,
                ttl_dns_cache=300,
            )
            self._http_session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout),
            )
            logger.info(
                "TTS connection pool created",
                provider=self.provider,
                pool_size=pool_size,
                connect_timeout_ms=int(connect_timeout * 1000),
                total_timeout_ms=int(total_timeout * 1000),
            )
        return self._http_session

    async def aclose(self) -> None:
        """
        Best-effort cleanup of the HTTP session.
        Safe to call multiple times.
        """
        if self._http_session is not None:
            try:
                await self._http_session.close()
                logger.info("TTS connection pool closed", provider=self.provider)
            except Exception as e:
                logger.warning(
                    "Error closing TTS HTTP session",
                    provider=self.provider,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None


class ElevenLabsSynthesizer(_PooledHttpSynthesizer):
    """ElevenLabs text-to-speech -> MP3."""

    provider = "elevenlabs"

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_turbo_v2_5",
        base_url: str = ELEVENLABS_BASE_URL,
    ):
        super().__init__()
        if not api_key:
            raise ValueError("ElevenLabs TTS requires a valid API key in ELEVENLABS_API_KEY")
        self._api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")

    def _payload(self, text: str) -> Dict[str, Any]:
        return {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": 0.0,
                "use_speaker_boost": True,
            },
        }

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        voice = voice_id or self.voice_id
        url = f"{self.base_url}/text-to-speech/{voice}"
        headers = {
            "xi-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        logger.info("TTS call started", provider=self.provider, voice_id=voice, text_length=len(text))
        t_start = time.perf_counter()
        try:
            session = self._get_or_create_session()
            async with session.post(url, json=self._payload(text), headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        "ElevenLabs TTS error",
                        status_code=response.status,
                        error_text=error_text[:500],
                    )
                    raise SynthesisError(
                        f"ElevenLabs API error: {response.status}",
                        reason="provider_error",
                    )
                audio = await response.read()
        except SynthesisError:
            raise
        except Exception as e:
            logger.error("ElevenLabs TTS exception", error=str(e), error_type=type(e).__name__)
            raise SynthesisError(f"ElevenLabs request failed: {type(e).__name__}", reason="provider_error") from e

        if not audio:
            raise SynthesisError("ElevenLabs returned no audio", reason="empty_audio")

        logger.info(
            "TTS call completed",
            provider=self.provider,
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return SynthesizedAudio(audio=audio, content_type="audio/mpeg")


class GoogleCloudSynthesizer(_PooledHttpSynthesizer):
    """Google Cloud Text-to-Speech via REST API -> MP3."""

    provider = "google"

    def __init__(self, *, api_key: str, voice: str, language_code: str = "en-US"):
        super().__init__()
        if not api_key:
            raise ValueError("Google Cloud TTS requires a valid API key in GOOGLE_TTS_API_KEY")
        self._api_key = api_key
        self.voice = voice
        self.language_code = language_code

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        payload = {
            "input": {"text": text},
            "voice": {
                "languageCode": self.language_code,
                "name": voice_id or self.voice,
            },
            "audioConfig": {"audioEncoding": "MP3"},
        }

        logger.info("TTS call started", provider=self.provider, voice_id=voice_id or self.voice, text_length=len(text))
        t_start = time.perf_counter()
        try:
            session = self._get_or_create_session()
            async with session.post(GOOGLE_TTS_URL, params={"key": self._api_key}, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        "Google Cloud TTS error",
                        status_code=response.status,
                        error_text=error_text[:500],
                    )
                    raise SynthesisError(
                        f"Google Cloud TTS API error: {response.status}",
                        reason="provider_error",
                    )
                data = await response.json()
        except SynthesisError:
            raise
        except Exception as e:
            logger.error("Google Cloud TTS exception", error=str(e), error_type=type(e).__name__)
            raise SynthesisError(f"Google Cloud TTS request failed: {type(e).__name__}", reason="provider_error") from e

        audio_b64 = data.get("audioContent")
        if not audio_b64:
            logger.error("Google Cloud TTS: no audioContent field in response")
            raise SynthesisError("Google Cloud TTS returned no audio", reason="empty_audio")

        audio = base64.b64decode(audio_b64)
        logger.info(
            "TTS call completed",
            provider=self.provider,
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return SynthesizedAudio(audio=audio, content_type="audio/mpeg")


def build_synthesizer(config: VoiceConfig) -> Synthesizer:
    """Select the TTS provider from config.tts_provider."""
    if config.tts_provider == "google":
        logger.info("Using Google Cloud TTS (REST)", voice=config.google_tts_voice)
        return GoogleCloudSynthesizer(
            api_key=config.google_tts_api_key or "",
            voice=config.google_tts_voice,
            language_code=config.google_tts_language,
        )
    if config.tts_provider == "elevenlabs":
        logger.info("Using ElevenLabs TTS", voice_id=config.elevenlabs_voice_id)
        return ElevenLabsSynthesizer(
            api_key=config.elevenlabs_api_key,
            voice_id=config.elevenlabs_voice_id,
            model_id=config.elevenlabs_model_id,
        )
    raise ValueError(f"Unknown TTS_PROVIDER: {config.tts_provider!r} (expected 'elevenlabs' or 'google')")

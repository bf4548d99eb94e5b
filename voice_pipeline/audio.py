"""
Fixed audio format handling.

The pipeline accepts exactly one format: 16kHz, mono, 16-bit little-endian PCM.
Batch uploads arrive as WAV files; streaming frames arrive as raw PCM.
"""
import io
import wave
from dataclasses import dataclass

from .errors import InvalidAudio


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int = 16000
    channels: int = 1
    sample_width: int = 2  # bytes per sample

    @property
    def frame_bytes(self) -> int:
        """Bytes per sample frame (all channels)."""
        return self.channels * self.sample_width

    def duration_seconds(self, pcm: bytes) -> float:
        return len(pcm) / float(self.frame_bytes * self.sample_rate)


PCM_16K_MONO = AudioFormat()


def parse_wav(buffer: bytes, fmt: AudioFormat = PCM_16K_MONO) -> bytes:
    """
    Validate a WAV buffer against `fmt` and return its PCM payload.

    Raises InvalidAudio for anything that is not an uncompressed WAV in the
    expected format. An empty data chunk is valid and yields b"".
    """
    if not buffer:
        raise InvalidAudio("Audio payload is empty")

    try:
        with wave.open(io.BytesIO(buffer), "rb") as wav:
            channels = wav.getnchannels()
            sample_rate = wav.getframerate()
            sample_width = wav.getsampwidth()
            comptype = wav.getcomptype()
            pcm = wav.readframes(wav.getnframes())
    except (wave.Error, EOFError) as e:
        raise InvalidAudio(f"Not a valid WAV file: {e}") from e

    if comptype != "NONE":
        raise InvalidAudio(f"Compressed WAV ({comptype}) is not supported")
    if channels != fmt.channels:
        raise InvalidAudio(f"Audio must be mono, got {channels} channels")
    if sample_rate != fmt.sample_rate:
        raise InvalidAudio(f"Audio must be {fmt.sample_rate} Hz, got {sample_rate} Hz")
    if sample_width != fmt.sample_width:
        raise InvalidAudio(f"Audio must be {fmt.sample_width * 8}-bit, got {sample_width * 8}-bit")

    return pcm


def validate_frame(frame: bytes, max_frame_bytes: int, fmt: AudioFormat = PCM_16K_MONO) -> None:
    """Check a raw PCM streaming frame: non-empty, whole samples, bounded size."""
    if not frame:
        raise InvalidAudio("Empty audio frame")
    if len(frame) % fmt.frame_bytes != 0:
        raise InvalidAudio(
            f"Frame length {len(frame)} is not a whole number of {fmt.sample_width * 8}-bit samples"
        )
    if len(frame) > max_frame_bytes:
        raise InvalidAudio(f"Frame of {len(frame)} bytes exceeds limit of {max_frame_bytes} bytes")


def encode_wav(pcm: bytes, fmt: AudioFormat = PCM_16K_MONO) -> bytes:
    """Wrap raw PCM in a WAV container."""
    out = io.BytesIO()
    with wave.open(out, "wb") as wav:
        wav.setnchannels(fmt.channels)
        wav.setsampwidth(fmt.sample_width)
        wav.setframerate(fmt.sample_rate)
        wav.writeframes(pcm)
    return out.getvalue()

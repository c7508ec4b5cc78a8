"""Container negotiation and encoding of captured PCM into an artifact."""

from __future__ import annotations

import io
import logging
from typing import Optional, Sequence

from interfaces import AudioEncoder

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import soundfile as sf
except Exception:  # pragma: no cover
    sf = None  # type: ignore

logger = logging.getLogger(__name__)

# Most preferred first. Engines differ in what they can produce and the
# transcription side must receive the type that was actually written.
MIME_PREFERENCES: tuple[str, ...] = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/mp4",
    "audio/aac",
    "audio/ogg;codecs=opus",
    "audio/ogg",
)

# mime type -> (libsndfile format, subtype)
SOUNDFILE_FORMATS: dict[str, tuple[str, str]] = {
    "audio/ogg;codecs=opus": ("OGG", "OPUS"),
    "audio/ogg": ("OGG", "VORBIS"),
    "audio/flac": ("FLAC", "PCM_16"),
    "audio/wav": ("WAV", "PCM_16"),
}


def base_mime_type(mime_type: str) -> str:
    """Strip codec parameters: ``audio/webm;codecs=opus`` -> ``audio/webm``."""
    return mime_type.split(";", 1)[0].strip().lower()


def negotiate_mime_type(
    encoder: AudioEncoder,
    preferences: Sequence[str] = MIME_PREFERENCES,
) -> str:
    for candidate in preferences:
        if encoder.is_type_supported(candidate):
            return candidate
    return encoder.default_mime_type


class SoundFileEncoder:
    """Encodes PCM16 with libsndfile; WAV is always available as the default."""

    default_mime_type = "audio/wav"

    def is_type_supported(self, mime_type: str) -> bool:
        fmt = self._format_for(mime_type)
        if fmt is None or sf is None:
            return False
        try:
            return bool(sf.check_format(*fmt))
        except (TypeError, ValueError):
            return False

    def encode(self, pcm16: bytes, sample_rate: int, channels: int, mime_type: str) -> bytes:
        if sf is None or np is None:
            raise RuntimeError("soundfile is not installed")
        fmt = self._format_for(mime_type) or SOUNDFILE_FORMATS[self.default_mime_type]
        samples = np.frombuffer(pcm16, dtype=np.int16)
        if channels > 1:
            samples = samples[: len(samples) - len(samples) % channels].reshape(-1, channels)
        buf = io.BytesIO()
        sf.write(buf, samples, sample_rate, format=fmt[0], subtype=fmt[1])
        return buf.getvalue()

    def _format_for(self, mime_type: str) -> Optional[tuple[str, str]]:
        key = mime_type.replace(" ", "").lower()
        if key in SOUNDFILE_FORMATS:
            return SOUNDFILE_FORMATS[key]
        return None

"""Protocol interfaces shared by the capture and wake word controllers."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Optional, Protocol

from models import (
    AudioArtifact,
    AudioFrame,
    DetectionEvent,
    RecognitionEvent,
    TranscriptionResult,
    UtteranceSettings,
)


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class AudioEncoder(Protocol):
    default_mime_type: str

    def is_type_supported(self, mime_type: str) -> bool: ...

    def encode(self, pcm16: bytes, sample_rate: int, channels: int, mime_type: str) -> bytes: ...


class KeywordEngine(Protocol):
    def load(self) -> None: ...

    def reset(self) -> None: ...

    def accept(self, pcm16: bytes) -> Optional[DetectionEvent]: ...

    def close(self) -> None: ...


class TranscriptRecognizer(Protocol):
    def accept(self, pcm16: bytes) -> Optional[RecognitionEvent]: ...


class TranscriptionService(Protocol):
    def transcribe(
        self,
        artifact: AudioArtifact,
        on_partial: Optional[Callable[[str], None]] = None,
    ) -> TranscriptionResult: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_toggle_hotkey(self) -> str: ...

    def get_locale(self) -> str: ...

    def set_locale(self, locale: str) -> None: ...

    def get_model_dir(self) -> str: ...

    def get_confidence_threshold(self) -> float: ...

    def get_utterance_strategy(self) -> str: ...

    def get_utterance_settings(self) -> UtteranceSettings: ...

    def get_min_recording_ms(self) -> int: ...

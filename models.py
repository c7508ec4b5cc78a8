"""Core data models for the voice activation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CaptureState(str, Enum):
    IDLE = "IDLE"
    ARMING = "ARMING"
    RECORDING = "RECORDING"
    FINALIZING = "FINALIZING"


class TriggerKind(str, Enum):
    MANUAL = "manual"
    WAKE_WORD = "wake_word"


class LoadState(str, Enum):
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    READY = "READY"
    FAILED = "FAILED"


class ListeningState(str, Enum):
    STOPPED = "STOPPED"
    LISTENING = "LISTENING"


class RecognitionKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""


@dataclass
class DetectionEvent:
    """One wake phrase hit reported by a keyword engine."""

    label: str
    confidence: float
    text: str = ""


@dataclass
class AudioArtifact:
    data: bytes
    mime_type: str
    duration_ms: int
    trigger_kind: TriggerKind


@dataclass
class RejectedTooShort:
    duration_ms: int
    trigger_kind: TriggerKind


@dataclass
class CaptureFailed:
    code: str
    message: str
    trigger_kind: TriggerKind


@dataclass
class TranscriptionResult:
    transcription: str
    summary: str = ""


@dataclass
class UtteranceSettings:
    silence_timeout_ms: int = 1500
    no_speech_timeout_ms: int = 4000
    activity_threshold: float = 30.0
    speech_onset_frames: int = 2


@dataclass(frozen=True)
class UiState:
    hands_free_enabled: bool = False
    is_model_loading: bool = False
    is_listening: bool = False
    is_recording: bool = False
    is_wake_triggered: bool = False

    @property
    def button_action(self) -> str:
        return "stop" if self.is_recording else "record"

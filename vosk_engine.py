"""Vosk-backed keyword spotting and streaming transcription."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from errors import ModelLoadError
from models import DetectionEvent, RecognitionEvent, RecognitionKind

try:
    import vosk
except Exception:  # pragma: no cover
    vosk = None  # type: ignore

logger = logging.getLogger(__name__)

UNKNOWN_TOKEN = "[unk]"


def load_vosk_model(model_path: str) -> Any:
    if vosk is None:
        raise ModelLoadError("vosk is not installed")
    if not Path(model_path).exists():
        raise ModelLoadError(f"Vosk model folder not found: {model_path}")
    try:
        vosk.SetLogLevel(-1)
        return vosk.Model(str(model_path))
    except Exception as exc:
        raise ModelLoadError(f"failed to load {model_path}: {exc}") from exc


class VoskKeywordEngine:
    """Grammar-restricted recognizer that only knows the wake phrases.

    A final result containing a phrase is reported with the mean per-word
    confidence of that phrase; unmatched speech decodes to ``[unk]`` and
    is dropped.
    """

    def __init__(self, model_path: str, phrases: Sequence[str], sample_rate: int = 16000) -> None:
        self.model_path = model_path
        self.phrases = tuple(p.lower() for p in phrases)
        self.sample_rate = sample_rate
        self._model: Any = None
        self._recognizer: Any = None

    @property
    def model(self) -> Any:
        return self._model

    def load(self) -> None:
        self._model = load_vosk_model(self.model_path)
        self._recognizer = self._new_recognizer()
        logger.info("Keyword model loaded from %s (%s)", self.model_path, ", ".join(self.phrases))

    def reset(self) -> None:
        if self._recognizer is not None:
            self._recognizer.Reset()

    def accept(self, pcm16: bytes) -> Optional[DetectionEvent]:
        if self._recognizer is None:
            return None
        if not self._recognizer.AcceptWaveform(pcm16):
            return None
        return self.match(json.loads(self._recognizer.Result()))

    def match(self, result: dict) -> Optional[DetectionEvent]:
        text = str(result.get("text", "")).lower().strip()
        if not text or text == UNKNOWN_TOKEN:
            return None
        for phrase in self.phrases:
            if phrase not in text:
                continue
            words = set(phrase.split())
            confs = [
                float(w.get("conf", 1.0))
                for w in result.get("result", [])
                if str(w.get("word", "")).lower() in words
            ]
            confidence = sum(confs) / len(confs) if confs else 1.0
            return DetectionEvent(label=phrase, confidence=confidence, text=text)
        return None

    def close(self) -> None:
        self._recognizer = None
        self._model = None

    def _new_recognizer(self) -> Any:
        grammar = json.dumps(list(self.phrases) + [UNKNOWN_TOKEN], ensure_ascii=False)
        recognizer = vosk.KaldiRecognizer(self._model, self.sample_rate, grammar)
        recognizer.SetWords(True)
        return recognizer


class VoskTranscriptRecognizer:
    """Open-vocabulary streaming recognizer used to time the end of an utterance."""

    def __init__(self, model: Any, sample_rate: int = 16000) -> None:
        self._recognizer = vosk.KaldiRecognizer(model, sample_rate)
        self._last_partial = ""

    def accept(self, pcm16: bytes) -> Optional[RecognitionEvent]:
        if self._recognizer.AcceptWaveform(pcm16):
            self._last_partial = ""
            text = json.loads(self._recognizer.Result()).get("text", "")
            return RecognitionEvent(kind=RecognitionKind.FINAL.value, text=text)
        partial = json.loads(self._recognizer.PartialResult()).get("partial", "")
        if partial == self._last_partial:
            return None
        self._last_partial = partial
        return RecognitionEvent(kind=RecognitionKind.PARTIAL.value, text=partial)

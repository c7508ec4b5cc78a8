"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from models import UtteranceSettings

logger = logging.getLogger(__name__)

DEFAULT_DIR = Path.home() / ".config" / "wakecapture"
UTTERANCE_STRATEGIES = ("energy", "transcript")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_DIR / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        return str(self._read_all().get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_hotkey(self) -> str:
        return str(self._read_all().get("hotkey", "Key.alt_l"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_toggle_hotkey(self) -> str:
        return str(self._read_all().get("toggle_hotkey", "Key.f8"))

    def get_locale(self) -> str:
        return str(self._read_all().get("locale", "en"))

    def set_locale(self, locale: str) -> None:
        self._set("locale", locale)

    def get_model_dir(self) -> str:
        default = self._path.parent / "models"
        return str(self._read_all().get("model_dir", default))

    def get_confidence_threshold(self) -> float:
        value = _as_float(self._read_all().get("confidence_threshold"), 0.85)
        return min(max(value, 0.0), 1.0)

    def get_utterance_strategy(self) -> str:
        value = str(self._read_all().get("utterance_strategy", "energy"))
        return value if value in UTTERANCE_STRATEGIES else "energy"

    def get_utterance_settings(self) -> UtteranceSettings:
        data = self._read_all()
        defaults = UtteranceSettings()
        return UtteranceSettings(
            silence_timeout_ms=int(_as_float(data.get("silence_timeout_ms"), defaults.silence_timeout_ms)),
            no_speech_timeout_ms=int(
                _as_float(data.get("no_speech_timeout_ms"), defaults.no_speech_timeout_ms)
            ),
            activity_threshold=_as_float(data.get("activity_threshold"), defaults.activity_threshold),
            speech_onset_frames=max(
                1, int(_as_float(data.get("speech_onset_frames"), defaults.speech_onset_frames))
            ),
        )

    def get_min_recording_ms(self) -> int:
        return int(_as_float(self._read_all().get("min_recording_ms"), 500))

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _as_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return float(default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)

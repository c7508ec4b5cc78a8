"""Application entrypoint."""

from __future__ import annotations

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

from capture import AudioCapture
from config import JsonConfigStore
from encoding import SoundFileEncoder
from errors import ERROR_MESSAGES
from hotkey import HotkeyBindings
from interfaces import ConfigStore, TranscriptionService
from manual_capture import ManualCaptureController
from models import AudioArtifact, UiState
from overlay import OverlayWindow
from recorder import SoundDeviceRecorder
from transcriber import DashscopeTranscriptionService, TranscriptionError
from utterance import (
    EnergyUtteranceEndDetector,
    TranscriptUtteranceEndDetector,
    UtteranceEndDetector,
)
from voice_activation import VoiceActivationController
from vosk_engine import VoskKeywordEngine, VoskTranscriptRecognizer
from wake_word import KeywordSpotter, WakeModelConfig

try:
    from PySide6.QtCore import QObject, QSize, Signal
    from PySide6.QtGui import QAction, QActionGroup, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger("wakecapture")

ICON_IDLE = "#888888"  # grey
ICON_LOADING = "#E0A800"  # amber
ICON_LISTENING = "#2BB673"  # green
ICON_RECORDING = "#FF4444"  # red
ICON_WAKE_RECORDING = "#6366F1"  # indigo

LANGUAGES = (("English", "en"), ("Português", "pt"))


def _create_icon(color: str = ICON_IDLE, size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


def icon_for(state: UiState) -> tuple[str, str]:
    if state.is_recording:
        if state.is_wake_triggered:
            return ICON_WAKE_RECORDING, "Recording (wake word)..."
        return ICON_RECORDING, "Recording..."
    if state.is_listening:
        return ICON_LISTENING, "Listening for wake word"
    if state.hands_free_enabled and state.is_model_loading:
        return ICON_LOADING, "Loading wake word model..."
    return ICON_IDLE, "Ready"


class UIBridge(QObject):
    toast_signal = Signal(str)
    text_signal = Signal(str)
    state_signal = Signal(object)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store: ConfigStore = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.toast_signal.connect(self.overlay.show_toast)
        self.ui.text_signal.connect(self.overlay.set_text)
        self.ui.state_signal.connect(self._on_state_ui)

        self.transcriber: TranscriptionService = DashscopeTranscriptionService(
            api_key=self.config_store.get_api_key()
        )
        self._engine: Optional[VoskKeywordEngine] = None

        self.capture = AudioCapture(
            recorder_factory=SoundDeviceRecorder,
            encoder=SoundFileEncoder(),
            detector_factory=self._make_detector,
            min_duration_ms=self.config_store.get_min_recording_ms(),
        )
        self.spotter = KeywordSpotter(
            engine_factory=self._make_engine,
            recorder_factory=lambda: SoundDeviceRecorder(chunk_ms=250),
        )
        self.voice = VoiceActivationController(
            capture=self.capture,
            spotter=self.spotter,
            notify=self._notify,
            on_artifact=self._on_artifact,
            locale_provider=self.config_store.get_locale,
            confidence_threshold=self.config_store.get_confidence_threshold(),
            on_ui_change=self._on_ui_change,
        )
        self.manual = ManualCaptureController(self.capture, notify=self._notify)
        self.hotkeys = HotkeyBindings(
            push_to_talk=self.config_store.get_hotkey(),
            toggle=self.config_store.get_toggle_hotkey(),
        )

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Voice Organizer - Ready")
        self._setup_menu()
        self.tray.show()

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def _make_engine(self, config: WakeModelConfig) -> VoskKeywordEngine:
        model_path = Path(self.config_store.get_model_dir()) / config.lang
        self._engine = VoskKeywordEngine(str(model_path), config.phrases)
        return self._engine

    def _make_detector(self, on_end: Callable[[], None]) -> UtteranceEndDetector:
        settings = self.config_store.get_utterance_settings()
        engine = self._engine
        if self.config_store.get_utterance_strategy() == "transcript":
            if engine is not None and engine.model is not None:
                return TranscriptUtteranceEndDetector(
                    on_end, recognizer=VoskTranscriptRecognizer(engine.model), settings=settings
                )
            logger.warning("No speech model loaded, using energy end-of-utterance detection")
        return EnergyUtteranceEndDetector(on_end, settings=settings)

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    def _setup_menu(self) -> None:
        menu = QMenu()

        self._hands_free_action = QAction("Hands-free Mode", menu)
        self._hands_free_action.setCheckable(True)
        self._hands_free_action.triggered.connect(lambda _checked: self.voice.toggle())
        menu.addAction(self._hands_free_action)

        lang_menu = menu.addMenu("Language")
        group = QActionGroup(lang_menu)
        current = self.config_store.get_locale()
        for label, code in LANGUAGES:
            action = QAction(label, lang_menu)
            action.setCheckable(True)
            action.setChecked(current.startswith(code))
            action.triggered.connect(lambda _checked, c=code: self._set_locale(c))
            group.addAction(action)
            lang_menu.addAction(action)

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self._menu = menu
        self.tray.setContextMenu(menu)

    def _set_locale(self, code: str) -> None:
        self.config_store.set_locale(code)
        self.voice.load_model_async()

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.transcriber = DashscopeTranscriptionService(api_key=value)
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(None, "Hotkey", "Use pynput key format, e.g. Key.alt_l")
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        self.hotkeys.push_to_talk = value
        QMessageBox.information(None, "Saved", "Hotkey saved and applied.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _notify(self, message: str) -> None:
        self.ui.toast_signal.emit(message)

    def _on_ui_change(self, state: UiState) -> None:
        self.ui.state_signal.emit(state)

    def _on_artifact(self, artifact: AudioArtifact) -> None:
        threading.Thread(target=self._transcribe, args=(artifact,), daemon=True).start()

    def _transcribe(self, artifact: AudioArtifact) -> None:
        try:
            result = self.transcriber.transcribe(artifact, on_partial=self.ui.text_signal.emit)
        except TranscriptionError as exc:
            logger.warning("Transcription failed (%s): %s", exc.code, exc.message)
            self._notify(ERROR_MESSAGES.get(exc.code, exc.message))
            return
        if result.transcription:
            self.ui.text_signal.emit(result.transcription)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_state_ui(self, state: UiState) -> None:
        color, tip = icon_for(state)
        self.tray.setIcon(_create_icon(color))
        self.tray.setToolTip(f"Voice Organizer - {tip}")
        self._hands_free_action.setChecked(state.hands_free_enabled)
        if state.is_recording:
            self.overlay.set_text("🎙️ Listening...")
        elif self.overlay.isVisible():
            self.overlay.hide_with_delay(1500)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.voice.load_model_async()
        try:
            self.hotkeys.start(
                on_press=self.manual.press_async,
                on_release=self.manual.release_async,
                on_toggle=self.voice.toggle,
            )
        except Exception as exc:
            self.overlay.show_toast(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkeys.stop()
        self.voice.shutdown()
        self.spotter.close()
        self.app.quit()


def main() -> int:
    logging.basicConfig(
        level=os.getenv("WAKECAPTURE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())

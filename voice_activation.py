"""Hands-free mode: keeps the wake word listener and capture sessions from
ever holding the microphone at the same time."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from capture import AudioCapture, CaptureOutcome, CaptureSession
from errors import (
    DEVICE_ERROR,
    ERROR_MESSAGES,
    HANDS_FREE_OFF_MESSAGES,
    MODEL_LOAD_FAILED,
    TOO_SHORT,
    WAKE_WORD_OFF,
    WAKE_WORD_ON,
    MicrophoneError,
)
from models import (
    AudioArtifact,
    CaptureFailed,
    CaptureState,
    DetectionEvent,
    LoadState,
    RejectedTooShort,
    TriggerKind,
    UiState,
)
from wake_word import KeywordSpotter

logger = logging.getLogger(__name__)

Notify = Callable[[str], None]
ArtifactHandler = Callable[[AudioArtifact], None]
UiCallback = Callable[[UiState], None]


class VoiceActivationController:
    """Derives whether the spotter should listen from two inputs, the user's
    toggle and whether a capture session holds the slot, and drives the
    spotter there every time either changes.

    A detection above the confidence threshold starts a wake word session
    with utterance detection; finished sessions of both kinds are routed to
    ``on_artifact`` or turned into a notice.
    """

    def __init__(
        self,
        capture: AudioCapture,
        spotter: KeywordSpotter,
        notify: Notify,
        on_artifact: ArtifactHandler,
        locale_provider: Callable[[], str],
        confidence_threshold: float = 0.85,
        on_ui_change: Optional[UiCallback] = None,
    ) -> None:
        self._capture = capture
        self._spotter = spotter
        self._notify = notify
        self._on_artifact = on_artifact
        self._locale_provider = locale_provider
        self.confidence_threshold = confidence_threshold
        self.on_ui_change = on_ui_change

        self._lock = threading.RLock()
        self._enabled = False
        self._wake_triggered = False

        capture.add_busy_listener(self._on_capture_busy)
        capture.add_finish_listener(self._on_capture_finished)
        capture.add_state_listener(self._on_capture_state)
        spotter.on_detection.set(self.handle_detection)
        spotter.on_state_change = self._emit_ui

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def wake_triggered(self) -> bool:
        return self._wake_triggered

    @property
    def effective_listening(self) -> bool:
        return self._enabled and not self._capture.is_busy

    @property
    def ui_state(self) -> UiState:
        load_state = self._spotter.load_state
        return UiState(
            hands_free_enabled=self._enabled,
            is_model_loading=load_state in (LoadState.UNLOADED, LoadState.LOADING),
            is_listening=self._spotter.is_listening,
            is_recording=self._capture.is_recording,
            is_wake_triggered=self._wake_triggered,
        )

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def load_model(self) -> LoadState:
        state = self._spotter.initialize(self._locale_provider())
        if state == LoadState.FAILED:
            self._disable(MODEL_LOAD_FAILED)
        self._reconcile()
        return state

    def load_model_async(self) -> threading.Thread:
        thread = threading.Thread(target=self.load_model, name="wake-word-loader", daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    # User toggle
    # ------------------------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            if self._enabled == enabled:
                return
            self._enabled = enabled
        logger.info("Hands-free mode %s", "enabled" if enabled else "disabled")
        # initialize is a no-op while the model is already loading.
        if enabled and self._spotter.load_state != LoadState.READY:
            self.load_model_async()
        self._reconcile()

    def toggle(self) -> bool:
        enabled = not self._enabled
        self.set_enabled(enabled)
        self._notify(WAKE_WORD_ON if enabled else WAKE_WORD_OFF)
        return enabled

    def shutdown(self) -> None:
        with self._lock:
            self._enabled = False
            self._wake_triggered = False
        self._spotter.stop_listening()
        self._capture.cancel()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def handle_detection(self, event: DetectionEvent) -> None:
        with self._lock:
            if not self._enabled:
                return
            if self.confidence_threshold and event.confidence < self.confidence_threshold:
                logger.debug(
                    "Ignoring %r at %.2f (threshold %.2f)",
                    event.label,
                    event.confidence,
                    self.confidence_threshold,
                )
                return
            if self._capture.is_busy:
                return
            self._wake_triggered = True
            try:
                session = self._capture.start(TriggerKind.WAKE_WORD, use_utterance_detection=True)
            except MicrophoneError as exc:
                logger.warning("Wake word capture failed: %s", exc)
                self._wake_triggered = False
                self._disable(exc.code)
                return
            if session is None:
                self._wake_triggered = False
        self._emit_ui()

    # ------------------------------------------------------------------
    # Capture callbacks
    # ------------------------------------------------------------------

    def _on_capture_busy(self, busy: bool) -> None:
        self._reconcile()

    def _on_capture_state(
        self, session: CaptureSession, from_state: CaptureState, to_state: CaptureState
    ) -> None:
        if to_state in (CaptureState.RECORDING, CaptureState.IDLE):
            self._emit_ui()

    def _on_capture_finished(self, session: CaptureSession, outcome: CaptureOutcome) -> None:
        wake = session.trigger_kind == TriggerKind.WAKE_WORD
        if wake:
            with self._lock:
                self._wake_triggered = False
        if isinstance(outcome, RejectedTooShort):
            self._notify(ERROR_MESSAGES[TOO_SHORT])
        elif isinstance(outcome, CaptureFailed):
            if not (wake and self._disable(outcome.code)):
                self._notify(ERROR_MESSAGES.get(outcome.code, outcome.message))
        else:
            try:
                self._on_artifact(outcome)
            except Exception:
                logger.exception("Artifact handoff failed")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reconcile(self) -> None:
        with self._lock:
            # A wake session being armed counts as busy before the slot is taken.
            target = (
                self.effective_listening
                and not self._wake_triggered
                and self._spotter.load_state == LoadState.READY
            )
            if target:
                if not self._spotter.start_listening():
                    error = self._spotter.last_error
                    # No error means the model went back to Loading; its loader reconciles.
                    if error is not None:
                        self._disable(error.code)
            else:
                self._spotter.stop_listening()
        self._emit_ui()

    def _disable(self, code: str) -> bool:
        """Turn hands-free mode off after a failure. Returns whether it was on,
        in which case the user has been told."""
        with self._lock:
            was_enabled = self._enabled
            self._enabled = False
        if was_enabled:
            logger.warning("Hands-free mode turned off (%s)", code)
            self._notify(HANDS_FREE_OFF_MESSAGES.get(code, HANDS_FREE_OFF_MESSAGES[DEVICE_ERROR]))
        self._spotter.stop_listening()
        return was_enabled

    def _emit_ui(self) -> None:
        if self.on_ui_change:
            self.on_ui_change(self.ui_state)

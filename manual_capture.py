"""Push-to-talk: press opens a capture session, release finalizes it."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from capture import AudioCapture, CaptureOutcome, CaptureSession
from errors import ERROR_MESSAGES, PERMISSION_DENIED, TOO_SHORT, MicrophoneError
from models import CaptureState, TriggerKind

logger = logging.getLogger(__name__)


class ManualCaptureController:
    """Maps press/release to manual sessions.

    The pressed flag is the intent: it is set before the microphone is
    requested and checked again once it is open, so a release that lands
    during acquisition releases the stream instead of leaving a recording
    running. A press while a wake word session is active is ignored; the
    button then acts as the stop control for that session.
    """

    def __init__(self, capture: AudioCapture, notify: Callable[[str], None]) -> None:
        self._capture = capture
        self._notify = notify
        self._lock = threading.Lock()
        self._pressing = False
        self._session: Optional[CaptureSession] = None

    @property
    def is_pressing(self) -> bool:
        return self._pressing

    def press(self) -> Optional[CaptureSession]:
        if not self._begin_press():
            return None
        return self._arm()

    def press_async(self) -> Optional[threading.Thread]:
        """Record the press now and acquire the microphone off the caller's thread."""
        if not self._begin_press():
            return None
        thread = threading.Thread(target=self._arm, name="manual-capture", daemon=True)
        thread.start()
        return thread

    def release(self) -> Optional[CaptureOutcome]:
        with self._lock:
            self._pressing = False
            session, self._session = self._session, None
        if session is None:
            active = self._capture.active_session
            if active is None or active.trigger_kind != TriggerKind.WAKE_WORD:
                return None
            if active.state != CaptureState.RECORDING:
                return None
            logger.info("Stopping wake word session from the record button")
            session = active
        return session.stop()

    def release_async(self) -> threading.Thread:
        with self._lock:
            self._pressing = False
        thread = threading.Thread(target=self.release, name="manual-release", daemon=True)
        thread.start()
        return thread

    def _begin_press(self) -> bool:
        active = self._capture.active_session
        if active is not None:
            if active.trigger_kind == TriggerKind.WAKE_WORD:
                logger.info("Wake word session in progress, press acts as stop")
            return False
        with self._lock:
            self._pressing = True
        return True

    def _arm(self) -> Optional[CaptureSession]:
        try:
            session = self._capture.start(
                TriggerKind.MANUAL,
                use_utterance_detection=False,
                still_wanted=lambda: self._pressing,
            )
        except MicrophoneError as exc:
            logger.warning("Manual capture failed: %s", exc)
            with self._lock:
                self._pressing = False
            self._notify(ERROR_MESSAGES.get(exc.code, ERROR_MESSAGES[PERMISSION_DENIED]))
            return None
        if session is None:
            if not self._pressing:
                # Released before the microphone was ready.
                self._notify(ERROR_MESSAGES[TOO_SHORT])
            return None
        with self._lock:
            released = not self._pressing
            if not released:
                self._session = session
        if released:
            # The release arrived after the intent check but before the handoff.
            session.stop()
            return None
        return session

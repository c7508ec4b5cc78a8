"""End-of-utterance detection for hands-free capture sessions.

Two strategies share one contract: the stop callback fires at most once per
session, and ``dispose()`` stops all further activity (frames ignored, timers
cancelled) whichever way the session ended.

Timeouts are two-tier. Once speech has been detected the session ends after
``silence_timeout_ms`` without voice activity; if the user never speaks it
ends ``no_speech_timeout_ms`` after the last activity (or the start).
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from interfaces import TranscriptRecognizer
from models import AudioFrame, RecognitionEvent, UtteranceSettings

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
TimerFactory = Callable[[float, Callable[[], None]], Any]

FFT_SIZE = 512
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def spectrum_level(pcm16: bytes, channels: int = 1, fft_size: int = FFT_SIZE) -> float:
    """Average spectrum magnitude of the newest ``fft_size`` samples on a 0..255 scale.

    Bins are Blackman-windowed magnitudes in dBFS mapped linearly from
    [MIN_DECIBELS, MAX_DECIBELS] onto [0, 255], the same scale a browser
    analyser node reports as byte frequency data.
    """
    if np is None:
        raise RuntimeError("numpy is not installed")
    samples = np.frombuffer(pcm16, dtype=np.int16)
    if channels > 1:
        samples = samples[: len(samples) - len(samples) % channels]
        samples = samples.reshape(-1, channels).mean(axis=1)
    window = samples[-fft_size:].astype(np.float64) / 32768.0
    n = window.size
    if n < 2:
        return 0.0
    magnitude = np.abs(np.fft.rfft(window * np.blackman(n)))[: n // 2] / n
    decibels = 20.0 * np.log10(np.maximum(magnitude, 1e-12))
    scaled = (decibels - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
    return float(np.clip(scaled, 0.0, 255.0).mean())


@dataclass
class SilenceTracker:
    last_voice_activity_at: float
    has_detected_speech_yet: bool = False


class UtteranceEndDetector(ABC):
    def __init__(
        self,
        on_utterance_end: Callable[[], None],
        settings: Optional[UtteranceSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._on_utterance_end = on_utterance_end
        self.settings = settings or UtteranceSettings()
        self._clock = clock or monotonic_ms
        self._lock = threading.Lock()
        self._tracker: Optional[SilenceTracker] = None
        self._fired = False
        self._disposed = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def has_detected_speech(self) -> bool:
        return self._tracker is not None and self._tracker.has_detected_speech_yet

    def start(self) -> None:
        with self._lock:
            self._tracker = SilenceTracker(last_voice_activity_at=self._clock())
            self._fired = False
            self._disposed = False

    @abstractmethod
    def feed(self, frame: AudioFrame) -> None:
        """Account for one captured frame."""

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True
            self._tracker = None

    def _is_live(self) -> bool:
        return self._tracker is not None and not self._fired and not self._disposed

    def _note_activity(self, now: float, speech: bool) -> None:
        tracker = self._tracker
        if tracker is None:
            return
        tracker.last_voice_activity_at = now
        if speech and not tracker.has_detected_speech_yet:
            tracker.has_detected_speech_yet = True
            logger.debug("Speech detected")

    def _timed_out(self, now: float) -> bool:
        tracker = self._tracker
        if tracker is None:
            return False
        quiet_for = now - tracker.last_voice_activity_at
        if tracker.has_detected_speech_yet:
            return quiet_for > self.settings.silence_timeout_ms
        return quiet_for > self.settings.no_speech_timeout_ms

    def _fire(self) -> None:
        with self._lock:
            if self._fired or self._disposed:
                return
            self._fired = True
            spoke = self.has_detected_speech
        logger.info("Utterance ended (%s)", "silence after speech" if spoke else "no speech")
        self._on_utterance_end()


class EnergyUtteranceEndDetector(UtteranceEndDetector):
    """Frame energy strategy: each analysed frame above the activity threshold
    resets the silence clock. Speech counts as detected only after
    ``speech_onset_frames`` consecutive active frames, so one transient does
    not switch the session to the short timeout."""

    def __init__(
        self,
        on_utterance_end: Callable[[], None],
        settings: Optional[UtteranceSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(on_utterance_end, settings, clock)
        self._active_run = 0
        self.last_level = 0.0

    def start(self) -> None:
        super().start()
        self._active_run = 0

    def feed(self, frame: AudioFrame) -> None:
        with self._lock:
            if not self._is_live():
                return
            now = self._clock()
            self.last_level = spectrum_level(frame.pcm16_bytes, frame.channels)
            if self.last_level > self.settings.activity_threshold:
                self._active_run += 1
                self._note_activity(now, self._active_run >= self.settings.speech_onset_frames)
            else:
                self._active_run = 0
            timed_out = self._timed_out(now)
        if timed_out:
            self._fire()


class TranscriptUtteranceEndDetector(UtteranceEndDetector):
    """Recognizer strategy: every non-empty partial or final transcript resets
    a timer; the timer expiring ends the utterance."""

    def __init__(
        self,
        on_utterance_end: Callable[[], None],
        recognizer: Optional[TranscriptRecognizer] = None,
        settings: Optional[UtteranceSettings] = None,
        clock: Optional[Clock] = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        super().__init__(on_utterance_end, settings, clock)
        self._recognizer = recognizer
        self._timer_factory = timer_factory or _daemon_timer
        self._timer: Any = None
        self._generation = 0

    def start(self) -> None:
        super().start()
        with self._lock:
            self._schedule(self.settings.no_speech_timeout_ms)

    def feed(self, frame: AudioFrame) -> None:
        if self._recognizer is None or not self._is_live():
            return
        event = self._recognizer.accept(frame.pcm16_bytes)
        if event is not None:
            self.on_recognition_event(event)

    def on_recognition_event(self, event: RecognitionEvent) -> None:
        if not event.text.strip():
            return
        with self._lock:
            if not self._is_live():
                return
            self._note_activity(self._clock(), speech=True)
            self._schedule(self.settings.silence_timeout_ms)

    def dispose(self) -> None:
        super().dispose()
        with self._lock:
            self._cancel_timer()

    def _schedule(self, delay_ms: float) -> None:
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self._timer = self._timer_factory(delay_ms / 1000.0, lambda: self._on_timeout(generation))
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self._fire()


def _daemon_timer(delay_s: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_s, callback)
    timer.daemon = True
    return timer

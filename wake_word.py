"""Continuous wake phrase listening on its own microphone stream."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Callable, Optional

from errors import MicrophoneError
from interfaces import KeywordEngine, Recorder
from models import AudioFrame, DetectionEvent, ListeningState, LoadState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WakeModelConfig:
    lang: str
    phrases: tuple[str, ...]


MODEL_CONFIG: dict[str, WakeModelConfig] = {
    "en": WakeModelConfig(lang="en", phrases=("hey organizer",)),
    "pt": WakeModelConfig(lang="pt", phrases=("olá organizador",)),
}


def resolve_locale(locale: str) -> str:
    return "pt" if locale.lower().startswith("pt") else "en"


class CallbackCell:
    """Stable callable whose target can be swapped without re-subscribing."""

    def __init__(self, target: Optional[Callable[[DetectionEvent], None]] = None) -> None:
        self.target = target

    def set(self, target: Optional[Callable[[DetectionEvent], None]]) -> None:
        self.target = target

    def __call__(self, event: DetectionEvent) -> None:
        target = self.target
        if target is not None:
            target(event)


class KeywordSpotter:
    """Loads a keyword model once per locale and streams the microphone
    through it while listening.

    The loaded engine survives stop/start cycles; only the input stream is
    opened and released. Detections are delivered through ``on_detection``
    on the listener thread.
    """

    def __init__(
        self,
        engine_factory: Callable[[WakeModelConfig], KeywordEngine],
        recorder_factory: Callable[[], Recorder],
        on_state_change: Optional[Callable[[], None]] = None,
        queue_maxsize: int = 50,
    ) -> None:
        self.on_detection = CallbackCell()
        self.last_error: Optional[MicrophoneError] = None
        self._engine_factory = engine_factory
        self._recorder_factory = recorder_factory
        self.on_state_change = on_state_change
        self._queue_maxsize = queue_maxsize

        self._lock = threading.RLock()
        self._load_state = LoadState.UNLOADED
        self._listening_state = ListeningState.STOPPED
        self._locale: Optional[str] = None
        self._engine: Optional[KeywordEngine] = None
        self._load_generation = 0
        self._recorder: Optional[Recorder] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def listening_state(self) -> ListeningState:
        return self._listening_state

    @property
    def is_listening(self) -> bool:
        return self._listening_state == ListeningState.LISTENING

    @property
    def locale(self) -> Optional[str]:
        return self._locale

    @property
    def wake_phrases(self) -> tuple[str, ...]:
        if self._locale is None:
            return ()
        return MODEL_CONFIG[self._locale].phrases

    def initialize(self, locale: str) -> LoadState:
        """Load the model for ``locale``; a no-op while Loading or Ready for it."""
        key = resolve_locale(locale)
        with self._lock:
            if self._locale == key and self._load_state in (LoadState.LOADING, LoadState.READY):
                return self._load_state
            self._load_generation += 1
            generation = self._load_generation
            previous, self._engine = self._engine, None
            self._locale = key
            self._load_state = LoadState.LOADING
        self.stop_listening()
        if previous is not None:
            previous.close()
        logger.info("Loading wake word model for %s", key)
        self._emit_state()

        try:
            engine = self._engine_factory(MODEL_CONFIG[key])
            engine.load()
        except Exception as exc:
            logger.error("Wake word model for %s failed to load: %s", key, exc)
            with self._lock:
                if generation == self._load_generation:
                    self._load_state = LoadState.FAILED
            self._emit_state()
            return LoadState.FAILED

        with self._lock:
            if generation != self._load_generation:
                engine.close()
                return self._load_state
            self._engine = engine
            self._load_state = LoadState.READY
        logger.info("Wake word model ready for %s", key)
        self._emit_state()
        return LoadState.READY

    def start_listening(self) -> bool:
        """Open the microphone and feed the engine. Returns False, without
        raising, when the model is not ready or the device cannot be opened."""
        with self._lock:
            if self._listening_state == ListeningState.LISTENING:
                return True
            self.last_error = None
            engine = self._engine
            if self._load_state != LoadState.READY or engine is None:
                logger.debug("Wake word model not ready, cannot listen")
                return False
            recorder = self._recorder_factory()
            audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
            try:
                recorder.start(audio_queue)
            except MicrophoneError as exc:
                logger.warning("Wake word microphone unavailable: %s", exc)
                self.last_error = exc
                return False
            engine.reset()
            stop_event = threading.Event()
            self._recorder = recorder
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._listen,
                args=(audio_queue, stop_event, engine),
                name="wake-word",
                daemon=True,
            )
            self._listening_state = ListeningState.LISTENING
            self._thread.start()
        logger.info("Listening for %s", ", ".join(self.wake_phrases))
        self._emit_state()
        return True

    def stop_listening(self) -> None:
        """Release the stream; safe to call when nothing is streaming."""
        with self._lock:
            recorder, self._recorder = self._recorder, None
            thread, self._thread = self._thread, None
            stop_event, self._stop_event = self._stop_event, None
            was_listening = self._listening_state == ListeningState.LISTENING
            self._listening_state = ListeningState.STOPPED
            if stop_event is not None:
                stop_event.set()
            if recorder is not None:
                try:
                    recorder.stop()
                except Exception as exc:
                    logger.debug("Wake word stream was not streaming: %s", exc)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=0.5)
        if was_listening:
            logger.info("Stopped listening for wake word")
            self._emit_state()

    def close(self) -> None:
        self.stop_listening()
        with self._lock:
            self._load_generation += 1
            engine, self._engine = self._engine, None
            self._load_state = LoadState.UNLOADED
            self._locale = None
        if engine is not None:
            engine.close()
        self._emit_state()

    def _listen(
        self,
        audio_queue: Queue[AudioFrame | None],
        stop_event: threading.Event,
        engine: KeywordEngine,
    ) -> None:
        while True:
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                if stop_event.is_set():
                    return
                continue
            try:
                if frame is None:
                    return
                if stop_event.is_set():
                    continue
                event = engine.accept(frame.pcm16_bytes)
                if event is not None:
                    logger.info("Wake phrase %r (confidence %.2f)", event.label, event.confidence)
                    self.on_detection(event)
            except Exception:
                logger.exception("Wake word frame processing failed")
            finally:
                audio_queue.task_done()

    def _emit_state(self) -> None:
        if self.on_state_change:
            self.on_state_change()

"""Microphone capture sessions: one stream in, one encoded artifact out."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Callable, Optional, Union

from encoding import SoundFileEncoder, base_mime_type, negotiate_mime_type
from errors import DEVICE_ERROR, MicrophoneError
from interfaces import AudioEncoder, Recorder
from models import (
    AudioArtifact,
    AudioFrame,
    CaptureFailed,
    CaptureState,
    RejectedTooShort,
    TriggerKind,
)
from utterance import Clock, UtteranceEndDetector, monotonic_ms

logger = logging.getLogger(__name__)

CaptureOutcome = Union[AudioArtifact, RejectedTooShort, CaptureFailed]
DetectorFactory = Callable[[Callable[[], None]], UtteranceEndDetector]
StateCallback = Callable[["CaptureSession", CaptureState, CaptureState], None]
BusyListener = Callable[[bool], None]
FinishListener = Callable[["CaptureSession", CaptureOutcome], None]


class CaptureSession:
    """One recording, IDLE -> ARMING -> RECORDING -> FINALIZING -> IDLE.

    ARMING covers opening the input stream. The session moves to RECORDING
    as soon as the stream is open rather than on its first frame: the
    recorder queues every block from that point, and the worker started in
    the same step consumes them in order, so no audio precedes RECORDING.
    """

    def __init__(
        self,
        session_id: int,
        trigger_kind: TriggerKind,
        recorder: Recorder,
        encoder: AudioEncoder,
        clock: Clock,
        min_duration_ms: int,
        on_finished: Callable[["CaptureSession", Optional[CaptureOutcome]], None],
        detector: Optional[UtteranceEndDetector] = None,
        on_state_change: Optional[StateCallback] = None,
        queue_maxsize: int = 100,
    ) -> None:
        self.session_id = session_id
        self.trigger_kind = trigger_kind
        self.started_at = clock()
        self.audio_chunks: list[bytes] = []
        self.mime_type = encoder.default_mime_type
        self.detector = detector
        self._recorder = recorder
        self._encoder = encoder
        self._clock = clock
        self._min_duration_ms = min_duration_ms
        self._on_finished = on_finished
        self._on_state_change = on_state_change

        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._queue: Queue[AudioFrame | None] = Queue(maxsize=queue_maxsize)
        self._worker: Optional[threading.Thread] = None
        self._sample_rate = 16000
        self._channels = 1
        self._outcome: Optional[CaptureOutcome] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def outcome(self) -> Optional[CaptureOutcome]:
        return self._outcome

    def stop(self) -> Optional[CaptureOutcome]:
        """Finish recording and hand the outcome to the owner.

        Only the first call while Recording does any work; later calls return
        the same outcome. A session still acquiring the microphone returns None.
        """
        with self._lock:
            if self._state != CaptureState.RECORDING:
                return self._outcome
            self._transition(CaptureState.FINALIZING)
        outcome = self._finalize()
        self._on_finished(self, outcome)
        return outcome

    def cancel(self) -> None:
        """Drop the recording without producing an artifact."""
        with self._lock:
            if self._state not in (CaptureState.ARMING, CaptureState.RECORDING):
                return
            self._transition(CaptureState.FINALIZING)
        self._release_hardware()
        self.audio_chunks = []
        self._transition(CaptureState.IDLE)
        self._on_finished(self, None)

    # ------------------------------------------------------------------
    # Driven by AudioCapture
    # ------------------------------------------------------------------

    def _arm(self) -> None:
        self._transition(CaptureState.ARMING)
        self._recorder.start(self._queue)
        self.mime_type = negotiate_mime_type(self._encoder)

    def _begin_recording(self, still_wanted: Optional[Callable[[], bool]]) -> bool:
        with self._lock:
            if self._state != CaptureState.ARMING:
                return False
            if still_wanted is not None and not still_wanted():
                return False
            if self.detector is not None:
                self.detector.start()
            self._worker = threading.Thread(
                target=self._consume,
                name=f"capture-{self.session_id}",
                daemon=True,
            )
            self._transition(CaptureState.RECORDING)
            self._worker.start()
            return True

    def _abandon(self) -> None:
        self._safe_stop_recorder()
        self._transition(CaptureState.IDLE)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _consume(self) -> None:
        while True:
            try:
                frame = self._queue.get(timeout=0.2)
            except Empty:
                if self._state != CaptureState.RECORDING:
                    return
                continue
            try:
                if frame is None:
                    return
                self._accept(frame)
            finally:
                self._queue.task_done()

    def _accept(self, frame: AudioFrame) -> None:
        self.audio_chunks.append(frame.pcm16_bytes)
        self._sample_rate = frame.sample_rate
        self._channels = frame.channels
        if self.detector is None or self._state != CaptureState.RECORDING:
            return
        try:
            self.detector.feed(frame)
        except Exception:
            logger.exception("Utterance detector failed, stopping session %d", self.session_id)
            self.stop()

    def _finalize(self) -> CaptureOutcome:
        try:
            self._release_hardware()
            duration_ms = int(self._clock() - self.started_at)
            if duration_ms < self._min_duration_ms:
                logger.info("Session %d too short (%d ms), discarded", self.session_id, duration_ms)
                outcome: CaptureOutcome = RejectedTooShort(duration_ms, self.trigger_kind)
            else:
                outcome = self._build_artifact(duration_ms)
        except Exception as exc:
            logger.exception("Session %d failed to finalize", self.session_id)
            outcome = CaptureFailed(DEVICE_ERROR, str(exc), self.trigger_kind)
        finally:
            self.audio_chunks = []
            self._transition(CaptureState.IDLE)
        self._outcome = outcome
        return outcome

    def _build_artifact(self, duration_ms: int) -> AudioArtifact:
        pcm = b"".join(self.audio_chunks)
        data = self._encoder.encode(pcm, self._sample_rate, self._channels, self.mime_type)
        logger.info(
            "Session %d finalized: %d ms, %d bytes as %s",
            self.session_id,
            duration_ms,
            len(data),
            self.mime_type,
        )
        return AudioArtifact(
            data=data,
            mime_type=base_mime_type(self.mime_type),
            duration_ms=duration_ms,
            trigger_kind=self.trigger_kind,
        )

    def _release_hardware(self) -> None:
        try:
            self._safe_stop_recorder()
        finally:
            if self.detector is not None:
                self.detector.dispose()
            self._drain()

    def _drain(self) -> None:
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=1.0)
            return
        while True:
            try:
                frame = self._queue.get_nowait()
            except Empty:
                return
            try:
                if frame is None:
                    return
                self.audio_chunks.append(frame.pcm16_bytes)
            finally:
                self._queue.task_done()

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception:
            logger.exception("Recorder failed to stop cleanly")

    def _transition(self, to_state: CaptureState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("Session %d: %s -> %s", self.session_id, from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(self, from_state, to_state)


class AudioCapture:
    """Owns the single capture slot. At most one session exists at a time;
    busy listeners are told before the microphone is opened and after it is
    released, so the wake word listener can hand the device over."""

    def __init__(
        self,
        recorder_factory: Callable[[], Recorder],
        encoder: Optional[AudioEncoder] = None,
        detector_factory: Optional[DetectorFactory] = None,
        clock: Optional[Clock] = None,
        min_duration_ms: int = 500,
    ) -> None:
        self._recorder_factory = recorder_factory
        self._encoder = encoder or SoundFileEncoder()
        self._detector_factory = detector_factory
        self._clock = clock or monotonic_ms
        self._min_duration_ms = min_duration_ms

        self._lock = threading.Lock()
        self._session_id = 0
        self._active: Optional[CaptureSession] = None
        self._busy_listeners: list[BusyListener] = []
        self._finish_listeners: list[FinishListener] = []
        self._state_listeners: list[StateCallback] = []

    @property
    def active_session(self) -> Optional[CaptureSession]:
        return self._active

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    @property
    def is_recording(self) -> bool:
        session = self._active
        return session is not None and session.state == CaptureState.RECORDING

    def add_busy_listener(self, listener: BusyListener) -> None:
        self._busy_listeners.append(listener)

    def add_finish_listener(self, listener: FinishListener) -> None:
        self._finish_listeners.append(listener)

    def add_state_listener(self, listener: StateCallback) -> None:
        self._state_listeners.append(listener)

    def start(
        self,
        trigger_kind: TriggerKind,
        use_utterance_detection: bool = False,
        still_wanted: Optional[Callable[[], bool]] = None,
    ) -> Optional[CaptureSession]:
        """Open the microphone and begin a session.

        Returns None when another session holds the slot or when
        ``still_wanted`` reports the trigger was revoked while the device was
        being acquired. Raises MicrophoneError (MicrophonePermissionError for
        denied or missing devices) with no session left behind.
        """
        with self._lock:
            if self._active is not None:
                logger.info(
                    "Capture busy (%s), ignoring %s trigger",
                    self._active.trigger_kind.value,
                    trigger_kind.value,
                )
                return None
            self._session_id += 1
            session = CaptureSession(
                session_id=self._session_id,
                trigger_kind=trigger_kind,
                recorder=self._recorder_factory(),
                encoder=self._encoder,
                clock=self._clock,
                min_duration_ms=self._min_duration_ms,
                on_finished=self._finish,
                on_state_change=self._on_session_state,
            )
            if use_utterance_detection and self._detector_factory is not None:
                session.detector = self._detector_factory(session.stop)
            self._active = session

        self._notify_busy(True)
        try:
            session._arm()
        except MicrophoneError:
            logger.warning("Microphone unavailable for %s capture", trigger_kind.value)
            session._abandon()
            self._release_slot(session)
            raise
        except Exception as exc:
            session._abandon()
            self._release_slot(session)
            raise MicrophoneError(DEVICE_ERROR, str(exc)) from exc

        if not session._begin_recording(still_wanted):
            logger.info("Trigger revoked while acquiring microphone, releasing stream")
            session._abandon()
            self._release_slot(session)
            return None
        logger.info(
            "Session %d recording (%s, utterance detection %s)",
            session.session_id,
            trigger_kind.value,
            "on" if session.detector is not None else "off",
        )
        return session

    def stop(self) -> Optional[CaptureOutcome]:
        session = self._active
        if session is None:
            return None
        return session.stop()

    def cancel(self) -> None:
        session = self._active
        if session is not None:
            session.cancel()

    def _finish(self, session: CaptureSession, outcome: Optional[CaptureOutcome]) -> None:
        with self._lock:
            if self._active is session:
                self._active = None
        if outcome is not None:
            for listener in list(self._finish_listeners):
                listener(session, outcome)
        self._notify_busy(False)

    def _release_slot(self, session: CaptureSession) -> None:
        with self._lock:
            if self._active is session:
                self._active = None
        self._notify_busy(False)

    def _notify_busy(self, busy: bool) -> None:
        for listener in list(self._busy_listeners):
            listener(busy)

    def _on_session_state(
        self, session: CaptureSession, from_state: CaptureState, to_state: CaptureState
    ) -> None:
        for listener in list(self._state_listeners):
            listener(session, from_state, to_state)

"""Microphone recorder adapter."""

from __future__ import annotations

import logging
import threading
import time
from queue import Full, Queue
from typing import Any, Optional

from errors import DEVICE_ERROR, MicrophoneError, MicrophonePermissionError
from models import AudioFrame

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    """Owns one input stream; every ``start`` is one microphone acquisition.

    Frames are pushed to the caller's queue from the PortAudio thread and a
    single ``None`` sentinel marks the end of the stream.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise MicrophoneError(DEVICE_ERROR, "sounddevice is not installed")
            self._audio_queue = audio_queue
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            stream = None
            try:
                sd.check_input_settings(
                    device=self.device,
                    channels=self.channels,
                    samplerate=self.sample_rate,
                    dtype="int16",
                )
                stream = sd.InputStream(
                    device=self.device,
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_audio,
                )
                stream.start()
            except (sd.PortAudioError, ValueError) as exc:
                self._audio_queue = None
                if stream is not None:
                    stream.close()
                raise MicrophonePermissionError(f"input device unavailable: {exc}") from exc
            except Exception as exc:
                self._audio_queue = None
                if stream is not None:
                    stream.close()
                raise MicrophoneError(DEVICE_ERROR, f"input stream failed: {exc}") from exc
            self._stream = stream
            self._running = True
            logger.debug("Input stream opened (%d Hz, %d ms blocks)", self.sample_rate, self.chunk_ms)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                self._emit_sentinel_if_needed()
                return
            self._running = False
            stream, self._stream = self._stream, None
            if stream is not None:
                self._close_stream(stream)
            self._emit_sentinel_if_needed()
            logger.debug("Input stream released")

    def _close_stream(self, stream: Any) -> None:
        try:
            if stream.active:
                stream.stop()
        except sd.PortAudioError as exc:
            # The host API may already have torn the stream down.
            logger.debug("Stream was not running on stop: %s", exc)
        try:
            stream.close()
        except sd.PortAudioError as exc:
            logger.debug("Stream already closed: %s", exc)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._audio_queue is None:
            return
        if np is None:
            return
        if status:
            logger.debug("Input stream status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        frame = AudioFrame(
            pcm16_bytes=payload,
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.monotonic() * 1000),
        )
        try:
            self._audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel_if_needed(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            logger.warning("Audio queue full, end-of-stream marker dropped")
        self._audio_queue = None

"""Tests for VoiceActivationController: hands-free flow and microphone exclusion."""

from __future__ import annotations

import random

import pytest

from errors import (
    DEVICE_ERROR,
    ERROR_MESSAGES,
    HANDS_FREE_OFF_MESSAGES,
    MODEL_LOAD_FAILED,
    PERMISSION_DENIED,
    TOO_SHORT,
    WAKE_WORD_OFF,
    WAKE_WORD_ON,
    MicrophoneError,
    MicrophonePermissionError,
)
from fakes import RecordingHarness, silence_frame
from models import AudioArtifact, CaptureFailed, DetectionEvent, LoadState, TriggerKind


@pytest.fixture
def harness():  # noqa: ANN201
    h = RecordingHarness()
    yield h
    h.shutdown()


# ---------------------------------------------------------------
# Enable / disable
# ---------------------------------------------------------------

def test_enable_starts_listening(harness: RecordingHarness) -> None:
    harness.enable()

    assert harness.controller.enabled
    assert harness.spotter.is_listening
    assert harness.controller.effective_listening
    assert harness.ui_states[-1].is_listening
    assert harness.notices == []


def test_toggle_announces_state(harness: RecordingHarness) -> None:
    harness.controller.load_model()

    assert harness.controller.toggle() is True
    assert harness.spotter.is_listening
    assert harness.controller.toggle() is False
    assert not harness.spotter.is_listening

    assert harness.notices == [WAKE_WORD_ON, WAKE_WORD_OFF]
    assert harness.spotter_pool.last.stops == 1


def test_disable_releases_spotter_stream(harness: RecordingHarness) -> None:
    harness.enable()

    harness.controller.set_enabled(False)

    assert not harness.spotter.is_listening
    assert harness.ledger.open == 0


def test_enable_before_model_ready_loads_in_background(harness: RecordingHarness) -> None:
    loads: list = []
    harness.controller.load_model_async = lambda: loads.append(1)

    harness.controller.set_enabled(True)

    assert loads == [1]
    assert not harness.spotter.is_listening
    assert harness.controller.ui_state.is_model_loading


def test_model_loaded_later_starts_listening_if_enabled(harness: RecordingHarness) -> None:
    harness.controller.load_model_async = lambda: None
    harness.controller.set_enabled(True)

    assert harness.controller.load_model() == LoadState.READY

    assert harness.spotter.is_listening


def test_model_failure_disables_and_notifies(monkeypatch) -> None:  # noqa: ANN001
    h = RecordingHarness(fail_load=True)
    monkeypatch.setattr(h.controller, "load_model_async", h.controller.load_model)

    h.controller.set_enabled(True)

    assert not h.controller.enabled
    assert h.spotter.load_state == LoadState.FAILED
    assert h.notices == [HANDS_FREE_OFF_MESSAGES[MODEL_LOAD_FAILED]]
    assert h.spotter_pool.created == []
    h.shutdown()


def test_model_failure_while_disabled_is_silent() -> None:
    h = RecordingHarness(fail_load=True)

    assert h.controller.load_model() == LoadState.FAILED

    assert h.notices == []
    h.shutdown()


def test_spotter_microphone_failure_disables(harness: RecordingHarness) -> None:
    harness.controller.load_model()
    harness.spotter_pool.next_error = MicrophonePermissionError("denied")

    harness.controller.set_enabled(True)

    assert not harness.controller.enabled
    assert not harness.spotter.is_listening
    assert harness.notices == [HANDS_FREE_OFF_MESSAGES[PERMISSION_DENIED]]


def test_spotter_not_ready_leaves_mode_on(harness: RecordingHarness, monkeypatch) -> None:  # noqa: ANN001
    harness.controller.load_model()
    start_listening = harness.spotter.start_listening

    def unload_then_start() -> bool:
        # The model goes away between the readiness check and the stream opening.
        harness.spotter.close()
        return start_listening()

    monkeypatch.setattr(harness.spotter, "start_listening", unload_then_start)
    harness.controller.set_enabled(True)

    assert harness.controller.enabled
    assert not harness.spotter.is_listening
    assert harness.notices == []

    monkeypatch.setattr(harness.spotter, "start_listening", start_listening)
    assert harness.controller.load_model() == LoadState.READY
    assert harness.spotter.is_listening


# ---------------------------------------------------------------
# Wake word sessions
# ---------------------------------------------------------------

def test_wake_word_happy_path(harness: RecordingHarness) -> None:
    harness.enable()

    harness.say_wake_phrase(confidence=0.93)

    session = harness.capture.active_session
    assert session is not None
    assert session.trigger_kind == TriggerKind.WAKE_WORD
    assert session.detector is not None
    assert harness.controller.wake_triggered
    assert not harness.spotter.is_listening
    assert harness.ui_states[-1].is_recording
    assert harness.ui_states[-1].button_action == "stop"

    harness.speak(speech_ms=1000)

    assert len(harness.artifacts) == 1
    artifact = harness.artifacts[0]
    assert isinstance(artifact, AudioArtifact)
    assert artifact.trigger_kind == TriggerKind.WAKE_WORD
    assert not harness.controller.wake_triggered
    assert harness.spotter.is_listening
    assert len(harness.spotter_pool.created) == 2
    assert harness.ledger.max_open == 1
    assert harness.ui_states[-1].button_action == "record"


def test_detection_below_threshold_is_ignored(harness: RecordingHarness) -> None:
    harness.enable()

    harness.say_wake_phrase(confidence=0.5)

    assert harness.capture.active_session is None
    assert harness.capture_pool.created == []
    assert harness.spotter.is_listening


def test_zero_threshold_accepts_any_detection() -> None:
    h = RecordingHarness(threshold=0.0)
    h.enable()

    h.say_wake_phrase(confidence=0.1)

    assert h.capture.active_session is not None
    h.shutdown()


def test_detection_while_disabled_is_ignored(harness: RecordingHarness) -> None:
    harness.controller.load_model()

    harness.controller.handle_detection(DetectionEvent("hey organizer", 0.99))

    assert harness.capture_pool.created == []


def test_short_wake_session_notifies_and_resumes(harness: RecordingHarness) -> None:
    harness.enable()
    harness.say_wake_phrase()

    harness.manual.release()

    assert harness.notices == [ERROR_MESSAGES[TOO_SHORT]]
    assert harness.artifacts == []
    assert harness.spotter.is_listening


def test_wake_capture_microphone_failure_disables(harness: RecordingHarness) -> None:
    harness.enable()
    harness.capture_pool.next_error = MicrophoneError(DEVICE_ERROR, "device busy")

    harness.controller.handle_detection(DetectionEvent("hey organizer", 0.95))

    assert not harness.controller.enabled
    assert not harness.controller.wake_triggered
    assert not harness.spotter.is_listening
    assert not harness.capture.is_busy
    assert harness.notices == [HANDS_FREE_OFF_MESSAGES[DEVICE_ERROR]]


def test_disable_during_wake_session_does_not_abort_it(harness: RecordingHarness) -> None:
    harness.enable()
    harness.say_wake_phrase()

    harness.controller.set_enabled(False)

    assert harness.capture.is_recording
    harness.speak(speech_ms=1000)
    assert len(harness.artifacts) == 1
    assert not harness.spotter.is_listening


def test_wake_session_failure_disables_with_notice(harness: RecordingHarness) -> None:
    harness.enable()
    harness.say_wake_phrase()
    harness.encoder.error = OSError("encoder crashed")
    harness.clock.advance(900)

    outcome = harness.manual.release()

    assert isinstance(outcome, CaptureFailed)
    assert not harness.controller.enabled
    assert not harness.spotter.is_listening
    assert harness.notices == [HANDS_FREE_OFF_MESSAGES[DEVICE_ERROR]]


def test_wake_session_failure_after_disable_still_notifies(harness: RecordingHarness) -> None:
    harness.enable()
    harness.say_wake_phrase()
    harness.controller.set_enabled(False)
    harness.encoder.error = OSError("encoder crashed")
    harness.clock.advance(900)

    outcome = harness.manual.release()

    assert isinstance(outcome, CaptureFailed)
    assert outcome.trigger_kind == TriggerKind.WAKE_WORD
    assert harness.notices == [ERROR_MESSAGES[DEVICE_ERROR]]
    assert not harness.controller.enabled


def test_failing_artifact_handler_is_contained(harness: RecordingHarness) -> None:
    def broken(artifact: AudioArtifact) -> None:
        raise RuntimeError("downstream offline")

    harness.controller._on_artifact = broken
    harness.enable()
    harness.say_wake_phrase()

    harness.speak(speech_ms=1000)

    assert harness.capture.active_session is None
    assert harness.spotter.is_listening


def test_shutdown_releases_everything(harness: RecordingHarness) -> None:
    harness.enable()
    harness.say_wake_phrase()

    harness.controller.shutdown()

    assert not harness.controller.enabled
    assert not harness.capture.is_busy
    assert harness.ledger.open == 0
    assert harness.artifacts == []


# ---------------------------------------------------------------
# Mutual exclusion under arbitrary interleavings
# ---------------------------------------------------------------

@pytest.mark.parametrize("seed", range(8))
def test_spotter_and_capture_never_share_microphone(seed: int) -> None:
    rng = random.Random(seed)
    h = RecordingHarness()
    h.controller.load_model()
    ops = ("enable", "disable", "toggle", "press", "release", "detect", "frame", "advance")

    for _ in range(120):
        op = rng.choice(ops)
        if op == "enable":
            h.controller.set_enabled(True)
        elif op == "disable":
            h.controller.set_enabled(False)
        elif op == "toggle":
            h.controller.toggle()
        elif op == "press":
            h.manual.press()
        elif op == "release":
            h.manual.release()
        elif op == "detect":
            h.controller.handle_detection(DetectionEvent("hey organizer", rng.uniform(0.5, 1.0)))
        elif op == "frame":
            recorder = h.capture_pool.created[-1] if h.capture_pool.created else None
            if recorder is not None and recorder.is_open:
                recorder.push(silence_frame())
        else:
            h.clock.advance(rng.choice((100, 400, 900, 2000)))

        assert not (h.spotter.is_listening and h.capture.is_busy), op
        assert h.ledger.open <= 1, op
        if h.controller.enabled and not h.capture.is_busy:
            assert h.spotter.is_listening, op

    assert h.ledger.max_open <= 1
    h.shutdown()

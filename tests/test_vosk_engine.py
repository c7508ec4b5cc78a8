"""Tests for the Vosk keyword engine and transcript recognizer."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from errors import ModelLoadError
from models import RecognitionKind
from vosk_engine import VoskKeywordEngine, VoskTranscriptRecognizer, load_vosk_model


def _words(*pairs: tuple[str, float]) -> list[dict]:
    return [{"word": w, "conf": c, "start": 0.0, "end": 0.1} for w, c in pairs]


# ---------------------------------------------------------------
# Result matching
# ---------------------------------------------------------------

def test_match_reports_mean_word_confidence() -> None:
    engine = VoskKeywordEngine("unused", ["Hey Organizer"])

    event = engine.match(
        {"text": "hey organizer", "result": _words(("hey", 0.9), ("organizer", 0.8))}
    )

    assert event is not None
    assert event.label == "hey organizer"
    assert event.confidence == pytest.approx(0.85)


def test_match_ignores_unknown_speech() -> None:
    engine = VoskKeywordEngine("unused", ["hey organizer"])

    assert engine.match({"text": "[unk]"}) is None
    assert engine.match({"text": ""}) is None
    assert engine.match({}) is None
    assert engine.match({"text": "hey [unk]", "result": _words(("hey", 1.0))}) is None


def test_match_without_word_details_is_fully_confident() -> None:
    engine = VoskKeywordEngine("unused", ["olá organizador"])

    event = engine.match({"text": "olá organizador"})

    assert event.confidence == 1.0


def test_match_only_counts_phrase_words() -> None:
    engine = VoskKeywordEngine("unused", ["hey organizer"])

    event = engine.match(
        {
            "text": "[unk] hey organizer",
            "result": _words(("[unk]", 0.1), ("hey", 1.0), ("organizer", 0.9)),
        }
    )

    assert event.confidence == pytest.approx(0.95)


def test_accept_before_load_returns_none() -> None:
    engine = VoskKeywordEngine("unused", ["hey organizer"])

    assert engine.accept(b"\x00\x00" * 160) is None


# ---------------------------------------------------------------
# Model loading
# ---------------------------------------------------------------

def test_load_fails_without_vosk(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    import vosk_engine
    monkeypatch.setattr(vosk_engine, "vosk", None)

    with pytest.raises(ModelLoadError, match="not installed"):
        load_vosk_model(str(tmp_path))


@patch("vosk_engine.vosk")
def test_load_fails_for_missing_folder(mock_vosk: MagicMock, tmp_path: Path) -> None:
    with pytest.raises(ModelLoadError, match="not found"):
        load_vosk_model(str(tmp_path / "missing"))
    mock_vosk.Model.assert_not_called()


@patch("vosk_engine.vosk")
def test_load_wraps_engine_errors(mock_vosk: MagicMock, tmp_path: Path) -> None:
    mock_vosk.Model.side_effect = Exception("Failed to create a model")

    with pytest.raises(ModelLoadError):
        VoskKeywordEngine(str(tmp_path), ["hey organizer"]).load()


@patch("vosk_engine.vosk")
def test_load_builds_grammar_recognizer(mock_vosk: MagicMock, tmp_path: Path) -> None:
    engine = VoskKeywordEngine(str(tmp_path), ["hey organizer"])

    engine.load()

    mock_vosk.SetLogLevel.assert_called_once_with(-1)
    model, rate, grammar = mock_vosk.KaldiRecognizer.call_args.args
    assert model is mock_vosk.Model.return_value
    assert rate == 16000
    assert json.loads(grammar) == ["hey organizer", "[unk]"]
    mock_vosk.KaldiRecognizer.return_value.SetWords.assert_called_once_with(True)
    assert engine.model is mock_vosk.Model.return_value


@patch("vosk_engine.vosk")
def test_accept_reports_detection_on_final_result(mock_vosk: MagicMock, tmp_path: Path) -> None:
    recognizer = mock_vosk.KaldiRecognizer.return_value
    engine = VoskKeywordEngine(str(tmp_path), ["hey organizer"])
    engine.load()

    recognizer.AcceptWaveform.return_value = False
    assert engine.accept(b"\x00\x00") is None

    recognizer.AcceptWaveform.return_value = True
    recognizer.Result.return_value = json.dumps(
        {"text": "hey organizer", "result": _words(("hey", 0.96), ("organizer", 0.9))}
    )
    event = engine.accept(b"\x00\x00")

    assert event.label == "hey organizer"
    assert event.confidence == pytest.approx(0.93)

    engine.reset()
    recognizer.Reset.assert_called_once()

    engine.close()
    assert engine.model is None
    assert engine.accept(b"\x00\x00") is None


# ---------------------------------------------------------------
# Transcript recognizer
# ---------------------------------------------------------------

@patch("vosk_engine.vosk")
def test_transcript_recognizer_reports_changed_partials(mock_vosk: MagicMock) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.return_value = False
    recognizer = VoskTranscriptRecognizer(model=object())

    kaldi.PartialResult.return_value = json.dumps({"partial": "buy"})
    first = recognizer.accept(b"")
    second = recognizer.accept(b"")
    kaldi.PartialResult.return_value = json.dumps({"partial": "buy milk"})
    third = recognizer.accept(b"")

    assert first.kind == RecognitionKind.PARTIAL.value
    assert first.text == "buy"
    assert second is None
    assert third.text == "buy milk"


@patch("vosk_engine.vosk")
def test_transcript_recognizer_reports_final(mock_vosk: MagicMock) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.return_value = True
    kaldi.Result.return_value = json.dumps({"text": "buy milk"})
    recognizer = VoskTranscriptRecognizer(model=object())

    event = recognizer.accept(b"")

    assert event.kind == RecognitionKind.FINAL.value
    assert event.text == "buy milk"

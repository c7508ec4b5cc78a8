from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hotkey import HotkeyBindings


def _bindings():  # noqa: ANN202
    calls: list[str] = []
    bindings = HotkeyBindings(push_to_talk="Key.alt_l", toggle="Key.f8")
    bindings._on_press = lambda: calls.append("press")
    bindings._on_release = lambda: calls.append("release")
    bindings._on_toggle = lambda: calls.append("toggle")
    return bindings, calls


def test_hold_fires_press_once_despite_auto_repeat() -> None:
    bindings, calls = _bindings()

    bindings.key_down("Key.alt_l")
    bindings.key_down("Key.alt_l")
    bindings.key_down("Key.alt_l")
    bindings.key_up("Key.alt_l")

    assert calls == ["press", "release"]


def test_release_without_press_is_ignored() -> None:
    bindings, calls = _bindings()

    bindings.key_up("Key.alt_l")

    assert calls == []


def test_toggle_fires_once_per_press() -> None:
    bindings, calls = _bindings()

    bindings.key_down("Key.f8")
    bindings.key_down("Key.f8")
    bindings.key_up("Key.f8")
    bindings.key_down("Key.f8")

    assert calls == ["toggle", "toggle"]


def test_other_keys_are_ignored() -> None:
    bindings, calls = _bindings()

    bindings.key_down("'a'")
    bindings.key_up("'a'")

    assert calls == []


def test_toggle_is_optional() -> None:
    bindings = HotkeyBindings(push_to_talk="Key.alt_l")

    bindings.key_down("Key.f8")
    bindings.key_up("Key.f8")


@patch("hotkey.keyboard")
def test_start_and_stop_listener(mock_keyboard: MagicMock) -> None:
    bindings = HotkeyBindings()

    bindings.start(on_press=lambda: None, on_release=lambda: None)
    listener = mock_keyboard.Listener.return_value
    listener.start.assert_called_once()
    assert mock_keyboard.Listener.call_args.kwargs["on_press"] == bindings.key_down

    bindings.stop()
    bindings.stop()
    listener.stop.assert_called_once()


def test_start_without_pynput(monkeypatch) -> None:  # noqa: ANN001
    import hotkey
    monkeypatch.setattr(hotkey, "keyboard", None)

    with pytest.raises(RuntimeError, match="pynput"):
        HotkeyBindings().start(on_press=lambda: None, on_release=lambda: None)

"""Global keyboard bindings based on pynput.

One key is held for push-to-talk; an optional second key toggles
hands-free mode on each press.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class HotkeyBindings:
    def __init__(self, push_to_talk: str = "Key.alt_l", toggle: Optional[str] = None) -> None:
        self.push_to_talk = push_to_talk
        self.toggle = toggle
        self._listener: Optional[object] = None
        self._held = False
        self._toggle_down = False
        self._lock = threading.Lock()
        self._on_press: Callable[[], None] = _noop
        self._on_release: Callable[[], None] = _noop
        self._on_toggle: Callable[[], None] = _noop

    def start(
        self,
        on_press: Callable[[], None],
        on_release: Callable[[], None],
        on_toggle: Optional[Callable[[], None]] = None,
    ) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_press = on_press
        self._on_release = on_release
        self._on_toggle = on_toggle or _noop
        self._listener = keyboard.Listener(on_press=self.key_down, on_release=self.key_up)
        self._listener.start()
        logger.info("Hotkeys active: hold %s, toggle %s", self.push_to_talk, self.toggle or "-")

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()

    def key_down(self, key: object) -> None:
        name = str(key)
        if name == self.toggle:
            with self._lock:
                # Auto-repeat sends repeated presses while held.
                if self._toggle_down:
                    return
                self._toggle_down = True
            self._on_toggle()
            return
        if name != self.push_to_talk:
            return
        with self._lock:
            if self._held:
                return
            self._held = True
        self._on_press()

    def key_up(self, key: object) -> None:
        name = str(key)
        if name == self.toggle:
            with self._lock:
                self._toggle_down = False
            return
        if name != self.push_to_talk:
            return
        with self._lock:
            if not self._held:
                return
            self._held = False
        self._on_release()


def _noop() -> None:
    return None

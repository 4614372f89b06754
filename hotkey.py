"""Global tap hotkey based on pynput."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class TapHotkey:
    """Calls ``on_tap`` once per press of the configured key.

    Holding the key down does not count more than once; auto-repeat presses
    are ignored until the key is released.
    """

    def __init__(self, hotkey_name: str = "Key.f8") -> None:
        self._hotkey_name = hotkey_name
        self._listener: Optional[object] = None
        self._pressed = False
        self._lock = threading.Lock()

    def start(self, on_tap: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")

        def _on_press(key: object) -> None:
            if not self._matches(key):
                return
            with self._lock:
                if self._pressed:
                    return
                self._pressed = True
            on_tap()

        def _on_release(key: object) -> None:
            if not self._matches(key):
                return
            with self._lock:
                self._pressed = False

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()
        logger.info("Tap hotkey bound to %s", self._hotkey_name)

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def _matches(self, key: object) -> bool:
        name = str(key)
        # pynput renders character keys as "'x'".
        return name == self._hotkey_name or name.strip("'") == self._hotkey_name

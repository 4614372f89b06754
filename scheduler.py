"""Timer helpers backed by daemon threads."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class RepeatingTimer:
    def __init__(self, interval_s: float, fn: Callable[[], None]) -> None:
        self._interval_s = interval_s
        self._fn = fn
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="RepeatingTimer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            try:
                self._fn()
            except Exception:
                logger.exception("Periodic task failed")


class ThreadingScheduler:
    def call_later(self, delay_s: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return timer

    def call_every(self, interval_s: float, fn: Callable[[], None]) -> RepeatingTimer:
        timer = RepeatingTimer(interval_s, fn)
        timer.start()
        return timer

    def run_in_thread(self, fn: Callable[..., None], *args: object) -> threading.Thread:
        """Run ``fn(*args)`` off the calling thread; used to keep the UI responsive."""
        thread = threading.Thread(target=fn, args=args, name=getattr(fn, "__name__", "worker"), daemon=True)
        thread.start()
        return thread

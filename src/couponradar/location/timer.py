"""Periodic timer on a daemon thread."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTimer:
    """Calls `callback` every `interval_seconds` until cancelled.

    The first call happens one interval after `start()`. `cancel()` is idempotent and
    safe to call from the callback itself.
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], None], *, name: str = "periodic-timer"):
        if float(interval_seconds) <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._interval = float(interval_seconds)
        self._callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic timer callback failed")

    def cancel(self, *, join_timeout: float = 1.0) -> None:
        self._stopped.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=join_timeout)

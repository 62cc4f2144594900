from __future__ import annotations

import threading
from typing import Callable, Optional

from loguru import logger


class Debouncer:
    """Coalesce bursts of triggers into one call after ``wait_sec`` of quiet."""

    def __init__(self, wait_sec: float, fn: Callable[[], object]) -> None:
        self.wait_sec = max(0.0, wait_sec)
        self._fn = fn
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.wait_sec, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> bool:
        """Run a pending call now; returns False when nothing was pending."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        self._run()
        return True

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        self._run()

    def _run(self) -> None:
        try:
            self._fn()
        except Exception as exc:
            logger.exception("debounced call failed: {}", exc)

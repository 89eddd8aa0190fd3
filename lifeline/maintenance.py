"""
Background Maintenance Tasks

Periodic jobs that must never run on the request path: the audit buffer
flush, cache expiry sweeps, and the periodic metrics log line. Each job
runs on its own daemon thread and can be woken early (the audit flush is
woken when the buffer fills).
"""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run ``action`` every ``interval_seconds`` on a daemon thread.

    Exceptions raised by the action are logged and the schedule continues.

    Example:
        flusher = PeriodicTask("audit-flush", 5.0, recorder.flush)
        recorder.on_buffer_full(flusher.wake)
        flusher.start()
        ...
        flusher.stop()
    """

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], object]):
        self.name = name
        self.interval_seconds = interval_seconds
        self._action = action
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("Started periodic task %s (every %.1fs)", self.name, self.interval_seconds)

    def wake(self) -> None:
        """Run the action as soon as possible instead of waiting out the interval."""
        self._wake.set()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> None:
        try:
            self._action()
        except Exception:
            logger.exception("Periodic task %s failed", self.name)
        finally:
            self.runs += 1

    def _loop(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.interval_seconds)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.run_once()

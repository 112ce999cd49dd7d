"""
NUDGE Periodic Runner

Runs a callable every N seconds on a background thread until stopped.
An exception in one run is logged and the loop carries on. Runs are
scheduled at a fixed rate; a run that overruns its slot skips to the next.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicRunner:
    """
    Owned timer thread with explicit start/stop lifecycle.

    Usage:
        runner = PeriodicRunner("reminders", 30, loop.tick)
        runner.start()
        ...
        runner.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], object],
        wait_first: bool = True
    ):
        """
        Args:
            name: Thread name (shows up in logs)
            interval: Seconds between the starts of consecutive runs
            func: One unit of work
            wait_first: Wait one interval before the first run
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = float(interval)
        self._func = func
        self._wait_first = wait_first
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> bool:
        """Start the thread. Returns False if it was already running."""
        with self._lock:
            if self.is_running:
                logger.debug(f"PeriodicRunner {self.name} already running")
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name=f"nudge-{self.name}",
                daemon=True
            )
            self._thread.start()
        logger.info(f"PeriodicRunner {self.name} started (every {self.interval:g}s)")
        return True

    def stop(self, timeout: Optional[float] = 5.0):
        """Signal the thread to exit and wait for the current run to finish."""
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"PeriodicRunner {self.name} did not stop within {timeout}s")
        logger.info(f"PeriodicRunner {self.name} stopped")

    def _run(self):
        # Run n starts at origin + n * interval; overrun slots are skipped
        origin = time.monotonic()
        slot = 1 if self._wait_first else 0
        if slot and self._stop_event.wait(self.interval):
            return
        while not self._stop_event.is_set():
            try:
                self._func()
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)
            elapsed = time.monotonic() - origin
            slot = max(slot + 1, int(elapsed // self.interval) + 1)
            if self._stop_event.wait(max(0.0, origin + slot * self.interval - time.monotonic())):
                break

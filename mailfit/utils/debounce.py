"""
Debounce Module

Single-slot trailing debounce built on threading.Timer.
"""

import logging
from threading import Lock, Timer
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs a callable once after a quiet period.

    Every schedule() cancels the pending call and starts a new timer, so
    only the most recent request within the window executes. flush() runs
    a pending call immediately on the calling thread.
    """

    def __init__(self, fn: Callable[[], None], delay: float):
        """
        Initialize the debouncer.

        Args:
            fn: Callable to run
            delay: Quiet period in seconds
        """
        self.fn = fn
        self.delay = delay
        self._timer: Optional[Timer] = None
        self._pending = False
        self._lock = Lock()
        self._run_lock = Lock()

    @property
    def pending(self) -> bool:
        return self._pending

    def schedule(self):
        """Schedule a call, replacing any pending one."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = True
            self._timer = Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = False

    def flush(self) -> bool:
        """
        Run the pending call now.

        Returns:
            True if a call was pending and has run
        """
        with self._lock:
            if not self._pending:
                return False
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = False
        self._run()
        return True

    def _fire(self):
        with self._lock:
            if not self._pending:
                return
            self._timer = None
            self._pending = False
        try:
            self._run()
        except Exception as e:
            logger.error(f"Debounced call failed: {e}", exc_info=True)

    def _run(self):
        # Passes never overlap
        with self._run_lock:
            self.fn()

"""Debouncing with an explicit, cancellable timer."""

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger("utils.debounce")


class Debouncer:
    """
    Collapses a burst of schedule() calls into one call of the last function.

    Each schedule() restarts the delay; only the function given to the last
    schedule() runs, once the delay elapses with no further calls.
    Thread-safe.
    """

    def __init__(self, name: str = "debounce"):
        self._name = name
        self._timer: Optional[threading.Timer] = None
        self._pending_fn: Optional[Callable[[], Any]] = None
        self._lock = threading.Lock()

    def schedule(self, fn: Callable[[], Any], delay: float) -> None:
        """Run fn after delay seconds unless rescheduled or cancelled first."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending_fn = fn
            self._timer = threading.Timer(delay, self._fire)
            self._timer.daemon = True
            self._timer.name = f"{self._name}-timer"
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            fn = self._pending_fn
            self._pending_fn = None
            self._timer = None
        if fn is None:
            return
        try:
            fn()
        except Exception as e:
            logger.warning(f"Debounced call '{self._name}' failed: {e}")

    def cancel(self) -> bool:
        """
        Drop the pending call, if any.

        Returns:
            True if a call was pending
        """
        with self._lock:
            had_pending = self._pending_fn is not None
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending_fn = None
            return had_pending

    def flush(self) -> bool:
        """
        Run the pending call now instead of waiting.

        Returns:
            True if a call was pending and ran
        """
        with self._lock:
            fn = self._pending_fn
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending_fn = None
        if fn is None:
            return False
        fn()
        return True

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending_fn is not None

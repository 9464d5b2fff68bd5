"""
Debounced layout trigger.

"Run the layout once the node count has been stable for N seconds."
Every schedule() restarts the countdown; only one layout is ever
pending. The host loop calls poll() (e.g. once per frame or tick), which
fires the callback when the deadline has passed. Nothing runs on
another thread.

Usage:
    scheduler = LayoutScheduler(session.apply_layout, delay=0.5)
    scheduler.schedule()      # node added
    scheduler.schedule()      # another node added, countdown restarts
    ...
    scheduler.poll()          # called from the UI tick
"""
import logging
import time
from typing import Callable, Optional, Any


logger = logging.getLogger(__name__)


class LayoutScheduler:
    """Single-slot debounce timer driven by poll()."""

    def __init__(
        self,
        callback: Callable[[], Any],
        delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        if delay < 0:
            raise ValueError(f"Debounce delay must be >= 0, got {delay}")
        self._callback = callback
        self._delay = delay
        self._clock = clock
        self._deadline: Optional[float] = None
        self._fire_count = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def is_pending(self) -> bool:
        return self._deadline is not None

    @property
    def fire_count(self) -> int:
        """How many times the callback has run."""
        return self._fire_count

    def schedule(self) -> None:
        """Start (or restart) the countdown."""
        restarted = self._deadline is not None
        self._deadline = self._clock() + self._delay
        logger.debug(f"Layout {'rescheduled' if restarted else 'scheduled'} in {self._delay}s")

    def cancel(self) -> bool:
        """Drop the pending layout. Returns True if one was pending."""
        was_pending = self._deadline is not None
        self._deadline = None
        return was_pending

    def time_remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def poll(self) -> bool:
        """
        Fire the callback if the deadline has passed.

        Returns:
            True if the callback ran
        """
        if self._deadline is None or self._clock() < self._deadline:
            return False
        return self._fire()

    def flush(self) -> bool:
        """Run a pending layout now, ignoring the remaining delay."""
        if self._deadline is None:
            return False
        return self._fire()

    def _fire(self) -> bool:
        # Cleared first: a callback that schedules again starts a fresh countdown
        self._deadline = None
        self._fire_count += 1
        logger.debug("Debounced layout firing")
        self._callback()
        return True

"""Scheduler module driving periodic refreshes.

Runs one recurring refresh on a worker thread plus a one-shot refresh
shortly after start-up. Overlapping fires are expected; the monitor's
pending-flag gating handles them.
"""

import logging
import threading
from typing import Callable, Optional


logger = logging.getLogger(__name__)

STARTUP_DELAY_SECONDS = 1.0


class Scheduler:
    """Periodic plus start-up timer for a refresh callable."""

    def __init__(
        self,
        refresh: Callable[[str], None],
        interval_seconds: float,
        startup_delay_seconds: float = STARTUP_DELAY_SECONDS,
    ) -> None:
        """Initialize the scheduler.

        Args:
            refresh: Callable invoked with a reason string on every fire
            interval_seconds: Seconds between periodic refreshes
            startup_delay_seconds: Delay before the one-shot start-up refresh
        """
        self._refresh = refresh
        self._interval_seconds = interval_seconds
        self._startup_delay_seconds = startup_delay_seconds

        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._startup_timer: Optional[threading.Timer] = None

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        """Start the periodic thread and arm the start-up timer."""
        if self._thread is not None:
            logger.warning("Scheduler already started")
            return

        self._shutdown_event.clear()

        self._thread = threading.Thread(
            target=self.run,
            args=(self._shutdown_event,),
            name="refresh-scheduler",
            daemon=True,
        )
        self._thread.start()

        self._startup_timer = threading.Timer(
            self._startup_delay_seconds,
            self._fire,
            args=("Initial refresh after start-up",),
        )
        self._startup_timer.daemon = True
        self._startup_timer.start()

    def stop(self, timeout: float = 10.0) -> None:
        """Stop both timers and wait for the periodic thread to exit.

        Args:
            timeout: Seconds to wait for the worker thread
        """
        self._shutdown_event.set()

        if self._startup_timer is not None:
            self._startup_timer.cancel()
            self._startup_timer = None

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Thread {self._thread.name} did not stop within timeout")
            self._thread = None

    def run(self, shutdown_event: threading.Event) -> None:
        """Run the periodic loop until shutdown.

        Args:
            shutdown_event: Threading event to signal shutdown
        """
        while not shutdown_event.wait(timeout=self._interval_seconds):
            self._fire("Periodic refresh")

    def _fire(self, reason: str) -> None:
        # An exception in one refresh must not stop the timers
        try:
            self._refresh(reason)
        except Exception:
            logger.exception(f"Unhandled exception in refresh ({reason}), will retry next tick")

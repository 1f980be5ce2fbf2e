"""Primary/fallback switching between two location services."""

import threading
import time
from typing import Optional

from geostream.location.location_service import LocationService
from geostream.logging import GEOSTREAM_LOGGER


class FallbackController:
    """
    Background thread that swaps to a fallback service when the primary goes quiet.

    When the primary service forwards no fix for ``timeout_seconds``, the
    primary is stopped and the fallback started for ``window_seconds``. After
    the window the fallback is stopped and the primary started again.
    """

    def __init__(
        self,
        primary: LocationService,
        fallback: LocationService,
        timeout_seconds: float = 15.0,
        window_seconds: float = 60.0,
        check_interval_seconds: float = 1.0,
    ):
        """
        Initialize fallback controller.

        Args:
            primary: Service expected to deliver fixes normally
            fallback: Service run while the primary is silent
            timeout_seconds: Silence on the primary that triggers fallback
            window_seconds: How long the fallback runs before the primary is retried
            check_interval_seconds: Seconds between supervisor checks
        """
        self.primary = primary
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds
        self.window_seconds = window_seconds
        self.check_interval_seconds = check_interval_seconds

        # Thread control
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        # Serializes service switches with stop()
        self._switch_lock = threading.Lock()

        self.problem_count = 0
        self._fallback_active = False
        self._watch_started = 0.0
        self._fallback_started = 0.0

    @property
    def is_fallback_active(self) -> bool:
        with self._lock:
            return self._fallback_active

    def start(self) -> None:
        """Start the primary service and the supervisor thread."""
        if self._thread is not None and self._thread.is_alive():
            GEOSTREAM_LOGGER.warning("Fallback controller already running")
            return

        self.primary.start()
        with self._lock:
            self._fallback_active = False
            self._watch_started = time.monotonic()

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._supervise_loop, daemon=True, name="fallback-supervisor")
        self._thread.start()
        GEOSTREAM_LOGGER.info(
            f"Fallback controller started (timeout: {self.timeout_seconds}s, window: {self.window_seconds}s)"
        )

    def stop(self) -> None:
        """Stop the supervisor thread and both services."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

        with self._switch_lock:
            self.fallback.stop()
            self.primary.stop()
            with self._lock:
                self._fallback_active = False
        GEOSTREAM_LOGGER.info("Fallback controller stopped")

    def _supervise_loop(self) -> None:
        """Main supervision loop (runs in background thread)."""
        while not self._stop_event.wait(timeout=self.check_interval_seconds):
            try:
                self.check()
            except Exception as e:
                GEOSTREAM_LOGGER.error(f"Fallback supervision failed: {e}", exc_info=True)

    def check(self, now: Optional[float] = None) -> None:
        """Perform a single supervision step."""
        now = time.monotonic() if now is None else now

        with self._lock:
            fallback_active = self._fallback_active
            watch_started = self._watch_started
            fallback_started = self._fallback_started

        if fallback_active:
            if now - fallback_started >= self.window_seconds:
                self._release_fallback(now)
            return

        last_fix = self.primary.last_fix_monotonic
        last_activity = max(watch_started, last_fix) if last_fix is not None else watch_started
        if now - last_activity >= self.timeout_seconds:
            self._engage_fallback(now)

    def _engage_fallback(self, now: float) -> None:
        with self._switch_lock:
            if self._stop_event.is_set():
                return
            self.problem_count += 1
            GEOSTREAM_LOGGER.warning(
                f"No fix from primary providers for {self.timeout_seconds:.0f}s, "
                f"switching to fallback for {self.window_seconds:.0f}s (problem #{self.problem_count})"
            )
            self.primary.stop()
            if self._stop_event.is_set():
                return
            self.fallback.start()
            with self._lock:
                self._fallback_active = True
                self._fallback_started = now

    def _release_fallback(self, now: float) -> None:
        with self._switch_lock:
            if self._stop_event.is_set():
                return
            GEOSTREAM_LOGGER.info("Fallback window elapsed, switching back to primary providers")
            self.fallback.stop()
            if self._stop_event.is_set():
                return
            self.primary.start()
            with self._lock:
                self._fallback_active = False
                self._watch_started = now

"""Fix event channel.

Fans fixes out to any number of observers. Each observer owns a bounded queue
drained by its own dispatch thread, so a slow observer loses fixes instead of
stalling the provider callback that published them.
"""

import queue
import threading
from typing import Callable, Optional

from geostream.location.fix import Fix
from geostream.logging import GEOSTREAM_LOGGER

DEFAULT_MAX_PENDING = 256

_CLOSE = object()


class FixObserver:
    """Registered consumer of the fix stream."""

    def __init__(self, callback: Callable[[Fix], None], max_pending: int = DEFAULT_MAX_PENDING, name: str = "observer"):
        self.callback = callback
        self.name = name
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()
        self._stats_lock = threading.Lock()
        self.delivered = 0
        self.dropped = 0

        self._thread = threading.Thread(target=self._dispatch_loop, daemon=True, name=f"fix-{name}")
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, fix: Fix) -> bool:
        """Queue *fix* for delivery without blocking. Returns False if it was dropped."""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(fix)
            return True
        except queue.Full:
            with self._stats_lock:
                self.dropped += 1
            GEOSTREAM_LOGGER.debug(f"Fix observer {self.name} is behind, dropped {fix.provider.value} fix")
            return False

    def close(self, timeout: float = 2.0) -> None:
        """Stop dispatching. Fixes still queued are discarded."""
        if self._closed.is_set():
            return
        self._closed.set()
        # Make room for the sentinel so the dispatcher always wakes up
        while True:
            try:
                self._queue.put_nowait(_CLOSE)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _dispatch_loop(self) -> None:
        """Deliver queued fixes in order (runs in background thread)."""
        while True:
            item = self._queue.get()
            if item is _CLOSE or self._closed.is_set():
                break
            try:
                self.callback(item)
            except Exception as e:
                GEOSTREAM_LOGGER.error(f"Fix observer {self.name} failed: {e}", exc_info=True)
            else:
                with self._stats_lock:
                    self.delivered += 1


class FixChannel:
    """Ordered, non-blocking broadcast of fixes to registered observers."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING):
        self.max_pending = max_pending
        self._lock = threading.Lock()
        self._observers: list[FixObserver] = []

    def register(
        self,
        callback: Callable[[Fix], None],
        max_pending: Optional[int] = None,
        name: Optional[str] = None,
    ) -> FixObserver:
        observer = FixObserver(
            callback,
            max_pending=max_pending or self.max_pending,
            name=name or getattr(callback, "__name__", "observer"),
        )
        with self._lock:
            self._observers.append(observer)
        return observer

    def unregister(self, observer: FixObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
        observer.close()

    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def publish(self, fix: Fix) -> None:
        """Hand *fix* to every observer. Never blocks on a slow observer."""
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            observer.offer(fix)

    def close(self) -> None:
        with self._lock:
            observers = list(self._observers)
            self._observers.clear()
        for observer in observers:
            observer.close()

"""Host location capability.

A location manager accepts listener registrations for named providers and
delivers raw position updates to them from its own threads. The shipped
implementation polls one fix source per provider.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Mapping, Optional

from geostream.location.fix import ProviderId
from geostream.logging import GEOSTREAM_LOGGER

if TYPE_CHECKING:
    from geostream.location.fix_sources import AbstractFixSource

EARTH_RADIUS_M = 6371008.8


@dataclass(frozen=True)
class RawLocation:
    """Position update as delivered by a provider."""

    provider: str
    latitude: float  # degrees
    longitude: float  # degrees
    accuracy: Optional[float] = None  # meters
    timestamp: float = field(default_factory=time.time)
    altitude: Optional[float] = None  # meters


class ProviderStatus(str, Enum):
    AVAILABLE = "available"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    OUT_OF_SERVICE = "out_of_service"


class ProviderListener:
    """Receiver for provider callbacks. Every handler defaults to a no-op."""

    def on_location_changed(self, location: RawLocation) -> None:
        pass

    def on_provider_enabled(self, provider: str) -> None:
        pass

    def on_provider_disabled(self, provider: str) -> None:
        pass

    def on_status_changed(self, provider: str, status: ProviderStatus, extras: dict) -> None:
        pass


class AbstractLocationManager(ABC):
    """Host capability that delivers location updates for named providers."""

    @abstractmethod
    def has_provider(self, provider: ProviderId) -> bool:
        """Return True if *provider* exists on this host."""
        pass

    @abstractmethod
    def request_location_updates(
        self,
        provider: ProviderId,
        interval_ms: int,
        min_distance_m: float,
        listener: ProviderListener,
    ) -> None:
        """
        Register *listener* for updates from *provider*.

        Registering a listener that is already registered replaces its
        previous registration.

        Raises:
            KeyError: provider does not exist on this host
            ValueError: interval or distance is malformed
        """
        pass

    @abstractmethod
    def remove_updates(self, listener: ProviderListener) -> None:
        """Stop all updates to *listener*. Unknown listeners are ignored."""
        pass


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points (haversine)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def validate_polling_parameters(interval_ms, min_distance_m) -> None:
    """Raise ValueError if the polling parameters are malformed."""
    if isinstance(interval_ms, bool) or not isinstance(interval_ms, int) or interval_ms <= 0:
        raise ValueError(f"interval_ms must be a positive integer, got {interval_ms!r}")
    if (
        isinstance(min_distance_m, bool)
        or not isinstance(min_distance_m, (int, float))
        or not math.isfinite(min_distance_m)
        or min_distance_m < 0
    ):
        raise ValueError(f"min_distance_m must be a finite number >= 0, got {min_distance_m!r}")


class _ProviderPoller:
    """Background thread polling one fix source on behalf of one listener."""

    def __init__(
        self,
        provider: ProviderId,
        source: "AbstractFixSource",
        interval_ms: int,
        min_distance_m: float,
        listener: ProviderListener,
    ):
        self.provider = provider
        self.source = source
        self.interval_ms = interval_ms
        self.min_distance_m = min_distance_m
        self.listener = listener

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._last_delivered: Optional[RawLocation] = None
        self._available: Optional[bool] = None
        self._status: Optional[ProviderStatus] = None

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name=f"{self.provider.value}-poller",
        )
        self._thread.start()

    def stop(self, timeout: float) -> None:
        self._stop_event.set()
        thread = self._thread
        # A listener may unregister itself from inside a callback
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                GEOSTREAM_LOGGER.warning(f"{self.provider.value} poller did not stop within {timeout:.1f}s")

    def _poll_loop(self) -> None:
        """Main polling loop (runs in background thread)."""
        self._poll_once()

        interval_seconds = self.interval_ms / 1000.0

        while not self._stop_event.is_set():
            if self._stop_event.wait(timeout=interval_seconds):
                break

            self._poll_once()

    def _poll_once(self) -> None:
        available = self._check_availability()
        if not available:
            self._set_status(ProviderStatus.OUT_OF_SERVICE)
            return

        try:
            location = self.source.read_location()
        except Exception as e:
            GEOSTREAM_LOGGER.error(f"{self.provider.value} read failed: {e}", exc_info=True)
            location = None

        if location is None:
            self._set_status(ProviderStatus.TEMPORARILY_UNAVAILABLE)
            return

        self._set_status(ProviderStatus.AVAILABLE)

        if not self._moved_enough(location):
            return

        # Never deliver once removal has been requested
        if self._stop_event.is_set():
            return

        self._last_delivered = location
        self._notify(self.listener.on_location_changed, location)

    def _check_availability(self) -> bool:
        try:
            available = bool(self.source.is_available())
        except Exception as e:
            GEOSTREAM_LOGGER.error(f"{self.provider.value} availability check failed: {e}", exc_info=True)
            available = False

        if available != self._available:
            self._available = available
            if available:
                self._notify(self.listener.on_provider_enabled, self.provider.value)
            else:
                self._notify(self.listener.on_provider_disabled, self.provider.value)
        return available

    def _set_status(self, status: ProviderStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._notify(self.listener.on_status_changed, self.provider.value, status, {})

    def _moved_enough(self, location: RawLocation) -> bool:
        if self.min_distance_m <= 0 or self._last_delivered is None:
            return True
        moved = distance_meters(
            self._last_delivered.latitude,
            self._last_delivered.longitude,
            location.latitude,
            location.longitude,
        )
        return moved >= self.min_distance_m

    def _notify(self, handler: Callable, *args) -> None:
        if self._stop_event.is_set():
            return
        try:
            handler(*args)
        except Exception as e:
            GEOSTREAM_LOGGER.error(f"{self.provider.value} listener callback failed: {e}", exc_info=True)


class PollingLocationManager(AbstractLocationManager):
    """
    Location manager backed by pollable fix sources.

    Each registration gets its own daemon thread which polls the provider's
    source every interval and delivers updates that moved at least the
    requested minimum distance (0 means every interval).
    """

    def __init__(self, sources: Mapping[ProviderId, "AbstractFixSource"], stop_timeout_seconds: float = 5.0):
        """
        Initialize location manager.

        Args:
            sources: Fix source per provider that exists on this host
            stop_timeout_seconds: Upper bound on waiting for a poller thread to exit
        """
        self._sources = dict(sources)
        self.stop_timeout_seconds = stop_timeout_seconds
        self._lock = threading.Lock()
        self._pollers: dict[ProviderListener, _ProviderPoller] = {}

    def has_provider(self, provider: ProviderId) -> bool:
        return provider in self._sources

    def request_location_updates(
        self,
        provider: ProviderId,
        interval_ms: int,
        min_distance_m: float,
        listener: ProviderListener,
    ) -> None:
        if provider not in self._sources:
            raise KeyError(f"Unknown provider: {provider}")
        validate_polling_parameters(interval_ms, min_distance_m)

        poller = _ProviderPoller(provider, self._sources[provider], interval_ms, min_distance_m, listener)
        with self._lock:
            previous = self._pollers.pop(listener, None)
            self._pollers[listener] = poller

        if previous is not None:
            GEOSTREAM_LOGGER.debug(f"Replacing existing {previous.provider.value} registration")
            previous.stop(self.stop_timeout_seconds)

        poller.start()
        GEOSTREAM_LOGGER.debug(
            f"{provider.value} updates requested (interval: {interval_ms}ms, min distance: {min_distance_m}m)"
        )

    def remove_updates(self, listener: ProviderListener) -> None:
        with self._lock:
            poller = self._pollers.pop(listener, None)
        if poller is None:
            return
        poller.stop(self.stop_timeout_seconds)
        GEOSTREAM_LOGGER.debug(f"{poller.provider.value} updates removed")

    def registration_count(self) -> int:
        with self._lock:
            return len(self._pollers)

    def shutdown(self) -> None:
        """Stop every poller, including registrations nobody removed."""
        with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            poller.stop(self.stop_timeout_seconds)

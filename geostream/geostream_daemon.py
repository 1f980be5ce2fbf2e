import signal
import threading
from typing import Optional

from geostream.location.events import FixChannel, FixObserver
from geostream.location.fallback import FallbackController
from geostream.location.fix import Fix, ProviderId
from geostream.location.fix_sources import GpsdFixSource, IpGeolocationFixSource
from geostream.location.location_service import LocationService
from geostream.location.permissions import (
    AbstractPermissionSource,
    FilePermissionSource,
    PermissionGate,
    StaticPermissionSource,
)
from geostream.location.providers import AbstractLocationManager, PollingLocationManager
from geostream.logging import GEOSTREAM_LOGGER
from geostream.settings import GeoStreamSettings


def build_permission_source(settings: GeoStreamSettings) -> AbstractPermissionSource:
    if settings.permission_file:
        return FilePermissionSource(settings.permission_file)
    return StaticPermissionSource()


def build_location_manager(settings: GeoStreamSettings) -> PollingLocationManager:
    return PollingLocationManager(
        {
            ProviderId.SATELLITE: GpsdFixSource(
                messages=settings.gpsd_messages,
                timeout=settings.gpsd_timeout_seconds,
            ),
            ProviderId.NETWORK: IpGeolocationFixSource(
                url=settings.network_geolocation_url,
                timeout=settings.network_timeout_seconds,
                accuracy_m=settings.network_accuracy_m,
            ),
        }
    )


class GeoStreamDaemon:
    """Driver that owns the location services for the life of the process."""

    def __init__(
        self,
        settings: GeoStreamSettings,
        location_manager: Optional[AbstractLocationManager] = None,
        permission_source: Optional[AbstractPermissionSource] = None,
    ):
        self.settings = settings
        GEOSTREAM_LOGGER.setLevel(self.settings.log_level.upper())
        self.location_manager = location_manager
        self.permission_source = permission_source

        self.channel = FixChannel(max_pending=self.settings.observer_queue_size)
        self.location_service: Optional[LocationService] = None
        self.fallback_service: Optional[LocationService] = None
        self.fallback_controller: Optional[FallbackController] = None
        self._log_observer: Optional[FixObserver] = None
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()

    def build_services(self) -> None:
        """Create fresh services from settings. Nothing is carried over from earlier runs."""
        if self.location_manager is None:
            self.location_manager = build_location_manager(self.settings)
        if self.permission_source is None:
            self.permission_source = build_permission_source(self.settings)

        gate = PermissionGate(self.permission_source)
        self.location_service = LocationService(
            self.location_manager,
            gate,
            subscriptions=self.settings.to_subscription_configs(),
            channel=self.channel,
        )

        if self.settings.fallback_enabled:
            self.fallback_service = LocationService(
                self.location_manager,
                gate,
                subscriptions=self.settings.to_fallback_subscription_configs(),
                channel=self.channel,
            )
            self.fallback_controller = FallbackController(
                self.location_service,
                self.fallback_service,
                timeout_seconds=self.settings.fallback_timeout_seconds,
                window_seconds=self.settings.fallback_window_seconds,
            )
        else:
            self.fallback_service = None
            self.fallback_controller = None

    def start(self) -> None:
        with self._lock:
            if self.location_service is None:
                self.build_services()
            if self._log_observer is None:
                self._log_observer = self.channel.register(self._log_fix, name="log")

            if self.fallback_controller is not None:
                self.fallback_controller.start()
            else:
                self.location_service.start()

    def stop(self) -> None:
        with self._lock:
            if self.fallback_controller is not None:
                self.fallback_controller.stop()
            elif self.location_service is not None:
                self.location_service.stop()

    def restart(self) -> None:
        """Tear down the current services and start new ones from scratch."""
        GEOSTREAM_LOGGER.info("Restarting location services...")
        self.stop()
        with self._lock:
            self.location_service = None
            self.fallback_service = None
            self.fallback_controller = None
        self.start()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def run(self):
        signal.signal(signal.SIGTERM, lambda signum, frame: self.request_shutdown())

        try:
            self.start()
            GEOSTREAM_LOGGER.info("Streaming location fixes... (press Ctrl+C to exit)")
            self._keep_running()
        finally:
            self._shutdown()

    def _keep_running(self):
        """Keep the daemon running until interrupted."""
        try:
            while not self._shutdown_event.wait(timeout=1):
                pass
        except KeyboardInterrupt:
            GEOSTREAM_LOGGER.info("Shutting down daemon.")

    def _shutdown(self):
        """Clean up resources on shutdown."""
        self.stop()
        self.channel.close()
        self._log_observer = None
        if isinstance(self.location_manager, PollingLocationManager):
            self.location_manager.shutdown()

    def _log_fix(self, fix: Fix) -> None:
        GEOSTREAM_LOGGER.info(f"Fix {fix.describe()}")

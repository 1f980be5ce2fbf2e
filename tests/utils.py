from typing import Optional

from geostream.location.fix_sources import AbstractFixSource
from geostream.location.providers import AbstractLocationManager, RawLocation, validate_polling_parameters


class FakeLocationManager(AbstractLocationManager):
    """Records registrations; tests deliver callbacks by hand."""

    def __init__(self, providers=(), fail_request=None, fail_remove=None):
        self.providers = set(providers)
        self.fail_request = fail_request
        self.fail_remove = fail_remove
        self.registrations = {}
        self.request_calls = []
        self.remove_calls = []

    def has_provider(self, provider):
        return provider in self.providers

    def request_location_updates(self, provider, interval_ms, min_distance_m, listener):
        self.request_calls.append((provider, interval_ms, min_distance_m, listener))
        if self.fail_request is not None:
            raise self.fail_request
        if provider not in self.providers:
            raise KeyError(provider)
        validate_polling_parameters(interval_ms, min_distance_m)
        self.registrations[listener] = provider

    def remove_updates(self, listener):
        self.remove_calls.append(listener)
        if self.fail_remove is not None:
            raise self.fail_remove
        self.registrations.pop(listener, None)

    def deliver(self, provider, latitude, longitude, accuracy=None, timestamp=0.0):
        """Invoke every listener registered for *provider*, as a provider thread would."""
        location = RawLocation(
            provider=provider.value,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            timestamp=timestamp,
        )
        for listener, registered in list(self.registrations.items()):
            if registered == provider:
                listener.on_location_changed(location)


class StubFixSource(AbstractFixSource):
    """Fix source returning a scripted sequence of locations."""

    def __init__(self, locations=(), available=True):
        self.locations = list(locations)
        self.available = available
        self.reads = 0

    @property
    def name(self) -> str:
        return "stub"

    def is_available(self) -> bool:
        return self.available

    def read_location(self) -> Optional[RawLocation]:
        self.reads += 1
        if not self.locations:
            return None
        if len(self.locations) == 1:
            return self.locations[0]
        return self.locations.pop(0)

"""Subscription to a single location provider."""

import threading
from typing import TYPE_CHECKING, Callable, Optional

from geostream.location.errors import InvalidParameters, NotActive, PermissionDenied, ProviderUnavailable
from geostream.location.fix import Fix, ProviderId
from geostream.location.providers import ProviderListener, ProviderStatus, RawLocation, validate_polling_parameters
from geostream.logging import GEOSTREAM_LOGGER

if TYPE_CHECKING:
    from geostream.location.permissions import PermissionGate
    from geostream.location.providers import AbstractLocationManager


class ProviderSubscription(ProviderListener):
    """
    One subscription to one named provider.

    Acts as the provider's listener: location callbacks are turned into Fix
    values and forwarded to the owning service while the subscription is
    active. Enabled/disabled and status callbacks are observed only.
    """

    def __init__(
        self,
        provider: ProviderId,
        location_manager: "AbstractLocationManager",
        permission_gate: "PermissionGate",
        on_fix: Callable[[Fix], None],
    ):
        """
        Initialize provider subscription.

        Args:
            provider: Provider this subscription listens to
            location_manager: Host capability that delivers the updates
            permission_gate: Gate checked before every subscribe/unsubscribe
            on_fix: Owner callback receiving every fix while active
        """
        self.provider = provider
        self.location_manager = location_manager
        self.permission_gate = permission_gate
        self.on_fix = on_fix

        # Guards the active flag, host registration flag and last-known fix
        self.lock = threading.RLock()
        self._active = False
        self._registered = False
        self._last_fix: Optional[Fix] = None

    def __repr__(self) -> str:
        return f"ProviderSubscription({self.provider.value}, active={self._active})"

    @property
    def is_active(self) -> bool:
        with self.lock:
            return self._active

    @property
    def has_registration(self) -> bool:
        """Whether the host still holds a registration for this listener."""
        with self.lock:
            return self._registered

    @property
    def last_fix(self) -> Optional[Fix]:
        """Most recent fix from this provider (thread-safe)."""
        with self.lock:
            return self._last_fix

    def update_last_fix(self, fix: Fix) -> None:
        with self.lock:
            self._last_fix = fix

    def subscribe(self, interval_ms: int, min_distance_m: float) -> None:
        """
        Ask the provider to start delivering fixes.

        Raises:
            PermissionDenied: location permissions are not granted
            InvalidParameters: interval or distance is malformed
            ProviderUnavailable: provider does not exist or refused the request
        """
        missing = self.permission_gate.missing_permissions()
        if missing:
            names = ", ".join(p.value for p in missing)
            raise PermissionDenied(f"{self.provider.value}: missing location permission ({names})")

        try:
            validate_polling_parameters(interval_ms, min_distance_m)
        except ValueError as e:
            raise InvalidParameters(f"{self.provider.value}: {e}") from e

        if not self.location_manager.has_provider(self.provider):
            raise ProviderUnavailable(f"{self.provider.value}: provider does not exist on this host")

        with self.lock:
            if self._active:
                GEOSTREAM_LOGGER.debug(f"{self.provider.value} already subscribed")
                return
            # Active before the request so the provider's first callback is forwarded
            self._active = True

        # Not under the lock: replacing a stale registration joins its poller,
        # which may be blocked in one of our callbacks
        try:
            self.location_manager.request_location_updates(self.provider, interval_ms, min_distance_m, self)
        except KeyError as e:
            self.detach()
            raise ProviderUnavailable(f"{self.provider.value}: provider does not exist on this host") from e
        except ValueError as e:
            self.detach()
            raise InvalidParameters(f"{self.provider.value}: {e}") from e
        except Exception as e:
            self.detach()
            raise ProviderUnavailable(f"{self.provider.value}: update request failed: {e}") from e

        with self.lock:
            self._registered = True

    def unsubscribe(self) -> None:
        """
        Ask the provider to stop delivering fixes.

        Raises:
            PermissionDenied: location permissions are not granted, nothing was attempted
            NotActive: the subscription is not active
        """
        if not self.permission_gate.evaluate():
            raise PermissionDenied(f"{self.provider.value}: cannot remove updates without location permission")

        with self.lock:
            if not self._active:
                raise NotActive(f"{self.provider.value}: subscription is not active")
            # Mark inactive first so callbacks racing the removal are dropped
            self._active = False

        self.location_manager.remove_updates(self)
        with self.lock:
            self._registered = False

    def detach(self) -> None:
        """Stop forwarding fixes without contacting the provider."""
        with self.lock:
            self._active = False

    # ------------------------------------------------------------------
    # Provider callbacks
    # ------------------------------------------------------------------

    def on_location_changed(self, location: RawLocation) -> None:
        if not self.is_active:
            return
        fix = Fix(
            provider=self.provider,
            latitude=location.latitude,
            longitude=location.longitude,
            accuracy=location.accuracy,
            timestamp=location.timestamp,
        )
        self.on_fix(fix)

    def on_provider_enabled(self, provider: str) -> None:
        GEOSTREAM_LOGGER.debug(f"Provider {provider} enabled")

    def on_provider_disabled(self, provider: str) -> None:
        GEOSTREAM_LOGGER.debug(f"Provider {provider} disabled")

    def on_status_changed(self, provider: str, status: ProviderStatus, extras: dict) -> None:
        GEOSTREAM_LOGGER.debug(f"Provider {provider} status: {status.value}")

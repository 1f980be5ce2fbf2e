"""Location service for geostream.

Owns one subscription per configured provider, drives them against the
permission gate, and re-broadcasts every received fix on a fix channel.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from geostream.location.errors import ErrorKind, LocationError, NotActive, PermissionDenied
from geostream.location.events import FixChannel
from geostream.location.fix import DEFAULT_SUBSCRIPTIONS, Fix, ProviderId, SubscriptionConfig
from geostream.location.provider_subscription import ProviderSubscription
from geostream.logging import GEOSTREAM_LOGGER

if TYPE_CHECKING:
    from geostream.location.permissions import PermissionGate
    from geostream.location.providers import AbstractLocationManager


@dataclass(frozen=True)
class ProviderDiagnostic:
    """Record of one failed per-provider operation."""

    provider: ProviderId
    operation: str  # "subscribe" or "unsubscribe"
    kind: Optional[ErrorKind]  # None for errors outside the location error taxonomy
    message: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "operation": self.operation,
            "kind": self.kind.value if self.kind else None,
            "message": self.message,
            "timestamp": self.timestamp,
        }


class LocationService:
    """
    Location service that aggregates fixes from several providers.

    Lifecycle is Stopped <-> Running, driven by an external driver through
    start() and stop(). Both are idempotent and never raise: per-provider
    failures are logged and recorded as diagnostics. A freshly constructed
    instance holds no state from any previous run.
    """

    MAX_DIAGNOSTICS = 100

    def __init__(
        self,
        location_manager: "AbstractLocationManager",
        permission_gate: "PermissionGate",
        subscriptions: Optional[Iterable[SubscriptionConfig]] = None,
        channel: Optional[FixChannel] = None,
    ):
        """
        Initialize location service.

        Args:
            location_manager: Host capability delivering provider updates
            permission_gate: Gate re-evaluated before every subscribe/unsubscribe
            subscriptions: Providers to subscribe to with their polling parameters
            channel: Event channel fixes are published on (created if omitted)

        Raises:
            ValueError: a provider is configured more than once
        """
        self.location_manager = location_manager
        self.permission_gate = permission_gate
        self.channel = channel if channel is not None else FixChannel()

        configs = tuple(subscriptions) if subscriptions is not None else DEFAULT_SUBSCRIPTIONS
        self._configs: dict[ProviderId, SubscriptionConfig] = {}
        self._subscriptions: dict[ProviderId, ProviderSubscription] = {}
        for config in configs:
            if config.provider in self._configs:
                raise ValueError(f"Provider {config.provider.value} configured more than once")
            self._configs[config.provider] = config
            self._subscriptions[config.provider] = ProviderSubscription(
                config.provider,
                location_manager,
                permission_gate,
                on_fix=self.on_fix_received,
            )

        # Guards the running flag and serializes fix forwarding
        self._state_lock = threading.Lock()
        self._running = False
        self._last_fix_monotonic: Optional[float] = None

        self._diagnostics_lock = threading.Lock()
        self._diagnostics: deque[ProviderDiagnostic] = deque(maxlen=self.MAX_DIAGNOSTICS)

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @property
    def subscriptions(self) -> Mapping[ProviderId, ProviderSubscription]:
        return MappingProxyType(self._subscriptions)

    @property
    def last_fix_monotonic(self) -> Optional[float]:
        """time.monotonic() of the most recently forwarded fix, or None."""
        with self._state_lock:
            return self._last_fix_monotonic

    def start(self) -> None:
        """Begin location acquisition. No-op if already running."""
        with self._state_lock:
            if self._running:
                GEOSTREAM_LOGGER.debug("Location service already running")
                return
            self._running = True

        subscribed = 0
        for provider, subscription in self._subscriptions.items():
            success, error = self._subscribe_provider(subscription)
            if success:
                subscribed += 1
                GEOSTREAM_LOGGER.info(f"Subscribed to {provider.value} provider")
            else:
                GEOSTREAM_LOGGER.warning(f"Could not subscribe to {provider.value} provider: {error}")

        GEOSTREAM_LOGGER.info(f"Location service started ({subscribed}/{len(self._subscriptions)} providers active)")

    def stop(self) -> None:
        """Cease all location acquisition. Attempts removal on every provider."""
        for provider, subscription in self._subscriptions.items():
            success, error = self._unsubscribe_provider(subscription)
            if success:
                GEOSTREAM_LOGGER.info(f"Unsubscribed from {provider.value} provider")
            elif error:
                GEOSTREAM_LOGGER.warning(f"Could not unsubscribe from {provider.value} provider: {error}")
            # Whatever happened above, nothing from this provider is forwarded anymore
            subscription.detach()

        with self._state_lock:
            was_running = self._running
            self._running = False

        if was_running:
            GEOSTREAM_LOGGER.info("Location service stopped")

    def on_fix_received(self, fix: Fix) -> None:
        """Record *fix* as its provider's last-known fix and publish it."""
        subscription = self._subscriptions.get(fix.provider)
        if subscription is None:
            GEOSTREAM_LOGGER.debug(f"Ignoring fix from unconfigured provider {fix.provider.value}")
            return

        with subscription.lock:
            with self._state_lock:
                if not self._running:
                    return
                subscription.update_last_fix(fix)
                self._last_fix_monotonic = time.monotonic()
                self.channel.publish(fix)

    def get_last_fix(self, provider: Optional[ProviderId] = None) -> Optional[Fix]:
        """
        Get the last-known fix.

        Args:
            provider: Provider to read; if omitted, the newest fix across all providers

        Returns:
            The fix, or None if none has been received.
        """
        if provider is not None:
            subscription = self._subscriptions.get(provider)
            return subscription.last_fix if subscription else None

        fixes = [s.last_fix for s in self._subscriptions.values() if s.last_fix is not None]
        if not fixes:
            return None
        return max(fixes, key=lambda f: f.timestamp)

    def get_diagnostics(self) -> list[ProviderDiagnostic]:
        with self._diagnostics_lock:
            return list(self._diagnostics)

    def _subscribe_provider(self, subscription: ProviderSubscription) -> tuple[bool, Optional[str]]:
        """
        Subscribe one provider, isolating its failure from the others.

        Returns:
            Tuple of (success, error_message)
        """
        config = self._configs[subscription.provider]
        try:
            subscription.subscribe(config.interval_ms, config.min_distance_m)
            return True, None
        except LocationError as e:
            self._record_failure(subscription.provider, "subscribe", e.kind, str(e))
            return False, str(e)
        except Exception as e:
            GEOSTREAM_LOGGER.error(f"Unexpected error subscribing to {subscription.provider.value}: {e}", exc_info=True)
            self._record_failure(subscription.provider, "subscribe", None, str(e))
            return False, str(e)

    def _unsubscribe_provider(self, subscription: ProviderSubscription) -> tuple[bool, Optional[str]]:
        """
        Unsubscribe one provider. A benign no-op returns (False, None).

        Returns:
            Tuple of (success, error_message)
        """
        try:
            subscription.unsubscribe()
            return True, None
        except NotActive:
            GEOSTREAM_LOGGER.debug(f"{subscription.provider.value} subscription not active, nothing to remove")
            return False, None
        except PermissionDenied as e:
            # Without permission the host cannot be assumed to accept removal either
            if not subscription.has_registration:
                GEOSTREAM_LOGGER.debug(f"{subscription.provider.value} has no registration, nothing to remove")
                return False, None
            self._record_failure(subscription.provider, "unsubscribe", e.kind, str(e))
            return False, f"skipped, {e}"
        except LocationError as e:
            self._record_failure(subscription.provider, "unsubscribe", e.kind, str(e))
            return False, str(e)
        except Exception as e:
            GEOSTREAM_LOGGER.error(
                f"Unexpected error unsubscribing from {subscription.provider.value}: {e}", exc_info=True
            )
            self._record_failure(subscription.provider, "unsubscribe", None, str(e))
            return False, str(e)

    def _record_failure(self, provider: ProviderId, operation: str, kind: Optional[ErrorKind], message: str) -> None:
        diagnostic = ProviderDiagnostic(
            provider=provider,
            operation=operation,
            kind=kind,
            message=message,
            timestamp=time.time(),
        )
        with self._diagnostics_lock:
            self._diagnostics.append(diagnostic)

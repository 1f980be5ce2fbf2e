"""Location providers, subscriptions and services for geostream."""

from geostream.location.errors import (
    ErrorKind,
    InvalidParameters,
    LocationError,
    NotActive,
    PermissionDenied,
    ProviderUnavailable,
)
from geostream.location.events import FixChannel, FixObserver
from geostream.location.fallback import FallbackController
from geostream.location.fix import DEFAULT_SUBSCRIPTIONS, Fix, ProviderId, SubscriptionConfig
from geostream.location.location_service import LocationService, ProviderDiagnostic
from geostream.location.permissions import (
    FilePermissionSource,
    GrantSetPermissionSource,
    LocationPermission,
    PermissionGate,
    StaticPermissionSource,
)
from geostream.location.provider_subscription import ProviderSubscription

__all__ = [
    "DEFAULT_SUBSCRIPTIONS",
    "ErrorKind",
    "FallbackController",
    "FilePermissionSource",
    "Fix",
    "FixChannel",
    "FixObserver",
    "GrantSetPermissionSource",
    "InvalidParameters",
    "LocationError",
    "LocationPermission",
    "LocationService",
    "NotActive",
    "PermissionDenied",
    "PermissionGate",
    "ProviderDiagnostic",
    "ProviderId",
    "ProviderSubscription",
    "ProviderUnavailable",
    "StaticPermissionSource",
    "SubscriptionConfig",
]

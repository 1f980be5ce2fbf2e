"""Errors raised by provider subscriptions."""

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of per-provider failures."""

    PERMISSION_DENIED = "permission_denied"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_PARAMETERS = "invalid_parameters"
    NOT_ACTIVE = "not_active"


class LocationError(Exception):
    """Base class for provider subscription failures."""

    kind: ErrorKind


class PermissionDenied(LocationError):
    """Coarse and fine location access are not both granted."""

    kind = ErrorKind.PERMISSION_DENIED


class ProviderUnavailable(LocationError):
    """The named provider does not exist on the host or refused the request."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class InvalidParameters(LocationError):
    """Polling interval or minimum distance is malformed."""

    kind = ErrorKind.INVALID_PARAMETERS


class NotActive(LocationError):
    """Unsubscribe was requested for a subscription that is not active."""

    kind = ErrorKind.NOT_ACTIVE

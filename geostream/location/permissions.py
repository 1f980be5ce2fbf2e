"""Location permission gate.

The gate is evaluated on every subscribe/unsubscribe call and never cached:
access can be revoked externally at any time while the service runs.
"""

import json
import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Iterable, Union

from geostream.logging import GEOSTREAM_LOGGER


class LocationPermission(str, Enum):
    """Location authorizations granted by the host."""

    COARSE = "coarse"
    FINE = "fine"


class AbstractPermissionSource(ABC):
    """Host access-control system answering location permission queries."""

    # Hosts without runtime-revocable permissions always pass the gate
    supports_runtime_revocation: bool = True

    @abstractmethod
    def is_granted(self, permission: LocationPermission) -> bool:
        """Return True if the host currently grants *permission*."""
        pass


class StaticPermissionSource(AbstractPermissionSource):
    """Host with no runtime permission model."""

    supports_runtime_revocation = False

    def is_granted(self, permission: LocationPermission) -> bool:
        return True


class GrantSetPermissionSource(AbstractPermissionSource):
    """In-memory permission set that can be granted and revoked at runtime."""

    def __init__(self, granted: Iterable[LocationPermission] = (LocationPermission.COARSE, LocationPermission.FINE)):
        self._lock = threading.Lock()
        self._granted = set(granted)

    def grant(self, permission: LocationPermission) -> None:
        with self._lock:
            self._granted.add(permission)

    def revoke(self, permission: LocationPermission) -> None:
        with self._lock:
            self._granted.discard(permission)

    def is_granted(self, permission: LocationPermission) -> bool:
        with self._lock:
            return permission in self._granted


class FilePermissionSource(AbstractPermissionSource):
    """
    Permissions read from a JSON file on every query.

    The file maps permission names to booleans, e.g. ``{"coarse": true, "fine": true}``.
    A missing or unreadable file grants nothing.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def is_granted(self, permission: LocationPermission) -> bool:
        try:
            with open(self.path, "r") as f:
                grants = json.load(f)
        except FileNotFoundError:
            return False
        except (json.JSONDecodeError, OSError) as e:
            GEOSTREAM_LOGGER.warning(f"Could not read permission file {self.path}: {e}")
            return False

        if not isinstance(grants, dict):
            return False
        return grants.get(permission.value) is True


class PermissionGate:
    """Grants location access only when both coarse and fine permissions are held."""

    REQUIRED_PERMISSIONS = (LocationPermission.COARSE, LocationPermission.FINE)

    def __init__(self, source: AbstractPermissionSource):
        self.source = source

    def missing_permissions(self) -> list[LocationPermission]:
        """Return the required permissions the host does not currently grant."""
        if not self.source.supports_runtime_revocation:
            return []

        missing = []
        for permission in self.REQUIRED_PERMISSIONS:
            try:
                granted = self.source.is_granted(permission)
            except Exception as e:
                # Fail closed: an unanswerable query counts as denial
                GEOSTREAM_LOGGER.error(f"Permission check for {permission.value} failed: {e}", exc_info=True)
                granted = False
            if not granted:
                missing.append(permission)
        return missing

    def evaluate(self) -> bool:
        """Check the host permissions now."""
        return not self.missing_permissions()

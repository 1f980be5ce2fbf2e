"""Fix sources backing the polling location manager."""

import json
import subprocess
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import requests

from geostream.location.providers import RawLocation
from geostream.logging import GEOSTREAM_LOGGER


class AbstractFixSource(ABC):
    """Abstract base class for fix sources."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the source can currently produce fixes."""
        pass

    @abstractmethod
    def read_location(self) -> Optional[RawLocation]:
        """
        Read the current position.

        Returns:
            RawLocation, or None if no position is available right now.
        """
        pass


def _parse_gpsd_time(value) -> Optional[float]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class GpsdFixSource(AbstractFixSource):
    """Satellite positioning through gpsd, queried with gpspipe."""

    def __init__(self, messages: int = 10, timeout: int = 5):
        """
        Initialize gpsd fix source.

        Args:
            messages: Number of gpsd JSON reports to read per query
            timeout: Query timeout in seconds
        """
        self.messages = messages
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "gps"

    def is_available(self) -> bool:
        """
        Check if gpsd is reachable (gpspipe command exists).

        Returns:
            True if gpspipe command is available, False otherwise.
        """
        try:
            result = subprocess.run(
                ["which", "gpspipe"],
                capture_output=True,
                timeout=2,
            )
            return result.returncode == 0
        except Exception:
            return False

    def read_location(self) -> Optional[RawLocation]:
        try:
            result = subprocess.run(
                ["gpspipe", "-w", "-n", str(self.messages)],
                capture_output=True,
                timeout=self.timeout,
                text=True,
            )
        except (FileNotFoundError, OSError, subprocess.TimeoutExpired) as e:
            GEOSTREAM_LOGGER.debug(f"Could not query gpsd: {e}")
            return None

        if result.returncode != 0:
            return None

        return self.parse_reports(result.stdout)

    def parse_reports(self, output: str) -> Optional[RawLocation]:
        """Build a location from the last TPV report carrying a 2D or 3D fix."""
        location = None

        for line in output.strip().split("\n"):
            if not line:
                continue

            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue

            if data.get("class") != "TPV" or data.get("mode", 0) < 2:
                continue
            if "lat" not in data or "lon" not in data:
                continue

            accuracy = data.get("eph")
            if accuracy is None and "epx" in data and "epy" in data:
                accuracy = max(data["epx"], data["epy"])

            location = RawLocation(
                provider=self.name,
                latitude=data["lat"],
                longitude=data["lon"],
                accuracy=accuracy,
                timestamp=_parse_gpsd_time(data.get("time")) or time.time(),
                altitude=data.get("alt"),
            )

        return location


class IpGeolocationFixSource(AbstractFixSource):
    """Network positioning from an IP geolocation service (ip-api.com response format)."""

    def __init__(self, url: str = "http://ip-api.com/json", timeout: int = 5, accuracy_m: float = 5000.0):
        """
        Initialize network fix source.

        Args:
            url: Geolocation endpoint returning ``lat``/``lon`` JSON fields
            timeout: Request timeout in seconds
            accuracy_m: Accuracy reported for every fix (IP lookups carry none)
        """
        self.url = url
        self.timeout = timeout
        self.accuracy_m = accuracy_m
        self.session = requests.Session()

    @property
    def name(self) -> str:
        return "network"

    def is_available(self) -> bool:
        # Reachability is discovered by read_location; a configured endpoint counts as enabled
        return bool(self.url)

    def read_location(self) -> Optional[RawLocation]:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            GEOSTREAM_LOGGER.debug(f"IP geolocation lookup failed: {e}")
            return None

        if data.get("status", "success") != "success":
            GEOSTREAM_LOGGER.debug(f"IP geolocation lookup rejected: {data.get('message')}")
            return None

        latitude = data.get("lat")
        longitude = data.get("lon")
        if latitude is None or longitude is None:
            return None

        return RawLocation(
            provider=self.name,
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy=self.accuracy_m,
            timestamp=time.time(),
        )

"""Position fix and provider identifiers."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ProviderId(str, Enum):
    """Location sensing sources a service can subscribe to."""

    SATELLITE = "satellite"
    NETWORK = "network"


@dataclass(frozen=True)
class Fix:
    """One position observation reported by a provider."""

    provider: ProviderId
    latitude: float  # degrees
    longitude: float  # degrees
    accuracy: Optional[float]  # meters, None when the source reports none
    timestamp: float  # seconds since the epoch

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "provider": self.provider.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp,
        }

    def describe(self) -> str:
        location_str = f"lat={self.latitude:.6f}°, lon={self.longitude:.6f}°"
        if self.accuracy is not None:
            location_str += f", acc={self.accuracy:.1f}m"
        return f"{self.provider.value}: {location_str}"


@dataclass(frozen=True)
class SubscriptionConfig:
    """Polling parameters for one provider, fixed at service construction."""

    provider: ProviderId
    interval_ms: int = 5000
    min_distance_m: float = 0.0


DEFAULT_SUBSCRIPTIONS = (
    SubscriptionConfig(ProviderId.SATELLITE),
    SubscriptionConfig(ProviderId.NETWORK),
)

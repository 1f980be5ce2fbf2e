from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from geostream.location.fix import ProviderId, SubscriptionConfig
from geostream.logging import GEOSTREAM_LOGGER
from geostream.settings.config_manager import ConfigManager


class ProviderSettings(BaseModel):
    provider: ProviderId
    interval_ms: int = 5000
    min_distance_m: float = 0.0

    def to_subscription_config(self) -> SubscriptionConfig:
        return SubscriptionConfig(
            provider=self.provider,
            interval_ms=self.interval_ms,
            min_distance_m=self.min_distance_m,
        )


def _default_providers() -> list[ProviderSettings]:
    return [
        ProviderSettings(provider=ProviderId.SATELLITE),
        ProviderSettings(provider=ProviderId.NETWORK),
    ]


class GeoStreamSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GEOSTREAM_",
        env_nested_delimiter="__",
    )

    # Providers subscribed by the primary location service
    providers: list[ProviderSettings] = Field(default_factory=_default_providers)

    # Providers run while the primary is silent; empty disables fallback
    fallback_providers: list[ProviderSettings] = Field(default_factory=list)
    fallback_timeout_seconds: float = 15.0
    fallback_window_seconds: float = 60.0

    # JSON file holding {"coarse": bool, "fine": bool}; unset means no runtime permission model
    permission_file: Optional[str] = None

    # Satellite provider (gpsd)
    gpsd_messages: int = 10
    gpsd_timeout_seconds: int = 5

    # Network provider (IP geolocation)
    network_geolocation_url: str = "http://ip-api.com/json"
    network_timeout_seconds: int = 5
    network_accuracy_m: float = 5000.0

    observer_queue_size: int = 256
    log_level: str = "INFO"

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        # Values from the config file sit below explicit arguments
        file_config = ConfigManager(config_file).load_config()
        if file_config:
            GEOSTREAM_LOGGER.debug(f"Loaded configuration keys: {sorted(file_config)}")
        super().__init__(**{**file_config, **kwargs})

    def to_subscription_configs(self) -> list[SubscriptionConfig]:
        return [p.to_subscription_config() for p in self.providers]

    def to_fallback_subscription_configs(self) -> list[SubscriptionConfig]:
        return [p.to_subscription_config() for p in self.fallback_providers]

    @property
    def fallback_enabled(self) -> bool:
        return bool(self.fallback_providers)

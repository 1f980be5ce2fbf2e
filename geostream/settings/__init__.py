from geostream.settings._geostream_settings import GeoStreamSettings, ProviderSettings
from geostream.settings.config_manager import ConfigManager

__all__ = ["ConfigManager", "GeoStreamSettings", "ProviderSettings"]

"""Configuration file manager for geostream.

Handles reading and writing the JSON configuration file using platformdirs
for cross-platform config directory management.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import platformdirs

from geostream.logging import GEOSTREAM_LOGGER


class ConfigManager:
    """Manages configuration file storage and retrieval."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        """
        Initialize the config manager.

        Args:
            config_file: Explicit config file path; defaults to config.json in the user config directory
        """
        if config_file is not None:
            self.config_file = Path(config_file)
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path(platformdirs.user_config_dir("geostream", appauthor=False))
            self.config_file = self.config_dir / "config.json"

    def ensure_config_directory(self) -> None:
        """Create config directory with proper permissions if it doesn't exist."""
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, mode=0o700)

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file.

        Returns:
            Dict containing configuration, or empty dict if file doesn't exist or is invalid.
        """
        if not self.config_file.exists():
            return {}

        try:
            with open(self.config_file, "r") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            # Log error but return empty config to allow recovery
            GEOSTREAM_LOGGER.error(f"Error loading config file {self.config_file}: {e}")
            return {}

        is_valid, error = self.validate_config(config)
        if not is_valid:
            GEOSTREAM_LOGGER.error(f"Ignoring config file {self.config_file}: {error}")
            return {}
        return config

    def save_config(self, config: Dict[str, Any]) -> None:
        """Save configuration to JSON file with proper permissions.

        Args:
            config: Dictionary of configuration values to save.
        """
        self.ensure_config_directory()

        # Write to temp file first, then atomic rename
        temp_file = self.config_file.with_suffix(".json.tmp")
        try:
            with open(temp_file, "w") as f:
                json.dump(config, f, indent=2)
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.config_file)
        except Exception as e:
            # Clean up temp file on error
            if temp_file.exists():
                temp_file.unlink()
            raise IOError(f"Failed to save config: {e}") from e

    def get_config_path(self) -> Path:
        return self.config_file

    def config_exists(self) -> bool:
        return self.config_file.exists()

    def validate_config(self, config: Any) -> tuple[bool, Optional[str]]:
        """Validate configuration structure.

        Args:
            config: Configuration value to validate.

        Returns:
            Tuple of (is_valid, error_message).
        """
        if not isinstance(config, dict):
            return False, "Configuration must be a dictionary"

        providers = config.get("providers")
        if providers is not None and not isinstance(providers, list):
            return False, "'providers' must be a list"

        return True, None

"""Configuration loader for the Backlog markdown migration.

Loads ``.env`` files, an optional YAML configuration file and the
environment-driven Pydantic settings, with YAML values taking precedence.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from backlog_migrate.models.migration_error import ConfigurationError
from backlog_migrate.settings import Settings

config_logger = logging.getLogger("config_loader")

DEFAULT_CONFIG_FILE = Path("config/config.yaml")


def is_test_environment() -> bool:
    """Detect if code is running in a test environment.

    Returns:
        bool: True if running under pytest or with BACKLOG_MIGRATE_TEST_MODE set

    """
    if "PYTEST_CURRENT_TEST" in os.environ:
        return True

    return os.environ.get("BACKLOG_MIGRATE_TEST_MODE", "").lower() in ("true", "1", "yes")


class ConfigLoader:
    """Loads and provides access to configuration settings."""

    def __init__(self, config_file_path: Path | None = None) -> None:
        """Initialize the configuration loader.

        Args:
            config_file_path: YAML configuration file. Defaults to
                ``config/config.yaml`` when that file exists.

        Raises:
            ConfigurationError: If the YAML file or an environment value is invalid

        """
        self._load_environment_configuration()

        self.config_file_path = config_file_path
        self.yaml_config: dict[str, Any] = {}
        if config_file_path is not None:
            self.yaml_config = self._load_yaml_config(config_file_path)
        elif DEFAULT_CONFIG_FILE.exists():
            self.config_file_path = DEFAULT_CONFIG_FILE
            self.yaml_config = self._load_yaml_config(DEFAULT_CONFIG_FILE)

        try:
            self.settings = Settings()
        except ValidationError as e:
            msg = f"Invalid environment configuration: {e}"
            raise ConfigurationError(msg) from e

        self._apply_yaml_overrides()

    def _load_environment_configuration(self) -> None:
        """Load environment variables from .env files based on execution context.

        The loading order respects precedence:
        - .env (base config for all environments)
        - .env.local (local overrides, if present)
        - .env.test (test-specific config, if in test environment)
        - .env.test.local (local test overrides, if in test environment)

        Later files override values from earlier files.
        """
        load_dotenv(".env")
        config_logger.debug("Loaded base environment from .env")

        if Path(".env.local").exists():
            load_dotenv(".env.local", override=True)
            config_logger.debug("Loaded local overrides from .env.local")

        if is_test_environment():
            config_logger.debug("Running in test environment")
            if Path(".env.test").exists():
                load_dotenv(".env.test", override=True)
                config_logger.debug("Loaded test environment from .env.test")
            if Path(".env.test.local").exists():
                load_dotenv(".env.test.local", override=True)
                config_logger.debug("Loaded local test overrides from .env.test.local")

    def _load_yaml_config(self, config_file_path: Path) -> dict[str, Any]:
        """Load configuration from YAML file.

        Args:
            config_file_path: Path to the YAML configuration file

        Returns:
            dict: Configuration settings

        Raises:
            ConfigurationError: If the file is missing or not a mapping

        """
        try:
            with config_file_path.open("r", encoding="utf-8") as config_file:
                config = yaml.safe_load(config_file)
        except FileNotFoundError as e:
            msg = f"Config file not found: {config_file_path}"
            raise ConfigurationError(msg) from e
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in {config_file_path}: {e}"
            raise ConfigurationError(msg) from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            msg = f"Config file {config_file_path} must contain a mapping"
            raise ConfigurationError(msg)
        config_logger.debug("Loaded YAML configuration from %s", config_file_path)
        return config

    def _apply_yaml_overrides(self) -> None:
        """Override Pydantic settings with YAML configuration values.

        Raises:
            ConfigurationError: If a key is unknown or a value fails validation

        """
        for key, value in self.yaml_config.items():
            if key not in Settings.model_fields:
                msg = f"Unknown configuration key in {self.config_file_path}: {key}"
                raise ConfigurationError(msg)
            try:
                setattr(self.settings, key, value)
            except ValidationError as e:
                msg = f"Invalid value for {key} in {self.config_file_path}: {e}"
                raise ConfigurationError(msg) from e
            config_logger.debug("Applied %s from YAML", key)

    def get_settings(self) -> Settings:
        """Return the resolved settings."""
        return self.settings

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get a specific setting value.

        Args:
            key: Settings field name
            default: Value returned when the field does not exist

        Returns:
            The setting value or ``default``

        """
        return getattr(self.settings, key, default)

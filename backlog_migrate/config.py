"""Configuration module for the Backlog markdown migration.

Provides a centralized configuration interface using ConfigLoader.
"""

from pathlib import Path
from typing import Any

from backlog_migrate.config_loader import ConfigLoader
from backlog_migrate.display import configure_logging
from backlog_migrate.settings import Settings

# Create a singleton instance of ConfigLoader
_config_loader = ConfigLoader()

settings: Settings = _config_loader.get_settings()

logger = configure_logging(settings.log_level, settings.log_file)


def load_config_file(config_file_path: Path) -> None:
    """Reload settings from an explicit YAML configuration file.

    The module level ``settings`` object is updated in place so modules that
    already imported it observe the new values.

    Args:
        config_file_path: YAML configuration file

    Raises:
        ConfigurationError: If the file is missing or invalid

    """
    global _config_loader
    _config_loader = ConfigLoader(config_file_path)
    for name in Settings.model_fields:
        setattr(settings, name, getattr(_config_loader.settings, name))
    configure_logging(settings.log_level, settings.log_file)
    logger.debug("Loaded configuration from %s", config_file_path)


def get_value(key: str, default: Any = None) -> Any:
    """Get a specific configuration value."""
    return getattr(settings, key, default)


def get_workspace_dir() -> Path:
    """Return the configured workspace directory."""
    return Path(settings.workspace_dir)


def update_from_cli_args(args: Any) -> None:
    """Update configuration from CLI arguments.

    Args:
        args: An object containing CLI arguments (typically from argparse)

    """
    if getattr(args, "dir", None):
        settings.workspace_dir = Path(args.dir)
        logger.debug("Setting workspace_dir=%s from CLI arguments", settings.workspace_dir)

    if getattr(args, "log_level", None):
        settings.log_level = args.log_level
        configure_logging(settings.log_level, settings.log_file)
        logger.debug("Setting log_level=%s from CLI arguments", settings.log_level)

    if getattr(args, "include_comments", False):
        settings.include_comments = True
        logger.debug("Setting include_comments=True from CLI arguments")

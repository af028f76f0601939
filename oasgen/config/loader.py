"""Configuration loader for error handling.

This module provides utilities for loading and merging configuration from
YAML files, environment variables and explicit overrides.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from oasgen.errors.types import ConfigurationError

from .schemas import ErrorHandlingConfig

CONFIG_NAMES = ["oasgen.yaml", "oasgen.yml", ".oasgen.yaml"]
ERRORS_SECTION = "errors"


class ConfigurationLoader:
    """Loads and merges configuration from multiple sources."""

    @staticmethod
    def find_project_config(start: Optional[Path] = None) -> Optional[Path]:
        """Find project configuration file in the given or current directory.

        Returns:
            Path to config file if found, None otherwise
        """
        directory = start or Path.cwd()

        for name in CONFIG_NAMES:
            config_path = directory / name
            if config_path.exists():
                logger.debug(f"Found project config: {config_path}")
                return config_path

        return None

    @staticmethod
    def find_user_config() -> Optional[Path]:
        """Find user configuration file.

        Returns:
            Path to user config file if found, None otherwise
        """
        user_config = Path.home() / ".oasgen" / "config.yaml"
        if user_config.exists():
            logger.debug(f"Found user config: {user_config}")
            return user_config
        return None

    @staticmethod
    def load_yaml_config(path: Path) -> Dict[str, Any]:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML file

        Returns:
            Configuration dictionary

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load config from {path}: {e}",
                config_file=path,
                code="CONFIG_LOAD_ERROR",
                cause=e,
            ) from e

        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Config file {path} must contain a mapping, got {type(config).__name__}",
                config_file=path,
                code="CONFIG_INVALID_FORMAT",
            )
        logger.debug(f"Loaded config from {path}")
        return config

    @staticmethod
    def extract_errors_section(config: Dict[str, Any]) -> Dict[str, Any]:
        """Return the ``errors`` section of a generator config, or the whole mapping."""
        section = config.get(ERRORS_SECTION)
        return section if isinstance(section, dict) else config

    @staticmethod
    def merge_configs(configs: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Merge multiple configuration dictionaries.

        Later configs override earlier ones.
        """
        result: Dict[str, Any] = {}

        for config in configs:
            result = ConfigurationLoader._deep_merge(result, config)

        return result

    @staticmethod
    def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigurationLoader._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> ErrorHandlingConfig:
    """Load error handling configuration.

    Sources, lowest precedence first: environment variables, user config,
    project config (or ``path``), keyword overrides.

    Raises:
        ConfigurationError: If a file is unreadable or a value is invalid
    """
    configs: List[Dict[str, Any]] = []
    source: Optional[Path] = None

    user_config = ConfigurationLoader.find_user_config()
    if user_config and path is None:
        configs.append(ConfigurationLoader.extract_errors_section(ConfigurationLoader.load_yaml_config(user_config)))

    if path is not None:
        source = Path(path)
        if not source.exists():
            raise ConfigurationError(
                f"Config file not found: {source}",
                config_file=source,
                code="CONFIG_FILE_NOT_FOUND",
            )
    else:
        source = ConfigurationLoader.find_project_config()

    if source is not None:
        configs.append(ConfigurationLoader.extract_errors_section(ConfigurationLoader.load_yaml_config(source)))

    configs.append(overrides)
    merged = ConfigurationLoader.merge_configs(configs)

    try:
        return ErrorHandlingConfig(**merged)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration for '{field}': {first.get('msg')}",
            field=field or None,
            value=first.get("input"),
            config_file=source,
            code="CONFIG_INVALID_VALUE",
            cause=e,
        ) from e

"""Configuration manager for loading and merging configs."""

import logging
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from triage.config.schema import TriageConfig, get_config_file
from triage.errors import ConfigError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".triage.toml"


class ConfigManager:
    """Manages configuration loading, merging, and access."""

    _instance: "ConfigManager | None" = None
    _config: TriageConfig | None = None

    def __new__(cls) -> "ConfigManager":
        """Singleton pattern for config manager."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_config(cls) -> TriageConfig:
        """Get the current configuration, loading if necessary."""
        if cls._config is None:
            cls._config = cls.load_config()
        return cls._config

    @classmethod
    def load_config(cls) -> TriageConfig:
        """Load configuration from all sources.

        Priority (highest to lowest):
        1. Project-level config (.triage.toml in cwd or parents)
        2. User config (~/.config/triage/config.toml)
        3. Default config

        Raises:
            ConfigError: A file is not valid TOML or fails validation.
        """
        config_dict: dict[str, Any] = TriageConfig.default().model_dump(mode="json")

        user_config_file = get_config_file()
        if user_config_file.exists():
            config_dict = cls._deep_merge(config_dict, cls._read(user_config_file))

        project_config_file = cls._find_project_config()
        if project_config_file and project_config_file.exists():
            config_dict = cls._deep_merge(config_dict, cls._read(project_config_file))

        try:
            return TriageConfig.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def _read(cls, path: Path) -> dict[str, Any]:
        try:
            return toml.load(path)
        except toml.TomlDecodeError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e

    @classmethod
    def reload(cls) -> TriageConfig:
        """Force reload configuration from disk."""
        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def reset(cls) -> None:
        """Forget the cached configuration."""
        cls._config = None

    @classmethod
    def _find_project_config(cls) -> Path | None:
        """Find project-level config file by searching up from cwd."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_file = parent / PROJECT_CONFIG_NAME
            if config_file.exists():
                logger.debug("Using project config %s", config_file)
                return config_file
            # Stop at home directory
            if parent == Path.home():
                break
        return None

    @classmethod
    def _deep_merge(
        cls, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def save_user_config(cls, config: TriageConfig) -> None:
        """Save configuration to user config file."""
        config_file = get_config_file()
        config_dict = config.model_dump(mode="json", exclude_none=True)
        with open(config_file, "w") as f:
            toml.dump(config_dict, f)

    @classmethod
    def set_value(cls, key_path: str, value: Any) -> None:
        """Set a configuration value by dot-separated path.

        Example: set_value("cycle.block_on_critical", False)
        """
        config = cls.get_config()
        config_dict = config.model_dump(mode="json")

        keys = key_path.split(".")
        current = config_dict
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

        try:
            cls._config = TriageConfig.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid value for {key_path}: {e}") from e
        cls.save_user_config(cls._config)

    @classmethod
    def get_value(cls, key_path: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated path."""
        config = cls.get_config()
        config_dict = config.model_dump(mode="json")

        keys = key_path.split(".")
        current = config_dict
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

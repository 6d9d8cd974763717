"""Configuration file management.

Config is stored in TOML format at:
- macOS/Linux: ~/.config/taghost/config.toml
- Windows: %APPDATA%\\taghost\\config.toml

Usage:
    config = load_config()
    settings = Settings.from_config(config, offline=True)
"""

import copy
import os
import platform
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from ..constants import (
    API_KEY_ENV,
    APP_NAME,
    APPLICATION_KEY_ENV,
    DEFAULT_ENDPOINT,
    DEFAULT_EXPIRY,
    DEFAULT_SEPARATOR,
    DEFAULT_TIMEOUT,
    PERSISTENT_DB,
)
from ..exceptions import ConfigError


def get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if platform.system() == "Windows":
        base = Path.home() / "AppData" / "Roaming"
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def get_config_path() -> Path:
    """Get path to config file."""
    return get_config_dir() / "config.toml"


DEFAULT_CONFIG = {
    "general": {
        "confdir": str(Path.home() / f".{APP_NAME}"),
        "expiry": DEFAULT_EXPIRY,
        "endpoint": DEFAULT_ENDPOINT,
        "timeout": DEFAULT_TIMEOUT,
    },
    "display": {
        "tags": [],
        "listing": False,
        "primary_tag": "",
        "separator": DEFAULT_SEPARATOR,
    },
}


def load_config() -> dict:
    """Load configuration from file.

    Creates default config if file doesn't exist.

    Returns:
        Dict with configuration values

    Raises:
        ConfigError: If config file is malformed
    """
    config_path = get_config_path()

    if not config_path.exists():
        save_config(DEFAULT_CONFIG)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config: {e}") from e


def save_config(config: dict) -> None:
    """Save configuration to file.

    Args:
        config: Dict with configuration values
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "wb") as f:
        tomli_w.dump(config, f)


def get_value(config: dict, key: str, default: Any = None) -> Any:
    """Get a nested config value using dot notation.

    Args:
        config: Config dict
        key: Dot-separated key (e.g., "general.expiry")
        default: Default value if key not found

    Returns:
        Config value or default

    Example:
        >>> config = {"general": {"expiry": 60}}
        >>> get_value(config, "general.expiry")
        60
    """
    parts = key.split(".")
    current = config

    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return default

    return current


def set_value(config: dict, key: str, value: Any) -> None:
    """Set a nested config value using dot notation.

    Args:
        config: Config dict (modified in place)
        key: Dot-separated key
        value: Value to set

    Example:
        >>> config = {}
        >>> set_value(config, "general.expiry", 60)
        >>> config
        {'general': {'expiry': 60}}
    """
    parts = key.split(".")
    current = config

    for part in parts[:-1]:
        if part not in current:
            current[part] = {}
        current = current[part]

    current[parts[-1]] = value


@dataclass
class Settings:
    """Typed runtime settings, built once at startup and passed around.

    Values come from the config file, then explicit overrides (CLI flags),
    then the environment for credentials.
    """

    confdir: Path = field(default_factory=lambda: Path.home() / f".{APP_NAME}")
    expiry: int = DEFAULT_EXPIRY
    force: bool = False
    offline: bool = False
    endpoint: str = DEFAULT_ENDPOINT
    api_key: str | None = None
    application_key: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    tags: list[str] = field(default_factory=list)
    listing: bool = False
    primary_tag: str | None = None
    separator: str = DEFAULT_SEPARATOR

    def __post_init__(self) -> None:
        self.confdir = Path(self.confdir).expanduser()
        if self.expiry < 0:
            raise ConfigError(f"expiry must not be negative: {self.expiry}")
        if not self.endpoint:
            raise ConfigError("endpoint must not be empty")

    @property
    def persistent_db(self) -> Path:
        """Path to the durable cache file."""
        return self.confdir / PERSISTENT_DB

    @classmethod
    def from_config(cls, config: dict, **overrides: Any) -> "Settings":
        """Build settings from a loaded config dict.

        Args:
            config: Dict as returned by load_config()
            **overrides: Values that win over the config file; None is ignored

        Returns:
            Settings instance

        Raises:
            ConfigError: If a value has the wrong type or is out of range
        """
        values: dict[str, Any] = {
            "confdir": get_value(config, "general.confdir", DEFAULT_CONFIG["general"]["confdir"]),
            "expiry": get_value(config, "general.expiry", DEFAULT_EXPIRY),
            "endpoint": get_value(config, "general.endpoint", DEFAULT_ENDPOINT),
            "timeout": get_value(config, "general.timeout", DEFAULT_TIMEOUT),
            "api_key": get_value(config, "general.api_key"),
            "application_key": get_value(config, "general.application_key"),
            "tags": list(get_value(config, "display.tags", [])),
            "listing": bool(get_value(config, "display.listing", False)),
            "primary_tag": get_value(config, "display.primary_tag") or None,
            "separator": get_value(config, "display.separator", DEFAULT_SEPARATOR),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        values["api_key"] = values["api_key"] or os.environ.get(API_KEY_ENV)
        values["application_key"] = values["application_key"] or os.environ.get(
            APPLICATION_KEY_ENV
        )

        try:
            values["expiry"] = int(values["expiry"])
            values["timeout"] = float(values["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        return cls(**values)

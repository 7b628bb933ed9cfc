"""Configuration management for the micap client.

This module provides TOML-based configuration support with CLI override capability.

Configuration priority: CLI args > user config > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when the bundled default configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A value from a user config file that differs from the default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass
class ClientConfig:
    """Client settings. Default values are loaded from default.toml."""

    # Connection settings
    server_host: str
    websocket_port: int
    auto_reconnect: bool
    reconnect_delay: float

    # Event dispatch
    auto_dispatch: bool
    queue_max: int

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None

    @property
    def websocket_url(self) -> str:
        return f"ws://{self.server_host}:{self.websocket_port}"


_VALID_KEYS: set[str] = {f.name for f in fields(ClientConfig)}

# Keys where an empty string in TOML means "not set"
_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")

VALID_LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]


def load_default_toml_data() -> dict[str, Any]:
    """Load default.toml from the package resources.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        content = (
            importlib.resources.files("micap_client")
            .joinpath("default.toml")
            .read_bytes()
        )
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load a user configuration file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep known keys and normalize empty optional strings to None."""
    result: dict[str, Any] = {}

    for key, value in toml_data.items():
        if key not in _VALID_KEYS:
            continue
        if key in _OPTIONAL_STRING_KEYS and value == "":
            value = None
        result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    return [key for key in toml_data if key not in _VALID_KEYS]


def _is_int(value: Any) -> bool:
    # bool is an int subclass but `websocket_port = true` is still a mistake
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return _is_int(value) or isinstance(value, float)


def validate_config(config: ClientConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    if not isinstance(config.server_host, str) or not config.server_host.strip():
        errors.append("server_host must be a non-empty string")

    # TOML and callers can hand over any type; range checks need numbers
    if not _is_int(config.websocket_port):
        errors.append(
            f"websocket_port must be an integer, got {config.websocket_port!r}"
        )
    elif not 1 <= config.websocket_port <= 65535:
        errors.append(
            f"websocket_port must be between 1 and 65535, got {config.websocket_port}"
        )

    if not _is_number(config.reconnect_delay):
        errors.append(
            f"reconnect_delay must be a number, got {config.reconnect_delay!r}"
        )
    elif config.reconnect_delay <= 0:
        errors.append(f"reconnect_delay must be positive, got {config.reconnect_delay}")

    if not _is_int(config.queue_max):
        errors.append(f"queue_max must be an integer, got {config.queue_max!r}")
    elif config.queue_max <= 0:
        errors.append(f"queue_max must be positive, got {config.queue_max}")

    for field_name in ("auto_reconnect", "auto_dispatch", "log_json_console"):
        value = getattr(config, field_name)
        if not isinstance(value, bool):
            errors.append(f"{field_name} must be true or false, got {value!r}")

    if not isinstance(config.log_level_console, str):
        errors.append(
            f"log_level_console must be a string, got {config.log_level_console!r}"
        )
    elif config.log_level_console.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"log_level_console must be one of {VALID_LOG_LEVELS}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ClientConfig:
    """Build a ClientConfig from the bundled default.toml.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    config_data = process_toml_config(load_default_toml_data())

    missing = _VALID_KEYS - set(config_data)
    if missing:
        raise DefaultConfigError(
            f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
        )

    return ClientConfig(**config_data)


def merge_cli_args(config: ClientConfig, args: argparse.Namespace) -> ClientConfig:
    """Apply explicitly provided CLI arguments on top of ``config``."""
    updates: dict[str, Any] = {}

    if getattr(args, "host", None) is not None:
        updates["server_host"] = args.host
    if getattr(args, "port", None) is not None:
        updates["websocket_port"] = args.port
    if getattr(args, "no_reconnect", False):
        updates["auto_reconnect"] = False

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_level_console", None) is not None:
        updates["log_level_console"] = args.log_level_console
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "log_rotation", None) is not None:
        updates["log_rotation"] = args.log_rotation
    if getattr(args, "log_retention", None) is not None:
        updates["log_retention"] = args.log_retention

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ClientConfig, list[ConfigOverride]]:
    """Create a ClientConfig with layered loading.

    Returns:
        The final configuration and the user-config values that differ from
        the defaults.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded.
        FileNotFoundError: If the user config file does not exist.
        tomllib.TOMLDecodeError: If the user config has invalid TOML syntax.
        ConfigurationError: If the final configuration is invalid.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Logging is not configured yet, so warn on stderr
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        for key, new_value in config_data.items():
            default_value = getattr(config, key)
            if default_value != new_value:
                overrides.append(ConfigOverride(key, default_value, new_value))

        if config_data:
            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides

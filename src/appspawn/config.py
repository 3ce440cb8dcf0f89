"""Spawn server configuration for appspawn.

Defines the configuration model for the manager process. Configuration is
optional: without a file every field takes its default.

Example usage:
    # Lenient: falls back to defaults on any problem
    config = load_config(Path("/etc/appspawn.json"))

    # Lenient load of the default file (used by `appspawn serve`)
    config = load_config(get_config_path())

    # Strict: raises ConfigurationError (used by `appspawn serve --config`)
    config = load_config_strict(Path("/etc/appspawn.json"))
"""

from __future__ import annotations

__all__ = [
    "SpawnServerConfig",
    "get_config_path",
    "get_system_log_path",
    "load_config",
    "load_config_strict",
]

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from appspawn.constants import (
    APP_NAME,
    DEFAULT_APP_TIMEOUT_SECONDS,
    DEFAULT_CHANNEL_FD,
    DEFAULT_CONFIG_DIR,
    DEFAULT_FRAMEWORK_TIMEOUT_SECONDS,
    DEFAULT_LOG_DIR,
    DEFAULT_SOCKET_DIR,
)
from appspawn.exceptions import ConfigurationError

_logger = logging.getLogger(f"{APP_NAME}.config")


class SpawnServerConfig(BaseModel):
    """Spawn manager configuration.

    Attributes:
        channel_fd: Descriptor the parent passes the control channel on.
        socket_dir: Directory workers create their Unix sockets in.
        default_framework_timeout: Framework stage timeout used when a
            request carries 0 (seconds).
        default_app_timeout: App stage timeout used when a request carries
            0 (seconds).
        log_dir: Directory for the JSONL system log.
        log_level: Console log level.
    """

    channel_fd: int = Field(
        default=DEFAULT_CHANNEL_FD,
        ge=0,
        description="Descriptor number of the pre-opened control channel",
    )
    socket_dir: str = Field(
        default=DEFAULT_SOCKET_DIR,
        min_length=1,
        description="Directory for worker Unix sockets",
    )
    default_framework_timeout: float = Field(
        default=DEFAULT_FRAMEWORK_TIMEOUT_SECONDS,
        gt=0,
        description="Framework stage timeout when the request asks for the default",
    )
    default_app_timeout: float = Field(
        default=DEFAULT_APP_TIMEOUT_SECONDS,
        gt=0,
        description="App stage timeout when the request asks for the default",
    )
    log_dir: str = Field(
        default=DEFAULT_LOG_DIR,
        min_length=1,
        description="Directory for the system log (system.jsonl)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Console log level",
    )

    model_config = {"extra": "ignore"}  # Ignore unknown fields for forward compat


def get_config_path() -> Path:
    """Get the full path to the default config file.

    Returns:
        Path to config.json in the platform config directory.
    """
    return Path(DEFAULT_CONFIG_DIR) / "config.json"


def get_system_log_path(config: SpawnServerConfig) -> Path:
    """Get full path to the manager system log file.

    Args:
        config: Spawn server configuration.

    Returns:
        Path: <log_dir>/system.jsonl.
    """
    return Path(config.log_dir).expanduser() / "system.jsonl"


def load_config(config_path: Path | None) -> SpawnServerConfig:
    """Load configuration from file.

    A missing path or file returns the default configuration. Invalid JSON
    or validation errors return the default configuration with a warning.

    Args:
        config_path: JSON config file, or None for defaults.

    Returns:
        SpawnServerConfig: Loaded or default configuration.
    """
    if config_path is None or not config_path.exists():
        return SpawnServerConfig()

    try:
        return load_config_strict(config_path)
    except ConfigurationError as e:
        _logger.warning(
            {
                "event": "config_load_failed",
                "message": f"Invalid spawn server config, using defaults: {e}",
                "error_type": type(e.__cause__ or e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(config_path)},
            }
        )
        return SpawnServerConfig()


def load_config_strict(config_path: Path) -> SpawnServerConfig:
    """Load configuration, raising on any error.

    Args:
        config_path: JSON config file.

    Returns:
        SpawnServerConfig: Validated configuration.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not JSON,
            or fails validation.
    """
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    try:
        return SpawnServerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {config_path}: {e}") from e

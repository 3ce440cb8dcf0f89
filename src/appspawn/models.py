"""Pydantic models for the spawn manager.

This module contains three categories of models:

Request Models:
- SpawnMethod, AppType: Recognized request tokens
- SpawnRequest: A decoded, validated spawn request

Result Models (FrozenModel-based):
- SpawnSuccess: Worker is up; carries its address and stderr descriptor
- SpawnFailure: Spawn failed; carries the error kind and message
- Identity: User/group a worker runs as

Logging Models:
- SpawnSystemEvent: System log entries for the manager process
"""

from __future__ import annotations

__all__ = [
    # Request Models
    "AppType",
    "SpawnManagerState",
    "SpawnMethod",
    "SpawnRequest",
    # Result Models
    "FrozenModel",
    "Identity",
    "SpawnFailure",
    "SpawnResult",
    "SpawnSuccess",
    # Logging Models
    "SpawnSystemEvent",
]

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from appspawn.exceptions import SpawnError


class FrozenModel(BaseModel):
    """Base class for immutable Pydantic models."""

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Request Models
# =============================================================================


class SpawnMethod(str, Enum):
    """How much of the application framework is loaded before the fork.

    - DIRECT: fork the manager; framework and app load in the child
    - SMART: fork the manager after pre-loading the framework in it (cached)
    - CONSERVATIVE: exec a fresh interpreter; nothing is shared
    """

    DIRECT = "direct"
    SMART = "smart"
    CONSERVATIVE = "conservative"


class AppType(str, Enum):
    """Application type; selects the loader and its startup file."""

    RAILS = "rails"
    RACK = "rack"
    WSGI = "wsgi"


class SpawnManagerState(str, Enum):
    """Serve loop states."""

    IDLE = "idle"
    DECODING = "decoding"
    SPAWNING = "spawning"
    RESPONDING = "responding"
    STOPPED = "stopped"


class SpawnRequest(FrozenModel):
    """A validated request to launch one application worker.

    Attributes:
        app_root: Application root directory.
        lower_privilege: Whether to run the worker as a less privileged user.
        lowest_user: Fallback user when the app owner cannot be used.
        environment: Framework environment name, e.g. "production".
        spawn_method: Spawn strategy.
        app_type: Application type.
        framework_spawner_timeout: Framework stage timeout in seconds (0 = default).
        app_spawner_timeout: App stage timeout in seconds (0 = default).
    """

    app_root: str = Field(min_length=1)
    lower_privilege: bool = True
    lowest_user: str = "nobody"
    environment: str = Field(default="production", min_length=1)
    spawn_method: SpawnMethod = SpawnMethod.SMART
    app_type: AppType = AppType.RAILS
    framework_spawner_timeout: float = Field(default=0.0, ge=0)
    app_spawner_timeout: float = Field(default=0.0, ge=0)


# =============================================================================
# Result Models
# =============================================================================


class Identity(FrozenModel):
    """User and group a worker should run as.

    Attributes:
        uid: Numeric user id.
        gid: Numeric primary group id.
        username: Login name (used for supplementary groups).
        home: Home directory, exported as HOME in the worker.
    """

    uid: int
    gid: int
    username: str
    home: str = "/"


class SpawnSuccess(FrozenModel):
    """A worker is running and listening.

    Ownership of ``diagnostic_fd`` passes to whoever consumes this result;
    the response encoder closes it after sending it to the caller.

    Attributes:
        pid: Worker process id.
        socket_path: Unix socket path, or "host:port" for TCP.
        socket_is_unix: Whether socket_path is a Unix-domain socket.
        diagnostic_fd: Readable end of the worker's stderr.
    """

    pid: int
    socket_path: str
    socket_is_unix: bool
    diagnostic_fd: int


class SpawnFailure(FrozenModel):
    """A spawn request failed.

    Attributes:
        error_kind: Error token, e.g. "SpawnTimeout".
        message: Human-readable description.
    """

    error_kind: str
    message: str

    @classmethod
    def from_error(cls, error: SpawnError) -> "SpawnFailure":
        """Build a failure result from a request-local exception."""
        return cls(error_kind=error.kind, message=error.message)


SpawnResult = Union[SpawnSuccess, SpawnFailure]


# =============================================================================
# Logging Models
# =============================================================================


class SpawnSystemEvent(BaseModel):
    """System log entry for the spawn manager.

    Note: 'time' is None when created, populated by ISO8601Formatter during logging.
    """

    # --- core ---
    time: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp (UTC), added by formatter during serialization",
    )
    event: Optional[str] = Field(
        None,
        description="Machine-friendly event name, e.g. 'worker_spawned', 'spawn_failed'",
    )
    message: str = Field(description="Human-readable log message")

    # --- spawn context ---
    app_root: Optional[str] = Field(
        None,
        description="Application root of the request being served",
    )
    app_type: Optional[str] = Field(
        None,
        description="Application type, e.g. 'wsgi'",
    )
    spawn_method: Optional[str] = Field(
        None,
        description="Spawn method, e.g. 'smart'",
    )
    pid: Optional[int] = Field(
        None,
        description="Worker process id",
    )
    stage: Optional[str] = Field(
        None,
        description="Spawn stage, 'framework' or 'app'",
    )
    duration_ms: Optional[float] = Field(
        None,
        description="Spawn duration in milliseconds",
    )

    # --- error details ---
    error_type: Optional[str] = Field(
        None,
        description="Error kind or exception class name, e.g. 'SpawnTimeout'",
    )
    error_message: Optional[str] = Field(
        None,
        description="Short error text",
    )

    # --- additional structured details ---
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional context as key-value pairs",
    )

    model_config = ConfigDict(extra="allow")

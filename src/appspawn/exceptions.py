"""Custom exceptions for appspawn.

Exceptions are organized into two categories:

Request-local Errors (manager keeps serving, caller gets an error response):
    - SpawnError: Base class; ``kind`` is the token written on the wire
    - MalformedRequest, UnknownSpawnMethod, UnknownAppType: decode-time
    - PrivilegeDropFailed, SpawnTimeout, AppLaunchFailed, SocketBindFailed:
      spawn-time

Loop-fatal Errors (manager stops serving and cleans up):
    - ChannelError: Control channel is unusable
    - ChannelClosed: Peer closed the control channel

Startup Errors:
    - ConfigurationError: Config file is unreadable or invalid

Usage:
    from appspawn.exceptions import SpawnTimeout, ChannelClosed
"""

from __future__ import annotations

__all__ = [
    "AppLaunchFailed",
    "ChannelClosed",
    "ChannelError",
    "ConfigurationError",
    "MalformedRequest",
    "PrivilegeDropFailed",
    "SocketBindFailed",
    "SpawnError",
    "SpawnTimeout",
    "UnknownAppType",
    "UnknownSpawnMethod",
    "error_from_report",
]


# =============================================================================
# Request-local Errors (converted into a Failure response)
# =============================================================================


class SpawnError(Exception):
    """Base exception for failures scoped to a single spawn request.

    The manager catches these and answers the request with an ``error``
    response; the serve loop keeps running.

    Attributes:
        kind: Error token sent to the caller, e.g. "SpawnTimeout".
        message: Human-readable description.
    """

    kind: str = "SpawnError"

    def __init__(self, message: str = "") -> None:
        """Initialize SpawnError.

        Args:
            message: Human-readable description.
        """
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return f"{type(self).__name__}({self.message!r})"


class MalformedRequest(SpawnError):
    """Request has the wrong shape: field count, types, or empty values."""

    kind = "MalformedRequest"


class UnknownSpawnMethod(SpawnError):
    """Request names a spawn method this manager does not implement."""

    kind = "UnknownSpawnMethod"


class UnknownAppType(SpawnError):
    """Request names an application type this manager does not recognize."""

    kind = "UnknownAppType"


class PrivilegeDropFailed(SpawnError):
    """Worker could not switch to the resolved user/group."""

    kind = "PrivilegeDropFailed"


class SpawnTimeout(SpawnError):
    """A spawn stage did not finish within its timeout.

    The partially-started child has been killed and reaped by the time this
    is raised.

    Attributes:
        stage: "framework" or "app".
    """

    kind = "SpawnTimeout"

    def __init__(self, stage: str) -> None:
        """Initialize SpawnTimeout.

        Args:
            stage: Which stage timed out ("framework" or "app").
        """
        self.stage = stage
        super().__init__(f"stage={stage}")


class AppLaunchFailed(SpawnError):
    """Worker could not load or start the application."""

    kind = "AppLaunchFailed"


class SocketBindFailed(SpawnError):
    """Worker could bind neither a Unix-domain nor a loopback TCP socket."""

    kind = "SocketBindFailed"


_REPORTABLE_ERRORS: dict[str, type[SpawnError]] = {
    cls.kind: cls
    for cls in (
        MalformedRequest,
        UnknownSpawnMethod,
        UnknownAppType,
        PrivilegeDropFailed,
        AppLaunchFailed,
        SocketBindFailed,
    )
}


def error_from_report(kind: str, message: str) -> SpawnError:
    """Rebuild a SpawnError from a (kind, message) pair reported by a worker.

    Unknown kinds map to AppLaunchFailed so a misbehaving worker cannot
    invent error tokens.

    Args:
        kind: Error token, e.g. "SocketBindFailed".
        message: Error description.

    Returns:
        The matching SpawnError instance.
    """
    cls = _REPORTABLE_ERRORS.get(kind, AppLaunchFailed)
    return cls(message)


# =============================================================================
# Loop-fatal Errors (serve loop stops, cleanup runs)
# =============================================================================


class ChannelError(Exception):
    """The control channel is unusable (I/O error or corrupt framing).

    A broken control channel cannot be recovered locally; the manager stops
    serving when this is raised.
    """


class ChannelClosed(ChannelError):
    """The peer closed the control channel."""


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigurationError(Exception):
    """Configuration is invalid or unreadable.

    Raised when:
    - Config file contains invalid JSON
    - Config file fails Pydantic validation
    - Config file cannot be read

    Attributes:
        exit_code: Process exit code used by the CLI.
    """

    exit_code: int = 2

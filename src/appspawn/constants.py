"""Application-wide constants for appspawn.

Constants that define protocol and process behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # Channel
    "DEFAULT_CHANNEL_FD",
    "CHANNEL_READ_CHUNK_BYTES",
    "CHANNEL_MAX_DESCRIPTORS",
    "MAX_MESSAGE_BYTES",
    # Commands and status tokens
    "SPAWN_COMMAND",
    "RELOAD_COMMAND",
    "STATUS_OK",
    "STATUS_ERROR",
    "DESCRIPTOR_MARKER",
    # Spawn timeouts
    "DEFAULT_FRAMEWORK_TIMEOUT_SECONDS",
    "DEFAULT_APP_TIMEOUT_SECONDS",
    "WORKER_REAP_TIMEOUT_SECONDS",
    # Sockets
    "UNIX_SOCKET_PATH_MAX",
    "WORKER_LISTEN_BACKLOG",
    "LOOPBACK_HOST",
    # Paths
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_LOG_DIR",
    "DEFAULT_SOCKET_DIR",
]

import tempfile

from platformdirs import user_config_dir, user_log_dir

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for logger names and directory names
APP_NAME: str = "appspawn"

# ============================================================================
# Channel
# ============================================================================

# Descriptor number the parent process passes the control channel on
DEFAULT_CHANNEL_FD: int = 3

# Bytes requested per recvmsg() call
CHANNEL_READ_CHUNK_BYTES: int = 4096

# Most descriptors accepted from a single recvmsg() call
CHANNEL_MAX_DESCRIPTORS: int = 4

# Upper bound on a single framed message (bytes, excluding newline)
MAX_MESSAGE_BYTES: int = 64 * 1024

# ============================================================================
# Commands and Status Tokens
# ============================================================================

SPAWN_COMMAND: str = "spawn_application"
RELOAD_COMMAND: str = "reload"

STATUS_OK: str = "ok"
STATUS_ERROR: str = "error"

# Single-field message carrying a descriptor as ancillary data
DESCRIPTOR_MARKER: str = "io"

# ============================================================================
# Spawn Timeouts
# ============================================================================

# Used when a request carries a timeout of 0
DEFAULT_FRAMEWORK_TIMEOUT_SECONDS: float = 60.0
DEFAULT_APP_TIMEOUT_SECONDS: float = 60.0

# How long to wait for a killed child before giving up on reaping it
WORKER_REAP_TIMEOUT_SECONDS: float = 5.0

# ============================================================================
# Sockets
# ============================================================================

# sun_path is 108 bytes on Linux including the terminating NUL
UNIX_SOCKET_PATH_MAX: int = 107

WORKER_LISTEN_BACKLOG: int = 128

LOOPBACK_HOST: str = "127.0.0.1"

# ============================================================================
# Paths
# ============================================================================

DEFAULT_LOG_DIR: str = user_log_dir(APP_NAME)

# Read by `appspawn serve` when no --config is given; optional
DEFAULT_CONFIG_DIR: str = user_config_dir(APP_NAME)

# Default directory for worker Unix sockets (world-writable so workers that
# dropped privileges can still bind there)
DEFAULT_SOCKET_DIR: str = tempfile.gettempdir()

"""Caller side of the spawn manager protocol.

Handles:
- Starting a spawn manager process on one end of a socketpair
- Sending spawn_application / reload commands
- Reading the ok/error response and receiving the diagnostic descriptor

Usage:
    with SpawnManagerClient.start_server() as client:
        result = client.spawn(SpawnRequest(app_root="/srv/app", app_type=AppType.WSGI))
        if isinstance(result, SpawnSuccess):
            ...  # connect to result.socket_path; read result.diagnostic_fd
"""

from __future__ import annotations

__all__ = [
    "ProtocolViolation",
    "SpawnManagerClient",
]

import socket
import subprocess
import sys
from pathlib import Path
from typing import Any

from appspawn.channel import MessageChannel
from appspawn.constants import RELOAD_COMMAND, SPAWN_COMMAND, STATUS_ERROR, STATUS_OK
from appspawn.exceptions import ChannelError
from appspawn.models import SpawnFailure, SpawnRequest, SpawnResult, SpawnSuccess

# How long close() waits for a manager we started to exit on its own (seconds)
SERVER_EXIT_TIMEOUT_SECONDS = 5.0


class ProtocolViolation(ChannelError):
    """The manager sent something the protocol does not allow."""


class SpawnManagerClient:
    """Talks to one spawn manager over a MessageChannel.

    Not thread-safe: requests are strictly serial.
    """

    def __init__(self, channel: MessageChannel, process: subprocess.Popen[bytes] | None = None) -> None:
        """Initialize the client.

        Args:
            channel: Channel connected to the manager.
            process: Manager process, if this client started it.
        """
        self._channel = channel
        self._process = process

    @classmethod
    def start_server(cls, config_path: Path | None = None) -> "SpawnManagerClient":
        """Start a spawn manager subprocess and connect to it.

        The manager receives its end of a socketpair as an inherited
        descriptor and serves until this client closes the channel.

        Args:
            config_path: Optional config file passed to ``appspawn serve``.

        Returns:
            Connected client owning the manager process.
        """
        ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
        argv = [sys.executable, "-m", "appspawn", "serve", "--fd", str(theirs.fileno())]
        if config_path is not None:
            argv += ["--config", str(config_path)]
        try:
            process = subprocess.Popen(argv, pass_fds=(theirs.fileno(),), stdin=subprocess.DEVNULL)  # noqa: S603
        except OSError:
            ours.close()
            raise
        finally:
            theirs.close()
        return cls(MessageChannel(ours), process)

    @property
    def pid(self) -> int | None:
        """Pid of the manager process, if this client started it."""
        return self._process.pid if self._process is not None else None

    def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Ask the manager to spawn a worker.

        The caller owns ``diagnostic_fd`` of a SpawnSuccess and must close it.

        Args:
            request: What to spawn.

        Returns:
            SpawnSuccess or SpawnFailure as reported by the manager.

        Raises:
            ChannelClosed: If the manager went away.
            ProtocolViolation: If the response is malformed.
        """
        self._channel.write_tuple(
            SPAWN_COMMAND,
            request.app_root,
            "true" if request.lower_privilege else "false",
            request.lowest_user,
            request.environment,
            request.spawn_method.value,
            request.app_type.value,
            request.framework_spawner_timeout,
            request.app_spawner_timeout,
        )
        return self.read_result()

    def reload(self, app_root: str | None = None) -> None:
        """Ask the manager to drop cached framework pre-loads."""
        args: list[Any] = [RELOAD_COMMAND]
        if app_root is not None:
            args.append(app_root)
        self._channel.write_tuple(*args)
        status = self._channel.read_fields()
        if status == [STATUS_ERROR]:
            kind, message = self._read_error()
            raise ProtocolViolation(f"reload rejected: {kind}: {message}")
        if status != [STATUS_OK]:
            raise ProtocolViolation(f"Unexpected status: {status!r}")

    def read_result(self) -> SpawnResult:
        """Read one spawn response from the channel."""
        status = self._channel.read_fields()
        if status == [STATUS_ERROR]:
            kind, message = self._read_error()
            return SpawnFailure(error_kind=kind, message=message)
        if status != [STATUS_OK]:
            raise ProtocolViolation(f"Unexpected status: {status!r}")

        payload = self._channel.read_fields()
        if len(payload) != 3 or not isinstance(payload[0], int) or not isinstance(payload[2], bool):
            raise ProtocolViolation(f"Malformed success payload: {payload!r}")
        fd = self._channel.receive_descriptor()
        return SpawnSuccess(
            pid=payload[0],
            socket_path=str(payload[1]),
            socket_is_unix=payload[2],
            diagnostic_fd=fd,
        )

    def _read_error(self) -> tuple[str, str]:
        payload = self._channel.read_fields()
        if len(payload) != 2:
            raise ProtocolViolation(f"Malformed error payload: {payload!r}")
        return str(payload[0]), str(payload[1])

    def close(self) -> None:
        """Close the channel; the manager sees EOF and exits.

        A manager started by this client is waited for, then killed if it
        does not exit in time.
        """
        self._channel.close()
        if self._process is None:
            return
        try:
            self._process.wait(timeout=SERVER_EXIT_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()

    def __enter__(self) -> "SpawnManagerClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

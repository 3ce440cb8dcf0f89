"""Spawn manager: owns the control channel and serves requests one at a time.

State machine:

    idle --read--> decoding --valid--> spawning --> responding --> idle
                   decoding --invalid-----------> responding --> idle
    any state --channel closed / I/O error--> stopped

Every request gets exactly one response before the next one is read. A
request-local failure becomes an "error" response; a channel failure stops
the loop. cleanup() releases the channel and is safe to call repeatedly.

Typical process entry:

    manager = SpawnManager()
    manager.start_synchronously(3)   # pre-opened channel descriptor
    manager.cleanup()
"""

from __future__ import annotations

__all__ = [
    "SpawnManager",
]

import logging
import os
import socket
from typing import Any

from appspawn.channel import MessageChannel
from appspawn.config import SpawnServerConfig
from appspawn.constants import RELOAD_COMMAND
from appspawn.decoder import decode_command, decode_request
from appspawn.encoder import encode_ack, encode_response, release_descriptor
from appspawn.exceptions import AppLaunchFailed, ChannelClosed, ChannelError, MalformedRequest, SpawnError
from appspawn.log_config import log_event
from appspawn.models import SpawnFailure, SpawnManagerState, SpawnRequest, SpawnResult, SpawnSystemEvent
from appspawn.spawner import ProcessSpawner, WorkerSpawner


class SpawnManager:
    """Long-lived owner of the control channel.

    Args:
        spawner: Worker spawner. Defaults to a ProcessSpawner built from config.
        config: Server configuration.
    """

    def __init__(
        self,
        spawner: WorkerSpawner | None = None,
        config: SpawnServerConfig | None = None,
    ) -> None:
        self._config = config or SpawnServerConfig()
        self._spawner: WorkerSpawner = spawner if spawner is not None else ProcessSpawner(self._config)
        self._channel: MessageChannel | None = None
        self._state = SpawnManagerState.IDLE
        self._requests_served = 0

    @property
    def state(self) -> SpawnManagerState:
        """Current serve loop state."""
        return self._state

    @property
    def requests_served(self) -> int:
        """Number of requests answered so far."""
        return self._requests_served

    @property
    def client(self) -> MessageChannel:
        """The control channel being served.

        Raises:
            ChannelClosed: If the manager is not serving a channel.
        """
        if self._channel is None or self._channel.closed:
            raise ChannelClosed("Manager has no open channel")
        return self._channel

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_synchronously(self, channel: MessageChannel | socket.socket | int) -> None:
        """Serve requests on the channel until the peer closes it.

        Blocks the calling thread. Returns normally when the channel reaches
        EOF or fails; in both cases the state is ``stopped`` and cleanup()
        should follow.

        Args:
            channel: A MessageChannel, a connected Unix stream socket, or the
                number of an inherited socket descriptor.

        Raises:
            ChannelError: If ``channel`` is a descriptor that is not a socket.
        """
        self._channel = _as_channel(channel)
        log_event(
            logging.INFO,
            SpawnSystemEvent(
                event="manager_started",
                message=f"Spawn manager serving on descriptor {self._channel.fileno()} (pid {os.getpid()})",
                details={"fd": self._channel.fileno(), "pid": os.getpid()},
            ),
        )
        try:
            self._serve(self._channel)
        except ChannelError as e:
            log_event(
                logging.ERROR,
                SpawnSystemEvent(
                    event="channel_failed",
                    message=f"Control channel failed, stopping: {e}",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"requests_served": self._requests_served},
                ),
            )
        finally:
            self._state = SpawnManagerState.STOPPED

    def cleanup(self) -> None:
        """Release the channel and reap finished workers.

        Safe to call more than once; the channel is closed exactly once.
        """
        channel, self._channel = self._channel, None
        if channel is not None and not channel.closed:
            channel.close()
            log_event(
                logging.INFO,
                SpawnSystemEvent(
                    event="manager_stopped",
                    message="Spawn manager stopped",
                    details={"requests_served": self._requests_served},
                ),
            )
        close = getattr(self._spawner, "close", None)
        if callable(close):
            close()
        self._state = SpawnManagerState.STOPPED

    # -------------------------------------------------------------------------
    # Serve loop
    # -------------------------------------------------------------------------

    def _serve(self, channel: MessageChannel) -> None:
        while True:
            self._state = SpawnManagerState.IDLE
            self._reap()

            line = channel.read_message()
            if line is None:
                log_event(
                    logging.INFO,
                    SpawnSystemEvent(
                        event="channel_closed",
                        message="Caller closed the control channel",
                    ),
                )
                return

            self._state = SpawnManagerState.DECODING
            try:
                command, args = decode_command(line)
                if command == RELOAD_COMMAND:
                    self.handle_reload(args)
                    continue
                request = decode_request(args)
            except SpawnError as e:
                log_event(
                    logging.WARNING,
                    SpawnSystemEvent(
                        event="request_rejected",
                        message=f"Rejected request: {e.kind}: {e.message}",
                        error_type=e.kind,
                        error_message=e.message,
                    ),
                )
                self._respond(SpawnFailure.from_error(e))
                continue

            self.handle_spawn_application(request)

    def handle_spawn_application(self, request: SpawnRequest) -> None:
        """Spawn a worker for one request and answer it.

        Args:
            request: Validated spawn request.
        """
        self._state = SpawnManagerState.SPAWNING
        try:
            result = self._spawner.spawn(request)
        except SpawnError as e:
            result = SpawnFailure.from_error(e)
        except Exception as e:  # noqa: BLE001 - one bad request must not stop the loop
            log_event(
                logging.ERROR,
                SpawnSystemEvent(
                    event="spawn_crashed",
                    message=f"Spawner raised while spawning {request.app_root}: {type(e).__name__}: {e}",
                    app_root=request.app_root,
                    app_type=request.app_type.value,
                    spawn_method=request.spawn_method.value,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
            result = SpawnFailure.from_error(AppLaunchFailed(f"{type(e).__name__}: {e}"))
        self._respond(result)

    def handle_reload(self, args: list[Any]) -> None:
        """Drop cached framework pre-loads (all, or for one app root) and acknowledge.

        Args:
            args: Empty, or [app_root].
        """
        if len(args) > 1 or (args and not isinstance(args[0], str)):
            raise MalformedRequest("reload takes at most one app_root string")
        app_root = args[0] if args else None

        reload = getattr(self._spawner, "reload", None)
        dropped = reload(app_root) if callable(reload) else 0
        log_event(
            logging.INFO,
            SpawnSystemEvent(
                event="spawners_reloaded",
                message=f"Reloaded {dropped} cached framework(s)",
                app_root=app_root,
            ),
        )
        self._state = SpawnManagerState.RESPONDING
        encode_ack(self.client)
        self._requests_served += 1

    def _respond(self, result: SpawnResult) -> None:
        self._state = SpawnManagerState.RESPONDING
        try:
            channel = self.client
        except ChannelClosed:
            release_descriptor(result)
            raise
        encode_response(result, channel)
        self._requests_served += 1

    def _reap(self) -> None:
        reap = getattr(self._spawner, "reap", None)
        if callable(reap):
            reap()


def _as_channel(channel: MessageChannel | socket.socket | int) -> MessageChannel:
    if isinstance(channel, MessageChannel):
        return channel
    if isinstance(channel, socket.socket):
        return MessageChannel(channel)
    return MessageChannel.from_fd(channel)

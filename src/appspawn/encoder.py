"""Serialize spawn results onto the control channel.

Success: ["ok"], then [pid, socket_path, socket_is_unix], then the worker's
stderr descriptor. Failure: ["error"], then [kind, message]; no descriptor.
"""

from __future__ import annotations

__all__ = [
    "encode_ack",
    "encode_response",
    "release_descriptor",
]

import os

from appspawn.channel import MessageChannel
from appspawn.constants import STATUS_ERROR, STATUS_OK
from appspawn.models import SpawnFailure, SpawnResult, SpawnSuccess


def encode_response(result: SpawnResult, channel: MessageChannel) -> None:
    """Write one spawn result to the caller.

    The manager's copy of the diagnostic descriptor is closed afterwards
    whether or not transmission succeeded; the caller on the other end owns
    the copy it received.

    Args:
        result: Result of exactly one spawn request.
        channel: Control channel to write to.

    Raises:
        ChannelClosed: If the caller went away.
        ChannelError: On other channel I/O errors.
    """
    if isinstance(result, SpawnFailure):
        channel.write_text(STATUS_ERROR)
        channel.write_tuple(result.error_kind, result.message)
        return

    try:
        channel.write_text(STATUS_OK)
        channel.write_tuple(result.pid, result.socket_path, result.socket_is_unix)
        channel.send_descriptor(result.diagnostic_fd)
    finally:
        release_descriptor(result)


def release_descriptor(result: SpawnResult) -> None:
    """Close the diagnostic descriptor held by a success result, if any."""
    if isinstance(result, SpawnSuccess):
        try:
            os.close(result.diagnostic_fd)
        except OSError:
            pass  # Already closed


def encode_ack(channel: MessageChannel) -> None:
    """Acknowledge a command that produces no result payload (e.g. reload)."""
    channel.write_text(STATUS_OK)

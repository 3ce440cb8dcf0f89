"""Control channel transport over a Unix-domain stream socket.

The channel carries NDJSON messages (see protocol.py) plus open file
descriptors passed as SCM_RIGHTS ancillary data. A descriptor always rides
on a one-field marker message (``["io"]``) so the receiver can associate it
with the response that precedes it.

All reads go through recvmsg(), never plain recv(): any descriptor that
arrives while the line buffer is being filled is queued instead of being
silently closed by the kernel.
"""

from __future__ import annotations

__all__ = [
    "MessageChannel",
]

import os
import socket
from collections import deque
from typing import Any

from appspawn.constants import (
    CHANNEL_MAX_DESCRIPTORS,
    CHANNEL_READ_CHUNK_BYTES,
    DESCRIPTOR_MARKER,
    MAX_MESSAGE_BYTES,
)
from appspawn.exceptions import ChannelClosed, ChannelError
from appspawn.protocol import decode_ndjson, encode_ndjson


class MessageChannel:
    """Duplex message + descriptor channel.

    Not thread-safe: one owner reads and writes it serially.

    Attributes:
        closed: Whether close() has been called.
    """

    def __init__(self, sock: socket.socket) -> None:
        """Wrap a connected Unix-domain stream socket.

        Args:
            sock: Connected socket. The channel takes ownership of it.
        """
        self._sock = sock
        self._buffer = bytearray()
        self._descriptors: deque[int] = deque()
        self._closed = False

    @classmethod
    def from_fd(cls, fd: int) -> "MessageChannel":
        """Create a channel from a pre-opened socket descriptor.

        Args:
            fd: Descriptor number inherited from the parent process.

        Returns:
            MessageChannel owning the descriptor.

        Raises:
            ChannelError: If the descriptor is not an open socket.
        """
        try:
            sock = socket.socket(fileno=fd)
        except OSError as e:
            raise ChannelError(f"Descriptor {fd} is not a usable socket: {e}") from e
        return cls(sock)

    @property
    def closed(self) -> bool:
        """Whether the channel has been closed."""
        return self._closed

    def fileno(self) -> int:
        """Return the underlying socket descriptor."""
        return self._sock.fileno()

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read_message(self) -> bytes | None:
        """Read the next framed message.

        Returns:
            Raw message line without the trailing newline, or None when the
            peer closed the channel between messages.

        Raises:
            ChannelClosed: If the peer closed the channel mid-message.
            ChannelError: On I/O errors or oversized messages.
        """
        self._ensure_open()
        while True:
            idx = self._buffer.find(b"\n")
            if idx >= 0:
                line = bytes(self._buffer[:idx])
                del self._buffer[: idx + 1]
                return line
            if len(self._buffer) > MAX_MESSAGE_BYTES:
                raise ChannelError(f"Message exceeds {MAX_MESSAGE_BYTES} bytes")
            if not self._fill():
                if self._buffer:
                    raise ChannelClosed("Peer closed the channel mid-message")
                return None

    def read_fields(self) -> list[Any]:
        """Read and decode the next message.

        Returns:
            Decoded message fields.

        Raises:
            ChannelClosed: If the peer closed the channel.
            ChannelError: If the message is not a JSON array.
        """
        line = self.read_message()
        if line is None:
            raise ChannelClosed("Peer closed the channel")
        fields = decode_ndjson(line)
        if fields is None:
            raise ChannelError(f"Undecodable message: {line[:80]!r}")
        return fields

    def receive_descriptor(self) -> int:
        """Receive a descriptor sent with send_descriptor().

        The caller owns the returned descriptor and must close it.

        Returns:
            The received file descriptor.

        Raises:
            ChannelError: If the next message is not a descriptor marker or
                no descriptor accompanied it.
        """
        fields = self.read_fields()
        if fields != [DESCRIPTOR_MARKER]:
            raise ChannelError(f"Expected descriptor marker, got: {fields!r}")
        if not self._descriptors:
            raise ChannelError("Descriptor marker arrived without a descriptor")
        return self._descriptors.popleft()

    def _fill(self) -> bool:
        """Read one chunk into the buffer, queueing any passed descriptors.

        Returns:
            False on EOF, True otherwise.
        """
        try:
            data, fds, _flags, _addr = socket.recv_fds(
                self._sock, CHANNEL_READ_CHUNK_BYTES, CHANNEL_MAX_DESCRIPTORS
            )
        except ConnectionResetError as e:
            raise ChannelClosed(f"Channel reset by peer: {e}") from e
        except OSError as e:
            raise ChannelError(f"Channel read failed: {e}") from e
        self._descriptors.extend(fds)
        if not data:
            return False
        self._buffer += data
        return True

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def write_text(self, token: str) -> None:
        """Write a one-field message such as a status token.

        Args:
            token: Text to send, e.g. "ok".
        """
        self._send(encode_ndjson([token]))

    def write_tuple(self, *fields: Any) -> None:
        """Write a structured multi-field message.

        Args:
            *fields: JSON-serializable fields, e.g. (1234, "/tmp/a.sock", True).
        """
        self._send(encode_ndjson(fields))

    def send_descriptor(self, fd: int) -> None:
        """Pass an open descriptor to the peer.

        The local copy stays open; the caller decides when to close it.

        Args:
            fd: Descriptor to transmit.
        """
        self._send(encode_ndjson([DESCRIPTOR_MARKER]), fds=(fd,))

    def _send(self, data: bytes, fds: tuple[int, ...] = ()) -> None:
        """Send bytes, attaching descriptors to the first byte if given."""
        self._ensure_open()
        try:
            if fds:
                sent = socket.send_fds(self._sock, [data], list(fds))
                if sent < len(data):
                    self._sock.sendall(data[sent:])
            else:
                self._sock.sendall(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ChannelClosed(f"Peer closed the channel: {e}") from e
        except OSError as e:
            raise ChannelError(f"Channel write failed: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ChannelClosed("Channel is closed")

    def close(self) -> None:
        """Close the channel and any received descriptors nobody claimed.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        while self._descriptors:
            fd = self._descriptors.popleft()
            try:
                os.close(fd)
            except OSError:
                pass  # Already closed by the peer's owner
        self._sock.close()

    def __enter__(self) -> "MessageChannel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

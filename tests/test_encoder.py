"""Tests for response encoding.

Tests the exact message sequence for success and failure results and that
the manager's copy of the diagnostic descriptor is always released.
"""

from __future__ import annotations

import os

import pytest

from appspawn.channel import MessageChannel
from appspawn.encoder import encode_ack, encode_response, release_descriptor
from appspawn.exceptions import ChannelClosed, SpawnTimeout
from appspawn.models import SpawnFailure, SpawnSuccess


def _is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


class TestEncodeResponse:
    """Tests for encode_response()."""

    def test_success_sequence(self, channel_pair: tuple[MessageChannel, MessageChannel]) -> None:
        """Success writes ok, the tuple, then the descriptor."""
        manager, caller = channel_pair
        r, w = os.pipe()
        result = SpawnSuccess(pid=1234, socket_path="/tmp/nonexistant.socket", socket_is_unix=False, diagnostic_fd=r)

        encode_response(result, manager)

        assert caller.read_fields() == ["ok"]
        assert caller.read_fields() == [1234, "/tmp/nonexistant.socket", False]
        received = caller.receive_descriptor()
        os.write(w, b"boot log")
        assert os.read(received, 64) == b"boot log"
        os.close(received)
        os.close(w)

    def test_success_closes_manager_copy(self, channel_pair: tuple[MessageChannel, MessageChannel]) -> None:
        """The manager's descriptor is closed after sending."""
        manager, caller = channel_pair
        r, w = os.pipe()
        encode_response(SpawnSuccess(pid=1, socket_path="/tmp/a", socket_is_unix=True, diagnostic_fd=r), manager)

        assert not _is_open(r)
        caller.read_fields()
        caller.read_fields()
        os.close(caller.receive_descriptor())
        os.close(w)

    def test_failure_sequence(self, channel_pair: tuple[MessageChannel, MessageChannel]) -> None:
        """Failure writes error, then (kind, message), and no descriptor."""
        manager, caller = channel_pair

        encode_response(SpawnFailure.from_error(SpawnTimeout("framework")), manager)
        manager.close()

        assert caller.read_fields() == ["error"]
        assert caller.read_fields() == ["SpawnTimeout", "stage=framework"]
        assert caller.read_message() is None

    def test_closed_channel_still_releases_descriptor(
        self, channel_pair: tuple[MessageChannel, MessageChannel]
    ) -> None:
        """A failed send does not leak the descriptor."""
        manager, _caller = channel_pair
        r, w = os.pipe()
        manager.close()

        with pytest.raises(ChannelClosed):
            encode_response(SpawnSuccess(pid=1, socket_path="/tmp/a", socket_is_unix=True, diagnostic_fd=r), manager)

        with pytest.raises(BrokenPipeError):
            os.write(w, b"x")
        os.close(w)


class TestReleaseDescriptor:
    """Tests for release_descriptor()."""

    def test_ignores_failures(self) -> None:
        """Failure results hold no descriptor."""
        release_descriptor(SpawnFailure(error_kind="AppLaunchFailed", message="boom"))

    def test_tolerates_already_closed(self) -> None:
        """Releasing twice does not raise."""
        r, w = os.pipe()
        os.close(w)
        result = SpawnSuccess(pid=1, socket_path="/tmp/a", socket_is_unix=True, diagnostic_fd=r)
        release_descriptor(result)
        release_descriptor(result)


class TestEncodeAck:
    """Tests for encode_ack()."""

    def test_writes_ok(self, channel_pair: tuple[MessageChannel, MessageChannel]) -> None:
        """Acknowledgement is a bare ok."""
        manager, caller = channel_pair
        encode_ack(manager)
        assert caller.read_fields() == ["ok"]

"""Shared fixtures for appspawn tests.

Provides connected channel pairs, short socket directories, tiny WSGI
applications on disk, and cleanup of any worker processes a test spawns.
"""

from __future__ import annotations

import os
import shutil
import signal
import socket
import tempfile
import textwrap
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from appspawn.channel import MessageChannel
from appspawn.config import SpawnServerConfig

SRC_DIR = Path(__file__).resolve().parent.parent / "src"

HELLO_APP = """
def application(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello from " + environ.get("WSGI_ENV", "?").encode()]
"""


@pytest.fixture
def channel_pair() -> Iterator[tuple[MessageChannel, MessageChannel]]:
    """Two connected channels: (manager side, caller side)."""
    manager_sock, caller_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    manager_side = MessageChannel(manager_sock)
    caller_side = MessageChannel(caller_sock)
    yield manager_side, caller_side
    manager_side.close()
    caller_side.close()


@pytest.fixture
def socket_dir() -> Iterator[Path]:
    """Short directory for worker sockets (pytest tmp_path is too long for AF_UNIX)."""
    path = Path(tempfile.mkdtemp(prefix="as_", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def spawn_config(socket_dir: Path, tmp_path: Path) -> SpawnServerConfig:
    """Config with short default timeouts and isolated directories."""
    return SpawnServerConfig(
        socket_dir=str(socket_dir),
        default_framework_timeout=10,
        default_app_timeout=10,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def make_wsgi_app(tmp_path: Path) -> Callable[[str], Path]:
    """Factory writing a passenger_wsgi.py app root and returning its path."""
    counter = iter(range(1000))

    def _make(source: str = HELLO_APP) -> Path:
        root = tmp_path / f"app{next(counter)}"
        root.mkdir()
        (root / "passenger_wsgi.py").write_text(textwrap.dedent(source))
        return root

    return _make


@pytest.fixture
def worker_pids() -> Iterator[list[int]]:
    """Collect worker pids; any still alive are killed after the test."""
    pids: list[int] = []
    yield pids
    for pid in pids:
        try:
            os.killpg(pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                continue
        try:
            os.waitpid(pid, 0)
        except ChildProcessError:
            pass


@pytest.fixture
def importable_src(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make the package importable in fresh interpreters started by tests."""
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(filter(None, [str(SRC_DIR), existing])))


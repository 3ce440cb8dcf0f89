"""Worker child entry point.

Runs inside the freshly forked (or exec'd) worker and reports progress to
the manager over a readiness pipe, one NDJSON message per line:

    ["framework"]                      framework stage finished
    ["ready", socket_path, is_unix]    listening; app stage finished
    ["error", kind, message]           request-local failure

After "ready" the pipe is closed and the worker serves until terminated.
Anything the worker writes to stdout/stderr goes to the diagnostic stream
the manager hands to the caller.
"""

from __future__ import annotations

__all__ = [
    "ReadinessReporter",
    "bind_listener",
    "run_worker",
]

import logging
import os
import secrets
import socket
from pathlib import Path
from typing import Any

from appspawn.constants import APP_NAME, LOOPBACK_HOST, UNIX_SOCKET_PATH_MAX, WORKER_LISTEN_BACKLOG
from appspawn.environment import EnvironmentConfigurator
from appspawn.exceptions import SocketBindFailed, SpawnError
from appspawn.loaders import AppLoader
from appspawn.models import Identity, SpawnRequest
from appspawn.privileges import drop_privileges
from appspawn.protocol import encode_ndjson

_logger = logging.getLogger(f"{APP_NAME}.worker")


class ReadinessReporter:
    """Writes stage reports to the manager's readiness pipe."""

    def __init__(self, fd: int) -> None:
        self._fd: int | None = fd

    def report(self, *fields: Any) -> None:
        """Send one report; silently dropped once the pipe is closed."""
        if self._fd is None:
            return
        data = encode_ndjson(fields)
        try:
            while data:
                written = os.write(self._fd, data)
                data = data[written:]
        except BrokenPipeError:
            # Manager gave up on us (timeout); it is about to kill this process
            self.close()

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None


def bind_listener(socket_dir: str | Path) -> tuple[socket.socket, str, bool]:
    """Bind a listening socket for the worker.

    A Unix-domain socket in ``socket_dir`` is preferred. If that fails (path
    too long, directory missing or not writable), a loopback TCP socket on
    an ephemeral port is used instead.

    Args:
        socket_dir: Directory for the Unix socket file.

    Returns:
        (listening socket, address, is_unix). For TCP the address is
        "host:port".

    Raises:
        SocketBindFailed: If neither socket could be bound.
    """
    path = Path(socket_dir) / f"{APP_NAME}.{os.getpid()}.{secrets.token_hex(4)}.sock"
    unix_error: str = "Unix-domain sockets unavailable"
    if hasattr(socket, "AF_UNIX") and len(os.fsencode(path)) <= UNIX_SOCKET_PATH_MAX:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(path))
            sock.listen(WORKER_LISTEN_BACKLOG)
            return sock, str(path), True
        except OSError as e:
            sock.close()
            unix_error = str(e)
    elif hasattr(socket, "AF_UNIX"):
        unix_error = f"socket path too long: {path}"

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((LOOPBACK_HOST, 0))
        sock.listen(WORKER_LISTEN_BACKLOG)
    except OSError as e:
        sock.close()
        raise SocketBindFailed(f"unix: {unix_error}; tcp: {e}") from e
    host, port = sock.getsockname()[:2]
    _logger.info("Unix socket unavailable (%s), listening on %s:%s", unix_error, host, port)
    return sock, f"{host}:{port}", False


def run_worker(
    request: SpawnRequest,
    identity: Identity | None,
    loader: AppLoader,
    socket_dir: str | Path,
    report_fd: int,
) -> int:
    """Bring a worker up and serve.

    Order: drop privileges, apply environment, framework stage, app stage,
    bind, report readiness, serve.

    Args:
        request: The spawn request being served.
        identity: Identity to switch to, or None to keep the current one.
        loader: Loader for the request's application type.
        socket_dir: Directory for the worker's Unix socket.
        report_fd: Write end of the readiness pipe.

    Returns:
        Process exit status.
    """
    reporter = ReadinessReporter(report_fd)
    app_root = Path(request.app_root)
    listener: socket.socket | None = None
    address = ""
    try:
        if identity is not None:
            drop_privileges(identity)
        EnvironmentConfigurator().apply(request.environment, request.app_root)

        loader.prepare(app_root)
        reporter.report("framework")

        application = loader.load(app_root)
        listener, address, is_unix = bind_listener(socket_dir)
        reporter.report("ready", address, is_unix)
        reporter.close()
    except SpawnError as e:
        reporter.report("error", e.kind, e.message)
        reporter.close()
        if listener is not None:
            listener.close()
        return 1

    try:
        loader.serve(application, listener)
    finally:
        listener.close()
        if is_unix:
            Path(address).unlink(missing_ok=True)
    return 0

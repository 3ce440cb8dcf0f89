"""Tests for WSGI serving on pre-bound listeners."""

from __future__ import annotations

import socket
import threading
from pathlib import Path
from typing import Any

from appspawn.worker.server import WorkerWSGIServer


def _app(environ: dict[str, Any], start_response: Any) -> list[bytes]:
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [environ["PATH_INFO"].encode()]


def _get(sock: socket.socket, path: str) -> bytes:
    with sock:
        sock.sendall(f"GET {path} HTTP/1.0\r\nHost: localhost\r\n\r\n".encode())
        chunks = []
        while chunk := sock.recv(4096):
            chunks.append(chunk)
    return b"".join(chunks)


class TestWorkerWSGIServer:
    """Tests for WorkerWSGIServer."""

    def test_serves_on_unix_listener(self, socket_dir: Path) -> None:
        """A Unix-domain listener is served like a TCP one."""
        path = str(socket_dir / "w.sock")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(path)
        listener.listen(1)
        server = WorkerWSGIServer(listener)
        server.set_app(_app)
        thread = threading.Thread(target=server.handle_request, daemon=True)
        thread.start()

        client = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        client.settimeout(5)
        client.connect(path)
        response = _get(client, "/unix")

        thread.join(timeout=5)
        server.server_close()
        assert b"200 OK" in response
        assert response.endswith(b"/unix")

    def test_serves_on_tcp_listener(self) -> None:
        """A loopback TCP listener keeps its real name and port."""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        server = WorkerWSGIServer(listener)
        server.set_app(_app)
        thread = threading.Thread(target=server.handle_request, daemon=True)
        thread.start()

        response = _get(socket.create_connection(("127.0.0.1", port), timeout=5), "/tcp")

        thread.join(timeout=5)
        server.server_close()
        assert server.server_port == port
        assert response.endswith(b"/tcp")

"""WSGI serving on a socket the worker bound itself.

wsgiref's server assumes it binds an AF_INET address. Workers instead hand
over an already listening socket, which may be Unix-domain, so the server
is built unbound and the listener swapped in.
"""

from __future__ import annotations

__all__ = [
    "WorkerRequestHandler",
    "WorkerWSGIServer",
    "serve_wsgi",
]

import socket
from typing import Any, Callable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer


class WorkerRequestHandler(WSGIRequestHandler):
    """Request handler tolerating Unix-domain peers, which have no address."""

    def __init__(self, request: Any, client_address: Any, server: Any) -> None:
        if not isinstance(client_address, tuple) or not client_address:
            client_address = ("127.0.0.1", 0)
        super().__init__(request, client_address, server)


class WorkerWSGIServer(WSGIServer):
    """WSGIServer serving on a pre-bound listener of any address family."""

    def __init__(self, listener: socket.socket) -> None:
        super().__init__(("127.0.0.1", 0), WorkerRequestHandler, bind_and_activate=False)
        self.socket.close()
        self.socket = listener
        self.address_family = listener.family
        self.server_address = listener.getsockname()
        if listener.family == socket.AF_INET:
            self.server_name, self.server_port = self.server_address[:2]
        else:
            self.server_name, self.server_port = "localhost", 80
        self.setup_environ()


def serve_wsgi(application: Callable[..., Any], listener: socket.socket) -> None:
    """Serve a WSGI application until the worker is terminated.

    Args:
        application: WSGI callable.
        listener: Bound, listening socket.
    """
    server = WorkerWSGIServer(listener)
    server.set_app(application)
    try:
        server.serve_forever()
    finally:
        server.server_close()

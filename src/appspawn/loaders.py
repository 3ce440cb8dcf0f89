"""Application loaders: how a worker turns an app root into something to serve.

A loader runs in two stages inside the worker child, each bounded by its
own timeout in the manager:

- prepare(): framework stage; validate the app and load framework code
- load(): app stage; import the application entry point

preload() runs in the manager itself, once per app, before forking workers
with the smart spawn method.

Only WSGI applications have a built-in loader. Rails and Rack are
recognized application types (their startup files drive privilege
resolution), but spawning them requires registering a loader.
"""

from __future__ import annotations

__all__ = [
    "STARTUP_FILES",
    "AppLoader",
    "WsgiLoader",
    "default_loaders",
    "import_loader",
    "loader_import_path",
    "startup_file_for",
]

import importlib
import importlib.util
import os
import socket
import sys
from pathlib import Path
from typing import Any, Callable

from appspawn.exceptions import AppLaunchFailed
from appspawn.models import AppType

# File whose presence identifies an app root (and whose owner the worker
# switches to when lowering privileges)
STARTUP_FILES: dict[AppType, str] = {
    AppType.RAILS: "config/environment.rb",
    AppType.RACK: "config.ru",
    AppType.WSGI: "passenger_wsgi.py",
}


def startup_file_for(app_root: str | Path, app_type: AppType) -> Path:
    """Return the startup file path for an application."""
    return Path(app_root) / STARTUP_FILES[app_type]


class AppLoader:
    """Base class for application loaders.

    Subclasses must be constructible without arguments: the conservative
    spawn method re-creates the loader in a fresh interpreter from its
    import path.
    """

    app_type: AppType

    def preload(self, app_root: Path) -> None:
        """Load framework code into the manager before forking (smart spawning)."""

    def prepare(self, app_root: Path) -> None:
        """Framework stage, run in the worker child.

        Raises:
            AppLaunchFailed: If the application cannot be prepared.
        """
        startup_file = startup_file_for(app_root, self.app_type)
        if not startup_file.is_file():
            raise AppLaunchFailed(f"Startup file not found: {startup_file}")
        try:
            os.chdir(app_root)
        except OSError as e:
            raise AppLaunchFailed(f"Cannot enter application root {app_root}: {e}") from e

    def load(self, app_root: Path) -> Any:
        """App stage, run in the worker child. Returns the application object."""
        raise NotImplementedError

    def serve(self, application: Any, listener: socket.socket) -> None:
        """Serve the application on an already bound and listening socket."""
        raise NotImplementedError


class WsgiLoader(AppLoader):
    """Loads ``passenger_wsgi.py`` and serves its ``application`` callable."""

    app_type = AppType.WSGI

    # Serving stack imported ahead of the fork by smart spawning
    FRAMEWORK_MODULES: tuple[str, ...] = ("wsgiref.simple_server", "appspawn.worker.server")

    def preload(self, app_root: Path) -> None:
        for name in self.FRAMEWORK_MODULES:
            importlib.import_module(name)

    def prepare(self, app_root: Path) -> None:
        super().prepare(app_root)
        for name in self.FRAMEWORK_MODULES:
            importlib.import_module(name)
        root = str(app_root)
        if root not in sys.path:
            sys.path.insert(0, root)

    def load(self, app_root: Path) -> Callable[..., Any]:
        """Import the startup file and return its WSGI callable.

        Raises:
            AppLaunchFailed: If the module fails to import or defines no
                callable ``application``.
        """
        startup_file = startup_file_for(app_root, self.app_type)
        spec = importlib.util.spec_from_file_location("passenger_wsgi", startup_file)
        if spec is None or spec.loader is None:
            raise AppLaunchFailed(f"Cannot import {startup_file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules["passenger_wsgi"] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:  # noqa: BLE001 - application code may raise anything
            raise AppLaunchFailed(f"Error loading {startup_file}: {type(e).__name__}: {e}") from e

        application = getattr(module, "application", None)
        if not callable(application):
            raise AppLaunchFailed(f"{startup_file} does not define a callable 'application'")
        return application

    def serve(self, application: Any, listener: socket.socket) -> None:
        from appspawn.worker.server import serve_wsgi

        serve_wsgi(application, listener)


def default_loaders() -> dict[AppType, AppLoader]:
    """Return the built-in loader registry."""
    return {AppType.WSGI: WsgiLoader()}


def loader_import_path(loader: AppLoader) -> str:
    """Return the "module:QualName" path a fresh interpreter can import."""
    cls = type(loader)
    return f"{cls.__module__}:{cls.__qualname__}"


def import_loader(path: str) -> AppLoader:
    """Instantiate a loader from its "module:QualName" import path.

    Raises:
        AppLaunchFailed: If the path does not name an AppLoader subclass.
    """
    module_name, _, qualname = path.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise AppLaunchFailed(f"Cannot import loader {path}: {e}") from e
    if not (isinstance(obj, type) and issubclass(obj, AppLoader)):
        raise AppLaunchFailed(f"{path} is not an application loader")
    return obj()

"""Tests for application loaders.

Tests startup file lookup, the WSGI loader's two stages, and loader import
paths used by the conservative spawn method.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from appspawn.exceptions import AppLaunchFailed
from appspawn.loaders import (
    AppLoader,
    WsgiLoader,
    default_loaders,
    import_loader,
    loader_import_path,
    startup_file_for,
)
from appspawn.models import AppType


@pytest.fixture(autouse=True)
def _isolate_imports(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Loaders change cwd, sys.path and sys.modules; restore them."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "path", list(sys.path))
    monkeypatch.delitem(sys.modules, "passenger_wsgi", raising=False)


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root


class TestStartupFiles:
    """Tests for startup_file_for()."""

    @pytest.mark.parametrize(
        "app_type,relative",
        [
            (AppType.RAILS, "config/environment.rb"),
            (AppType.RACK, "config.ru"),
            (AppType.WSGI, "passenger_wsgi.py"),
        ],
    )
    def test_startup_file_per_type(self, app_type: AppType, relative: str) -> None:
        """Each app type has its own startup file under the app root."""
        assert startup_file_for("/srv/app", app_type) == Path("/srv/app") / relative


class TestWsgiLoader:
    """Tests for WsgiLoader."""

    def test_prepare_requires_startup_file(self, app_root: Path) -> None:
        """Without passenger_wsgi.py the framework stage fails."""
        with pytest.raises(AppLaunchFailed, match="Startup file not found"):
            WsgiLoader().prepare(app_root)

    def test_prepare_enters_app_root(self, app_root: Path) -> None:
        """The worker runs from the app root with it importable."""
        (app_root / "passenger_wsgi.py").write_text("application = None\n")

        WsgiLoader().prepare(app_root)

        assert Path(os.getcwd()).resolve() == app_root.resolve()
        assert str(app_root) in sys.path

    def test_load_returns_application(self, app_root: Path) -> None:
        """The application callable is returned from the startup file."""
        (app_root / "passenger_wsgi.py").write_text(
            "def application(environ, start_response):\n    return [b'hi']\n"
        )

        application = WsgiLoader().load(app_root)

        assert application({}, None) == [b"hi"]

    def test_load_can_import_sibling_modules(self, app_root: Path) -> None:
        """Modules next to the startup file are importable after prepare()."""
        (app_root / "helpers_for_load_test.py").write_text("GREETING = b'sibling'\n")
        (app_root / "passenger_wsgi.py").write_text(
            "from helpers_for_load_test import GREETING\n"
            "def application(environ, start_response):\n    return [GREETING]\n"
        )
        loader = WsgiLoader()

        loader.prepare(app_root)
        application = loader.load(app_root)

        assert application({}, None) == [b"sibling"]
        sys.modules.pop("helpers_for_load_test", None)

    def test_load_wraps_import_errors(self, app_root: Path) -> None:
        """Exceptions raised by application code become AppLaunchFailed."""
        (app_root / "passenger_wsgi.py").write_text("import does_not_exist_anywhere\n")

        with pytest.raises(AppLaunchFailed, match="ModuleNotFoundError"):
            WsgiLoader().load(app_root)

    def test_load_wraps_syntax_errors(self, app_root: Path) -> None:
        """A startup file that does not compile is AppLaunchFailed."""
        (app_root / "passenger_wsgi.py").write_text("def broken(:\n")

        with pytest.raises(AppLaunchFailed, match="SyntaxError"):
            WsgiLoader().load(app_root)

    def test_load_requires_callable(self, app_root: Path) -> None:
        """A non-callable application is rejected."""
        (app_root / "passenger_wsgi.py").write_text("application = 42\n")

        with pytest.raises(AppLaunchFailed, match="callable 'application'"):
            WsgiLoader().load(app_root)

    def test_preload_imports_serving_stack(self, app_root: Path) -> None:
        """Pre-loading makes the serving modules available before the fork."""
        WsgiLoader().preload(app_root)

        assert "appspawn.worker.server" in sys.modules


class TestLoaderRegistry:
    """Tests for default_loaders() and loader import paths."""

    def test_default_registry_has_wsgi_only(self) -> None:
        """Only WSGI ships a built-in loader."""
        loaders = default_loaders()
        assert set(loaders) == {AppType.WSGI}
        assert isinstance(loaders[AppType.WSGI], WsgiLoader)

    def test_import_path_round_trip(self) -> None:
        """A loader can be re-created from its import path."""
        path = loader_import_path(WsgiLoader())

        assert path == "appspawn.loaders:WsgiLoader"
        assert isinstance(import_loader(path), WsgiLoader)

    @pytest.mark.parametrize(
        "path",
        ["no.such.module:Loader", "appspawn.loaders:Missing", "appspawn.loaders:startup_file_for"],
    )
    def test_import_loader_rejects_bad_paths(self, path: str) -> None:
        """Paths that do not name an AppLoader subclass are AppLaunchFailed."""
        with pytest.raises(AppLaunchFailed):
            import_loader(path)

    def test_base_loader_has_no_load(self, app_root: Path) -> None:
        """The base class leaves loading to subclasses."""
        with pytest.raises(NotImplementedError):
            AppLoader().load(app_root)

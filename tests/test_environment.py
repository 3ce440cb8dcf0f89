"""Tests for EnvironmentConfigurator."""

from __future__ import annotations

from appspawn.environment import ENVIRONMENT_VARIABLES, EnvironmentConfigurator


class TestEnvironmentConfigurator:
    """Tests for apply()."""

    def test_sets_every_framework_variable(self) -> None:
        """All framework environment variables get the same name."""
        environ: dict[str, str] = {}

        EnvironmentConfigurator(environ).apply("staging")

        assert {name: environ[name] for name in ENVIRONMENT_VARIABLES} == dict.fromkeys(
            ENVIRONMENT_VARIABLES, "staging"
        )
        assert "PASSENGER_APP_ROOT" not in environ

    def test_exports_app_root(self) -> None:
        """The app root is exported when given."""
        environ = {"RAILS_ENV": "development", "PATH": "/usr/bin"}

        EnvironmentConfigurator(environ).apply("production", "/srv/app")

        assert environ["RAILS_ENV"] == "production"
        assert environ["PASSENGER_APP_ROOT"] == "/srv/app"
        assert environ["PATH"] == "/usr/bin"

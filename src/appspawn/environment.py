"""Apply the requested framework environment inside a worker child."""

from __future__ import annotations

__all__ = [
    "ENVIRONMENT_VARIABLES",
    "EnvironmentConfigurator",
]

import os
from collections.abc import MutableMapping

# Every framework reads one of these; all are set so the app type does not matter
ENVIRONMENT_VARIABLES: tuple[str, ...] = ("RAILS_ENV", "RACK_ENV", "WSGI_ENV", "PASSENGER_ENV")


class EnvironmentConfigurator:
    """Sets the framework environment name in the child process only."""

    def __init__(self, environ: MutableMapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def apply(self, environment: str, app_root: str | None = None) -> None:
        """Export the environment name (and app root, if given).

        Args:
            environment: Environment name, e.g. "production".
            app_root: Application root, exported as PASSENGER_APP_ROOT.
        """
        for name in ENVIRONMENT_VARIABLES:
            self._environ[name] = environment
        if app_root is not None:
            self._environ["PASSENGER_APP_ROOT"] = app_root

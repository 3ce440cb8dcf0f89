"""Spawn command for appspawn CLI.

Starts a private spawn manager, spawns one worker through it and prints
the result as JSON. Useful for checking that an application boots.
"""

from __future__ import annotations

__all__ = [
    "spawn",
]

import json
import os
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from appspawn.client import SpawnManagerClient
from appspawn.exceptions import ChannelError
from appspawn.models import AppType, SpawnMethod, SpawnRequest, SpawnSuccess

from ..styling import style_error, style_label, style_success


@click.command()
@click.argument("app_root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--app-type",
    type=click.Choice([t.value for t in AppType]),
    default=AppType.WSGI.value,
    show_default=True,
    help="Application type",
)
@click.option(
    "--method",
    "spawn_method",
    type=click.Choice([m.value for m in SpawnMethod]),
    default=SpawnMethod.CONSERVATIVE.value,
    show_default=True,
    help="Spawn method",
)
@click.option("--environment", default="production", show_default=True, help="Application environment")
@click.option("--lowest-user", default="nobody", show_default=True, help="Fallback user when lowering privilege")
@click.option("--no-lower-privilege", is_flag=True, help="Keep the manager's user")
@click.option("--framework-timeout", type=float, default=0, help="Framework stage timeout (0 = default)")
@click.option("--app-timeout", type=float, default=0, help="App stage timeout (0 = default)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file for the manager",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def spawn(
    app_root: Path,
    app_type: str,
    spawn_method: str,
    environment: str,
    lowest_user: str,
    no_lower_privilege: bool,
    framework_timeout: float,
    app_timeout: float,
    config_path: Path | None,
    as_json: bool,
) -> None:
    """Spawn one worker for APP_ROOT and report where it listens.

    The worker keeps running after this command exits.
    """
    try:
        request = SpawnRequest(
            app_root=str(app_root.resolve()),
            lower_privilege=not no_lower_privilege,
            lowest_user=lowest_user,
            environment=environment,
            spawn_method=SpawnMethod(spawn_method),
            app_type=AppType(app_type),
            framework_spawner_timeout=framework_timeout,
            app_spawner_timeout=app_timeout,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    try:
        with SpawnManagerClient.start_server(config_path) as client:
            result = client.spawn(request)
    except (ChannelError, OSError) as e:
        click.echo(style_error(f"Spawn manager failed: {e}"), err=True)
        sys.exit(1)

    if isinstance(result, SpawnSuccess):
        os.close(result.diagnostic_fd)
        if as_json:
            click.echo(
                json.dumps(
                    {
                        "status": "ok",
                        "pid": result.pid,
                        "socket_path": result.socket_path,
                        "socket_is_unix": result.socket_is_unix,
                    }
                )
            )
        else:
            click.echo(style_success(f"Worker {result.pid} is listening"))
            click.echo(f"  {style_label('Socket')} {result.socket_path}")
            click.echo(f"  {style_label('Unix')} {'yes' if result.socket_is_unix else 'no'}")
        return

    if as_json:
        click.echo(json.dumps({"status": "error", "error_kind": result.error_kind, "message": result.message}))
    else:
        click.echo(style_error(f"{result.error_kind}: {result.message}"), err=True)
    sys.exit(1)

"""Serve command for appspawn CLI.

Runs the spawn manager on a control channel inherited from the parent
process. Exits when the parent closes the channel.
"""

from __future__ import annotations

__all__ = [
    "serve",
]

import signal
import sys
from pathlib import Path
from types import FrameType

import click

from appspawn.config import get_config_path, load_config, load_config_strict
from appspawn.exceptions import ChannelError, ConfigurationError
from appspawn.log_config import configure_logging
from appspawn.manager import SpawnManager

from ..styling import style_error


def _exit_on_signal(signum: int, frame: FrameType | None) -> None:
    """Turn SIGTERM into a normal exit so cleanup runs."""
    sys.exit(128 + signum)


@click.command()
@click.option(
    "--fd",
    "channel_fd",
    type=click.IntRange(min=0),
    default=None,
    help="Descriptor of the pre-opened control channel (default: from config, 3)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file (default: config.json in the user config dir, if present)",
)
def serve(channel_fd: int | None, config_path: Path | None) -> None:
    """Serve spawn requests on an inherited control channel.

    The parent process opens a Unix stream socket, passes one end to this
    process as a descriptor, and writes spawn requests to the other end.
    """
    if config_path is not None:
        try:
            config = load_config_strict(config_path)
        except ConfigurationError as e:
            click.echo(style_error(str(e)), err=True)
            sys.exit(e.exit_code)
    else:
        config = load_config(get_config_path())

    configure_logging(config)
    fd = config.channel_fd if channel_fd is None else channel_fd

    manager = SpawnManager(config=config)
    previous = signal.signal(signal.SIGTERM, _exit_on_signal)
    try:
        manager.start_synchronously(fd)
    except ChannelError as e:
        click.echo(style_error(f"Cannot serve on descriptor {fd}: {e}"), err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    finally:
        manager.cleanup()
        signal.signal(signal.SIGTERM, previous)

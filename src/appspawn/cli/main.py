"""Main CLI entry point for appspawn.

Commands:
    serve  - Run the spawn manager on an inherited channel descriptor
    spawn  - Start a manager, spawn one worker through it, print the result

Subcommand help:
    appspawn COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click

from appspawn import __version__

from .commands.serve import serve
from .commands.spawn import spawn


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """appspawn: spawn manager for application worker processes."""
    if version:
        click.echo(f"appspawn {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(serve)
cli.add_command(spawn)


def main() -> None:
    """CLI entry point."""
    cli()

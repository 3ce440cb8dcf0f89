"""Command-line interface for appspawn.

Provides commands for running the spawn manager and for spawning a worker
through it from a shell.
"""

from .main import cli, main

__all__ = ["cli", "main"]

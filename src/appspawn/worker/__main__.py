"""Fresh-interpreter worker entry point used by the conservative spawn method.

Invoked by the manager as:
    python -m appspawn.worker --report-fd N --request JSON --loader module:Class
        [--identity JSON] [--socket-dir DIR]
"""

from __future__ import annotations

import sys

import click
from pydantic import ValidationError

from appspawn.exceptions import AppLaunchFailed
from appspawn.loaders import import_loader
from appspawn.models import Identity, SpawnRequest

from .main import ReadinessReporter, run_worker


@click.command()
@click.option("--report-fd", type=int, required=True, help="Write end of the readiness pipe")
@click.option("--request", "request_json", required=True, help="SpawnRequest as JSON")
@click.option("--loader", "loader_path", required=True, help="Loader import path (module:Class)")
@click.option("--identity", "identity_json", default="", help="Identity as JSON; empty keeps current user")
@click.option("--socket-dir", required=True, help="Directory for the worker's Unix socket")
def main(report_fd: int, request_json: str, loader_path: str, identity_json: str, socket_dir: str) -> None:
    """Start one application worker."""
    try:
        request = SpawnRequest.model_validate_json(request_json)
        identity = Identity.model_validate_json(identity_json) if identity_json else None
        loader = import_loader(loader_path)
    except (ValidationError, AppLaunchFailed) as e:
        reporter = ReadinessReporter(report_fd)
        reporter.report("error", AppLaunchFailed.kind, f"Invalid worker arguments: {e}")
        reporter.close()
        sys.exit(1)

    sys.exit(run_worker(request, identity, loader, socket_dir, report_fd))


if __name__ == "__main__":
    main()

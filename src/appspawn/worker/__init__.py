"""Worker-side code: runs in the spawned child, never in the manager loop."""

from .main import ReadinessReporter, bind_listener, run_worker

__all__ = ["ReadinessReporter", "bind_listener", "run_worker"]

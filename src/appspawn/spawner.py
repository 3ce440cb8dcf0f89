"""Worker spawning: launch a worker process and wait for it to listen.

Spawn strategies (selected by SpawnRequest.spawn_method):

- conservative: exec a fresh interpreter (``python -m appspawn.worker``);
  framework and application are loaded from scratch
- direct: fork the manager; the child loads framework and application
- smart: fork the manager after the loader pre-loaded its framework into
  the manager (once per application, until reload())

Every strategy converges on the same child sequence (see worker/main.py)
and the same parent-side readiness protocol: the child reports
``framework`` and then ``ready`` over a pipe, and each stage must arrive
within its timeout. A timed-out child is killed and reaped before the
failure is reported.

The manager only depends on the WorkerSpawner protocol, so tests can swap
in a fixed-response fake.
"""

from __future__ import annotations

__all__ = [
    "ProcessSpawner",
    "WorkerSpawner",
]

import fcntl
import logging
import os
import selectors
import signal
import subprocess
import sys
import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from appspawn.config import SpawnServerConfig
from appspawn.constants import WORKER_REAP_TIMEOUT_SECONDS
from appspawn.exceptions import AppLaunchFailed, SpawnError, SpawnTimeout, error_from_report
from appspawn.loaders import AppLoader, default_loaders, loader_import_path, startup_file_for
from appspawn.log_config import log_event
from appspawn.models import (
    AppType,
    Identity,
    SpawnFailure,
    SpawnMethod,
    SpawnRequest,
    SpawnResult,
    SpawnSuccess,
    SpawnSystemEvent,
)
from appspawn.privileges import PrivilegeResolver
from appspawn.protocol import decode_ndjson

# Bytes of worker stderr quoted in launch failure messages
DIAGNOSTIC_TAIL_BYTES = 2048

# Requested capacity of the worker stderr pipe. The manager does not read
# it while waiting for readiness, so a worker writing more than this before
# it reports ready blocks until its stage times out.
DIAGNOSTIC_PIPE_BYTES = 1024 * 1024

# Poll interval while waiting for a killed child to be reaped (seconds)
_REAP_POLL_INTERVAL_SECONDS = 0.01

try:
    _MAXFD = os.sysconf("SC_OPEN_MAX")
except (AttributeError, ValueError):
    _MAXFD = 256


class WorkerSpawner(Protocol):
    """Anything that can turn a spawn request into a result."""

    def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Spawn one worker. Request-local failures are returned, not raised."""
        ...


@dataclass
class _WorkerHandle:
    """A child process started by the spawner."""

    pid: int
    process: subprocess.Popen[bytes] | None = None
    returncode: int | None = None

    def poll(self) -> bool:
        """Reap the child if it has exited. Returns True once reaped."""
        if self.returncode is not None:
            return True
        if self.process is not None:
            self.returncode = self.process.poll()
            return self.returncode is not None
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self.returncode = -1
            return True
        if pid == 0:
            return False
        self.returncode = os.waitstatus_to_exitcode(status)
        return True

    def wait(self, timeout: float) -> bool:
        """Poll until the child is reaped or the timeout passes."""
        deadline = time.monotonic() + timeout
        while not self.poll():
            if time.monotonic() >= deadline:
                return False
            time.sleep(_REAP_POLL_INTERVAL_SECONDS)
        return True

    def kill(self) -> None:
        """SIGKILL the child's process group (the child leads its own session)."""
        try:
            os.killpg(self.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                os.kill(self.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass

    def describe_exit(self) -> str:
        if self.returncode is None:
            return "still running"
        if self.returncode < 0:
            try:
                return f"killed by {signal.Signals(-self.returncode).name}"
            except ValueError:
                return f"killed by signal {-self.returncode}"
        return f"exit status {self.returncode}"


class ProcessSpawner:
    """Spawns real worker processes.

    Args:
        config: Server configuration (socket directory, default timeouts).
        loaders: Loader registry by application type. Defaults to the
            built-in registry (WSGI only).
        resolver: Privilege resolver.
    """

    def __init__(
        self,
        config: SpawnServerConfig | None = None,
        loaders: dict[AppType, AppLoader] | None = None,
        resolver: PrivilegeResolver | None = None,
    ) -> None:
        self._config = config or SpawnServerConfig()
        self._loaders = default_loaders() if loaders is None else dict(loaders)
        self._resolver = resolver or PrivilegeResolver()
        self._workers: dict[int, _WorkerHandle] = {}
        self._preloaded: set[tuple[str, AppType]] = set()

    @property
    def worker_pids(self) -> list[int]:
        """Pids of spawned workers not yet reaped."""
        return list(self._workers)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Spawn one worker for the request.

        Args:
            request: Validated spawn request.

        Returns:
            SpawnSuccess with the worker's address and stderr descriptor, or
            SpawnFailure describing what went wrong.
        """
        started = time.monotonic()
        try:
            success = self._spawn(request)
        except SpawnError as e:
            log_event(
                logging.WARNING,
                SpawnSystemEvent(
                    event="spawn_failed",
                    message=f"Spawning {request.app_root} failed: {e.kind}: {e.message}",
                    app_root=request.app_root,
                    app_type=request.app_type.value,
                    spawn_method=request.spawn_method.value,
                    stage=getattr(e, "stage", None),
                    error_type=e.kind,
                    error_message=e.message,
                ),
            )
            return SpawnFailure.from_error(e)

        log_event(
            logging.INFO,
            SpawnSystemEvent(
                event="worker_spawned",
                message=f"Spawned worker {success.pid} for {request.app_root} at {success.socket_path}",
                app_root=request.app_root,
                app_type=request.app_type.value,
                spawn_method=request.spawn_method.value,
                pid=success.pid,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            ),
        )
        return success

    def reload(self, app_root: str | None = None) -> int:
        """Forget pre-loaded frameworks so the next smart spawn loads them again.

        Args:
            app_root: Only forget this application; None forgets all.

        Returns:
            Number of cache entries dropped.
        """
        dropped = {key for key in self._preloaded if app_root is None or key[0] == app_root}
        self._preloaded -= dropped
        return len(dropped)

    def reap(self) -> int:
        """Reap exited workers so they do not linger as zombies.

        Returns:
            Number of workers reaped.
        """
        reaped = [pid for pid, handle in self._workers.items() if handle.poll()]
        for pid in reaped:
            del self._workers[pid]
        return len(reaped)

    def close(self) -> None:
        """Reap what has exited. Running workers belong to the caller and are left alone."""
        self.reap()

    # -------------------------------------------------------------------------
    # Spawning
    # -------------------------------------------------------------------------

    def _spawn(self, request: SpawnRequest) -> SpawnSuccess:
        loader = self._loaders.get(request.app_type)
        if loader is None:
            raise AppLaunchFailed(f"No loader registered for application type '{request.app_type.value}'")

        app_root = Path(request.app_root)
        identity = self._resolver.resolve(
            startup_file_for(app_root, request.app_type),
            request.lower_privilege,
            request.lowest_user,
        )

        # The framework stage starts here; a smart pre-load is charged to it
        framework_deadline = time.monotonic() + self._stage_timeout(
            request.framework_spawner_timeout, self._config.default_framework_timeout
        )
        if request.spawn_method is SpawnMethod.SMART:
            self._preload(loader, request, framework_deadline)

        fds: list[int] = []
        try:
            fds.extend(os.pipe())
            fds.extend(os.pipe())
            ready_r, ready_w, diag_r, diag_w = fds
            _enlarge_pipe(diag_w)
            if request.spawn_method is SpawnMethod.CONSERVATIVE:
                handle = self._exec_worker(request, identity, loader, ready_w, diag_w)
            else:
                handle = self._fork_worker(request, identity, loader, ready_w, diag_w)
        except OSError as e:
            for fd in fds:
                os.close(fd)
            raise AppLaunchFailed(f"Cannot start worker process: {e}") from e

        os.close(ready_w)
        os.close(diag_w)
        self._workers[handle.pid] = handle

        try:
            socket_path, socket_is_unix = self._await_ready(handle, ready_r, request, framework_deadline)
        except SpawnError as e:
            if not handle.poll():
                handle.kill()
                handle.wait(WORKER_REAP_TIMEOUT_SECONDS)
            if handle.returncode is not None:
                self._workers.pop(handle.pid, None)
            if isinstance(e, AppLaunchFailed):
                tail = _read_tail(diag_r)
                if tail:
                    e = AppLaunchFailed(f"{e.message}\n{tail}")
            os.close(diag_r)
            raise e from None
        finally:
            os.close(ready_r)

        return SpawnSuccess(
            pid=handle.pid,
            socket_path=socket_path,
            socket_is_unix=socket_is_unix,
            diagnostic_fd=diag_r,
        )

    def _preload(self, loader: AppLoader, request: SpawnRequest, deadline: float) -> None:
        """Pre-load the framework in the manager, within the framework stage budget.

        The pre-load runs in this process and cannot be interrupted; its
        elapsed time is charged to the framework stage afterwards. An
        overrunning pre-load is not cached.

        Raises:
            SpawnTimeout: The pre-load used up the framework stage timeout.
            AppLaunchFailed: The loader raised.
        """
        key = (request.app_root, request.app_type)
        if key in self._preloaded:
            return
        try:
            loader.preload(Path(request.app_root))
        except Exception as e:  # noqa: BLE001 - loader code may raise anything
            raise AppLaunchFailed(f"Pre-loading framework failed: {type(e).__name__}: {e}") from e
        if time.monotonic() >= deadline:
            raise SpawnTimeout("framework")
        self._preloaded.add(key)

    def _fork_worker(
        self,
        request: SpawnRequest,
        identity: Identity | None,
        loader: AppLoader,
        ready_w: int,
        diag_w: int,
    ) -> _WorkerHandle:
        pid = os.fork()
        if pid != 0:
            return _WorkerHandle(pid=pid)

        # Child: never returns into the manager's code
        code = 1
        try:
            os.setsid()
            devnull = os.open(os.devnull, os.O_RDONLY)
            os.dup2(devnull, 0)
            os.dup2(diag_w, 1)
            os.dup2(diag_w, 2)
            os.closerange(3, ready_w)
            os.closerange(ready_w + 1, _MAXFD)
            # Inherited stream objects may wrap descriptors closed above
            sys.stdout = open(1, "w", buffering=1, errors="backslashreplace", closefd=False)
            sys.stderr = open(2, "w", buffering=1, errors="backslashreplace", closefd=False)
            code = _run_forked_worker(request, identity, loader, self._config.socket_dir, ready_w)
        except BaseException:  # noqa: BLE001 - child must reach os._exit
            traceback.print_exc()
        finally:
            try:
                sys.stdout.flush()
                sys.stderr.flush()
            finally:
                os._exit(code)

    def _exec_worker(
        self,
        request: SpawnRequest,
        identity: Identity | None,
        loader: AppLoader,
        ready_w: int,
        diag_w: int,
    ) -> _WorkerHandle:
        argv = [
            sys.executable,
            "-m",
            "appspawn.worker",
            "--report-fd",
            str(ready_w),
            "--request",
            request.model_dump_json(),
            "--loader",
            loader_import_path(loader),
            "--socket-dir",
            self._config.socket_dir,
        ]
        if identity is not None:
            argv += ["--identity", identity.model_dump_json()]
        process = subprocess.Popen(  # noqa: S603
            argv,
            stdin=subprocess.DEVNULL,
            stdout=diag_w,
            stderr=diag_w,
            pass_fds=(ready_w,),
            close_fds=True,
            start_new_session=True,
        )
        return _WorkerHandle(pid=process.pid, process=process)

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    def _stage_timeout(self, requested: float, default: float) -> float:
        return requested if requested > 0 else default

    def _await_ready(
        self,
        handle: _WorkerHandle,
        ready_r: int,
        request: SpawnRequest,
        framework_deadline: float,
    ) -> tuple[str, bool]:
        """Follow the child's stage reports until it is listening.

        Raises:
            SpawnTimeout: A stage overran its timeout.
            AppLaunchFailed: The child exited without becoming ready, or
                sent something unintelligible.
            SpawnError: Whatever failure the child reported.
        """
        stage = "framework"
        deadline = framework_deadline
        buffer = b""

        with selectors.DefaultSelector() as selector:
            selector.register(ready_r, selectors.EVENT_READ)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise SpawnTimeout(stage)
                if not selector.select(remaining):
                    continue

                chunk = os.read(ready_r, 4096)
                if not chunk:
                    handle.wait(WORKER_REAP_TIMEOUT_SECONDS)
                    raise AppLaunchFailed(
                        f"Worker {handle.pid} exited during {stage} stage ({handle.describe_exit()})"
                    )
                buffer += chunk

                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    report = decode_ndjson(line) or []
                    if report == ["framework"] and stage == "framework":
                        stage = "app"
                        deadline = time.monotonic() + self._stage_timeout(
                            request.app_spawner_timeout, self._config.default_app_timeout
                        )
                    elif len(report) == 3 and report[0] == "ready":
                        return str(report[1]), bool(report[2])
                    elif len(report) == 3 and report[0] == "error":
                        handle.wait(WORKER_REAP_TIMEOUT_SECONDS)
                        raise error_from_report(str(report[1]), str(report[2]))
                    else:
                        raise AppLaunchFailed(f"Unexpected readiness report from worker: {line[:80]!r}")


def _run_forked_worker(
    request: SpawnRequest,
    identity: Identity | None,
    loader: AppLoader,
    socket_dir: str,
    report_fd: int,
) -> int:
    from appspawn.worker.main import run_worker

    return run_worker(request, identity, loader, socket_dir, report_fd)


def _read_tail(fd: int) -> str:
    """Read whatever the (dead) worker left on its stderr, without blocking."""
    os.set_blocking(fd, False)
    data = b""
    try:
        while True:
            chunk = os.read(fd, 4096)
            if not chunk:
                break
            data = (data + chunk)[-DIAGNOSTIC_TAIL_BYTES:]
    except OSError:
        pass  # Nothing more to read (EAGAIN) or the pipe is gone
    return data.decode("utf-8", errors="replace").strip()


def _enlarge_pipe(fd: int) -> None:
    """Grow a pipe's buffer where the platform allows it (Linux only)."""
    set_size = getattr(fcntl, "F_SETPIPE_SZ", None)
    if set_size is None:
        return
    try:
        fcntl.fcntl(fd, set_size, DIAGNOSTIC_PIPE_BYTES)
    except OSError:
        # Above /proc/sys/fs/pipe-max-size for unprivileged users
        pass

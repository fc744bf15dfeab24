"""Child process isolation, deadlines and tree termination.

Every command hvm-bench launches (builds, code generation, compilers,
benchmark programs) goes through :func:`run_process`.  Platform details
live behind :class:`ProcessControl`:

- ``spawn`` starts the child as the leader of a new process group,
- ``wait`` waits for the leader until a monotonic deadline,
- ``kill_tree`` forcibly terminates the leader and all its descendants.

A :class:`ProcessTracker` remembers every live child so that a cancelled
run can kill all of them before the harness exits.
"""

from __future__ import annotations

import abc
import os
import signal
import subprocess
import sys
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Sequence

from hvmbench.logging import get_logger

log = get_logger("process")

# Grace period for reaping a child after its tree was killed.
_REAP_TIMEOUT_S = 5.0

_SHELL_SIGNAL_CODES = frozenset({128 + signal.SIGABRT, 128 + signal.SIGSEGV})


class Cancelled(Exception):
    """Raised when a process is requested after the run was cancelled."""


@dataclass
class ProcessOutcome:
    """Result of a process run with a deadline."""

    exit_code: int
    timed_out: bool
    elapsed_s: float
    stdout: str
    stderr: str

    @property
    def signal(self) -> int | None:
        """Signal number that terminated the process, if any.

        Besides negative return codes this recognizes the ``128 + n`` codes
        a shell reports for a child killed by SIGABRT or SIGSEGV.
        """
        if self.timed_out:
            return None
        if self.exit_code < 0:
            return -self.exit_code
        if self.exit_code in _SHELL_SIGNAL_CODES:
            return self.exit_code - 128
        return None


# ---------------------------------------------------------------------------
# Platform capability
# ---------------------------------------------------------------------------


class ProcessControl(abc.ABC):
    """Spawn, wait-with-deadline and kill-tree for one platform."""

    @abc.abstractmethod
    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: dict[str, str] | None,
        stdout: IO[Any],
        stderr: IO[Any],
    ) -> subprocess.Popen[bytes]:
        """Start *argv* as the leader of a new process group."""

    def wait(self, proc: subprocess.Popen[bytes], deadline: float) -> int | None:
        """Wait for *proc* until the monotonic *deadline*.

        Returns the exit code, or ``None`` if the deadline passed first.
        """
        remaining = max(deadline - time.monotonic(), 0.0)
        try:
            return proc.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            return None

    @abc.abstractmethod
    def kill_tree(self, proc: subprocess.Popen[bytes]) -> None:
        """Kill *proc* and every process in its group. Never raises."""


class PosixProcessControl(ProcessControl):
    """Process groups via ``setsid`` and ``killpg``."""

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: dict[str, str] | None,
        stdout: IO[Any],
        stderr: IO[Any],
    ) -> subprocess.Popen[bytes]:
        return subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
            start_new_session=True,
        )

    def kill_tree(self, proc: subprocess.Popen[bytes]) -> None:
        # The leader's pid is the group id because of start_new_session.  The
        # kernel keeps that id allocated while any group member is alive, so
        # the probe only fails once the whole group is gone.  A group created
        # under a recycled id between the probe and the kill is not handled.
        pgid = proc.pid
        try:
            os.killpg(pgid, 0)
        except (ProcessLookupError, PermissionError, OSError):
            pgid = None
        if pgid is not None:
            try:
                os.killpg(pgid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError, OSError):
                pass
        if proc.returncode is None:
            try:
                proc.kill()
            except OSError:
                pass


class WindowsProcessControl(ProcessControl):
    """Process groups via ``CREATE_NEW_PROCESS_GROUP`` and ``taskkill /T``."""

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: dict[str, str] | None,
        stdout: IO[Any],
        stderr: IO[Any],
    ) -> subprocess.Popen[bytes]:
        return subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
            creationflags=getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0),
        )

    def kill_tree(self, proc: subprocess.Popen[bytes]) -> None:
        try:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
                capture_output=True,
                timeout=30,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError):
            pass
        if proc.returncode is None:
            try:
                proc.kill()
            except OSError:
                pass


def default_process_control() -> ProcessControl:
    """Return the process control for the running platform."""
    if sys.platform == "win32":
        return WindowsProcessControl()
    return PosixProcessControl()


# ---------------------------------------------------------------------------
# Tracking live children
# ---------------------------------------------------------------------------


class ProcessTracker:
    """Registry of live children, used to kill everything on cancellation.

    Once :meth:`kill_all` has been called the tracker refuses to spawn new
    processes, so a worker racing with cancellation cannot leak a child.
    """

    def __init__(self, control: ProcessControl | None = None) -> None:
        self.control = control or default_process_control()
        self._lock = threading.Lock()
        self._live: set[subprocess.Popen[bytes]] = set()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: dict[str, str] | None,
        stdout: IO[Any],
        stderr: IO[Any],
    ) -> subprocess.Popen[bytes]:
        with self._lock:
            if self._cancelled:
                raise Cancelled(f"not starting {argv[0]}: run cancelled")
            proc = self.control.spawn(argv, cwd=cwd, env=env, stdout=stdout, stderr=stderr)
            self._live.add(proc)
        return proc

    def discard(self, proc: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._live.discard(proc)

    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def kill_all(self) -> int:
        """Kill every tracked process tree and refuse further spawns.

        Returns the number of process trees that were killed.
        """
        with self._lock:
            self._cancelled = True
            live = list(self._live)
        for proc in live:
            log.debug("Killing process tree %d", proc.pid)
            self.control.kill_tree(proc)
        for proc in live:
            try:
                proc.wait(timeout=_REAP_TIMEOUT_S)
            except subprocess.TimeoutExpired:
                log.warning("Process %d did not exit after SIGKILL", proc.pid)
        return len(live)


# ---------------------------------------------------------------------------
# Running a command
# ---------------------------------------------------------------------------


def _read_back(stream: IO[bytes]) -> str:
    stream.seek(0)
    return stream.read().decode("utf-8", errors="replace")


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
    tracker: ProcessTracker,
    env: dict[str, str] | None = None,
) -> ProcessOutcome:
    """Run *argv* with a hard wall-clock deadline.

    Output goes to anonymous temporary files rather than pipes, so a
    descendant that inherits the streams cannot block the wait.  The
    process group is killed on every exit path (deadline, normal exit,
    interrupt) and the leader is reaped before this function returns.

    Raises:
        Cancelled: If the tracker was cancelled before the spawn.
        OSError: If the executable cannot be started.
    """
    log.debug("Running (timeout %.0fs, cwd %s): %s", timeout, cwd, " ".join(argv))
    with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
        start = time.monotonic()
        proc = tracker.spawn(argv, cwd=cwd, env=env, stdout=out, stderr=err)
        try:
            code = tracker.control.wait(proc, start + timeout)
            elapsed = time.monotonic() - start
        finally:
            tracker.control.kill_tree(proc)
            try:
                proc.wait(timeout=_REAP_TIMEOUT_S)
            except subprocess.TimeoutExpired:
                log.warning("Process %d did not exit after kill", proc.pid)
            tracker.discard(proc)

        timed_out = code is None
        return ProcessOutcome(
            exit_code=-1 if code is None else code,
            timed_out=timed_out,
            elapsed_s=round(elapsed, 6),
            stdout=_read_back(out),
            stderr=_read_back(err),
        )

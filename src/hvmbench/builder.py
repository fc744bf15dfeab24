"""Building runtime artifacts, once per (revision, runtime kind).

The HVM binary of a revision is built once and shared by every runtime
kind of that revision.  The per-kind artifact additionally checks that the
kind's toolchain (``gcc``, ``nvcc``) is installed.  Both layers go through
a :class:`BuildCache`, so concurrent cells asking for the same key wait
for the first build instead of starting their own.

Build failures never raise: they are returned as artifacts carrying a
``failure`` reason, and the scheduler records them as ``BuildFailed``.
"""

from __future__ import annotations

import os
import shutil
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Generic, Hashable, Sequence, TypeVar

from hvmbench.formatting import tail
from hvmbench.logging import get_logger
from hvmbench.models import BuildArtifact, Revision, RuntimeSpec
from hvmbench.process import ProcessTracker, run_process

log = get_logger("builder")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BuildCache(Generic[K, V]):
    """Single-flight memo: one in-flight computation per key.

    The first caller of :meth:`get_or_build` for a key runs the build
    function; callers arriving while it runs block on the same future and
    receive the same value.  Exceptions are cached and re-raised the same
    way.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._futures: dict[K, Future[V]] = {}

    def get_or_build(self, key: K, build: Callable[[], V]) -> V:
        with self._lock:
            future = self._futures.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._futures[key] = future
        if owner:
            try:
                future.set_result(build())
            except BaseException as exc:
                future.set_exception(exc)
        return future.result()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._futures

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)


class Builder:
    """Produces :class:`BuildArtifact` objects for benchmark cells.

    Args:
        bin_dir: Where built binaries are copied, one subdirectory per
            revision.
        build_command: Command run in the checkout to build the binary.
        build_artifact: Path of the built binary relative to the checkout.
        build_timeout: Deadline for the build command in seconds.
        tracker: Tracker for the spawned build processes.
    """

    def __init__(
        self,
        *,
        bin_dir: Path,
        build_command: Sequence[str],
        build_artifact: str,
        build_timeout: float,
        tracker: ProcessTracker,
    ) -> None:
        self.bin_dir = bin_dir
        self.build_command = list(build_command)
        self.build_artifact = build_artifact
        self.build_timeout = build_timeout
        self.tracker = tracker
        self._binaries: BuildCache[str, tuple[Path | None, str | None]] = BuildCache()
        self._artifacts: BuildCache[tuple[str, object], BuildArtifact] = BuildCache()

    def build(self, revision: Revision, runtime: RuntimeSpec) -> BuildArtifact:
        """Return the artifact for *revision* under *runtime*, building it once."""
        key = (revision.resolved_id, runtime.kind)
        return self._artifacts.get_or_build(key, lambda: self._build_artifact(revision, runtime))

    def _build_artifact(self, revision: Revision, runtime: RuntimeSpec) -> BuildArtifact:
        for tool in runtime.toolchain:
            if shutil.which(tool) is None:
                log.warning(
                    "Missing toolchain '%s' for %s, cells will be marked BUILD-FAIL",
                    tool,
                    runtime.kind.label,
                )
                return BuildArtifact(
                    revision=revision, runtime=runtime, failure=f"missing toolchain: {tool}"
                )

        binary, failure = self._binaries.get_or_build(
            revision.resolved_id, lambda: self._build_binary(revision)
        )
        return BuildArtifact(revision=revision, runtime=runtime, executable=binary, failure=failure)

    def _build_binary(self, revision: Revision) -> tuple[Path | None, str | None]:
        """Run the build command in the revision's checkout.

        Returns ``(binary, None)`` on success or ``(None, reason)``.
        """
        log.info("Building %s (%s)", revision.name, revision.short_id)
        try:
            outcome = run_process(
                self.build_command,
                cwd=revision.checkout,
                timeout=self.build_timeout,
                tracker=self.tracker,
            )
        except OSError as exc:
            log.error("Build of %s could not start: %s", revision.name, exc)
            return None, f"build could not start: {exc}"

        if outcome.timed_out:
            log.error("Build of %s timed out after %.0fs", revision.name, self.build_timeout)
            return None, "build timeout"
        if outcome.exit_code != 0:
            stderr = tail(outcome.stderr, max_lines=5)
            log.error(
                "Build of %s failed (exit %d):\n%s", revision.name, outcome.exit_code, stderr
            )
            return None, f"{self.build_command[0]} exited {outcome.exit_code}: {stderr}"

        built = revision.checkout / self.build_artifact
        if not built.is_file():
            log.error("Build of %s produced no %s", revision.name, self.build_artifact)
            return None, f"missing build artifact {self.build_artifact}"

        dest_dir = self.bin_dir / revision.short_id
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / built.name
        try:
            shutil.copy2(built, dest)
            os.chmod(dest, 0o755)
        except OSError as exc:
            return None, f"could not copy build artifact: {exc}"

        log.info("Built %s in %.1fs", revision.name, outcome.elapsed_s)
        return dest, None

"""Running one benchmark program against one built artifact.

Interpreted runtimes run the HVM binary directly on the program.  Compiled
runtimes first ask HVM to generate C or CUDA source, compile it with the
runtime's compiler, and time the resulting binary.  Code generation and
compilation are bounded by the build timeout; only the final program run
counts towards the reported time and the execution timeout.
"""

from __future__ import annotations

import re
import shutil
import tempfile
from pathlib import Path
from typing import Sequence

from hvmbench.formatting import format_signal_name, tail
from hvmbench.logging import get_logger
from hvmbench.models import (
    BenchmarkFile,
    BuildArtifact,
    BuildFailed,
    Crashed,
    ExecutionResult,
    Success,
    Timeout,
)
from hvmbench.process import ProcessTracker, run_process

log = get_logger("executor")

# HVM prints its own timing as "- TIME: 0.123s".
_TIME_RE = re.compile(r"^- TIME: ([0-9]*\.?[0-9]+)s?\s*$", re.MULTILINE)


def parse_reported_time(stdout: str) -> float | None:
    """Return the seconds from HVM's ``- TIME:`` line, if present."""
    match = _TIME_RE.search(stdout)
    if match is None:
        return None
    return float(match.group(1))


def expand(template: Sequence[str], values: dict[str, str]) -> list[str]:
    """Substitute ``{placeholders}`` in each argument of *template*."""
    return [arg.format_map(values) for arg in template]


class Executor:
    """Runs benchmark programs in isolated run directories.

    Args:
        runs_dir: Parent of the per-run private directories.
        build_timeout: Deadline for code generation and compilation.
        tracker: Tracker for every spawned process.
    """

    def __init__(self, *, runs_dir: Path, build_timeout: float, tracker: ProcessTracker) -> None:
        self.runs_dir = runs_dir
        self.build_timeout = build_timeout
        self.tracker = tracker

    def run(
        self,
        artifact: BuildArtifact,
        benchmark: BenchmarkFile,
        timeout: float,
    ) -> ExecutionResult:
        """Run *benchmark* with *artifact* and classify the outcome.

        Raises:
            ValueError: If *artifact* is a failed build.
            Cancelled: If the run was cancelled before a process started.
        """
        if not artifact.ok or artifact.executable is None:
            raise ValueError(f"cannot run a failed build: {artifact.failure}")

        runtime = artifact.runtime
        label = f"{benchmark.name} [{runtime.kind.label}] @ {artifact.revision.name}"
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        run_dir = Path(
            tempfile.mkdtemp(prefix=f"{benchmark.name}-{runtime.kind.backend}-", dir=self.runs_dir)
        )
        try:
            values = {
                "hvm": str(artifact.executable),
                "program": str(benchmark.path.resolve()),
                "binary": str(run_dir / "program"),
                "source": str(run_dir / f"program{runtime.source_suffix}"),
            }

            if runtime.is_compiled:
                failure = self._prepare_compiled(artifact, values, run_dir)
                if failure is not None:
                    log.warning("%s: BUILD-FAIL (%s)", label, failure)
                    return BuildFailed(failure)

            argv = expand(runtime.run, values)
            try:
                outcome = run_process(argv, cwd=run_dir, timeout=timeout, tracker=self.tracker)
            except OSError as exc:
                log.warning("%s: could not start: %s", label, exc)
                return Crashed(exit_code=-1, stderr_tail=str(exc))
        finally:
            shutil.rmtree(run_dir, ignore_errors=True)

        if outcome.timed_out:
            log.warning("%s: TIMEOUT after %.0fs", label, timeout)
            return Timeout(timeout_s=timeout)
        if outcome.exit_code != 0:
            sig = outcome.signal
            log.warning(
                "%s: exit %d %s",
                label,
                outcome.exit_code,
                format_signal_name(sig),
            )
            return Crashed(
                exit_code=outcome.exit_code,
                signal=sig,
                stderr_tail=tail(outcome.stderr),
            )

        reported = parse_reported_time(outcome.stdout)
        log.debug("%s: %.3fs (reported %s)", label, outcome.elapsed_s, reported)
        return Success(elapsed_s=outcome.elapsed_s, reported_s=reported)

    def _prepare_compiled(
        self,
        artifact: BuildArtifact,
        values: dict[str, str],
        run_dir: Path,
    ) -> str | None:
        """Generate and compile the program.

        Returns ``None`` on success or the failure reason.
        """
        runtime = artifact.runtime

        gen_argv = expand(runtime.generate, values)
        try:
            gen = run_process(
                gen_argv, cwd=run_dir, timeout=self.build_timeout, tracker=self.tracker
            )
        except OSError as exc:
            return f"code generation could not start: {exc}"
        if gen.timed_out:
            return "build timeout"
        if gen.exit_code != 0:
            return f"code generation exited {gen.exit_code}: {tail(gen.stderr, max_lines=5)}"
        try:
            Path(values["source"]).write_text(gen.stdout, encoding="utf-8")
        except OSError as exc:
            return f"could not write generated source: {exc}"

        cc_argv = expand(runtime.compile, values)
        try:
            cc = run_process(cc_argv, cwd=run_dir, timeout=self.build_timeout, tracker=self.tracker)
        except OSError as exc:
            return f"{cc_argv[0]} could not start: {exc}"
        if cc.timed_out:
            return "build timeout"
        if cc.exit_code != 0:
            return f"{cc_argv[0]} exited {cc.exit_code}: {tail(cc.stderr, max_lines=5)}"
        if not Path(values["binary"]).is_file():
            return f"{cc_argv[0]} produced no binary"
        return None

"""Benchmark matrix scheduling.

The matrix is every combination of mode, benchmark file, runtime kind legal
for that mode, and revision.  Enumeration is always in that logical order;
execution is either inline (``workers == 1``) or on a bounded thread pool.
Because results are stored under their :class:`~hvmbench.models.CellKey`,
the resulting :class:`~hvmbench.models.ResultMatrix` does not depend on
completion order.  All heavy work happens in child processes, so the GIL
is not a bottleneck.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol, Sequence

from hvmbench.formatting import format_seconds
from hvmbench.logging import get_logger
from hvmbench.models import (
    MODE_ORDER,
    BenchmarkFile,
    BuildArtifact,
    BuildFailed,
    CellKey,
    Crashed,
    ExecutionResult,
    ResultMatrix,
    Revision,
    RuntimeSpec,
    Skipped,
    Success,
)
from hvmbench.process import Cancelled, ProcessTracker

log = get_logger("scheduler")


class BuilderLike(Protocol):
    def build(self, revision: Revision, runtime: RuntimeSpec) -> BuildArtifact: ...


class ExecutorLike(Protocol):
    def run(
        self, artifact: BuildArtifact, benchmark: BenchmarkFile, timeout: float
    ) -> ExecutionResult: ...


@dataclass(frozen=True)
class Cell:
    """One scheduled unit of work."""

    benchmark: BenchmarkFile
    runtime: RuntimeSpec
    revision: Revision

    @property
    def key(self) -> CellKey:
        return CellKey.of(self.benchmark, self.runtime.kind, self.revision)

    @property
    def label(self) -> str:
        return f"{self.benchmark.name} [{self.runtime.kind.label}] @ {self.revision.name}"


def enumerate_cells(
    revisions: Sequence[Revision],
    runtimes: Sequence[RuntimeSpec],
    benchmarks: Sequence[BenchmarkFile],
) -> list[Cell]:
    """Return every cell of the matrix in logical order."""
    cells: list[Cell] = []
    for mode in MODE_ORDER:
        mode_runtimes = [r for r in runtimes if r.kind.mode is mode]
        for benchmark in benchmarks:
            for runtime in mode_runtimes:
                for revision in revisions:
                    cells.append(Cell(benchmark=benchmark, runtime=runtime, revision=revision))
    return cells


def _describe(result: ExecutionResult) -> str:
    if isinstance(result, Success):
        return format_seconds(result.elapsed_s)
    if isinstance(result, Crashed):
        return f"crash (exit {result.exit_code})"
    if isinstance(result, BuildFailed):
        return f"build failed ({result.reason})"
    if isinstance(result, Skipped):
        return f"skipped ({result.reason})"
    return "timeout"


class MatrixScheduler:
    """Drives the builder and executor over the whole matrix.

    Usage::

        scheduler = MatrixScheduler(builder, executor, tracker, workers=4)
        matrix = scheduler.execute(revisions, runtimes, benchmarks, timeout=60)
    """

    def __init__(
        self,
        builder: BuilderLike,
        executor: ExecutorLike,
        tracker: ProcessTracker,
        *,
        workers: int = 1,
    ) -> None:
        self.builder = builder
        self.executor = executor
        self.tracker = tracker
        self.workers = max(1, workers)
        self._cancel_event = threading.Event()
        self._progress_lock = threading.Lock()
        self._completed = 0

    def cancel(self) -> None:
        """Stop scheduling new cells and kill every in-flight child."""
        self._cancel_event.set()
        killed = self.tracker.kill_all()
        if killed:
            log.warning("Cancelled: killed %d running process(es)", killed)

    def execute(
        self,
        revisions: Sequence[Revision],
        runtimes: Sequence[RuntimeSpec],
        benchmarks: Sequence[BenchmarkFile],
        timeout: float,
    ) -> ResultMatrix:
        """Run every cell and return the result matrix.

        Raises:
            KeyboardInterrupt: After killing all children, if interrupted.
        """
        cells = enumerate_cells(revisions, runtimes, benchmarks)
        self._completed = 0
        log.info(
            "Running %d cells (%d benchmarks, %d runtimes, %d revisions, %d worker(s))",
            len(cells),
            len(benchmarks),
            len(runtimes),
            len(revisions),
            self.workers,
        )

        matrix = ResultMatrix()
        try:
            if self.workers == 1:
                for cell in cells:
                    matrix.record(cell.key, self._run_cell(cell, timeout, len(cells)))
            else:
                self._execute_parallel(cells, timeout, matrix)
        except KeyboardInterrupt:
            self.cancel()
            raise
        return matrix

    def _execute_parallel(
        self,
        cells: list[Cell],
        timeout: float,
        matrix: ResultMatrix,
    ) -> None:
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="hvm-bench")
        try:
            futures: list[tuple[Cell, Future[ExecutionResult]]] = [
                (cell, pool.submit(self._run_cell, cell, timeout, len(cells))) for cell in cells
            ]
            for cell, future in futures:
                matrix.record(cell.key, future.result())
        except BaseException:
            self._cancel_event.set()
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        else:
            pool.shutdown(wait=True)

    def _run_cell(self, cell: Cell, timeout: float, total: int) -> ExecutionResult:
        """Build and run one cell.  Never raises except on interrupt."""
        if self._cancel_event.is_set():
            return Skipped("cancelled")
        try:
            artifact = self.builder.build(cell.revision, cell.runtime)
            if not artifact.ok:
                result: ExecutionResult = BuildFailed(artifact.failure or "build failed")
            else:
                result = self.executor.run(artifact, cell.benchmark, timeout)
        except Cancelled:
            result = Skipped("cancelled")
        except Exception as exc:  # noqa: BLE001
            log.error("Unexpected error in %s: %s", cell.label, exc, exc_info=True)
            result = Crashed(exit_code=-1, stderr_tail=f"harness error: {exc}")

        with self._progress_lock:
            self._completed += 1
            log.info("[%d/%d] %s: %s", self._completed, total, cell.label, _describe(result))
        return result

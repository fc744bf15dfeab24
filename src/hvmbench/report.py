"""Rendering a result matrix as comparison tables.

One block per mode, interpreted first.  Rows are grouped by benchmark
file (the name is shown on the first row of its group only), one row per
runtime; columns are revisions in resolution order::

    interpreted
    ===========

    file            runtime         main            a43dcfa57c9d
    ==============================================================
    sum_rec         rust                    0.523s          0.611s
                    c                       0.101s         TIMEOUT
    --------------------------------------------------------------

Rendering is a pure function of its inputs: ordering comes from the given
sequences, never from the matrix's insertion order.
"""

from __future__ import annotations

from typing import Sequence

from hvmbench.formatting import format_seconds
from hvmbench.models import (
    MODE_ORDER,
    BenchmarkFile,
    BuildFailed,
    CellKey,
    Crashed,
    ExecutionResult,
    Mode,
    ResultMatrix,
    Revision,
    RuntimeKind,
    Skipped,
    Success,
    Timeout,
)

MIN_COLUMN_WIDTH = 14
COLUMN_PADDING = "  "

TIMEOUT_TEXT = "TIMEOUT"
CRASH_TEXT = "CRASH"
BUILD_FAIL_TEXT = "BUILD-FAIL"
SKIP_TEXT = "SKIP"
MISSING_TEXT = "-"


def format_cell(result: ExecutionResult | None, timing: str = "wall") -> str:
    """Return the report text for one cell."""
    if result is None:
        return MISSING_TEXT
    if isinstance(result, Success):
        if timing == "reported" and result.reported_s is not None:
            return format_seconds(result.reported_s)
        return format_seconds(result.elapsed_s)
    if isinstance(result, Timeout):
        return TIMEOUT_TEXT
    if isinstance(result, Crashed):
        return CRASH_TEXT
    if isinstance(result, BuildFailed):
        return BUILD_FAIL_TEXT
    if isinstance(result, Skipped):
        return SKIP_TEXT
    raise TypeError(f"Unknown execution result: {result!r}")


def _join(cells: Sequence[str], widths: Sequence[int]) -> str:
    parts = []
    for i, (text, width) in enumerate(zip(cells, widths)):
        parts.append(text.ljust(width) if i < 2 else text.rjust(width))
    return COLUMN_PADDING.join(parts).rstrip()


def render_mode(
    matrix: ResultMatrix,
    mode: Mode,
    revisions: Sequence[Revision],
    benchmarks: Sequence[BenchmarkFile],
    runtimes: Sequence[RuntimeKind],
    *,
    timing: str = "wall",
) -> str:
    """Render the table block for one mode."""
    mode_runtimes = [r for r in runtimes if r.mode is mode]
    header = ["file", "runtime", *(rev.name for rev in revisions)]

    groups: list[list[list[str]]] = []
    for benchmark in benchmarks:
        rows = []
        for i, runtime in enumerate(mode_runtimes):
            row = [benchmark.name if i == 0 else "", runtime.backend]
            for revision in revisions:
                result = matrix.get(CellKey.of(benchmark, runtime, revision))
                row.append(format_cell(result, timing))
            rows.append(row)
        groups.append(rows)

    widths = [max(MIN_COLUMN_WIDTH, len(h)) for h in header]
    for rows in groups:
        for row in rows:
            for ci, text in enumerate(row):
                widths[ci] = max(widths[ci], len(text))
    line_width = sum(widths) + len(COLUMN_PADDING) * (len(widths) - 1)

    lines = [mode.value, "=" * len(mode.value), ""]
    lines.append(COLUMN_PADDING.join(h.ljust(w) for h, w in zip(header, widths)).rstrip())
    lines.append("=" * line_width)
    for rows in groups:
        for row in rows:
            lines.append(_join(row, widths))
        lines.append("-" * line_width)
    return "\n".join(lines)


def render(
    matrix: ResultMatrix,
    revisions: Sequence[Revision],
    benchmarks: Sequence[BenchmarkFile],
    runtimes: Sequence[RuntimeKind],
    *,
    timing: str = "wall",
) -> str:
    """Render the full report, one block per mode that has runtimes."""
    blocks = [
        render_mode(matrix, mode, revisions, benchmarks, runtimes, timing=timing)
        for mode in MODE_ORDER
        if any(r.mode is mode for r in runtimes)
    ]
    return "\n\n".join(blocks) + "\n"

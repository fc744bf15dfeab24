"""Data model for a benchmark run.

A run is a matrix of cells, one per (benchmark file, mode, backend,
revision). Each executed cell yields exactly one :data:`ExecutionResult`;
the :class:`ResultMatrix` stores them keyed by :class:`CellKey` so that
cells may arrive in any order and absent cells stay distinguishable from
recorded failures.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Union


# ---------------------------------------------------------------------------
# Runtime kinds
# ---------------------------------------------------------------------------


class Mode(str, enum.Enum):
    """How a benchmark program is executed."""

    INTERPRETED = "interpreted"
    COMPILED = "compiled"


# Logical report order.
MODE_ORDER: tuple[Mode, ...] = (Mode.INTERPRETED, Mode.COMPILED)


@dataclass(frozen=True)
class RuntimeKind:
    """A (mode, backend) pair such as ``interpreted:rust``."""

    mode: Mode
    backend: str

    @property
    def label(self) -> str:
        return f"{self.mode.value}:{self.backend}"

    @classmethod
    def parse(cls, text: str) -> RuntimeKind:
        """Parse ``'mode:backend'``.

        Raises:
            ValueError: If the text is malformed or the mode is unknown.
        """
        mode_str, sep, backend = text.partition(":")
        if not sep or not backend.strip():
            raise ValueError(f"Runtime must look like 'mode:backend', got '{text}'")
        try:
            mode = Mode(mode_str.strip())
        except ValueError:
            valid = ", ".join(m.value for m in Mode)
            raise ValueError(f"Unknown mode '{mode_str}' (expected one of: {valid})") from None
        return cls(mode=mode, backend=backend.strip())

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class RuntimeSpec:
    """How to run one legal runtime kind.

    Argument templates may reference ``{hvm}`` (the built runtime binary),
    ``{program}`` (the benchmark source), and for compiled kinds
    ``{source}`` (the generated source file) and ``{binary}`` (the compiled
    output).
    """

    kind: RuntimeKind
    run: tuple[str, ...]
    generate: tuple[str, ...] = ()
    compile: tuple[str, ...] = ()
    source_suffix: str = ""
    toolchain: tuple[str, ...] = ()

    @property
    def is_compiled(self) -> bool:
        return self.kind.mode is Mode.COMPILED


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Revision:
    """A resolved, immutable snapshot of the target repository."""

    name: str
    resolved_id: str
    checkout: Path

    @property
    def short_id(self) -> str:
        return self.resolved_id[:12]


@dataclass(frozen=True)
class BenchmarkFile:
    """One program of the benchmark suite."""

    name: str
    path: Path


# ---------------------------------------------------------------------------
# Build artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BuildArtifact:
    """Outcome of building one (revision, runtime kind)."""

    revision: Revision
    runtime: RuntimeSpec
    executable: Path | None = None
    failure: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.executable is not None


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    """The benchmark exited 0."""

    elapsed_s: float
    reported_s: float | None = None


@dataclass(frozen=True)
class Timeout:
    """The benchmark was killed at the deadline."""

    timeout_s: float


@dataclass(frozen=True)
class Crashed:
    """The benchmark exited non-zero before the deadline."""

    exit_code: int
    signal: int | None = None
    stderr_tail: str = ""


@dataclass(frozen=True)
class BuildFailed:
    """The runtime binary or the compiled program could not be built."""

    reason: str


@dataclass(frozen=True)
class Skipped:
    """The cell was in scope but intentionally not run."""

    reason: str


ExecutionResult = Union[Success, Timeout, Crashed, BuildFailed, Skipped]


# ---------------------------------------------------------------------------
# Result matrix
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CellKey:
    """Identity of one cell of the matrix."""

    benchmark: str
    mode: Mode
    backend: str
    revision_id: str

    @classmethod
    def of(cls, benchmark: BenchmarkFile, runtime: RuntimeKind, revision: Revision) -> CellKey:
        return cls(
            benchmark=benchmark.name,
            mode=runtime.mode,
            backend=runtime.backend,
            revision_id=revision.resolved_id,
        )


@dataclass
class ResultMatrix:
    """Sparse mapping of cell keys to execution results."""

    cells: dict[CellKey, ExecutionResult] = field(default_factory=dict)

    def record(self, key: CellKey, result: ExecutionResult) -> None:
        """Store the result for *key*.

        Raises:
            KeyError: If *key* already has a result.
        """
        if key in self.cells:
            raise KeyError(f"Cell already recorded: {key}")
        self.cells[key] = result

    def get(self, key: CellKey) -> ExecutionResult | None:
        return self.cells.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self.cells

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[CellKey]:
        return iter(self.cells)

    def count(self, result_type: type) -> int:
        """Number of recorded cells whose result is a *result_type*."""
        return sum(1 for r in self.cells.values() if isinstance(r, result_type))

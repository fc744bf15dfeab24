"""Benchmark suite discovery."""

from __future__ import annotations

from pathlib import Path

from hvmbench.errors import FatalConfigError
from hvmbench.models import BenchmarkFile


def discover_programs(programs_dir: Path, pattern: str = "*.hvm") -> list[BenchmarkFile]:
    """Return the benchmark programs in *programs_dir*, sorted by name.

    The sorted order is the suite order used for scheduling and for the
    row groups of the report.

    Raises:
        FatalConfigError: If the directory is missing, holds no matching
            programs, or two programs share a name.
    """
    if not programs_dir.is_dir():
        raise FatalConfigError(f"Programs directory not found: {programs_dir}")

    programs = sorted(
        (BenchmarkFile(name=p.stem, path=p) for p in programs_dir.glob(pattern) if p.is_file()),
        key=lambda b: (b.name, str(b.path)),
    )
    if not programs:
        raise FatalConfigError(f"No benchmark programs matching '{pattern}' in {programs_dir}")

    names = [b.name for b in programs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise FatalConfigError(f"Duplicate benchmark names: {', '.join(duplicates)}")

    return programs

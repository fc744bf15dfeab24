"""Benchmark configuration and runtime table loading.

Handles:
- The default table of legal (mode, backend) runtime kinds.
- Loading benchmark profiles from YAML files.
- Merging CLI options with profile defaults.
- Validating the final configuration before any revision is resolved.
"""

from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hvmbench.models import Mode, RuntimeKind, RuntimeSpec

log = logging.getLogger("hvmbench")

TIMING_SOURCES = ("wall", "reported")


# ---------------------------------------------------------------------------
# Default runtime table
# ---------------------------------------------------------------------------


def default_runtimes() -> list[RuntimeSpec]:
    """Return the built-in runtime table in report order.

    Compiled mode is only legal for the ``c`` and ``cuda`` backends: the
    runtime generates a source file that an external compiler turns into
    a standalone binary.
    """
    return [
        RuntimeSpec(
            kind=RuntimeKind(Mode.INTERPRETED, "rust"),
            run=("{hvm}", "run", "{program}"),
        ),
        RuntimeSpec(
            kind=RuntimeKind(Mode.INTERPRETED, "c"),
            run=("{hvm}", "run-c", "{program}"),
        ),
        RuntimeSpec(
            kind=RuntimeKind(Mode.INTERPRETED, "cuda"),
            run=("{hvm}", "run-cu", "{program}"),
        ),
        RuntimeSpec(
            kind=RuntimeKind(Mode.COMPILED, "c"),
            generate=("{hvm}", "gen-c", "{program}"),
            source_suffix=".c",
            compile=("gcc", "{source}", "-lm", "-O2", "-o", "{binary}"),
            run=("{binary}",),
            toolchain=("gcc",),
        ),
        RuntimeSpec(
            kind=RuntimeKind(Mode.COMPILED, "cuda"),
            generate=("{hvm}", "gen-cu", "{program}"),
            source_suffix=".cu",
            compile=("nvcc", "{source}", "-w", "-O3", "-o", "{binary}"),
            run=("{binary}",),
            toolchain=("nvcc",),
        ),
    ]


# ---------------------------------------------------------------------------
# BenchConfig
# ---------------------------------------------------------------------------


@dataclass
class BenchConfig:
    """Resolved configuration for a benchmark run."""

    # Target repository
    repo_dir: Path = field(default_factory=lambda: Path("./hvm"))
    revisions: list[str] = field(default_factory=list)
    include_local: bool = False
    remote: str = "origin"
    fetch_missing: bool = True

    # Benchmark suite
    programs_dir: Path = field(default_factory=lambda: Path("./programs"))
    program_glob: str = "*.hvm"

    # Runtime table and optional filter
    runtimes: list[RuntimeSpec] = field(default_factory=default_runtimes)
    runtime_filter: list[str] = field(default_factory=list)

    # Build step for the runtime binary
    build_command: list[str] = field(default_factory=lambda: ["cargo", "build", "--release"])
    build_artifact: str = "target/release/hvm"

    # Limits and scheduling
    timeout: float = 60.0  # Per-run timeout in seconds
    build_timeout: float = 600.0  # Per-build timeout in seconds
    workers: int = 1

    # Output
    timing: str = "wall"  # "wall" or "reported"

    # Workspace
    work_dir: Path | None = None
    keep_work_dir: bool = False

    @property
    def selected_runtimes(self) -> list[RuntimeSpec]:
        """Runtimes left after applying ``runtime_filter``, in table order."""
        if not self.runtime_filter:
            return list(self.runtimes)
        wanted = set(self.runtime_filter)
        return [spec for spec in self.runtimes if spec.kind.label in wanted]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


INTERPRETED_PLACEHOLDERS = frozenset({"hvm", "program"})
COMPILED_PLACEHOLDERS = frozenset({"hvm", "program", "source", "binary"})


def _template_placeholders(argv: tuple[str, ...]) -> set[str]:
    """Return the placeholder names used by an argv template.

    Raises:
        ValueError: If an argument is not a valid format string.
    """
    names: set[str] = set()
    for arg in argv:
        for _literal, field_name, _spec, _conv in string.Formatter().parse(arg):
            if field_name is None:
                continue
            names.add(re.split(r"[.\[]", field_name, maxsplit=1)[0])
    return names


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: BenchConfig) -> list[ValidationError]:
    """Validate a benchmark configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not config.revisions:
        errors.append(
            ValidationError(
                field="revisions",
                message="No revisions given. Use --revs at least once.",
            )
        )

    if config.timeout <= 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout must be positive (got {config.timeout}).",
            )
        )

    if config.build_timeout <= 0:
        errors.append(
            ValidationError(
                field="build_timeout",
                message=f"Build timeout must be positive (got {config.build_timeout}).",
            )
        )

    if config.workers < 1:
        errors.append(
            ValidationError(
                field="workers",
                message=f"Workers must be at least 1 (got {config.workers}).",
            )
        )

    if config.timing not in TIMING_SOURCES:
        errors.append(
            ValidationError(
                field="timing",
                message=(
                    f"Unknown timing source '{config.timing}' "
                    f"(expected one of: {', '.join(TIMING_SOURCES)})."
                ),
            )
        )

    if not config.build_command:
        errors.append(
            ValidationError(field="build_command", message="Build command must not be empty.")
        )

    seen: set[RuntimeKind] = set()
    for spec in config.runtimes:
        if spec.kind in seen:
            errors.append(
                ValidationError(
                    field="runtimes",
                    message=f"Runtime '{spec.kind.label}' is defined twice.",
                )
            )
        seen.add(spec.kind)
        if not spec.run:
            errors.append(
                ValidationError(
                    field=f"runtimes.{spec.kind.label}",
                    message="Runtime has no run command.",
                )
            )
        if spec.is_compiled and not (spec.generate and spec.compile):
            errors.append(
                ValidationError(
                    field=f"runtimes.{spec.kind.label}",
                    message="Compiled runtimes need both 'generate' and 'compile' commands.",
                )
            )
        allowed = COMPILED_PLACEHOLDERS if spec.is_compiled else INTERPRETED_PLACEHOLDERS
        for step in ("run", "generate", "compile"):
            try:
                used = _template_placeholders(getattr(spec, step))
            except ValueError as exc:
                errors.append(
                    ValidationError(
                        field=f"runtimes.{spec.kind.label}.{step}",
                        message=f"Malformed command template: {exc}",
                    )
                )
                continue
            for name in sorted(used - allowed):
                errors.append(
                    ValidationError(
                        field=f"runtimes.{spec.kind.label}.{step}",
                        message=(
                            f"Unknown placeholder '{{{name}}}' "
                            f"(allowed: {', '.join('{' + n + '}' for n in sorted(allowed))})."
                        ),
                    )
                )

    known = {spec.kind.label for spec in config.runtimes}
    for label in config.runtime_filter:
        if label not in known:
            errors.append(
                ValidationError(
                    field="runtime_filter",
                    message=(
                        f"Runtime '{label}' is not in the runtime table "
                        f"(known: {', '.join(sorted(known))})."
                    ),
                )
            )

    if config.runtimes and not config.selected_runtimes:
        errors.append(
            ValidationError(field="runtime_filter", message="No runtimes selected.")
        )
    if not config.runtimes:
        errors.append(ValidationError(field="runtimes", message="Runtime table is empty."))

    if config.workers > 1 and any(s.kind.backend == "cuda" for s in config.selected_runtimes):
        errors.append(
            ValidationError(
                field="workers",
                message="Parallel cuda runs share one GPU; timings may interfere.",
                severity="warning",
            )
        )

    return errors


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load a benchmark profile from a YAML file.

    Profile format::

        repo_dir: ./hvm
        revisions: [main, a43dcfa57c9d]
        timeout: 60
        build_timeout: 900
        workers: 2
        programs_dir: ./programs
        build:
          command: [cargo, build, --release]
          artifact: target/release/hvm
        runtimes:
          interpreted:
            rust:
              run: ["{hvm}", run, "{program}"]
          compiled:
            c:
              generate: ["{hvm}", gen-c, "{program}"]
              source_suffix: .c
              compile: [gcc, "{source}", -lm, -O2, -o, "{binary}"]
              run: ["{binary}"]
              toolchain: [gcc]

    A ``runtimes`` section replaces the built-in table entirely.

    Returns:
        The parsed YAML as a dict.
    """
    import yaml

    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a YAML mapping, got {type(data).__name__}")

    return data


def _as_argv(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    raise ValueError(f"{where} must be a list or a string, got {type(value).__name__}")


def parse_runtime_table(data: Any) -> list[RuntimeSpec]:
    """Parse the ``runtimes`` section of a profile.

    The section maps mode names to mappings of backend name to runtime
    definition.  Modes are emitted in report order; backends keep the
    order they appear in the file.
    """
    if not isinstance(data, dict):
        raise ValueError("Profile 'runtimes' must be a mapping of mode -> backends")

    unknown = set(data) - {m.value for m in Mode}
    if unknown:
        raise ValueError(f"Unknown mode(s) in runtimes: {', '.join(sorted(unknown))}")

    specs: list[RuntimeSpec] = []
    for mode in Mode:
        backends = data.get(mode.value) or {}
        if not isinstance(backends, dict):
            raise ValueError(f"Runtimes for '{mode.value}' must be a mapping")
        for backend, definition in backends.items():
            where = f"runtimes.{mode.value}.{backend}"
            definition = definition or {}
            if not isinstance(definition, dict):
                raise ValueError(f"{where} must be a mapping")
            specs.append(
                RuntimeSpec(
                    kind=RuntimeKind(mode, str(backend)),
                    run=_as_argv(definition.get("run"), f"{where}.run"),
                    generate=_as_argv(definition.get("generate"), f"{where}.generate"),
                    compile=_as_argv(definition.get("compile"), f"{where}.compile"),
                    source_suffix=str(definition.get("source_suffix", "")),
                    toolchain=_as_argv(definition.get("toolchain"), f"{where}.toolchain"),
                )
            )
    return specs


def config_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BenchConfig:
    """Build a BenchConfig from a parsed profile and CLI overrides.

    CLI values that are ``None`` (or empty lists) leave the profile value
    in place; profile values that are missing fall back to the defaults.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None and v != []}
    config = BenchConfig()

    def pick(key: str, default: Any) -> Any:
        if key in cli:
            return cli[key]
        return profile_data.get(key, default)

    config.repo_dir = Path(pick("repo_dir", config.repo_dir))
    config.revisions = list(pick("revisions", config.revisions))
    config.include_local = bool(pick("include_local", config.include_local))
    config.remote = str(pick("remote", config.remote))
    config.fetch_missing = bool(pick("fetch_missing", config.fetch_missing))
    config.programs_dir = Path(pick("programs_dir", config.programs_dir))
    config.program_glob = str(pick("program_glob", config.program_glob))
    config.timeout = float(pick("timeout", config.timeout))
    config.build_timeout = float(pick("build_timeout", config.build_timeout))
    config.workers = int(pick("workers", config.workers))
    config.timing = str(pick("timing", config.timing))
    config.keep_work_dir = bool(pick("keep_work_dir", config.keep_work_dir))
    config.runtime_filter = list(pick("runtime_filter", config.runtime_filter))

    work_dir = pick("work_dir", None)
    config.work_dir = Path(work_dir) if work_dir else None

    build = profile_data.get("build") or {}
    if not isinstance(build, dict):
        raise ValueError("Profile 'build' must be a mapping")
    if "command" in build:
        config.build_command = list(_as_argv(build["command"], "build.command"))
    if "artifact" in build:
        config.build_artifact = str(build["artifact"])

    if "runtimes" in profile_data:
        config.runtimes = parse_runtime_table(profile_data["runtimes"])

    log.debug("Resolved configuration: %s", config)
    return config

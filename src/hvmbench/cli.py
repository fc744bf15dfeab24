"""Command-line interface for hvm-bench.

Provides the ``hvm-bench`` entry point with the ``bench`` command.  Only
the report is written to stdout; progress and diagnostics go to stderr.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import NoReturn

import click

from hvmbench import __version__
from hvmbench.config import (
    TIMING_SOURCES,
    BenchConfig,
    config_from_profile,
    load_profile,
    validate_config,
)
from hvmbench.errors import FatalConfigError
from hvmbench.logging import setup_logging
from hvmbench.models import BuildFailed, Crashed, Skipped, Success, Timeout

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__)
def main() -> None:
    """hvm-bench: compare HVM runtime timings across git revisions."""


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


@main.command(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--repo-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the local HVM repository.  [default: ./hvm]",
)
@click.option(
    "-r",
    "--revs",
    "revs",
    type=str,
    multiple=True,
    help="Revision (branch, tag or commit) to benchmark (repeatable).",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Per-run timeout in seconds.  [default: 60]",
)
@click.option(
    "--build-timeout",
    type=float,
    default=None,
    help="Per-build timeout in seconds.  [default: 600]",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Cells to run in parallel.  [default: 1]",
)
@click.option(
    "--programs-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory with the benchmark programs.  [default: ./programs]",
)
@click.option(
    "--runtime",
    "runtimes",
    type=str,
    multiple=True,
    help="Only run this runtime, as MODE:BACKEND (repeatable).",
)
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML profile with defaults and the runtime table.",
)
@click.option(
    "--include-local",
    is_flag=True,
    default=False,
    help="Also benchmark the repository's working tree as '(local)'.",
)
@click.option(
    "--no-fetch",
    is_flag=True,
    default=False,
    help="Do not fetch revisions missing from the local repository.",
)
@click.option(
    "--work-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for checkouts and binaries (default: a temporary one).",
)
@click.option(
    "--keep-work-dir",
    is_flag=True,
    default=False,
    help="Do not delete checkouts and binaries at exit.",
)
@click.option(
    "--timing",
    type=click.Choice(TIMING_SOURCES),
    default=None,
    help="Report harness wall-clock time or the time HVM reports.  [default: wall]",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option("--log-file", type=click.Path(path_type=Path), default=None)
def bench(  # noqa: PLR0913
    repo_dir: Path | None,
    revs: tuple[str, ...],
    timeout: float | None,
    build_timeout: float | None,
    workers: int | None,
    programs_dir: Path | None,
    runtimes: tuple[str, ...],
    profile_path: Path | None,
    include_local: bool,
    no_fetch: bool,
    work_dir: Path | None,
    keep_work_dir: bool,
    timing: str | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark HVM revisions and print a comparison table.

    Every program in the programs directory is run under every runtime
    kind, against every revision.  Failed builds, crashes and timeouts
    are shown in the table; the command still exits 0.

    \b
    Examples:
        hvm-bench bench --revs main --revs a43dcfa57c9d
        hvm-bench bench --repo-dir ../hvm --revs main --include-local \\
            --runtime interpreted:rust --runtime interpreted:c --workers 2
    """
    from hvmbench.builder import Builder
    from hvmbench.executor import Executor
    from hvmbench.process import ProcessTracker
    from hvmbench.report import render
    from hvmbench.resolve import Workspace, resolve
    from hvmbench.scheduler import MatrixScheduler
    from hvmbench.suite import discover_programs

    log = setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    cli_overrides: dict[str, object] = {
        "repo_dir": repo_dir,
        "revisions": list(revs),
        "timeout": timeout,
        "build_timeout": build_timeout,
        "workers": workers,
        "programs_dir": programs_dir,
        "runtime_filter": list(runtimes),
        "include_local": include_local or None,
        "fetch_missing": False if no_fetch else None,
        "work_dir": work_dir,
        "keep_work_dir": keep_work_dir or None,
        "timing": timing,
    }
    try:
        profile_data = load_profile(profile_path) if profile_path else {}
        config: BenchConfig = config_from_profile(profile_data, cli_overrides=cli_overrides)
    except (OSError, ValueError) as exc:
        _fail(f"Invalid profile: {exc}")

    errors = validate_config(config)
    for err in errors:
        if err.severity == "warning":
            log.warning("Config warning: %s: %s", err.field, err.message)
    fatal = [e for e in errors if e.severity == "error"]
    if fatal:
        _fail("Invalid configuration:\n" + "\n".join(f"  {e.field}: {e.message}" for e in fatal))

    try:
        benchmarks = discover_programs(config.programs_dir, config.program_glob)
    except FatalConfigError as exc:
        _fail(str(exc))

    selected = config.selected_runtimes
    workspace = Workspace(config.work_dir, keep=config.keep_work_dir)
    with workspace:
        try:
            revisions = resolve(
                config.repo_dir,
                config.revisions,
                workspace,
                remote=config.remote,
                fetch_missing=config.fetch_missing,
                include_local=config.include_local,
            )
        except FatalConfigError as exc:
            _fail(str(exc))

        tracker = ProcessTracker()
        builder = Builder(
            bin_dir=workspace.bin_dir,
            build_command=config.build_command,
            build_artifact=config.build_artifact,
            build_timeout=config.build_timeout,
            tracker=tracker,
        )
        executor = Executor(
            runs_dir=workspace.runs_dir,
            build_timeout=config.build_timeout,
            tracker=tracker,
        )
        scheduler = MatrixScheduler(builder, executor, tracker, workers=config.workers)
        try:
            matrix = scheduler.execute(revisions, selected, benchmarks, config.timeout)
        except KeyboardInterrupt:
            click.echo("\nBenchmark interrupted.", err=True)
            raise SystemExit(130)  # noqa: B904

    log.info(
        "Done: %d ok, %d timeout, %d crash, %d build failure, %d skipped",
        matrix.count(Success),
        matrix.count(Timeout),
        matrix.count(Crashed),
        matrix.count(BuildFailed),
        matrix.count(Skipped),
    )
    click.echo(
        render(
            matrix,
            revisions,
            benchmarks,
            [spec.kind for spec in selected],
            timing=config.timing,
        ),
        nl=False,
    )
    sys.stdout.flush()

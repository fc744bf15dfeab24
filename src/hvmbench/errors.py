"""Exceptions raised before any benchmark cell runs.

Only resolution-phase problems are exceptions. Everything that goes wrong
inside the matrix (failed builds, crashes, timeouts) is recorded as an
:class:`~hvmbench.models.ExecutionResult` instead.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for hvm-bench errors."""


class FatalConfigError(HarnessError):
    """The run cannot start: bad repo dir, no revisions, invalid config."""


class RepoNotFound(FatalConfigError):
    """The repository directory is missing or is not a git work tree."""

    def __init__(self, repo_dir: object, detail: str = "") -> None:
        self.repo_dir = repo_dir
        message = f"Repository not found: {repo_dir}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnresolvableRevision(FatalConfigError):
    """A revision name exists neither locally nor on the remote."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        message = f"Cannot resolve revision '{name}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)

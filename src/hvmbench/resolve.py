"""Revision resolution and the per-run workspace.

Turns the user's revision names into :class:`~hvmbench.models.Revision`
objects backed by detached git worktrees.  Every name is validated before
anything is checked out, so a typo fails fast without leaving half a
workspace behind.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Sequence

from hvmbench.errors import RepoNotFound, UnresolvableRevision
from hvmbench.git import GitError, GitRepository
from hvmbench.logging import get_logger
from hvmbench.models import Revision

log = get_logger("resolve")

LOCAL_REVISION_NAME = "(local)"

_SUBDIRS = ("checkouts", "bin", "runs")


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class Workspace:
    """Temporary directory holding checkouts, binaries and run directories.

    Layout::

        <root>/checkouts/<short-id>/   detached worktrees
        <root>/bin/<short-id>/hvm      built runtime binaries
        <root>/runs/                   one private directory per cell run
    """

    def __init__(self, root: Path | None = None, *, keep: bool = False) -> None:
        # A user-supplied root is never deleted, only our subdirectories.
        self._owns_root = root is None
        if root is None:
            root = Path(tempfile.mkdtemp(prefix="hvm-bench-"))
        else:
            root.mkdir(parents=True, exist_ok=True)
        self.root = root.resolve()
        self.keep = keep
        self._worktrees: list[tuple[GitRepository, Path]] = []
        for sub in _SUBDIRS:
            (self.root / sub).mkdir(exist_ok=True)

    @property
    def checkouts_dir(self) -> Path:
        return self.root / "checkouts"

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def runs_dir(self) -> Path:
        return self.root / "runs"

    def add_worktree(self, repo: GitRepository, commit: str) -> Path:
        dest = self.checkouts_dir / commit[:12]
        if not dest.exists():
            repo.add_worktree(dest, commit)
            self._worktrees.append((repo, dest))
        return dest

    def cleanup(self) -> None:
        """Remove worktrees and the workspace unless it is kept."""
        if self.keep:
            log.info("Keeping work directory: %s", self.root)
            return
        for repo, dest in self._worktrees:
            repo.remove_worktree(dest)
        self._worktrees.clear()
        if self._owns_root:
            shutil.rmtree(self.root, ignore_errors=True)
        else:
            for sub in _SUBDIRS:
                shutil.rmtree(self.root / sub, ignore_errors=True)

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def open_repository(repo_dir: Path) -> GitRepository:
    """Return the repository at *repo_dir*.

    Raises:
        RepoNotFound: If the directory is missing or not a git work tree.
    """
    if not repo_dir.exists():
        raise RepoNotFound(repo_dir, "does not exist")
    if not repo_dir.is_dir():
        raise RepoNotFound(repo_dir, "not a directory")
    repo = GitRepository(repo_dir)
    if not repo.is_work_tree():
        raise RepoNotFound(repo_dir, "not a git work tree")
    return repo


def resolve_ids(
    repo: GitRepository,
    names: Sequence[str],
    *,
    remote: str = "origin",
    fetch_missing: bool = True,
) -> list[tuple[str, str]]:
    """Resolve *names* to ``(name, commit)`` pairs.

    Each distinct name is resolved once.  The result keeps input order and
    drops names whose commit was already produced by an earlier name.

    Raises:
        UnresolvableRevision: If a name is unknown locally and remotely.
    """
    by_name: dict[str, str] = {}
    resolved: list[tuple[str, str]] = []
    seen_ids: set[str] = set()
    fetched_all = False

    for name in names:
        if name in by_name:
            continue
        commit = repo.rev_parse(name)
        if commit is None and fetch_missing:
            log.info("Revision '%s' not found locally, fetching from %s", name, remote)
            commit = repo.fetch(remote, name)
            if commit is None and not fetched_all:
                log.info("Fetching all refs from %s to look for '%s'", remote, name)
                fetched_all = repo.fetch_all(remote)
                commit = repo.rev_parse(name)
        if commit is None:
            if fetch_missing:
                detail = f"not found locally or on remote '{remote}'"
            else:
                detail = "not found locally"
            raise UnresolvableRevision(name, detail)
        by_name[name] = commit
        if commit in seen_ids:
            log.info("Revision '%s' is the same commit as an earlier one, skipping", name)
            continue
        seen_ids.add(commit)
        resolved.append((name, commit))
        log.debug("Resolved '%s' -> %s", name, commit)

    return resolved


def resolve(
    repo_dir: Path,
    names: Sequence[str],
    workspace: Workspace,
    *,
    remote: str = "origin",
    fetch_missing: bool = True,
    include_local: bool = False,
) -> list[Revision]:
    """Resolve revision names and materialize a checkout for each.

    With *include_local* a trailing ``(local)`` revision builds the
    repository's working tree as it is, uncommitted changes included.

    Raises:
        RepoNotFound: If *repo_dir* is not a git work tree.
        UnresolvableRevision: If any name cannot be resolved, or a
            checkout cannot be created.
    """
    repo = open_repository(repo_dir)
    pairs = resolve_ids(repo, names, remote=remote, fetch_missing=fetch_missing)

    revisions: list[Revision] = []
    for name, commit in pairs:
        try:
            checkout = workspace.add_worktree(repo, commit)
        except GitError as exc:
            raise UnresolvableRevision(name, f"checkout failed: {exc}") from exc
        revisions.append(Revision(name=name, resolved_id=commit, checkout=checkout))
        log.info("Revision %s: %s", name, commit[:12])

    if include_local:
        head = repo.head() or "unborn"
        revisions.append(
            Revision(
                name=LOCAL_REVISION_NAME,
                resolved_id=f"local-{head}",
                checkout=repo_dir.resolve(),
            )
        )
        log.info("Revision %s: working tree of %s", LOCAL_REVISION_NAME, repo_dir)

    return revisions

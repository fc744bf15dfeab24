"""Thin git plumbing used to resolve and materialize revisions."""

from __future__ import annotations

import subprocess
from pathlib import Path

from hvmbench.logging import get_logger

log = get_logger("git")


class GitError(Exception):
    """A git command failed."""


class GitRepository:
    """A local git work tree, driven through the ``git`` executable."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _git(self, *args: str, timeout: float = 60, check: bool = True) -> str:
        log.debug("Running: git %s (in %s)", " ".join(args), self.path)
        try:
            proc = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                cwd=str(self.path),
                timeout=timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise GitError(f"git {args[0]} failed: {exc}") from exc
        if check and proc.returncode != 0:
            raise GitError(f"git {args[0]} exited {proc.returncode}: {proc.stderr.strip()}")
        return proc.stdout.strip()

    def is_work_tree(self) -> bool:
        """True if the path is inside a git work tree."""
        try:
            return self._git("rev-parse", "--is-inside-work-tree", timeout=10) == "true"
        except GitError:
            return False

    def rev_parse(self, rev: str) -> str | None:
        """Resolve *rev* to a full commit hash, or ``None`` if unknown."""
        try:
            out = self._git("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", timeout=10)
        except GitError:
            return None
        return out or None

    def fetch(self, remote: str, rev: str, timeout: float = 300) -> str | None:
        """Fetch *rev* from *remote* and return the fetched commit hash."""
        try:
            self._git("fetch", "--quiet", remote, rev, timeout=timeout)
        except GitError as exc:
            log.debug("Fetch of %s from %s failed: %s", rev, remote, exc)
            return None
        return self.rev_parse("FETCH_HEAD")

    def fetch_all(self, remote: str, timeout: float = 600) -> bool:
        """Fetch every branch and tag of *remote*.

        Needed for abbreviated commit ids, which ``git fetch`` cannot
        request by name.
        """
        try:
            self._git("fetch", "--quiet", "--tags", remote, timeout=timeout)
        except GitError as exc:
            log.debug("Fetch of all refs from %s failed: %s", remote, exc)
            return False
        return True

    def head(self) -> str | None:
        return self.rev_parse("HEAD")

    def add_worktree(self, dest: Path, commit: str) -> None:
        """Check out *commit* as a detached worktree at *dest*."""
        self._git("worktree", "add", "--detach", "--force", str(dest), commit, timeout=300)

    def remove_worktree(self, dest: Path) -> None:
        """Remove a worktree created by :meth:`add_worktree`."""
        try:
            self._git("worktree", "remove", "--force", str(dest), timeout=120)
            self._git("worktree", "prune", timeout=60, check=False)
        except GitError as exc:
            log.warning("Could not remove worktree %s: %s", dest, exc)

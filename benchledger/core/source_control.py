"""Git operations used by the resolver and the build stages.

``SourceControl`` is the Protocol the engine depends on; ``GitSourceControl``
implements it on top of the ``git`` command line.

History order: ``log_range`` returns commits oldest -> newest, covering the
commits reachable from ``end`` but not from ``start`` (git's ``start..end``).
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from benchledger.core.errors import BenchLedgerError

logger = logging.getLogger(__name__)

HEAD = "HEAD"


class SourceControlError(BenchLedgerError):
    """Raised when a git command fails."""


class UnresolvableReferenceError(SourceControlError):
    """Raised when a branch or revision cannot be resolved to a commit."""


class LogEntry(BaseModel):
    """One commit from a history walk."""

    model_config = ConfigDict(frozen=True)

    id: str
    parent_count: int
    short_message: str = ""

    @property
    def is_merge(self) -> bool:
        return self.parent_count > 1


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceControl(Protocol):
    """What the engine needs from source control."""

    def resolve_commit(self, repo: Path, branch: str, revision: str) -> str:
        """Resolve *revision* (or ``"HEAD"`` of *branch*) to a full commit id."""
        ...

    def log_range(self, repo: Path, branch: str, start: str, end: str) -> list[LogEntry]:
        """Commits in ``start..end``, oldest first."""
        ...

    def checkout(self, repo: Path, branch: str, commit: str) -> None:
        """Make the working tree of *repo* match *commit*."""
        ...

    def fetch_or_clone(self, remote: str, repo: Path, branches: Sequence[str]) -> None:
        """Clone *remote* into *repo*, or fetch *branches* if it exists."""
        ...

    def push_changes(self, remote: str, repo: Path, branch: str) -> bool:
        """Commit pending changes in *repo* and push *branch*."""
        ...


# ---------------------------------------------------------------------------
# git CLI implementation
# ---------------------------------------------------------------------------


class GitSourceControl:
    """``SourceControl`` backed by the ``git`` executable."""

    def __init__(self, git: str = "git") -> None:
        self._git_program = git

    def _git(self, repo: Path | None, args: list[str], *, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self._git_program]
        if repo is not None:
            cmd += ["-C", str(repo)]
        cmd += args
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise SourceControlError(f"Cannot run git: {exc}") from exc
        if check and result.returncode != 0:
            raise SourceControlError(
                f"`git {' '.join(args)}` failed in {repo}: {result.stderr.strip()}"
            )
        return result

    # ------------------------------------------------------------------
    # Resolution and history
    # ------------------------------------------------------------------

    def _candidates(self, branch: str, revision: str) -> list[str]:
        if revision == HEAD:
            return [f"refs/remotes/origin/{branch}", f"refs/heads/{branch}"]
        return [revision]

    def resolve_commit(self, repo: Path, branch: str, revision: str) -> str:
        for candidate in self._candidates(branch, revision):
            result = self._git(
                repo,
                ["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"],
                check=False,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        raise UnresolvableReferenceError(
            f"Couldn't resolve revision {revision} on branch {branch} in repo {repo}"
        )

    def log_range(self, repo: Path, branch: str, start: str, end: str) -> list[LogEntry]:
        start_id = self.resolve_commit(repo, branch, start)
        end_id = self.resolve_commit(repo, branch, end)
        result = self._git(
            repo,
            ["log", "--reverse", "--format=%H %P%x09%s", f"{start_id}..{end_id}"],
        )
        entries: list[LogEntry] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            hashes, _, subject = line.partition("\t")
            commit_id, *parents = hashes.split()
            entries.append(
                LogEntry(id=commit_id, parent_count=len(parents), short_message=subject)
            )
        return entries

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    def checkout(self, repo: Path, branch: str, commit: str) -> None:
        logger.info("Checking out %s [%s] in %s", commit[:7], branch, repo)
        self._git(repo, ["checkout", "--force", "-B", branch, commit])

    # ------------------------------------------------------------------
    # Remote sync
    # ------------------------------------------------------------------

    def fetch_or_clone(self, remote: str, repo: Path, branches: Sequence[str]) -> None:
        if not branches:
            raise SourceControlError(f"No branches given to sync from {remote}")
        desc = f"{remote} [{', '.join(branches)}] into {repo}"
        repo = Path(repo)
        if not repo.exists():
            logger.info("Cloning %s...", desc)
            repo.parent.mkdir(parents=True, exist_ok=True)
            self._git(None, ["clone", "--branch", branches[0], remote, str(repo)])
            if len(branches) > 1:
                self._fetch(repo, branches[1:])
            logger.info("Clone done.")
        else:
            logger.info("Fetching %s...", desc)
            self._validate_remote_origin(repo, remote)
            self._fetch(repo, branches)
            logger.info("Fetch done.")

    def _fetch(self, repo: Path, branches: Sequence[str]) -> None:
        refspecs = [f"refs/heads/{b}:refs/remotes/origin/{b}" for b in branches]
        self._git(repo, ["fetch", "origin", *refspecs])

    def _validate_remote_origin(self, repo: Path, remote: str) -> None:
        existing = self._git(repo, ["remote", "get-url", "origin"]).stdout.strip()
        if existing != remote:
            raise SourceControlError(
                f"Remote URI for origin in {repo} must be {remote}, was {existing}"
            )

    def push_changes(self, remote: str, repo: Path, branch: str) -> bool:
        """Commit any new records in *repo* and push *branch* to origin.

        Returns True if a new commit was created.
        """
        self._validate_remote_origin(repo, remote)
        self._git(repo, ["add", "--all", "."])
        status = self._git(repo, ["status", "--porcelain"]).stdout
        committed = bool(status.strip())
        if committed:
            self._git(repo, ["commit", "--message", "Added records"])
        logger.info("Pushing records to %s [%s]", remote, branch)
        self._git(repo, ["push", "origin", f"{branch}:{branch}"])
        return committed

"""Git probes used when a checkpoint is written.

A checkpoint records which files were uncommitted at the time and, in its
metadata, the branch and commit it was taken on. Everything here shells out
to the ``git`` CLI and degrades to empty values outside a repository or
when git is not installed; a checkpoint is never refused over git state.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 5


@dataclass(frozen=True)
class GitContext:
    """Branch, commit and dirtiness of the work tree at checkpoint time."""

    branch: str  # e.g. "main"; tag or short sha when HEAD is detached
    commit: str  # short sha
    dirty: bool

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> GitContext:
        return cls(
            branch=data.get("branch", ""),
            commit=data.get("commit", ""),
            dirty=bool(data.get("dirty", False)),
        )


def _run_git(*args: str, cwd: Path | None = None) -> str | None:
    """``git <args>`` stdout without the trailing newline, or None on any failure."""
    try:
        proc = subprocess.run(  # noqa: S603
            ["git", *args],  # noqa: S607
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git {' '.join(args)} failed: {e}")
        return None

    if proc.returncode != 0:
        logger.debug(f"git {' '.join(args)} exited {proc.returncode}")
        return None
    return proc.stdout.rstrip("\n")


def parse_porcelain(output: str) -> tuple[str, ...]:
    """Paths named by ``git status --porcelain`` (v1) output, sorted and unique.

    Each line is ``XY <path>``; renames and copies read ``XY <old> -> <new>``
    and contribute the new path. Paths git quoted are unquoted.
    """
    paths = set()
    for line in output.splitlines():
        entry = line[3:]
        if not entry:
            continue
        _, arrow, renamed = entry.partition(" -> ")
        path = renamed if arrow else entry
        if len(path) >= 2 and path[0] == path[-1] == '"':
            path = path[1:-1]
        paths.add(path)
    return tuple(sorted(paths))


def is_git_repo(path: Path | None = None) -> bool:
    return _run_git("rev-parse", "--is-inside-work-tree", cwd=path) == "true"


def get_commit(path: Path | None = None) -> str:
    """Short sha of HEAD, "" outside a repo or before the first commit."""
    return _run_git("rev-parse", "--short", "HEAD", cwd=path) or ""


def get_branch(path: Path | None = None) -> str:
    """Current branch; the nearest tag or short sha when detached; "" outside a repo."""
    branch = _run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=path)
    if branch and branch != "HEAD":
        return branch
    return _run_git("describe", "--tags", "--always", cwd=path) or ""


def get_uncommitted_files(path: Path | None = None) -> tuple[str, ...]:
    """Staged, unstaged and untracked files, relative to the repository root."""
    output = _run_git("status", "--porcelain", "--untracked-files=all", cwd=path)
    return parse_porcelain(output) if output else ()


def capture_git_context(path: Path | None = None) -> GitContext | None:
    """Snapshot of the repository state, or None outside a repository."""
    if not is_git_repo(path):
        return None

    return GitContext(
        branch=get_branch(path),
        commit=get_commit(path),
        dirty=bool(get_uncommitted_files(path)),
    )

"""Checkpoint diffs.

Compares two checkpoint records, or one record against the live project
tree, and renders the result as a fixed-width text report.

Checkpoints only store *which* files changed, so the comparison is
approximate:

- Two records: a path in both is ``unchanged``; in one only is
  ``added``/``deleted``.
- Record vs. current: a path tracked by the checkpoint that still exists is
  ``modified``, with line counts estimated from file size (~40 chars per
  line; 30% counted as added, 10% as deleted). A path that is gone is
  ``deleted`` with 0 lines, since the content was never stored. A file on
  disk the checkpoint didn't track is ``added`` with its real line count.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterable

from warden.checkpoint import CheckpointData, CheckpointInfo, CheckpointStore
from warden.config import PROJECT_DIRNAME
from warden.errors import CheckpointNotFoundError

logger = logging.getLogger(__name__)


CURRENT = "current"

# Directories never scanned, at any depth
EXCLUDED_DIRS = frozenset({".git", "node_modules", "dist", "build", PROJECT_DIRNAME})
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = ("*.log", "**/*.log")

# Size heuristic for modified files
CHARS_PER_LINE = 40
ADDED_RATIO = 0.3
DELETED_RATIO = 0.1

MAX_REPORT_FILES = 20
RULE_WIDTH = 63

STATUS_GLYPHS = {
    "added": "+",
    "modified": "M",
    "deleted": "-",
    "unchanged": " ",
}


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class FileDiff:
    """Change status of one path."""

    path: str
    status: str  # added, modified, deleted, unchanged
    lines_added: int = 0
    lines_deleted: int = 0
    size_diff: int = 0
    current_size: int | None = None
    previous_size: int | None = None


@dataclass(frozen=True)
class CheckpointRef:
    """Identity of one side of a diff."""

    id: str
    name: str
    created_at: str  # ISO timestamp

    @classmethod
    def from_data(cls, data: CheckpointData) -> "CheckpointRef":
        return cls(id=data.id, name=data.name, created_at=data.created_at)


@dataclass(frozen=True)
class DiffSummary:
    files_added: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0
    total_lines_added: int = 0
    total_lines_deleted: int = 0

    @property
    def net_line_change(self) -> int:
        return self.total_lines_added - self.total_lines_deleted

    @classmethod
    def from_files(cls, files: Iterable[FileDiff]) -> "DiffSummary":
        counts = {status: 0 for status in STATUS_GLYPHS}
        added = deleted = 0
        for f in files:
            counts[f.status] += 1
            added += f.lines_added
            deleted += f.lines_deleted

        return cls(
            files_added=counts["added"],
            files_modified=counts["modified"],
            files_deleted=counts["deleted"],
            files_unchanged=counts["unchanged"],
            total_lines_added=added,
            total_lines_deleted=deleted,
        )


@dataclass(frozen=True)
class TokenDiff:
    from_tokens: int
    to_tokens: int

    @property
    def diff(self) -> int:
        return self.to_tokens - self.from_tokens


@dataclass(frozen=True)
class CheckpointDiff:
    """Structured diff between a checkpoint and a checkpoint or the live tree."""

    from_checkpoint: CheckpointRef
    to_checkpoint: CheckpointRef | str  # CheckpointRef or "current"
    files: tuple[FileDiff, ...]
    summary: DiffSummary
    generated_at: str  # ISO timestamp
    token_diff: TokenDiff | None = None

    @property
    def to_current(self) -> bool:
        return self.to_checkpoint == CURRENT


@dataclass(frozen=True)
class DiffOptions:
    include_unchanged: bool = False
    max_files: int | None = None  # Stop after this many entries (None or 0 = no limit)
    include_patterns: tuple[str, ...] = ()  # Restrict live scan to these globs
    exclude_patterns: tuple[str, ...] = ()  # Added to the defaults


# =============================================================================
# Glob Matching
# =============================================================================


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a simple glob into an anchored regex.

    ``**`` matches across directories, ``*`` within one path segment, ``?``
    a single character. Not a full gitignore implementation.
    """
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append(".")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def matches_patterns(path: str, patterns: Iterable[str]) -> bool:
    """True if the relative posix path matches any glob."""
    return any(glob_to_regex(p).match(path) for p in patterns)


# =============================================================================
# Report
# =============================================================================


def _signed(n: int) -> str:
    return f"+{n:,}" if n >= 0 else f"{n:,}"


def _banner(title: str, rule: str) -> list[str]:
    return [rule * RULE_WIDTH, title.center(RULE_WIDTH).rstrip(), rule * RULE_WIDTH, ""]


def format_diff_summary(diff: CheckpointDiff) -> str:
    """Render a diff as a fixed-width text report."""
    lines = _banner("CHECKPOINT DIFF SUMMARY", "═")

    src = diff.from_checkpoint
    lines.append(f"From: {src.name} ({src.id[:8]})")
    lines.append(f"      Created: {src.created_at}")
    lines.append("")

    if isinstance(diff.to_checkpoint, CheckpointRef):
        dst = diff.to_checkpoint
        lines.append(f"To:   {dst.name} ({dst.id[:8]})")
        lines.append(f"      Created: {dst.created_at}")
    else:
        lines.append("To:   Current state")
    lines.append("")

    s = diff.summary
    lines.extend(_banner("SUMMARY", "─"))
    lines.append(f"  Files added:     {s.files_added}")
    lines.append(f"  Files modified:  {s.files_modified}")
    lines.append(f"  Files deleted:   {s.files_deleted}")
    lines.append(f"  Files unchanged: {s.files_unchanged}")
    lines.append("")
    lines.append(f"  Lines added:     +{s.total_lines_added}")
    lines.append(f"  Lines deleted:   -{s.total_lines_deleted}")
    lines.append(f"  Net change:      {'+' if s.net_line_change >= 0 else ''}{s.net_line_change}")
    lines.append("")

    if diff.token_diff is not None:
        t = diff.token_diff
        lines.extend(_banner("TOKEN USAGE", "─"))
        lines.append(f"  From:  {t.from_tokens:,} tokens")
        lines.append(f"  To:    {t.to_tokens:,} tokens")
        lines.append(f"  Diff:  {_signed(t.diff)} tokens")
        lines.append("")

    if diff.files:
        lines.extend(_banner("FILES CHANGED", "─"))
        for f in diff.files[:MAX_REPORT_FILES]:
            change = "" if f.status == "unchanged" else f" (+{f.lines_added}/-{f.lines_deleted})"
            lines.append(f"  [{STATUS_GLYPHS[f.status]}] {f.path}{change}")
        if len(diff.files) > MAX_REPORT_FILES:
            lines.append(f"  ... and {len(diff.files) - MAX_REPORT_FILES} more files")
        lines.append("")

    lines.append("═" * RULE_WIDTH)
    return "\n".join(lines)


# =============================================================================
# Service
# =============================================================================


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class CheckpointDiffService:
    """Computes diffs between checkpoints or against the live project tree."""

    def __init__(
        self,
        store: CheckpointStore,
        project_root: Path,
        token_usage: Callable[[], int | None] | None = None,
    ):
        self.store = store
        self.project_root = Path(project_root)
        # Current-side token count for diffs against the live tree
        self._token_usage = token_usage

    async def generate_diff(
        self,
        from_id: str,
        to_id: str = CURRENT,
        options: DiffOptions | None = None,
    ) -> CheckpointDiff:
        """Diff a checkpoint against another checkpoint or "current".

        Raises:
            CheckpointNotFoundError: If either checkpoint does not exist
        """
        options = options or DiffOptions()
        to_current = to_id == CURRENT

        from_data = await self._load(from_id)
        to_data = None if to_current else await self._load(to_id)

        from_files = set(from_data.files_changed)
        if to_current:
            to_files = await asyncio.to_thread(self.scan_project_files, options)
        else:
            to_files = list(to_data.files_changed)

        # Ordered union: checkpoint paths first, then new ones
        tracked = list(dict.fromkeys([*from_data.files_changed, *to_files]))
        to_set = set(to_files)

        files: list[FileDiff] = []
        for path in tracked:
            if to_current:
                diff = self._diff_against_current(path, path in from_files)
            else:
                diff = self._diff_records(path, path in from_files, path in to_set)

            if diff.status != "unchanged" or options.include_unchanged:
                files.append(diff)

            if options.max_files and len(files) >= options.max_files:
                break

        token_diff = None
        to_tokens = self._current_tokens() if to_current else to_data.token_usage
        if from_data.token_usage is not None and to_tokens is not None:
            token_diff = TokenDiff(from_tokens=from_data.token_usage, to_tokens=to_tokens)

        logger.debug(f"Diff {from_id} -> {to_id}: {len(files)} files")

        return CheckpointDiff(
            from_checkpoint=CheckpointRef.from_data(from_data),
            to_checkpoint=CURRENT if to_current else CheckpointRef.from_data(to_data),
            files=tuple(files),
            summary=DiffSummary.from_files(files),
            generated_at=datetime.now(UTC).isoformat(),
            token_diff=token_diff,
        )

    async def diff_from_latest(
        self,
        latest: CheckpointInfo,
        options: DiffOptions | None = None,
    ) -> CheckpointDiff:
        """Diff the given (latest) checkpoint against the live tree."""
        return await self.generate_diff(latest.id, CURRENT, options)

    def format_diff_summary(self, diff: CheckpointDiff) -> str:
        return format_diff_summary(diff)

    def scan_project_files(self, options: DiffOptions | None = None) -> list[str]:
        """List project files as sorted posix paths relative to the root."""
        options = options or DiffOptions()
        exclude = (*DEFAULT_EXCLUDE_PATTERNS, *options.exclude_patterns)
        files = []

        for dirpath, dirnames, filenames in os.walk(self.project_root):
            rel_dir = Path(dirpath).relative_to(self.project_root)

            kept = []
            for name in sorted(dirnames):
                rel = (rel_dir / name).as_posix()
                if name in EXCLUDED_DIRS or matches_patterns(rel, exclude):
                    continue
                kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                rel = (rel_dir / name).as_posix()
                if matches_patterns(rel, exclude):
                    continue
                if options.include_patterns and not matches_patterns(rel, options.include_patterns):
                    continue
                files.append(rel)

        return files

    # =========================================================================
    # Internals
    # =========================================================================

    async def _load(self, checkpoint_id: str) -> CheckpointData:
        data = await asyncio.to_thread(self.store.load, checkpoint_id)
        if data is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return data

    def _current_tokens(self) -> int | None:
        if self._token_usage is None:
            return None
        return self._token_usage()

    def _diff_records(self, path: str, in_from: bool, in_to: bool) -> FileDiff:
        if in_from and not in_to:
            return FileDiff(path=path, status="deleted")
        if in_to and not in_from:
            return FileDiff(path=path, status="added")
        return FileDiff(path=path, status="unchanged")

    def _diff_against_current(self, path: str, in_from: bool) -> FileDiff:
        full_path = self.project_root / path
        if not full_path.is_file():
            # Content was never stored, so deleted line counts are unknown
            return FileDiff(path=path, status="deleted" if in_from else "unchanged")

        try:
            size = full_path.stat().st_size
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return FileDiff(path=path, status="modified" if in_from else "added")

        if in_from:
            estimated = _round_half_up(size / CHARS_PER_LINE)
            return FileDiff(
                path=path,
                status="modified",
                lines_added=_round_half_up(estimated * ADDED_RATIO),
                lines_deleted=_round_half_up(estimated * DELETED_RATIO),
                current_size=size,
            )

        try:
            line_count = len(full_path.read_text(encoding="utf-8").split("\n"))
        except (UnicodeDecodeError, OSError):
            # Binary or unreadable; size only
            line_count = 0

        return FileDiff(
            path=path,
            status="added",
            lines_added=line_count,
            size_diff=size,
            current_size=size,
        )

"""Checkpoint storage for Warden.

A checkpoint records *which* files were in play at a point in time, not
their content. Each one is a single JSON file:

    <project>/.warden/checkpoints/<uuid>.json

with the keys ``id, name, created_at, reason, token_usage, files_changed,
metadata, summary``. Records are written once (atomically, mode 0o600) and
never rewritten or deleted here; retention is someone else's job.

The auto-checkpoint and diff services only depend on the ``CheckpointStore``
protocol, so a different backend can be swapped in.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Protocol

from warden.atomic import atomic_write_json
from warden.config import PROJECT_DIRNAME
from warden.errors import format_error
from warden.git import capture_git_context, get_uncommitted_files
from warden.types import CheckpointId

logger = logging.getLogger(__name__)


# Checkpoint reasons
BEFORE_RISKY_OPERATION = "before_risky_operation"
MANUAL = "manual"
THRESHOLD = "threshold"
LARGE_EDIT = "large_edit"
CHECKPOINT_REASONS = (BEFORE_RISKY_OPERATION, MANUAL, THRESHOLD, LARGE_EDIT)

# Ids are uuid4 strings; prefixes of them are accepted on load
_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(frozen=True)
class CheckpointInfo:
    """Lightweight description of a stored checkpoint."""

    id: CheckpointId
    name: str
    created_at: str  # ISO timestamp
    reason: str  # before_risky_operation, manual, threshold, large_edit
    token_usage: int | None = None
    size: int = 0  # Bytes on disk

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "reason": self.reason,
            "token_usage": self.token_usage,
            "size": self.size,
        }


@dataclass(frozen=True)
class CheckpointData:
    """Full checkpoint record as persisted."""

    id: CheckpointId
    name: str
    created_at: str  # ISO timestamp
    reason: str
    token_usage: int | None = None
    files_changed: tuple[str, ...] = ()  # Project-relative paths
    metadata: dict = field(default_factory=dict)
    summary: str = ""

    def to_dict(self) -> dict:
        """Serialize to the on-disk JSON shape."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "reason": self.reason,
            "token_usage": self.token_usage,
            "files_changed": list(self.files_changed),
            "metadata": self.metadata,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointData":
        """Deserialize from the on-disk JSON shape.

        Raises:
            KeyError: If a required key is missing
            TypeError: If files_changed is not a list
        """
        files = data.get("files_changed") or []
        if not isinstance(files, list):
            raise TypeError("'files_changed' must be a list")

        return cls(
            id=CheckpointId(data["id"]),
            name=data["name"],
            created_at=data["created_at"],
            reason=data["reason"],
            token_usage=data.get("token_usage"),
            files_changed=tuple(str(f) for f in files),
            metadata=data.get("metadata") or {},
            summary=data.get("summary") or "",
        )

    def to_info(self, size: int = 0) -> CheckpointInfo:
        return CheckpointInfo(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            reason=self.reason,
            token_usage=self.token_usage,
            size=size,
        )


class CheckpointStore(Protocol):
    """Storage capability consumed by the auto-checkpoint and diff services."""

    def create(
        self,
        reason: str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        files_changed: list[str] | tuple[str, ...] | None = None,
        summary: str | None = None,
    ) -> CheckpointInfo: ...

    def load(self, checkpoint_id: str) -> CheckpointData | None: ...

    def list_checkpoints(self, limit: int | None = None) -> list[CheckpointInfo]: ...


def get_checkpoints_dir(project_root: Path) -> Path:
    """Checkpoint directory for a project."""
    return project_root / PROJECT_DIRNAME / "checkpoints"


class FileCheckpointStore:
    """CheckpointStore backed by one JSON file per checkpoint."""

    def __init__(
        self,
        project_root: Path,
        token_usage: Callable[[], int | None] | None = None,
        capture_git: bool = False,
    ):
        self.project_root = Path(project_root)
        self.checkpoints_dir = get_checkpoints_dir(self.project_root)
        self._token_usage = token_usage
        self.capture_git = capture_git

    def current_token_usage(self) -> int | None:
        """Token usage reported by the injected provider, if any."""
        if self._token_usage is None:
            return None
        return self._token_usage()

    def create(
        self,
        reason: str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        files_changed: list[str] | tuple[str, ...] | None = None,
        summary: str | None = None,
    ) -> CheckpointInfo:
        """Write a new checkpoint record.

        Raises:
            ValueError: If reason is not a known checkpoint reason
            OSError: If the record could not be written
        """
        if reason not in CHECKPOINT_REASONS:
            raise ValueError(f"Unknown checkpoint reason: {reason}")

        checkpoint_id = CheckpointId(str(uuid.uuid4()))
        created_at = datetime.now(UTC).isoformat()
        metadata = dict(metadata or {})
        files = set(files_changed or ())

        if self.capture_git:
            files.update(get_uncommitted_files(self.project_root))
            git_context = capture_git_context(self.project_root)
            if git_context is not None:
                metadata["git"] = git_context.to_dict()

        data = CheckpointData(
            id=checkpoint_id,
            name=name or f"checkpoint-{created_at[:19].replace(':', '-')}",
            created_at=created_at,
            reason=reason,
            token_usage=self.current_token_usage(),
            files_changed=tuple(sorted(files)),
            metadata=metadata,
            summary=summary or "",
        )

        file_path = self.checkpoints_dir / f"{checkpoint_id}.json"
        result = atomic_write_json(file_path, data.to_dict())
        if result.is_err():
            raise OSError(f"Failed to save checkpoint: {format_error(result.unwrap_err())}")

        size = file_path.stat().st_size
        logger.info(f"Checkpoint created: {data.name} ({checkpoint_id}, {reason})")
        return data.to_info(size)

    def load(self, checkpoint_id: str) -> CheckpointData | None:
        """Load a checkpoint by id or unambiguous id prefix."""
        if not checkpoint_id or not _ID_RE.match(checkpoint_id):
            return None

        file_path = self.checkpoints_dir / f"{checkpoint_id}.json"
        if file_path.exists():
            return self._load_file(file_path)

        matches = list(self.checkpoints_dir.glob(f"{checkpoint_id}*.json"))
        if len(matches) == 1:
            return self._load_file(matches[0])
        if len(matches) > 1:
            logger.debug(f"Ambiguous checkpoint prefix: {checkpoint_id}")

        return None

    def list_checkpoints(self, limit: int | None = None) -> list[CheckpointInfo]:
        """List checkpoints, most recent first."""
        if not self.checkpoints_dir.exists():
            return []

        infos = []
        for file_path in self.checkpoints_dir.glob("*.json"):
            data = self._load_file(file_path)
            if data is not None:
                infos.append(data.to_info(file_path.stat().st_size))

        infos.sort(key=lambda info: info.created_at, reverse=True)
        if limit is not None:
            return infos[:limit]
        return infos

    def _load_file(self, file_path: Path) -> CheckpointData | None:
        try:
            with open(file_path, encoding="utf-8") as f:
                return CheckpointData.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Invalid checkpoint {file_path}: {e}")
            return None

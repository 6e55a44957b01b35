"""Configuration management for Warden.

Storage Structure
-----------------
Warden uses a layered storage model:

~/.warden/                    # User-level defaults
└── config.yaml               # Personal thresholds

<project>/.warden/            # Project-level
├── checkpoints/              # One JSON record per checkpoint (<id>.json)
└── config.yaml               # Team thresholds (overrides user-level)

Configuration
-------------
**WardenConfig**
    Cascade (merged per key): project .warden/config.yaml → user ~/.warden/config.yaml → defaults
    - auto_checkpoint_enabled, min_interval_ms: Auto-checkpoint switch and throttle
    - checkpoint_on_git, checkpoint_on_large_edit, large_edit_threshold
    - conservative_threshold, critical_threshold: Governor mode boundaries (%)
    - token_budget, warning_threshold, pause_threshold: Token accounting
    - capture_git_changes: Record uncommitted files in each checkpoint
    - diff_exclude_patterns: Extra glob exclusions for live diff scans
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from warden.atomic import atomic_write_yaml
from warden.errors import format_error

logger = logging.getLogger(__name__)

# Standard paths
WARDEN_DIR = Path.home() / ".warden"
CONFIG_FILENAME = "config.yaml"
PROJECT_DIRNAME = ".warden"


@dataclass
class WardenConfig:
    """User-configurable thresholds for checkpointing and the governor."""

    # Auto-checkpoint
    auto_checkpoint_enabled: bool = True
    min_interval_ms: int = 30000
    checkpoint_on_git: bool = True
    checkpoint_on_large_edit: bool = True
    large_edit_threshold: int = 100

    # Governor (percent of token budget)
    conservative_threshold: float = 70.0
    critical_threshold: float = 85.0

    # Token accounting
    token_budget: int = 200000
    warning_threshold: float = 70.0
    pause_threshold: float = 90.0

    # Checkpoint capture
    capture_git_changes: bool = True

    # Diff
    diff_exclude_patterns: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, warden_dir: Path) -> "WardenConfig":
        """Load config from a single warden directory (no cascade).

        Args:
            warden_dir: Path to .warden directory (project-local or user-level)

        Returns:
            WardenConfig with values from file, or defaults if not found
        """
        return cls(**_read_overrides(warden_dir))

    def save(self, warden_dir: Path) -> Path:
        """Save the non-default values to a warden directory.

        An all-default config is written as ``{_version: 1}`` so the file
        still marks the directory as explicitly configured.

        Raises:
            OSError: If the file cannot be written
        """
        defaults = asdict(WardenConfig())
        data = {key: value for key, value in self.to_dict().items() if defaults[key] != value}

        result = atomic_write_yaml(warden_dir / CONFIG_FILENAME, data or {"_version": 1})
        if result.is_err():
            raise OSError(format_error(result.unwrap_err()))

        return result.unwrap()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _read_overrides(warden_dir: Path) -> dict[str, Any]:
    """Known keys from ``<warden_dir>/config.yaml``; {} if missing or unusable."""
    config_path = warden_dir / CONFIG_FILENAME
    if not config_path.is_file():
        return {}

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping, got {type(raw).__name__}")
        return {}

    # Dataclass fields only; unknown keys (and _version) are dropped
    known = WardenConfig.__dataclass_fields__
    unknown = sorted(str(k) for k in raw if k not in known and k != "_version")
    if unknown:
        logger.debug(f"Unknown config keys in {config_path}: {', '.join(unknown)}")
    return {k: v for k, v in raw.items() if k in known}


def get_warden_config(project_path: Path | None = None) -> WardenConfig:
    """Effective config: project values over user values over defaults.

    Layers merge key by key, so a project file that sets one threshold
    still inherits the rest from ``~/.warden/config.yaml``.

    Args:
        project_path: Explicit project path. If None, auto-detects.
    """
    if project_path is None:
        project_path = detect_project_root()

    merged = _read_overrides(WARDEN_DIR)
    if project_path is not None:
        merged.update(_read_overrides(project_path / PROJECT_DIRNAME))

    return WardenConfig(**merged)


def detect_project_root(start_path: Path | None = None) -> Path | None:
    """Nearest ancestor of ``start_path`` (default cwd) holding ``.warden`` or ``.git``.

    ``.warden`` wins over ``.git`` in the same directory. The search stops
    at the home directory so ``~/.warden`` is never mistaken for a project.
    """
    start = (start_path or Path.cwd()).resolve()
    home = Path.home()

    for candidate in (start, *start.parents):
        if candidate == home or candidate == candidate.parent:
            return None
        if (candidate / PROJECT_DIRNAME).is_dir() or (candidate / ".git").exists():
            return candidate

    return None

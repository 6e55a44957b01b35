"""Risk classification for agent actions.

Maps a command or action string to a risk level and category using an
ordered rule table. Rules are evaluated top to bottom and the first match
wins, so the table is ordered most destructive first: reordering it changes
results, and tests pin the order.

Levels (ascending severity): LOW, MEDIUM, HIGH, BLOCK.
HIGH and BLOCK actions should be preceded by a checkpoint.

Classification never raises. Anything unrecognized, including non-string
input, is LOW/unknown.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Iterable

logger = logging.getLogger(__name__)


LOW = "LOW"
MEDIUM = "MEDIUM"
HIGH = "HIGH"
BLOCK = "BLOCK"

# Ascending severity; index is the rank
RISK_LEVELS: tuple[str, ...] = (LOW, MEDIUM, HIGH, BLOCK)
CHECKPOINT_LEVELS: frozenset[str] = frozenset({HIGH, BLOCK})

# Rules scan at most this many leading characters; bounds regex backtracking
MAX_ACTION_CHARS = 4096

RISK_CATEGORIES: tuple[str, ...] = (
    "git",
    "filesystem",
    "shell",
    "database",
    "network",
    "process",
    "environment",
    "unknown",
)


@dataclass(frozen=True)
class RiskPattern:
    """One row of the rule table."""

    pattern: str
    level: str
    category: str
    description: str
    literal: bool = False  # Plain substring match instead of regex

    @cached_property
    def _regex(self) -> re.Pattern[str]:
        source = re.escape(self.pattern) if self.literal else self.pattern
        return re.compile(source, re.IGNORECASE)

    def matches(self, action: str) -> bool:
        return self._regex.search(action) is not None


@dataclass(frozen=True)
class RiskClassification:
    """Result of classifying a single action."""

    level: str  # LOW, MEDIUM, HIGH, BLOCK
    category: str  # git, filesystem, shell, database, network, process, environment, unknown
    reason: str
    should_checkpoint: bool
    matched_pattern: str | None = None
    pattern_index: int | None = None  # Position of the matching rule in RISK_PATTERNS

    def to_dict(self) -> dict:
        """Serialize to dict for metadata and events."""
        return {
            "level": self.level,
            "category": self.category,
            "reason": self.reason,
            "should_checkpoint": self.should_checkpoint,
            "matched_pattern": self.matched_pattern,
            "pattern_index": self.pattern_index,
        }


# Config files an agent commonly overwrites wholesale
_CONFIG_FILE = r"(\S*/)?(\.env(\.\w+)?|\S+\.(json|ya?ml|toml|ini|cfg|conf))\b"

RISK_PATTERNS: tuple[RiskPattern, ...] = (
    # ─────────────────────────────────────────────────────────────
    # BLOCK - never run these
    # ─────────────────────────────────────────────────────────────
    RiskPattern(
        r"rm\s+(-[a-z]*f[a-z]*\s+)?(-[a-z]*r[a-z]*\s+)?[/\\]($|\s|\"|')",
        BLOCK,
        "filesystem",
        "Recursive delete of root directory",
    ),
    RiskPattern(
        r"rm\s+-rf\s+/\*",
        BLOCK,
        "filesystem",
        "Recursive force delete of everything under root",
    ),
    RiskPattern(":(){ :|:& };:", BLOCK, "shell", "Fork bomb detected", literal=True),
    RiskPattern(r">\s*/dev/(sd[a-z]|hd[a-z]|nvme\d)", BLOCK, "filesystem", "Direct disk write"),
    RiskPattern(r"\bmkfs(\.[a-z0-9]+)?\s+", BLOCK, "filesystem", "Filesystem format command"),
    RiskPattern(
        r"\bdd\s+.*of=/dev/(sd|hd|nvme)",
        BLOCK,
        "filesystem",
        "Direct disk overwrite with dd",
    ),
    # ─────────────────────────────────────────────────────────────
    # HIGH - destructive, checkpoint first
    # ─────────────────────────────────────────────────────────────
    # Git
    RiskPattern(
        r"git\s+(push\s+.*--force|push\s+(.*\s)?-f\b)",
        HIGH,
        "git",
        "Git force push (may overwrite remote history)",
    ),
    RiskPattern(
        r"git\s+reset\s+--hard",
        HIGH,
        "git",
        "Git hard reset (discards uncommitted changes)",
    ),
    RiskPattern(
        r"git\s+clean\s+-[a-z]*f[a-z]*d",
        HIGH,
        "git",
        "Git clean with force and directories",
    ),
    RiskPattern(r"git\s+rebase\s+--onto", HIGH, "git", "Git rebase onto (history rewrite)"),
    RiskPattern(r"git\s+filter-branch", HIGH, "git", "Git filter-branch (history rewrite)"),
    RiskPattern(
        r"git\s+reflog\s+expire",
        HIGH,
        "git",
        "Git reflog expire (removes recovery points)",
    ),
    # Filesystem
    RiskPattern(r"\brm\s+-rf\s+", HIGH, "filesystem", "Recursive force delete"),
    RiskPattern(r"\brm\s+-r\s+", HIGH, "filesystem", "Recursive delete"),
    RiskPattern(r"\brmdir\s+/s\s+/q", HIGH, "filesystem", "Windows recursive quiet delete"),
    RiskPattern(r"\bdel\s+/s\s+/q", HIGH, "filesystem", "Windows recursive quiet delete"),
    RiskPattern(r"\brd\s+/s\s+/q", HIGH, "filesystem", "Windows recursive quiet delete (rd)"),
    RiskPattern(
        r"\bchmod\s+-R\s+0?777\b",
        HIGH,
        "filesystem",
        "Recursive world-writable permission change",
    ),
    # Database
    RiskPattern(r"DROP\s+(DATABASE|TABLE|SCHEMA)", HIGH, "database", "SQL DROP command"),
    RiskPattern(r"TRUNCATE\s+TABLE", HIGH, "database", "SQL TRUNCATE command"),
    RiskPattern(
        r"DELETE\s+FROM\s+\w+\s*;?\s*$",
        HIGH,
        "database",
        "SQL DELETE without WHERE clause",
    ),
    # Process
    RiskPattern(r"\bkill\s+-9\s+", HIGH, "process", "Force kill process"),
    RiskPattern(r"\bpkill\s+-9\s+", HIGH, "process", "Force kill processes by name"),
    RiskPattern(r"\bkillall\s+-9\s+", HIGH, "process", "Force kill all processes by name"),
    # Environment
    RiskPattern(r"export\s+PATH=", HIGH, "environment", "Modifying PATH environment variable"),
    RiskPattern(
        r"unset\s+(PATH|HOME|USER)\b",
        HIGH,
        "environment",
        "Unsetting critical environment variable",
    ),
    # ─────────────────────────────────────────────────────────────
    # MEDIUM - significant, checkpoint optional
    # ─────────────────────────────────────────────────────────────
    # Git
    RiskPattern(r"git\s+merge\s+", MEDIUM, "git", "Git merge"),
    RiskPattern(r"git\s+rebase\s+", MEDIUM, "git", "Git rebase"),
    RiskPattern(r"git\s+cherry-pick", MEDIUM, "git", "Git cherry-pick"),
    RiskPattern(r"git\s+reset\s+(--soft|--mixed|HEAD)", MEDIUM, "git", "Git soft/mixed reset"),
    RiskPattern(r"git\s+stash\s+(drop|clear)", MEDIUM, "git", "Git stash drop/clear"),
    RiskPattern(r"git\s+branch\s+-[dD]\s+", MEDIUM, "git", "Git branch delete"),
    # Filesystem
    RiskPattern(r"\bmv\s+\S+\s+\S+", MEDIUM, "filesystem", "File move operation"),
    RiskPattern(r"\bcp\s+-r\s+", MEDIUM, "filesystem", "Recursive copy"),
    RiskPattern(r"\bchmod\s+-R\s+", MEDIUM, "filesystem", "Recursive permission change"),
    RiskPattern(r"\bchown\s+-R\s+", MEDIUM, "filesystem", "Recursive ownership change"),
    RiskPattern(
        r"(^|\s)>\s*" + _CONFIG_FILE,
        MEDIUM,
        "filesystem",
        "Config file rewrite",
    ),
    RiskPattern(
        r"\btee\s+" + _CONFIG_FILE,
        MEDIUM,
        "filesystem",
        "Config file rewrite",
    ),
    # Database
    RiskPattern(r"UPDATE\s+\w+\s+SET\s+.*WHERE", MEDIUM, "database", "SQL UPDATE command"),
    RiskPattern(r"ALTER\s+TABLE", MEDIUM, "database", "SQL ALTER TABLE command"),
    # Packages
    RiskPattern(
        r"\b(npm|pnpm|yarn)\s+(install|i|add|uninstall|remove|rm)\b",
        MEDIUM,
        "shell",
        "Node dependency change",
    ),
    RiskPattern(r"\bpip3?\s+(install|uninstall)\s+", MEDIUM, "shell", "Python dependency change"),
    RiskPattern(r"\bpoetry\s+(add|remove)\s+", MEDIUM, "shell", "Python dependency change"),
    # Network
    RiskPattern(r"\bcurl\s+.*\|\s*(sh|bash)\b", MEDIUM, "network", "Piping remote content to shell"),
    RiskPattern(r"\bwget\s+.*\|\s*(sh|bash)\b", MEDIUM, "network", "Piping remote content to shell"),
    # ─────────────────────────────────────────────────────────────
    # LOW - read-only or routine
    # ─────────────────────────────────────────────────────────────
    RiskPattern(r"git\s+(status|log|diff|show|branch|tag)\b", LOW, "git", "Git read-only command"),
    RiskPattern(r"git\s+(add|commit|push)\b", LOW, "git", "Git normal workflow command"),
    RiskPattern(r"^ls(\s+|$)", LOW, "filesystem", "List directory contents"),
    RiskPattern(r"^cat\s+", LOW, "filesystem", "View file contents"),
    RiskPattern(r"^head\s+", LOW, "filesystem", "View file head"),
    RiskPattern(r"^tail\s+", LOW, "filesystem", "View file tail"),
    RiskPattern(r"^grep\s+", LOW, "filesystem", "Search file contents"),
    RiskPattern(r"^find\s+", LOW, "filesystem", "Find files"),
    RiskPattern(r"^pwd$", LOW, "filesystem", "Print working directory"),
    RiskPattern(r"^echo\s+", LOW, "shell", "Echo command"),
    RiskPattern(r"SELECT\s+", LOW, "database", "SQL SELECT query"),
)


def classify(action: object) -> RiskClassification:
    """Classify the risk of a command or action.

    Args:
        action: Command or action text. Non-strings are tolerated.

    Returns:
        RiskClassification for the first matching rule, or LOW/unknown
    """
    if not isinstance(action, str) or not action.strip():
        return RiskClassification(
            level=LOW,
            category="unknown",
            reason="Empty or invalid action",
            should_checkpoint=False,
        )

    normalized = action.strip()[:MAX_ACTION_CHARS]

    for index, rule in enumerate(RISK_PATTERNS):
        if not rule.matches(normalized):
            continue

        should_checkpoint = rule.level in CHECKPOINT_LEVELS
        if should_checkpoint:
            logger.debug(f"Risk classified: {rule.level} - {rule.description}")

        return RiskClassification(
            level=rule.level,
            category=rule.category,
            reason=rule.description,
            should_checkpoint=should_checkpoint,
            matched_pattern=rule.pattern,
            pattern_index=index,
        )

    return RiskClassification(
        level=LOW,
        category="unknown",
        reason="No matching risk pattern",
        should_checkpoint=False,
    )


def classify_batch(actions: Iterable[object]) -> list[RiskClassification]:
    """Classify every action. Does not stop at the first risky one."""
    return [classify(action) for action in actions]


def risk_rank(level: str) -> int:
    """Severity rank of a level; unknown levels rank as LOW."""
    try:
        return RISK_LEVELS.index(level)
    except ValueError:
        return 0


def highest_risk_level(classifications: Iterable[RiskClassification]) -> str:
    """Highest severity among classifications (BLOCK > HIGH > MEDIUM > LOW).

    Returns LOW for an empty batch.
    """
    highest = 0
    for c in classifications:
        highest = max(highest, risk_rank(c.level))
    return RISK_LEVELS[highest]

"""Token budget governor.

Translates how much of the token budget has been used into a coarse
operating mode and an allow/deny list of actions:

- normal (< conservative): everything allowed
- conservative (conservative ≤ p < critical): delta-only, no heavy operations
- critical (≥ critical): checkpoint and read-only inspection only

The governor owns no counters. ``compute_governor_state`` is a pure function
of the current percentage, so token accounting can live anywhere; hosts
hand consumers a zero-argument provider (``GovernorStateProvider``).
``TokenBudget`` is the default owner of that accounting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

logger = logging.getLogger(__name__)


NORMAL = "normal"
CONSERVATIVE = "conservative"
CRITICAL = "critical"

DEFAULT_CONSERVATIVE_THRESHOLD = 70.0
DEFAULT_CRITICAL_THRESHOLD = 85.0

CONSERVATIVE_ALLOWED: tuple[str, ...] = (
    "checkpoint_create",
    "delta_update",
    "small_patch",
    "single_test",
    "memory_store",
    "memory_recall",
    "finish_task",
)
CONSERVATIVE_BLOCKED: tuple[str, ...] = (
    "browser_open",
    "full_test_suite",
    "full_repo_scan",
    "large_refactor",
)
CRITICAL_ALLOWED: tuple[str, ...] = (
    "checkpoint_create",
    "read_only_inspect",
    "finish_task",
    "session_end",
)
CRITICAL_BLOCKED: tuple[str, ...] = (
    "browser_open",
    "full_test_suite",
    "full_repo_scan",
    "large_refactor",
    "task_decompose",
    "new_task_create",
    "multiple_file_edit",
    "delta_update",
    "small_patch",
)


@dataclass(frozen=True)
class GovernorThresholds:
    """Mode boundaries as percentages of the token budget."""

    conservative: float = DEFAULT_CONSERVATIVE_THRESHOLD
    critical: float = DEFAULT_CRITICAL_THRESHOLD

    def __post_init__(self) -> None:
        if not 0 < self.conservative < self.critical <= 100:
            raise ValueError(
                "Governor thresholds must satisfy 0 < conservative < critical <= 100 "
                f"(got conservative={self.conservative}, critical={self.critical})"
            )

    def to_dict(self) -> dict:
        return {"conservative": self.conservative, "critical": self.critical}


@dataclass(frozen=True)
class GovernorState:
    """Operating mode derived from token usage."""

    mode: str  # normal, conservative, critical
    token_percentage: float
    allowed_actions: tuple[str, ...]
    blocked_actions: tuple[str, ...]
    recommendation: str
    thresholds: GovernorThresholds

    def to_dict(self) -> dict:
        """Serialize to dict for metadata and CLI output."""
        return {
            "mode": self.mode,
            "token_percentage": self.token_percentage,
            "allowed_actions": list(self.allowed_actions),
            "blocked_actions": list(self.blocked_actions),
            "recommendation": self.recommendation,
            "thresholds": self.thresholds.to_dict(),
        }


GovernorStateProvider = Callable[[], GovernorState]


def compute_governor_state(
    token_percentage: float,
    thresholds: GovernorThresholds | None = None,
) -> GovernorState:
    """Compute the governor state for a token-usage percentage.

    Args:
        token_percentage: Share of the budget used, clamped to 0..100
        thresholds: Mode boundaries (defaults 70/85)

    Returns:
        GovernorState for the matching mode
    """
    if thresholds is None:
        thresholds = GovernorThresholds()

    percentage = min(max(float(token_percentage), 0.0), 100.0)

    if percentage >= thresholds.critical:
        return GovernorState(
            mode=CRITICAL,
            token_percentage=percentage,
            allowed_actions=CRITICAL_ALLOWED,
            blocked_actions=CRITICAL_BLOCKED,
            recommendation=(
                "Token budget critical! Finish the current task immediately. "
                "Create a checkpoint. No new tasks or file edits."
            ),
            thresholds=thresholds,
        )

    if percentage >= thresholds.conservative:
        return GovernorState(
            mode=CONSERVATIVE,
            token_percentage=percentage,
            allowed_actions=CONSERVATIVE_ALLOWED,
            blocked_actions=CONSERVATIVE_BLOCKED,
            recommendation=(
                "Token budget low. Use delta-only responses. Avoid heavy operations "
                "like browser testing, full test suites or full-repo scans."
            ),
            thresholds=thresholds,
        )

    return GovernorState(
        mode=NORMAL,
        token_percentage=percentage,
        allowed_actions=("all",),
        blocked_actions=(),
        recommendation="Normal operation. All actions available.",
        thresholds=thresholds,
    )


def is_action_allowed(action: str, state: GovernorState) -> tuple[bool, str | None]:
    """Check an action against a governor state.

    Returns:
        (allowed, reason) where reason explains a denial
    """
    if state.mode == NORMAL:
        return True, None

    if action in state.blocked_actions:
        return False, (
            f'Action "{action}" is blocked in {state.mode} mode. {state.recommendation}'
        )

    return True, None


# =============================================================================
# Token Accounting
# =============================================================================


@dataclass(frozen=True)
class TokenUsage:
    """Snapshot of token consumption."""

    used: int
    estimated: int
    percentage: float
    last_updated: str  # ISO timestamp

    @property
    def remaining(self) -> int:
        return max(self.estimated - self.used, 0)


@dataclass(frozen=True)
class ResourceWarning:
    """A budget warning for the caller to surface."""

    level: str  # info, warning, critical
    message: str
    action: str | None = None


class TokenBudget:
    """Owns token usage counters and serves governor state from them.

    ``budget.governor_state`` is a ready-made GovernorStateProvider.
    """

    def __init__(
        self,
        estimated: int = 200000,
        thresholds: GovernorThresholds | None = None,
        warning_threshold: float = 70.0,
        pause_threshold: float = 90.0,
    ):
        if estimated <= 0:
            raise ValueError(f"Token budget must be positive (got {estimated})")
        self._used = 0
        self._estimated = estimated
        self._last_updated = datetime.now(UTC).isoformat()
        self.thresholds = thresholds or GovernorThresholds()
        self.warning_threshold = warning_threshold
        self.pause_threshold = pause_threshold

    @property
    def used(self) -> int:
        return self._used

    def update(self, used: int, estimated: int | None = None) -> TokenUsage:
        """Record current usage (and optionally a new budget estimate)."""
        if used < 0:
            raise ValueError(f"Token usage cannot be negative (got {used})")
        if estimated:
            self._estimated = estimated
        self._used = used
        self._last_updated = datetime.now(UTC).isoformat()

        usage = self.usage()
        logger.debug(f"Token usage: {usage.used}/{usage.estimated} ({usage.percentage}%)")
        return usage

    def usage(self) -> TokenUsage:
        return TokenUsage(
            used=self._used,
            estimated=self._estimated,
            percentage=round(self._used / self._estimated * 100, 1),
            last_updated=self._last_updated,
        )

    def warnings(self) -> list[ResourceWarning]:
        """Budget warnings for the current usage level."""
        percentage = self.usage().percentage

        if percentage >= self.pause_threshold:
            return [
                ResourceWarning(
                    level="critical",
                    message=f"Token usage critical: {percentage}%. Save work immediately!",
                    action="Create checkpoint and consider ending session",
                )
            ]
        if percentage >= self.warning_threshold:
            return [
                ResourceWarning(
                    level="warning",
                    message=f"Token usage high: {percentage}%. Consider checkpointing.",
                    action="Create checkpoint or wrap up current task",
                )
            ]
        return []

    def governor_state(self) -> GovernorState:
        return compute_governor_state(self.usage().percentage, self.thresholds)

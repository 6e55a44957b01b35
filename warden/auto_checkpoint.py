"""Automatic checkpoints before risky operations.

Orchestrates the risk classifier, the governor and the checkpoint store:

1. Classify the action
2. If its level is a trigger level (HIGH, BLOCK by default), take a
   checkpoint unless one was taken less than ``min_interval_ms`` ago
3. BLOCK actions are refused, after the checkpoint attempt, so a refused
   action always has a recovery point behind it

The throttle check, the store write and the timestamp update form one
critical section under an ``asyncio.Lock``; two concurrent risky calls
cannot both pass the throttle. The store is synchronous and runs in a
worker thread via ``asyncio.to_thread``.

Store failures propagate to the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Iterable

from warden.checkpoint import (
    BEFORE_RISKY_OPERATION,
    LARGE_EDIT,
    CheckpointInfo,
    CheckpointStore,
)
from warden.config import WardenConfig
from warden.events import CheckpointCreated, EventPublisher, GuardBlock, WardenEvent
from warden.governor import GovernorState, GovernorStateProvider
from warden.governor import is_action_allowed as governor_allows
from warden.risk import (
    BLOCK,
    HIGH,
    LOW,
    MEDIUM,
    RiskClassification,
    classify,
    classify_batch,
    highest_risk_level,
)

logger = logging.getLogger(__name__)

# Stored action text is truncated to keep metadata bounded
MAX_ACTION_METADATA = 500
MAX_ACTION_EVENT = 200
MAX_GIT_DESCRIPTION = 50


@dataclass(frozen=True)
class AutoCheckpointConfig:
    """Settings for the auto-checkpoint service."""

    enabled: bool = True
    min_interval_ms: int = 30000
    trigger_levels: tuple[str, ...] = (HIGH, BLOCK)
    checkpoint_on_git: bool = True
    checkpoint_on_large_edit: bool = True
    large_edit_threshold: int = 100

    @classmethod
    def from_config(cls, config: WardenConfig) -> "AutoCheckpointConfig":
        """Build from the user/project WardenConfig."""
        return cls(
            enabled=config.auto_checkpoint_enabled,
            min_interval_ms=config.min_interval_ms,
            checkpoint_on_git=config.checkpoint_on_git,
            checkpoint_on_large_edit=config.checkpoint_on_large_edit,
            large_edit_threshold=config.large_edit_threshold,
        )


@dataclass(frozen=True)
class AutoCheckpointResult:
    """Outcome of a pre-action check."""

    risk: RiskClassification
    checkpoint_created: bool
    reason: str  # Why a checkpoint was or wasn't created
    blocked: bool = False
    checkpoint: CheckpointInfo | None = None
    governor: GovernorState | None = None


@dataclass(frozen=True)
class RiskyCommand:
    """One trigger-level entry of a batch pre-flight."""

    action: str
    risk: RiskClassification


@dataclass(frozen=True)
class BatchRiskResult:
    """Read-only pre-flight over a batch of actions."""

    highest_risk: str
    should_checkpoint: bool
    risky_commands: tuple[RiskyCommand, ...]


@dataclass(frozen=True)
class AutoCheckpointStats:
    enabled: bool
    checkpoint_count: int
    last_checkpoint_time: float | None  # Epoch seconds, None before the first checkpoint
    trigger_levels: tuple[str, ...]


# Fixed classifications for the large-edit path, which skips the rule table
_LARGE_EDIT_RISK = RiskClassification(
    level=MEDIUM,
    category="filesystem",
    reason="Large file edit",
    should_checkpoint=True,
)


class AutoCheckpointService:
    """Decides whether to checkpoint before an action, and does it.

    Throttle state (last checkpoint time, counter) belongs to the instance.
    Hosts that want several sessions to share one throttle should share
    one service.
    """

    def __init__(
        self,
        store: CheckpointStore,
        config: AutoCheckpointConfig | None = None,
        governor_state_provider: GovernorStateProvider | None = None,
        publish: EventPublisher | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or AutoCheckpointConfig()
        self._governor_state_provider = governor_state_provider
        self._publish = publish
        self._clock = clock

        self._lock = asyncio.Lock()
        self._last_checkpoint_time: float | None = None
        self._checkpoint_count = 0

    # =========================================================================
    # Checks
    # =========================================================================

    async def check_and_auto_checkpoint(
        self,
        action: str,
        files: list[str] | None = None,
        lines_changed: int | None = None,
        description: str | None = None,
    ) -> AutoCheckpointResult:
        """Classify an action and checkpoint first if it is risky.

        Args:
            action: Command or action about to run
            files: Files the action touches
            lines_changed: Size of the change, recorded in metadata
            description: Checkpoint summary

        Returns:
            AutoCheckpointResult; ``blocked`` means the caller must not run it

        Raises:
            OSError: If the checkpoint store fails to write
        """
        risk = classify(action)
        governor = self._governor_state()

        # Disabling checkpoints never disables the BLOCK refusal below
        checkpoint = None
        if not self.config.enabled:
            reason = "disabled"
        elif risk.level not in self.config.trigger_levels:
            reason = f"Risk level {risk.level} does not trigger checkpoint"
        else:
            if risk.level == BLOCK:
                summary = description or "Blocked risky operation"
            else:
                summary = description or f"Before {risk.category} operation"

            metadata: dict[str, Any] = {
                "risk_level": risk.level,
                "risk_category": risk.category,
                "risk_reason": risk.reason,
                "matched_pattern": risk.matched_pattern,
                "action": action[:MAX_ACTION_METADATA],
                "files": list(files or []),
                "governor_mode": governor.mode if governor else None,
                "token_percentage": governor.token_percentage if governor else None,
            }
            if lines_changed is not None:
                metadata["lines_changed"] = lines_changed

            checkpoint, throttled = await self._create_throttled(
                reason=BEFORE_RISKY_OPERATION,
                name=f"risk-{risk.level.lower()}-{risk.category}",
                metadata=metadata,
                files_changed=list(files or []),
                summary=summary,
            )

            if checkpoint is not None:
                logger.info(f"Auto-checkpoint created: {checkpoint.name} ({risk.level} risk)")
                self._emit(
                    CheckpointCreated(
                        timestamp=_now(),
                        checkpoint_id=checkpoint.id,
                        trigger="risky_operation",
                        risk_level=risk.level,
                        risk_category=risk.category,
                    )
                )
                reason = f"Checkpoint created for {risk.level} risk operation"
            else:
                reason = throttled

        if risk.level == BLOCK:
            logger.warning(f"Action blocked: {risk.reason}")
            self._emit(
                GuardBlock(
                    timestamp=_now(),
                    action=action[:MAX_ACTION_EVENT],
                    risk=risk,
                    checkpoint_id=checkpoint.id if checkpoint else None,
                )
            )
            return AutoCheckpointResult(
                risk=risk,
                checkpoint_created=checkpoint is not None,
                reason=f"Action blocked: {risk.reason}" if self.config.enabled else "disabled",
                blocked=True,
                checkpoint=checkpoint,
                governor=governor,
            )

        return AutoCheckpointResult(
            risk=risk,
            checkpoint_created=checkpoint is not None,
            reason=reason,
            checkpoint=checkpoint,
            governor=governor,
        )

    async def check_git_operation(
        self,
        git_command: str,
        files: list[str] | None = None,
    ) -> AutoCheckpointResult:
        """Pre-check a git command."""
        if not self.config.checkpoint_on_git:
            return AutoCheckpointResult(
                risk=RiskClassification(
                    level=LOW,
                    category="git",
                    reason="Git checkpoints disabled",
                    should_checkpoint=False,
                ),
                checkpoint_created=False,
                reason="Git checkpoints disabled",
                governor=self._governor_state(),
            )

        return await self.check_and_auto_checkpoint(
            git_command,
            files=files,
            description=f"Before git operation: {git_command[:MAX_GIT_DESCRIPTION]}",
        )

    async def check_large_edit(
        self,
        files: list[str],
        line_count: int,
        description: str | None = None,
    ) -> AutoCheckpointResult:
        """Checkpoint before an edit larger than ``large_edit_threshold`` lines.

        Bypasses the rule table; only the size and the throttle decide.
        An edit of exactly the threshold does not trigger.
        """
        governor = self._governor_state()

        if not self.config.enabled or not self.config.checkpoint_on_large_edit:
            return AutoCheckpointResult(
                risk=RiskClassification(
                    level=LOW,
                    category="filesystem",
                    reason="Large edit checkpoint disabled",
                    should_checkpoint=False,
                ),
                checkpoint_created=False,
                reason="disabled" if not self.config.enabled else "Large edit checkpoints disabled",
                governor=governor,
            )

        threshold = self.config.large_edit_threshold
        if line_count <= threshold:
            return AutoCheckpointResult(
                risk=RiskClassification(
                    level=LOW,
                    category="filesystem",
                    reason="Edit size below threshold",
                    should_checkpoint=False,
                ),
                checkpoint_created=False,
                reason=f"Edit size ({line_count} lines) does not exceed threshold ({threshold})",
                governor=governor,
            )

        checkpoint, throttled = await self._create_throttled(
            reason=LARGE_EDIT,
            name=f"large-edit-{len(files)}-files",
            metadata={
                "files": list(files),
                "lines_changed": line_count,
                "trigger": "large_edit",
            },
            files_changed=list(files),
            summary=description or f"Large edit: {line_count} lines across {len(files)} files",
        )

        if checkpoint is None:
            return AutoCheckpointResult(
                risk=_LARGE_EDIT_RISK,
                checkpoint_created=False,
                reason=throttled,
                governor=governor,
            )

        logger.info(f"Auto-checkpoint created: {checkpoint.name} ({line_count} lines)")
        self._emit(
            CheckpointCreated(
                timestamp=_now(),
                checkpoint_id=checkpoint.id,
                trigger="large_edit",
                risk_level=_LARGE_EDIT_RISK.level,
                risk_category=_LARGE_EDIT_RISK.category,
            )
        )
        return AutoCheckpointResult(
            risk=_LARGE_EDIT_RISK,
            checkpoint_created=True,
            reason=f"Checkpoint created for large edit ({line_count} lines)",
            checkpoint=checkpoint,
            governor=governor,
        )

    async def check_batch_risk(self, actions: Iterable[str]) -> BatchRiskResult:
        """Classify a batch without creating any checkpoint.

        Lets a caller checkpoint once before a whole batch instead of per command.
        """
        actions = list(actions)
        classifications = classify_batch(actions)
        highest = highest_risk_level(classifications)

        risky = tuple(
            RiskyCommand(action=action, risk=risk)
            for action, risk in zip(actions, classifications)
            if risk.level in self.config.trigger_levels
        )

        return BatchRiskResult(
            highest_risk=highest,
            should_checkpoint=highest in self.config.trigger_levels,
            risky_commands=risky,
        )

    def is_action_allowed(self, action: str) -> tuple[bool, str | None]:
        """Ask the governor whether an action type is allowed right now.

        Always allowed when no governor provider was injected.
        """
        state = self._governor_state()
        if state is None:
            return True, None
        return governor_allows(action, state)

    def get_stats(self) -> AutoCheckpointStats:
        return AutoCheckpointStats(
            enabled=self.config.enabled,
            checkpoint_count=self._checkpoint_count,
            last_checkpoint_time=self._last_checkpoint_time,
            trigger_levels=tuple(self.config.trigger_levels),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _create_throttled(self, **create_kwargs: Any) -> tuple[CheckpointInfo | None, str]:
        """Create a checkpoint unless the throttle window is still open.

        Returns:
            (checkpoint, "") on success, (None, reason) when throttled
        """
        async with self._lock:
            if self._last_checkpoint_time is not None:
                elapsed_ms = (self._clock() - self._last_checkpoint_time) * 1000
                if elapsed_ms < self.config.min_interval_ms:
                    return None, (
                        f"Too soon since last checkpoint "
                        f"({round(elapsed_ms / 1000)}s < {self.config.min_interval_ms / 1000:g}s)"
                    )

            checkpoint = await asyncio.to_thread(self.store.create, **create_kwargs)
            self._last_checkpoint_time = self._clock()
            self._checkpoint_count += 1

        return checkpoint, ""

    def _governor_state(self) -> GovernorState | None:
        if self._governor_state_provider is None:
            return None
        return self._governor_state_provider()

    def _emit(self, event: WardenEvent) -> None:
        """Hand an event to the publisher; never raises."""
        if self._publish is None:
            return
        try:
            self._publish(event)
        except Exception as e:
            logger.warning(f"Event publisher failed for {event.type}: {e}")


def _now() -> str:
    return datetime.now(UTC).isoformat()

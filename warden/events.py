"""Event types emitted by the auto-checkpoint service.

Events are immutable dataclasses describing something that already
happened. The service hands them to an injected ``EventPublisher``
callable; whatever bus sits behind it (a queue, a log, a hook runner) is
the host's business.

Publishing is fire-and-forget: the service never waits on subscribers and
a failing publisher is logged, not raised.
"""

from dataclasses import dataclass
from typing import Callable, ClassVar

from warden.risk import RiskClassification


@dataclass(frozen=True)
class GuardBlock:
    """Emitted when a BLOCK-level action is refused.

    Attributes:
        timestamp: ISO format timestamp of the decision
        action: The refused action, truncated to 200 characters
        risk: Classification that caused the block
        checkpoint_id: Recovery checkpoint taken first (None if throttled)
    """

    type: ClassVar[str] = "guard:block"

    timestamp: str
    action: str
    risk: RiskClassification
    checkpoint_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "action": self.action,
            "risk": self.risk.to_dict(),
            "checkpoint_id": self.checkpoint_id,
        }


@dataclass(frozen=True)
class CheckpointCreated:
    """Emitted after every successful automatic checkpoint.

    Attributes:
        timestamp: ISO format timestamp when the checkpoint was written
        checkpoint_id: Identifier of the new checkpoint
        trigger: What caused it ("risky_operation" or "large_edit")
        risk_level: Level of the triggering classification
        risk_category: Category of the triggering classification
    """

    type: ClassVar[str] = "resource:checkpoint"

    timestamp: str
    checkpoint_id: str
    trigger: str
    risk_level: str
    risk_category: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "checkpoint_id": self.checkpoint_id,
            "trigger": self.trigger,
            "risk_level": self.risk_level,
            "risk_category": self.risk_category,
        }


# Union type for all events
WardenEvent = GuardBlock | CheckpointCreated

EventPublisher = Callable[[WardenEvent], None]

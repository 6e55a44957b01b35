"""Tests for warden event types."""

import pytest

from warden.events import CheckpointCreated, GuardBlock
from warden.risk import classify


class TestGuardBlock:
    """Tests for GuardBlock event."""

    def test_creates_with_all_fields(self):
        risk = classify("rm -rf /")
        event = GuardBlock(
            timestamp="2026-01-01T00:00:00+00:00",
            action="rm -rf /",
            risk=risk,
            checkpoint_id="cp-1",
        )

        assert event.type == "guard:block"
        assert event.action == "rm -rf /"
        assert event.risk.level == "BLOCK"
        assert event.checkpoint_id == "cp-1"

    def test_checkpoint_id_optional(self):
        event = GuardBlock(timestamp="t", action="rm -rf /", risk=classify("rm -rf /"))
        assert event.checkpoint_id is None

    def test_is_frozen(self):
        event = GuardBlock(timestamp="t", action="a", risk=classify("a"))
        with pytest.raises(AttributeError):
            event.action = "b"

    def test_to_dict(self):
        event = GuardBlock(timestamp="t", action="rm -rf /", risk=classify("rm -rf /"))
        d = event.to_dict()
        assert d["type"] == "guard:block"
        assert d["risk"]["level"] == "BLOCK"


class TestCheckpointCreated:
    """Tests for CheckpointCreated event."""

    def test_creates_with_all_fields(self):
        event = CheckpointCreated(
            timestamp="2026-01-01T00:00:00+00:00",
            checkpoint_id="cp-1",
            trigger="risky_operation",
            risk_level="HIGH",
            risk_category="git",
        )

        assert event.type == "resource:checkpoint"
        assert event.to_dict() == {
            "type": "resource:checkpoint",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "checkpoint_id": "cp-1",
            "trigger": "risky_operation",
            "risk_level": "HIGH",
            "risk_category": "git",
        }

    def test_type_is_not_a_field(self):
        """type is fixed per class, not settable per instance."""
        with pytest.raises(TypeError):
            CheckpointCreated(
                type="other",
                timestamp="t",
                checkpoint_id="x",
                trigger="large_edit",
                risk_level="MEDIUM",
                risk_category="filesystem",
            )

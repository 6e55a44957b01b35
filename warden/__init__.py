"""Warden: risk-aware auto-checkpointing for AI coding agents."""

__version__ = "0.3.0"

# Branded types for type-safe IDs
from warden.types import CheckpointId

__all__ = [
    "__version__",
    "CheckpointId",
]

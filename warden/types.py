"""Branded types for type-safe IDs.

NewType gives static checkers a distinct type at zero runtime cost, so a
checkpoint id cannot be passed where a file path is expected.
"""

from typing import NewType

CheckpointId = NewType("CheckpointId", str)

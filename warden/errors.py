"""Error types for Warden.

Two styles coexist, split by who has to react:

- Soft failures inside helpers (atomic writes, git probes) are returned as
  ``Result[T, WardenError]`` so the caller decides what to do.
- Failures the caller must not miss (storage errors before a destructive
  operation, diffing a checkpoint that does not exist) are raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class WardenError:
    """Structured error payload carried by Err."""

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self):
        raise ValueError("Called unwrap_err() on Ok")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ValueError(f"Called unwrap() on Err: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Ok[T] | Err[E]


def format_error(error: WardenError) -> str:
    """Render an error for terminal output."""
    if error.context:
        details = ", ".join(f"{k}={v}" for k, v in error.context.items())
        return f"{error.message} ({details})"
    return error.message


class CheckpointNotFoundError(LookupError):
    """Raised when a diff references a checkpoint id with no record on disk."""

    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")

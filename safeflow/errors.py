"""Typed results and errors returned by lifecycle actions."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Categories of business-rule failures."""

    INVALID_TRANSITION = "invalid_transition"
    UNAUTHORIZED = "unauthorized"
    NOT_ACTIONABLE = "not_actionable"
    ALREADY_TERMINAL = "already_terminal"
    INVALID_PAYLOAD = "invalid_payload"
    NOT_FOUND = "not_found"
    INVARIANT_VIOLATION = "invariant_violation"


class ActionError(BaseModel):
    """A business-rule failure safe to display to an end user."""

    kind: ErrorKind
    message: str

    @classmethod
    def invalid_transition(cls, message: str) -> "ActionError":
        return cls(kind=ErrorKind.INVALID_TRANSITION, message=message)

    @classmethod
    def unauthorized(cls, message: str) -> "ActionError":
        return cls(kind=ErrorKind.UNAUTHORIZED, message=message)

    @classmethod
    def not_actionable(cls, message: str) -> "ActionError":
        return cls(kind=ErrorKind.NOT_ACTIONABLE, message=message)

    @classmethod
    def already_terminal(cls, message: str) -> "ActionError":
        return cls(kind=ErrorKind.ALREADY_TERMINAL, message=message)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ActionResult(BaseModel):
    """Outcome of an action: the state after the call and an optional error."""

    record_id: str
    state: Optional[str] = None
    error: Optional[ActionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class InvariantViolation(Exception):
    """A lifecycle record broke one of its invariants.

    Indicates a bug or corrupted data, never a user mistake.
    """


class StaleRecordError(Exception):
    """Raised by a repository when the optimistic version check fails."""

    def __init__(self, record_id: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"Record {record_id} changed concurrently (expected version {expected}, found {actual})"
        )
        self.record_id = record_id
        self.expected = expected
        self.actual = actual

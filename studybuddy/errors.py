"""
Error taxonomy for StudyBuddy.

Validation and scheduling errors are recovered at the harness seams and turned
into conversation-visible tool results. Model failures propagate as turn
failures. Everything here derives from StudyBuddyError so callers at the outer
edge (CLI, transports) can catch the whole family at once.
"""

from __future__ import annotations

from dataclasses import dataclass


class StudyBuddyError(Exception):
    """Base class for every error raised by this package."""


class UnknownToolError(StudyBuddyError):
    """The model (or a scheduled task) named a tool that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class DuplicateToolError(StudyBuddyError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool '{name}' is already registered.")


@dataclass(frozen=True)
class FieldViolation:
    """A single schema violation at a dotted argument path."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class SchemaValidationError(StudyBuddyError):
    """Tool arguments do not satisfy the declared input schema."""

    def __init__(self, tool_name: str, violations: list[FieldViolation]):
        self.tool_name = tool_name
        self.violations = list(violations)
        details = "; ".join(str(v) for v in self.violations)
        super().__init__(f"Invalid arguments for '{tool_name}': {details}")

    @property
    def fields(self) -> list[str]:
        return [v.path for v in self.violations]


class InvalidTriggerError(StudyBuddyError):
    """A schedule trigger is in the past, non-positive or malformed."""


class ConfirmationNotFoundError(StudyBuddyError):
    """No pending confirmation exists with the given request id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Confirmation not found: {request_id}")


class ConfirmationStateError(StudyBuddyError):
    """A confirmation was resolved from a state that does not allow it."""


class ConfirmationTimeoutError(StudyBuddyError):
    """A confirmation outlived the configured maximum pending age."""

    def __init__(self, request_id: str, age_seconds: float):
        self.request_id = request_id
        self.age_seconds = age_seconds
        super().__init__(
            f"Confirmation {request_id} expired after {age_seconds:.0f}s pending"
        )


class ModelUnavailableError(StudyBuddyError):
    """The language model could not produce a response."""


class MaxStepsExceededError(StudyBuddyError):
    """A turn hit the configured step limit without a final reply."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Turn exceeded the maximum of {max_steps} steps")


class StoreError(StudyBuddyError):
    """The conversation store could not complete an operation."""

"""
Data Models — the records that cross subsystem boundaries.

Messages, tool-call requests, pending confirmations and scheduled tasks are
Pydantic models so they can be persisted as JSON and validated on the way back
out of the store. Messages are frozen: the log is append-only and a message's
metadata never changes after it is written.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system", "tool_result"]

# Returns the current time as a timezone-aware UTC datetime.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A tool call the model asked for, recorded on the assistant message."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call"] = "tool_call"
    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


Part = Annotated[Union[TextPart, ToolCallPart], Field(discriminator="type")]


class Message(BaseModel):
    """A single entry in a conversation log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    parts: list[Part] = Field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)

    # Set on tool_result messages only.
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", parts=[TextPart(text=text)])

    @classmethod
    def assistant(cls, text: str, tool_calls: Optional[list["ToolCallRequest"]] = None) -> "Message":
        parts: list[Any] = [TextPart(text=text)] if text else []
        for call in tool_calls or []:
            parts.append(ToolCallPart(call_id=call.id, name=call.name, arguments=call.arguments))
        return cls(role="assistant", parts=parts)

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role="system", parts=[TextPart(text=text)])

    @classmethod
    def tool_result(
        cls,
        call: "ToolCallRequest",
        text: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
        is_error: bool = False,
    ) -> "Message":
        return cls(
            role="tool_result",
            parts=[TextPart(text=text)],
            metadata=metadata if not is_error else None,
            tool_call_id=call.id,
            tool_name=call.name,
            is_error=is_error,
        )


# ---------------------------------------------------------------------------
# Tool calls and confirmations
# ---------------------------------------------------------------------------

class ToolCallRequest(BaseModel):
    """A tool invocation proposed by the model; arguments are unvalidated."""

    id: str = Field(default_factory=lambda: f"call-{uuid.uuid4().hex[:12]}")
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ConfirmationState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    DENIED = "denied"


# Allowed state transitions for a confirmation.
CONFIRMATION_TRANSITIONS: dict[ConfirmationState, frozenset[ConfirmationState]] = {
    ConfirmationState.PENDING: frozenset({ConfirmationState.APPROVED, ConfirmationState.DENIED}),
    ConfirmationState.APPROVED: frozenset({ConfirmationState.EXECUTING}),
    ConfirmationState.EXECUTING: frozenset({ConfirmationState.COMPLETED, ConfirmationState.PENDING}),
    ConfirmationState.COMPLETED: frozenset(),
    ConfirmationState.DENIED: frozenset(),
}


class PendingConfirmation(BaseModel):
    """A requires-confirmation tool call waiting on a human decision."""

    request_id: str = Field(default_factory=lambda: f"confirm-{uuid.uuid4().hex[:12]}")
    conversation_id: str
    call: ToolCallRequest
    arguments: dict[str, Any] = Field(default_factory=dict)
    state: ConfirmationState = ConfirmationState.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def tool_name(self) -> str:
        return self.call.name

    @property
    def is_terminal(self) -> bool:
        return self.state in (ConfirmationState.COMPLETED, ConfirmationState.DENIED)

    def transition(self, state: ConfirmationState, at: Optional[datetime] = None) -> "PendingConfirmation":
        """Return a copy in *state*; raises ValueError for an illegal move."""
        if state not in CONFIRMATION_TRANSITIONS[self.state]:
            raise ValueError(f"Cannot move confirmation from {self.state.value} to {state.value}")
        resolved_at = None
        if state in (ConfirmationState.COMPLETED, ConfirmationState.DENIED):
            resolved_at = at or utcnow()
        return self.model_copy(update={"state": state, "resolved_at": resolved_at})


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class Trigger(BaseModel):
    """When a scheduled task should fire.

    kind="at"        fire once at ``at`` (must be in the future)
    kind="delay"     fire once ``delay_seconds`` after scheduling
    kind="recurring" fire on every occurrence of the RFC 5545 ``rule``

    For a stored recurring trigger ``start`` is the occurrence due next; it
    moves forward with every firing. ``remaining`` counts the occurrences
    left from ``start`` onward when the rule carries a COUNT.
    """

    kind: Literal["at", "delay", "recurring"]
    at: Optional[datetime] = None
    delay_seconds: Optional[float] = None
    rule: Optional[str] = None
    start: Optional[datetime] = None
    remaining: Optional[int] = None

    @property
    def is_recurring(self) -> bool:
        return self.kind == "recurring"


class ScheduledTask(BaseModel):
    """A tool call registered to run later in its owning conversation."""

    task_id: str = Field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    conversation_id: str
    action: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    trigger: Trigger
    next_run_at: datetime
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    fire_count: int = 0

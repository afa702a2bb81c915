"""Execution context and output types passed across the tool boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from studybuddy.models import Clock, Message, utcnow

if TYPE_CHECKING:
    from studybuddy.scheduler import Scheduler


@dataclass(frozen=True)
class ToolContext:
    """
    Everything a handler may see besides its arguments.

    Handlers get the owning conversation explicitly: its id, a read-only
    snapshot of its history, the clock, and the scheduler for tools that
    register deferred work.
    """

    conversation_id: str
    history: tuple[Message, ...] = ()
    clock: Clock = utcnow
    scheduler: Optional["Scheduler"] = None

    def now(self) -> datetime:
        return self.clock()


@dataclass
class ToolOutput:
    """A handler's result: display text plus optional message metadata."""

    text: str
    metadata: Optional[dict[str, Any]] = field(default=None)

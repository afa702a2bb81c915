"""
Test doubles and builders shared by the StudyBuddy test modules.

A fixed clock, a scripted model and a fully wired harness over a real
SQLite store. Fixtures built from these live in conftest.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from studybuddy.api.claude import ModelReply
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.harness.lanes import ConversationLanes
from studybuddy.harness.loop import DialogueEngine
from studybuddy.harness.routing import ToolCallRouter
from studybuddy.models import Message, ToolCallRequest
from studybuddy.scheduler import Scheduler
from studybuddy.store import ConversationStore
from studybuddy.tools.executor import ToolExecutor
from studybuddy.tools.registry import ToolRegistry
from studybuddy.tools.scheduling import register_scheduling_tools
from studybuddy.tools.study import register_study_tools

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

# Tools that wait for approval out of the box.
DEFAULT_GATED = ("schedule_task",)

# Also gates a study tool, for driving approval flows end to end.
PROGRESS_GATED = ("log_study_progress", "schedule_task")


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Scripted model
# ---------------------------------------------------------------------------

def text_reply(text: str) -> ModelReply:
    return ModelReply(text=text)


def tool_reply(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelReply:
    return ModelReply(
        text=text,
        tool_calls=[ToolCallRequest(name=name, arguments=args) for name, args in calls],
    )


class ScriptedModel:
    """
    A fake model that returns pre-scripted replies in order.

    An Exception in the script is raised instead of returned. Every call's
    history is recorded so tests can check what the model saw.
    """

    def __init__(self, replies: Optional[list[Union[ModelReply, Exception]]] = None):
        self._replies = list(replies or [])
        self.calls: list[list[Message]] = []
        self.tools_seen: list[list[dict[str, Any]]] = []

    def script(self, *replies: Union[ModelReply, Exception]) -> None:
        self._replies.extend(replies)

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        if not self._replies:
            raise AssertionError("ScriptedModel ran out of replies")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


# ---------------------------------------------------------------------------
# Registry and the whole harness
# ---------------------------------------------------------------------------

def make_registry(confirm: tuple[str, ...] = DEFAULT_GATED) -> ToolRegistry:
    registry = ToolRegistry()
    register_study_tools(registry)
    register_scheduling_tools(registry)
    registry.mark_requires_confirmation(list(confirm))
    return registry


@dataclass
class Harness:
    store: ConversationStore
    registry: ToolRegistry
    executor: ToolExecutor
    gate: ConfirmationGate
    router: ToolCallRouter
    lanes: ConversationLanes
    scheduler: Scheduler
    engine: DialogueEngine
    model: ScriptedModel
    clock: FixedClock
    extra: dict[str, Any] = field(default_factory=dict)


def build_harness(
    store: ConversationStore,
    clock: FixedClock,
    registry: Optional[ToolRegistry] = None,
    max_steps: int = 10,
    max_age_seconds: float = 0.0,
) -> Harness:
    registry = registry or make_registry()
    executor = ToolExecutor(registry, default_timeout=5.0)
    gate = ConfirmationGate(store, executor, clock=clock, max_age_seconds=max_age_seconds)
    router = ToolCallRouter(registry, executor, gate)
    lanes = ConversationLanes()
    scheduler = Scheduler(store, registry, router, lanes, clock=clock)
    model = ScriptedModel()
    engine = DialogueEngine(
        model=model,
        store=store,
        registry=registry,
        router=router,
        gate=gate,
        lanes=lanes,
        system_prompt="You are a test study assistant.",
        max_steps=max_steps,
        clock=clock,
        scheduler=scheduler,
    )
    return Harness(store, registry, executor, gate, router, lanes, scheduler, engine, model, clock)


FLASHCARD_ARGS = {
    "subject": "Biology",
    "topic": "Cell Division",
    "cards": [
        {"question": "What is mitosis?", "answer": "Division into two identical cells"},
        {"question": "What is meiosis?", "answer": "Division producing four gametes"},
        {"question": "What is cytokinesis?", "answer": "Division of the cytoplasm"},
    ],
}

PROGRESS_ARGS = {
    "subject": "Chemistry",
    "hoursStudied": 2,
    "topicsCovered": ["Moles", "Stoichiometry"],
    "understandingLevel": "intermediate",
}

"""
The Dialogue Engine — one turn of tool-augmented conversation.

The shape is the classic agentic loop:

    while steps remain:
        reply = model.complete(system_prompt, history, tools)
        if reply is plain text:
            append it and stop
        append the assistant's tool calls
        route each call (validate → gate or execute) and append results
        if every call is waiting on a human, stop (suspended)

Everything that matters for consistency happens at the edges of that loop:
the history is re-read from the store on every step, results are appended in
the order the model listed the calls, and all appends for a step happen under
the conversation's lane lock. The model call itself runs outside the lane,
so a scheduled firing can land while a turn is waiting on the model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from studybuddy.api.claude import ModelClient, describe_reply
from studybuddy.errors import MaxStepsExceededError
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.harness.lanes import ConversationLanes
from studybuddy.harness.routing import ToolCallRouter
from studybuddy.models import Clock, Message, PendingConfirmation, utcnow
from studybuddy.store import ConversationStore
from studybuddy.tools.context import ToolContext
from studybuddy.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from studybuddy.scheduler import Scheduler

logger = structlog.get_logger(__name__)


def step_limit_text(max_steps: int) -> str:
    return (
        f"I'm sorry, I was unable to complete this request within {max_steps} steps. "
        "Please try again or break it into smaller requests."
    )


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    STEP_LIMIT = "step_limit"


@dataclass
class TurnResult:
    """How a turn ended and what it added to the conversation."""

    conversation_id: str
    status: TurnStatus
    text: str = ""
    steps: int = 0
    pending: list[PendingConfirmation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)

    @property
    def suspended(self) -> bool:
        return self.status is TurnStatus.SUSPENDED


class DialogueEngine:
    """
    Runs turns against the conversation store.

    Turns on one conversation are serialized by its turn lock; turns on
    different conversations run independently.
    """

    def __init__(
        self,
        model: ModelClient,
        store: ConversationStore,
        registry: ToolRegistry,
        router: ToolCallRouter,
        gate: ConfirmationGate,
        lanes: ConversationLanes,
        system_prompt: str,
        max_steps: int = 10,
        clock: Clock = utcnow,
        scheduler: Optional["Scheduler"] = None,
    ):
        self._model = model
        self._store = store
        self._registry = registry
        self._router = router
        self._gate = gate
        self._lanes = lanes
        self._system_prompt = system_prompt
        self._max_steps = max(1, int(max_steps))
        self._clock = clock
        self.scheduler = scheduler

        self._total_turns = 0
        self._total_steps = 0
        self._total_tool_calls = 0

        logger.info("dialogue_engine.initialized", max_steps=self._max_steps)

    def _context(self, conversation_id: str, history: list[Message]) -> ToolContext:
        return ToolContext(
            conversation_id=conversation_id,
            history=tuple(history),
            clock=self._clock,
            scheduler=self.scheduler,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def send(self, conversation_id: str, text: str) -> TurnResult:
        """
        Append a user message and run the turn it triggers.

        ModelUnavailableError propagates; the user message stays persisted
        and the turn can be retried with resume().
        """
        async with self._lanes.turn(conversation_id):
            async with self._lanes.lane(conversation_id):
                user_message = self._store.append(conversation_id, Message.user(text))
            logger.info("dialogue_engine.turn_started", conversation_id=conversation_id)
            return await self._run(conversation_id, [user_message])

    async def resume(self, conversation_id: str) -> TurnResult:
        """Run the loop on the existing history without a new user message."""
        async with self._lanes.turn(conversation_id):
            logger.info("dialogue_engine.resumed", conversation_id=conversation_id)
            return await self._run(conversation_id, [])

    async def resolve_confirmation(
        self,
        request_id: str,
        approve: bool,
        resume: bool = True,
    ) -> tuple[Message, Optional[TurnResult]]:
        """
        Approve or deny a pending call and append its result.

        When ``resume`` is set and nothing else is pending in the conversation,
        the loop continues so the model sees the outcome.
        """
        conversation_id = self._gate.get(request_id).conversation_id
        async with self._lanes.turn(conversation_id):
            async with self._lanes.lane(conversation_id):
                if approve:
                    history = self._store.read(conversation_id)
                    message = await self._gate.approve(
                        request_id, self._context(conversation_id, history)
                    )
                else:
                    message = self._gate.deny(request_id)

            if not resume or self._gate.list_pending(conversation_id):
                return message, None
            return message, await self._run(conversation_id, [message])

    # -------------------------------------------------------------------------
    # The loop
    # -------------------------------------------------------------------------

    async def _run(self, conversation_id: str, appended: list[Message]) -> TurnResult:
        self._total_turns += 1
        pending: list[PendingConfirmation] = []
        steps = 0
        try:
            while True:
                if steps >= self._max_steps:
                    raise MaxStepsExceededError(self._max_steps)
                steps += 1
                self._total_steps += 1

                history = self._store.read(conversation_id)
                reply = await self._model.complete(
                    self._system_prompt, history, self._registry.describe()
                )
                logger.debug(
                    "dialogue_engine.step",
                    conversation_id=conversation_id,
                    step=steps,
                    reply=describe_reply(reply),
                )

                async with self._lanes.lane(conversation_id):
                    if not reply.wants_tools:
                        final = self._store.append(conversation_id, Message.assistant(reply.text))
                        appended.append(final)
                        logger.info(
                            "dialogue_engine.turn_completed",
                            conversation_id=conversation_id,
                            steps=steps,
                        )
                        return TurnResult(
                            conversation_id=conversation_id,
                            status=TurnStatus.COMPLETED,
                            text=reply.text,
                            steps=steps,
                            pending=pending,
                            messages=appended,
                        )

                    request = self._store.append(
                        conversation_id, Message.assistant(reply.text, reply.tool_calls)
                    )
                    appended.append(request)
                    context = self._context(conversation_id, history + [request])

                    produced_result = False
                    for call in reply.tool_calls:
                        self._total_tool_calls += 1
                        routed = await self._router.route(conversation_id, call, context)
                        if routed.confirmation is not None:
                            pending.append(routed.confirmation)
                        if routed.message is not None:
                            appended.append(self._store.append(conversation_id, routed.message))
                            produced_result = True

                if not produced_result:
                    logger.info(
                        "dialogue_engine.turn_suspended",
                        conversation_id=conversation_id,
                        steps=steps,
                        pending=[p.request_id for p in pending],
                    )
                    return TurnResult(
                        conversation_id=conversation_id,
                        status=TurnStatus.SUSPENDED,
                        text=reply.text,
                        steps=steps,
                        pending=pending,
                        messages=appended,
                    )

        except MaxStepsExceededError as e:
            logger.warning(
                "dialogue_engine.step_limit",
                conversation_id=conversation_id,
                max_steps=e.max_steps,
            )
            text = step_limit_text(e.max_steps)
            async with self._lanes.lane(conversation_id):
                appended.append(self._store.append(conversation_id, Message.assistant(text)))
            return TurnResult(
                conversation_id=conversation_id,
                status=TurnStatus.STEP_LIMIT,
                text=text,
                steps=steps,
                pending=pending,
                messages=appended,
            )

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total_turns": self._total_turns,
            "total_steps": self._total_steps,
            "total_tool_calls": self._total_tool_calls,
        }

"""
StudyAgent — wiring the subsystems together.

Startup order, bottom to top:

    1. Conversation store (SQLite)
    2. Tool registry: study tools + scheduling tools, confirmation flags
    3. Executor, confirmation gate, router, conversation lanes
    4. Scheduler
    5. Dialogue engine (created on first use; it needs model credentials)

Commands that only read or resolve local state (history, pending, tasks)
never touch the model, so they work without an API key.
"""

from __future__ import annotations

from typing import Optional

import structlog

from studybuddy.api.claude import ClaudeModel, ModelClient
from studybuddy.config import StudyBuddyConfig
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.harness.lanes import ConversationLanes
from studybuddy.harness.loop import DialogueEngine, TurnResult
from studybuddy.harness.routing import ToolCallRouter
from studybuddy.models import Clock, Message, utcnow
from studybuddy.scheduler import Scheduler
from studybuddy.store import ConversationStore
from studybuddy.tools.context import ToolContext
from studybuddy.tools.executor import ToolExecutor
from studybuddy.tools.registry import ToolRegistry
from studybuddy.tools.scheduling import register_scheduling_tools
from studybuddy.tools.study import register_study_tools

logger = structlog.get_logger(__name__)


class StudyAgent:
    """Owns every subsystem for one StudyBuddy process."""

    def __init__(
        self,
        config: StudyBuddyConfig,
        model: Optional[ModelClient] = None,
        clock: Clock = utcnow,
    ):
        self._config = config
        self._model = model
        self._clock = clock

        self.store = ConversationStore(config.storage.db_path)

        self.registry = ToolRegistry()
        register_study_tools(self.registry)
        register_scheduling_tools(self.registry)
        self.registry.mark_requires_confirmation(config.agent.require_confirmation_for)

        self.executor = ToolExecutor(
            self.registry,
            default_timeout=config.agent.tool_default_timeout,
            max_output_length=config.agent.tool_max_output_length,
        )
        self.gate = ConfirmationGate(
            self.store,
            self.executor,
            clock=clock,
            max_age_seconds=config.agent.confirmation_max_age_seconds,
        )
        self.router = ToolCallRouter(self.registry, self.executor, self.gate)
        self.lanes = ConversationLanes()
        self.scheduler = Scheduler(
            self.store,
            self.registry,
            self.router,
            self.lanes,
            clock=clock,
            poll_interval_seconds=config.scheduler.poll_interval_seconds,
        )
        self._engine: Optional[DialogueEngine] = None
        self._started = False

    @property
    def engine(self) -> DialogueEngine:
        if self._engine is None:
            if self._model is None:
                self._model = ClaudeModel(self._config.claude)
            self._engine = DialogueEngine(
                model=self._model,
                store=self.store,
                registry=self.registry,
                router=self.router,
                gate=self.gate,
                lanes=self.lanes,
                system_prompt=self._config.agent.system_prompt,
                max_steps=self._config.agent.max_steps,
                clock=self._clock,
                scheduler=self.scheduler,
            )
        return self._engine

    async def start(self, run_scheduler: Optional[bool] = None) -> None:
        """Open the store, settle leftover confirmations and start the poller."""
        if self._started:
            return
        self.store.initialize()
        recovered = self.gate.recover()
        expired = self.gate.expire_stale()
        if run_scheduler is None:
            run_scheduler = self._config.scheduler.enabled
        if run_scheduler:
            await self.scheduler.start()
        self._started = True
        logger.info(
            "study_agent.started",
            tools=self.registry.count,
            recovered_confirmations=recovered,
            expired_confirmations=len(expired),
            scheduler=run_scheduler,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        await self.scheduler.stop()
        self.store.close()
        self._started = False
        logger.info("study_agent.stopped")

    async def __aenter__(self) -> "StudyAgent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # Convenience pass-throughs for transports.

    async def send(self, conversation_id: str, text: str) -> TurnResult:
        return await self.engine.send(conversation_id, text)

    async def resolve_confirmation(
        self, request_id: str, approve: bool, resume: bool = True
    ) -> tuple[Message, Optional[TurnResult]]:
        """Resolve a pending call; without ``resume`` the model is never contacted."""
        if resume or self._engine is not None:
            return await self.engine.resolve_confirmation(request_id, approve, resume=resume)

        conversation_id = self.gate.get(request_id).conversation_id
        async with self.lanes.turn(conversation_id):
            async with self.lanes.lane(conversation_id):
                if not approve:
                    return self.gate.deny(request_id), None
                context = ToolContext(
                    conversation_id=conversation_id,
                    history=tuple(self.store.read(conversation_id)),
                    clock=self._clock,
                    scheduler=self.scheduler,
                )
                return await self.gate.approve(request_id, context), None

    def history(self, conversation_id: str) -> list[Message]:
        return self.store.read(conversation_id)

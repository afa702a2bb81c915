"""
Confirmation Gate — human approval for requires-confirmation tools.

A call to a requires-confirmation tool is never run on the model's say-so.
Instead the gate persists a PendingConfirmation and hands control back; the
call stays suspended until an external approver resolves it:

    pending ──approve──▶ approved ──▶ executing ──▶ completed
       │
       └─────deny──────▶ denied  ("User declined to run {tool}.")

Every transition is written to the store, so a pending call survives a
restart. A record caught in ``executing`` by a crash is put back to
``pending`` by recover(); re-approval is required rather than silently
re-running a side effect.

The gate does not take conversation locks itself. Callers that mutate a
conversation (the dialogue engine, the CLI through the engine) hold that
conversation's lane while resolving.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import structlog

from studybuddy.errors import (
    ConfirmationNotFoundError,
    ConfirmationStateError,
    ConfirmationTimeoutError,
)
from studybuddy.models import (
    Clock,
    ConfirmationState,
    Message,
    PendingConfirmation,
    ToolCallRequest,
    utcnow,
)
from studybuddy.store import ConversationStore
from studybuddy.tools.context import ToolContext
from studybuddy.tools.executor import ToolExecutor

logger = structlog.get_logger(__name__)


def decline_text(tool_name: str) -> str:
    return f"User declined to run {tool_name}."


def expired_text(tool_name: str) -> str:
    return f"Confirmation for {tool_name} expired before it was approved; the call was not run."


class ConfirmationGate:
    """Persisted state machine for calls awaiting a human decision."""

    def __init__(
        self,
        store: ConversationStore,
        executor: ToolExecutor,
        clock: Clock = utcnow,
        max_age_seconds: float = 0.0,
    ):
        self._store = store
        self._executor = executor
        self._clock = clock
        self._max_age_seconds = max(0.0, float(max_age_seconds))

    # -------------------------------------------------------------------------
    # Requesting
    # -------------------------------------------------------------------------

    def request(
        self,
        conversation_id: str,
        call: ToolCallRequest,
        arguments: dict[str, Any],
    ) -> PendingConfirmation:
        """Persist a pending confirmation and return it without blocking."""
        confirmation = PendingConfirmation(
            conversation_id=conversation_id,
            call=call,
            arguments=arguments,
            created_at=self._clock(),
        )
        self._store.save_confirmation(confirmation)
        logger.info(
            "confirmation_gate.requested",
            request_id=confirmation.request_id,
            conversation_id=conversation_id,
            tool_name=call.name,
        )
        return confirmation

    def get(self, request_id: str) -> PendingConfirmation:
        confirmation = self._store.load_confirmation(request_id)
        if confirmation is None:
            raise ConfirmationNotFoundError(request_id)
        return confirmation

    def list_pending(self, conversation_id: Optional[str] = None) -> list[PendingConfirmation]:
        return self._store.list_confirmations(conversation_id)

    def describe_pending(self, conversation_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Pending calls as the external approver sees them."""
        return [
            {
                "request_id": c.request_id,
                "conversation_id": c.conversation_id,
                "tool_name": c.tool_name,
                "arguments": c.arguments,
                "created_at": c.created_at.isoformat(),
            }
            for c in self.list_pending(conversation_id)
        ]

    # -------------------------------------------------------------------------
    # Resolving
    # -------------------------------------------------------------------------

    def _require_pending(self, request_id: str) -> PendingConfirmation:
        confirmation = self.get(request_id)
        if confirmation.state is not ConfirmationState.PENDING:
            raise ConfirmationStateError(
                f"Confirmation {request_id} is {confirmation.state.value}, not pending"
            )
        return confirmation

    def _age_seconds(self, confirmation: PendingConfirmation, now: datetime) -> float:
        return (now - confirmation.created_at).total_seconds()

    def _is_expired(self, confirmation: PendingConfirmation, now: datetime) -> bool:
        if self._max_age_seconds <= 0:
            return False
        return self._age_seconds(confirmation, now) > self._max_age_seconds

    def _close_denied(self, confirmation: PendingConfirmation, text: str) -> Message:
        message = Message.tool_result(confirmation.call, text, is_error=True)
        with self._store.transaction():
            self._store.append(confirmation.conversation_id, message)
            self._store.save_confirmation(
                confirmation.transition(ConfirmationState.DENIED, at=self._clock())
            )
        return message

    async def approve(self, request_id: str, context: ToolContext) -> Message:
        """
        Approve a pending call, run it, and append its result.

        Raises ConfirmationNotFoundError, ConfirmationStateError, or
        ConfirmationTimeoutError when the record outlived the max age (it is
        denied with an expiry result in that case).
        """
        confirmation = self._require_pending(request_id)
        now = self._clock()
        if self._is_expired(confirmation, now):
            self._close_denied(confirmation, expired_text(confirmation.tool_name))
            logger.warning(
                "confirmation_gate.expired",
                request_id=request_id,
                tool_name=confirmation.tool_name,
            )
            raise ConfirmationTimeoutError(request_id, self._age_seconds(confirmation, now))

        executing = confirmation.transition(ConfirmationState.APPROVED).transition(
            ConfirmationState.EXECUTING
        )
        self._store.save_confirmation(executing)
        logger.info(
            "confirmation_gate.approved",
            request_id=request_id,
            tool_name=confirmation.tool_name,
        )

        result = await self._executor.execute(confirmation.call, confirmation.arguments, context)
        message = result.to_message(confirmation.call)
        with self._store.transaction():
            self._store.append(confirmation.conversation_id, message)
            self._store.save_confirmation(
                executing.transition(ConfirmationState.COMPLETED, at=self._clock())
            )

        logger.info(
            "confirmation_gate.completed",
            request_id=request_id,
            tool_name=confirmation.tool_name,
            success=result.success,
        )
        return message

    def deny(self, request_id: str) -> Message:
        """Deny a pending call; the handler is never invoked."""
        confirmation = self._require_pending(request_id)
        message = self._close_denied(confirmation, decline_text(confirmation.tool_name))
        logger.info(
            "confirmation_gate.denied",
            request_id=request_id,
            tool_name=confirmation.tool_name,
        )
        return message

    def expire_stale(self, now: Optional[datetime] = None) -> list[Message]:
        """Deny every pending record older than the max age."""
        if self._max_age_seconds <= 0:
            return []
        now = now or self._clock()
        expired: list[Message] = []
        for confirmation in self.list_pending():
            if self._is_expired(confirmation, now):
                expired.append(
                    self._close_denied(confirmation, expired_text(confirmation.tool_name))
                )
                logger.info(
                    "confirmation_gate.expired",
                    request_id=confirmation.request_id,
                    tool_name=confirmation.tool_name,
                )
        return expired

    def recover(self) -> int:
        """Return records interrupted mid-execution to pending."""
        stuck = self._store.list_confirmations(states=(ConfirmationState.EXECUTING,))
        for confirmation in stuck:
            self._store.save_confirmation(confirmation.transition(ConfirmationState.PENDING))
            logger.warning(
                "confirmation_gate.recovered",
                request_id=confirmation.request_id,
                tool_name=confirmation.tool_name,
            )
        return len(stuck)

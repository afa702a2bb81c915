"""
Tool Call Routing — validate, then gate or execute.

The single path every proposed tool call takes, whether the model asked for
it during a turn or the scheduler is firing a due task:

1. validate the raw arguments against the tool's schema; a failure becomes
   an error result the model can read and correct
2. requires-confirmation tools are handed to the confirmation gate and the
   call is suspended
3. everything else is executed now

The router returns the result message without appending it, so the caller
can place it in the log inside its own lane and transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from studybuddy.errors import SchemaValidationError, UnknownToolError
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.models import Message, PendingConfirmation, ToolCallRequest
from studybuddy.tools.context import ToolContext
from studybuddy.tools.executor import ToolExecutionResult, ToolExecutor
from studybuddy.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


class RouteStatus(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    INVALID = "invalid"
    SUSPENDED = "suspended"


@dataclass
class RoutedCall:
    """Outcome of routing one call. ``message`` is None only when suspended."""

    call: ToolCallRequest
    status: RouteStatus
    message: Optional[Message] = None
    confirmation: Optional[PendingConfirmation] = None
    result: Optional[ToolExecutionResult] = None

    @property
    def suspended(self) -> bool:
        return self.status is RouteStatus.SUSPENDED


class ToolCallRouter:
    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor,
        gate: ConfirmationGate,
    ):
        self._registry = registry
        self._executor = executor
        self._gate = gate

    async def route(
        self,
        conversation_id: str,
        call: ToolCallRequest,
        context: ToolContext,
    ) -> RoutedCall:
        try:
            arguments = self._registry.validate(call.name, call.arguments)
        except (UnknownToolError, SchemaValidationError) as e:
            logger.info(
                "tool_router.invalid_call",
                conversation_id=conversation_id,
                tool_name=call.name,
                error=str(e),
            )
            return RoutedCall(
                call=call,
                status=RouteStatus.INVALID,
                message=Message.tool_result(call, f"Error: {e}", is_error=True),
            )

        tool = self._registry.require(call.name)
        if tool.requires_confirmation:
            confirmation = self._gate.request(conversation_id, call, arguments)
            return RoutedCall(
                call=call,
                status=RouteStatus.SUSPENDED,
                confirmation=confirmation,
            )

        result = await self._executor.execute(call, arguments, context)
        return RoutedCall(
            call=call,
            status=RouteStatus.EXECUTED if result.success else RouteStatus.FAILED,
            message=result.to_message(call),
            result=result,
        )

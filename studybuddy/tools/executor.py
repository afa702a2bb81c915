"""
Tool Executor — running validated tool calls.

The executor receives arguments that already passed schema validation and
turns a handler invocation into exactly one ToolExecutionResult. A handler
that raises, runs past its timeout or returns an oversized payload still
produces a result; the turn never crashes on a tool.

Validation and the confirmation gate sit in front of the executor (see
harness/routing.py); the executor never decides whether a call may run.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from studybuddy.models import Message, ToolCallRequest
from studybuddy.tools.context import ToolContext, ToolOutput
from studybuddy.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


@dataclass
class ToolExecutionResult:
    """
    Outcome of one handler invocation.

    Becomes the tool_result message for the call. Metadata survives only on
    success.
    """

    tool_call_id: str
    tool_name: str
    success: bool
    text: str = ""
    metadata: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    execution_time: float = 0.0

    def __post_init__(self) -> None:
        if not self.success:
            self.metadata = None

    @property
    def content(self) -> str:
        """The text shown to the model for this result."""
        return self.text if self.success else f"Error: {self.error}"

    def to_message(self, call: ToolCallRequest) -> Message:
        return Message.tool_result(
            call,
            self.content,
            metadata=self.metadata,
            is_error=not self.success,
        )


class ToolExecutor:
    """
    Runs tool handlers under a timeout.

    Async handlers run on the event loop. Sync handlers run on worker
    threads, at most ``max_concurrent_sync`` at a time.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = 30.0,
        max_output_length: int = 25000,
        max_concurrent_sync: int = 8,
    ):
        self._registry = registry
        self._default_timeout = default_timeout
        self._max_output_length = max_output_length
        self._thread_slots = asyncio.BoundedSemaphore(max(1, int(max_concurrent_sync)))

        self._executed = 0
        self._succeeded = 0
        self._failed = 0

        logger.info(
            "tool_executor.initialized",
            timeout=default_timeout,
            max_output=max_output_length,
        )

    def _failure(self, call: ToolCallRequest, error: str, started: float) -> ToolExecutionResult:
        self._failed += 1
        return ToolExecutionResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=False,
            error=error,
            execution_time=time.monotonic() - started,
        )

    def _clip(self, text: str) -> str:
        limit = self._max_output_length
        if len(text) <= limit:
            return text
        shown = limit - 100
        return text[:shown] + f"\n\n[Output truncated — {len(text)} chars total, showing first {shown}]"

    async def execute(
        self,
        call: ToolCallRequest,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> ToolExecutionResult:
        """Run ``call`` with already-validated ``arguments`` in ``context``."""
        started = time.monotonic()
        self._executed += 1

        tool = self._registry.get(call.name)
        if tool is None or not tool.enabled:
            return self._failure(call, f"Unknown tool: {call.name}", started)

        timeout = tool.timeout if tool.timeout is not None else self._default_timeout
        logger.info(
            "tool_executor.executing",
            tool_name=call.name,
            tool_call_id=call.id,
            conversation_id=context.conversation_id,
            argument_keys=sorted(arguments),
        )

        try:
            if asyncio.iscoroutinefunction(tool.handler):
                raw = await asyncio.wait_for(tool.handler(arguments, context), timeout=timeout)
            else:
                raw = await self._run_in_thread(tool.handler, arguments, context, timeout)
        except asyncio.TimeoutError:
            logger.warning("tool_executor.timeout", tool_name=call.name, timeout=timeout)
            return self._failure(call, f"Tool execution timed out after {timeout}s", started)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(
                "tool_executor.error",
                tool_name=call.name,
                error=error,
                traceback=traceback.format_exc(),
            )
            return self._failure(call, error, started)

        output = raw if isinstance(raw, ToolOutput) else ToolOutput(text=str(raw))
        elapsed = time.monotonic() - started
        self._succeeded += 1
        logger.info(
            "tool_executor.success",
            tool_name=call.name,
            elapsed=round(elapsed, 2),
            result_length=len(output.text),
            has_metadata=output.metadata is not None,
        )
        return ToolExecutionResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=True,
            text=self._clip(output.text),
            metadata=output.metadata,
            execution_time=elapsed,
        )

    async def _run_in_thread(
        self,
        handler: Callable[..., Any],
        arguments: dict[str, Any],
        context: ToolContext,
        timeout: float,
    ) -> Any:
        # The slot is freed on timeout even though the thread may still be running.
        async with self._thread_slots:
            return await asyncio.wait_for(
                asyncio.to_thread(handler, arguments, context), timeout=timeout
            )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_executions": self._executed,
            "successes": self._succeeded,
            "failures": self._failed,
            "success_rate": self._succeeded / max(1, self._executed),
        }

"""
Scheduling Tools — letting the model register deferred work.

These wrap the Scheduler for the model: schedule a study tool to run later
(once, after a delay, or on a recurrence rule), list what is scheduled, and
cancel a task. They are async so they run on the event loop thread alongside
the store. None of them can itself be the action of a scheduled task.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from studybuddy.errors import InvalidTriggerError
from studybuddy.models import Trigger
from studybuddy.tools.context import ToolContext, ToolOutput
from studybuddy.tools.registry import ToolDefinition, ToolRegistry

if TYPE_CHECKING:
    from studybuddy.scheduler import Scheduler


def _require_scheduler(context: ToolContext) -> "Scheduler":
    if context.scheduler is None:
        raise RuntimeError("Scheduling is not available in this session.")
    return context.scheduler


def trigger_from_arguments(arguments: dict[str, Any]) -> Trigger:
    """Build a Trigger from exactly one of ``at``, ``delaySeconds`` or ``rule``."""
    given = [key for key in ("at", "delaySeconds", "rule") if key in arguments]
    if len(given) != 1:
        raise InvalidTriggerError("Provide exactly one of 'at', 'delaySeconds' or 'rule'.")

    if "at" in arguments:
        return Trigger(kind="at", at=datetime.fromisoformat(arguments["at"].replace("Z", "+00:00")))
    if "delaySeconds" in arguments:
        return Trigger(kind="delay", delay_seconds=arguments["delaySeconds"])
    start = arguments.get("start")
    return Trigger(
        kind="recurring",
        rule=arguments["rule"],
        start=datetime.fromisoformat(start.replace("Z", "+00:00")) if start else None,
    )


async def schedule_task(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    scheduler = _require_scheduler(context)
    task = scheduler.schedule(
        context.conversation_id,
        arguments["action"],
        trigger_from_arguments(arguments),
        arguments.get("arguments", {}),
        description=arguments.get("description", ""),
    )
    cadence = f" (recurring: {task.trigger.rule})" if task.trigger.is_recurring else ""
    return ToolOutput(
        text=(
            f"Scheduled {task.action} for {task.next_run_at.isoformat()}{cadence}. "
            f"Task ID: {task.task_id}"
        )
    )


async def list_scheduled_tasks(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    tasks = _require_scheduler(context).list_pending(context.conversation_id)
    if not tasks:
        return ToolOutput(text="No scheduled tasks.")
    lines = [f"{len(tasks)} scheduled task(s):"]
    for task in tasks:
        label = task.description or task.action
        lines.append(f"- {task.task_id}: {label} at {task.next_run_at.isoformat()}")
    return ToolOutput(text="\n".join(lines))


async def cancel_scheduled_task(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    task_id = arguments["taskId"]
    scheduler = _require_scheduler(context)
    owned = {t.task_id for t in scheduler.list_pending(context.conversation_id)}
    if task_id in owned and scheduler.cancel(task_id):
        return ToolOutput(text=f"Cancelled task {task_id}.")
    return ToolOutput(text=f"No pending task {task_id}; nothing to cancel.")


def register_scheduling_tools(registry: ToolRegistry) -> None:
    """Register the scheduling tools."""

    registry.register(
        ToolDefinition(
            name="schedule_task",
            description=(
                "Schedule one of the study tools to run later in this conversation, "
                "for example a quiz tomorrow morning or a weekly progress log. Give "
                "exactly one of: 'at' (ISO 8601 date-time in the future), "
                "'delaySeconds', or 'rule' (an RFC 5545 RRULE such as "
                "'FREQ=DAILY;BYHOUR=9;BYMINUTE=0'). 'arguments' must be valid "
                "arguments for 'action'."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "action": {"type": "string", "minLength": 1, "description": "Tool to run."},
                    "arguments": {"type": "object", "default": {}, "description": "Arguments for the tool."},
                    "at": {"type": "string", "format": "date-time"},
                    "delaySeconds": {"type": "number", "exclusiveMinimum": 0},
                    "rule": {"type": "string", "minLength": 1},
                    "start": {
                        "type": "string",
                        "format": "date-time",
                        "description": "Anchor for 'rule'; defaults to now.",
                    },
                    "description": {"type": "string", "default": ""},
                },
                "required": ["action"],
                "additionalProperties": False,
            },
            handler=schedule_task,
            category="scheduling",
            schedulable=False,
        )
    )

    registry.register(
        ToolDefinition(
            name="list_scheduled_tasks",
            description="List the tasks scheduled in this conversation, soonest first.",
            input_schema={"type": "object", "properties": {}, "additionalProperties": False},
            handler=list_scheduled_tasks,
            category="scheduling",
            schedulable=False,
        )
    )

    registry.register(
        ToolDefinition(
            name="cancel_scheduled_task",
            description="Cancel a scheduled task in this conversation by its task ID.",
            input_schema={
                "type": "object",
                "properties": {"taskId": {"type": "string", "minLength": 1}},
                "required": ["taskId"],
                "additionalProperties": False,
            },
            handler=cancel_scheduled_task,
            category="scheduling",
            schedulable=False,
        )
    )

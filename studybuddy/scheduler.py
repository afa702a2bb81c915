"""
Scheduler — deferred and recurring tool calls.

A scheduled task is a tool call registered now to run later in its owning
conversation. Tasks live in the store, so they survive restarts; a poller
fires them when due.

Firing takes exactly the path a live call takes: the router validates the
stored arguments against the tool's current schema, sends
requires-confirmation tools to the gate, and executes the rest. The result
message, the firing record and the task's deletion (one-shot) or
rescheduling (recurring) are written in one transaction under the
conversation's lane.

Delivery is at-least-once: a due task missed while the process was down
fires on the next poll. Each (task, occurrence) pair is recorded, so a
duplicate delivery of the same occurrence is skipped.
"""

from __future__ import annotations

import asyncio
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from dateutil.rrule import rrule, rrulestr

from studybuddy.errors import InvalidTriggerError, UnknownToolError
from studybuddy.harness.lanes import ConversationLanes
from studybuddy.harness.routing import RouteStatus, ToolCallRouter
from studybuddy.models import Clock, Message, ScheduledTask, ToolCallRequest, Trigger, utcnow
from studybuddy.store import ConversationStore
from studybuddy.tools.context import ToolContext
from studybuddy.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

# Upper bound on occurrences walked to find the next run.
MAX_OCCURRENCE_SCAN = 10_000

_COUNT_RE = re.compile(r"(?:^|[;:])COUNT=(\d+)", re.IGNORECASE)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_rule(rule: str, start: datetime) -> rrule:
    """Parse an RFC 5545 recurrence rule anchored at *start*."""
    text = rule.strip()
    if "DTSTART" in text.upper():
        raise InvalidTriggerError(
            f"Recurrence rule {rule!r} must not carry DTSTART; pass the anchor as 'start'"
        )
    try:
        parsed = rrulestr(text, dtstart=start)
    except (ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        raise InvalidTriggerError(f"Malformed recurrence rule {rule!r}: {e}") from e
    if not isinstance(parsed, rrule):
        raise InvalidTriggerError(f"Recurrence rule {rule!r} must be a single RRULE")
    return parsed


def rule_count(rule: str) -> Optional[int]:
    """The COUNT of a recurrence rule, or None when it has none."""
    match = _COUNT_RE.search(rule)
    return int(match.group(1)) if match else None


def advance(trigger: Trigger, after: datetime) -> Optional[tuple[datetime, Trigger]]:
    """
    Find the first occurrence of a recurring trigger strictly after *after*.

    Returns that occurrence together with the trigger re-anchored on it, or
    None when the rule has no such occurrence. Occurrences are walked from
    the trigger's current anchor, so the work done is bounded by the
    occurrences between the anchor and *after*. More than
    MAX_OCCURRENCE_SCAN of them raises InvalidTriggerError.
    """
    if trigger.rule is None or trigger.start is None:
        return None
    rule = parse_rule(trigger.rule, trigger.start)
    if trigger.remaining is not None:
        rule = rule.replace(count=trigger.remaining)
    for index, occurrence in enumerate(rule):
        if index >= MAX_OCCURRENCE_SCAN:
            raise InvalidTriggerError(
                f"Recurrence rule {trigger.rule!r} has more than {MAX_OCCURRENCE_SCAN} "
                f"occurrences between {trigger.start.isoformat()} and {after.isoformat()}"
            )
        occurrence = as_utc(occurrence)
        if occurrence > after:
            remaining = None if trigger.remaining is None else trigger.remaining - index
            return occurrence, trigger.model_copy(
                update={"start": occurrence, "remaining": remaining}
            )
    return None


def resolve_trigger(trigger: Trigger, now: datetime) -> tuple[Trigger, datetime]:
    """
    Check a trigger and compute its first run time.

    Returns the trigger as stored (absolute times normalized to UTC,
    recurrences anchored on their first run) and the first run time.
    Raises InvalidTriggerError.
    """
    if trigger.kind == "at":
        if trigger.at is None:
            raise InvalidTriggerError("An 'at' trigger needs a time")
        at = as_utc(trigger.at)
        if at <= now:
            raise InvalidTriggerError(
                f"Scheduled time {at.isoformat()} is not in the future (now {now.isoformat()})"
            )
        return trigger.model_copy(update={"at": at}), at

    if trigger.kind == "delay":
        delay = trigger.delay_seconds
        if delay is None or not math.isfinite(delay) or delay <= 0:
            raise InvalidTriggerError("A delay must be a positive, finite number of seconds")
        try:
            return trigger, now + timedelta(seconds=delay)
        except (OverflowError, ValueError) as e:
            raise InvalidTriggerError(f"A delay of {delay} seconds is out of range") from e

    if not trigger.rule:
        raise InvalidTriggerError("A recurring trigger needs a recurrence rule")
    start = as_utc(trigger.start) if trigger.start is not None else now
    anchored = trigger.model_copy(update={"start": start, "remaining": rule_count(trigger.rule)})
    found = advance(anchored, now)
    if found is None:
        raise InvalidTriggerError(f"Recurrence rule {trigger.rule!r} has no future occurrence")
    first, anchored = found
    return anchored, first


class Scheduler:
    """Stores scheduled tool calls and fires them through the router."""

    def __init__(
        self,
        store: ConversationStore,
        registry: ToolRegistry,
        router: ToolCallRouter,
        lanes: ConversationLanes,
        clock: Clock = utcnow,
        poll_interval_seconds: float = 1.0,
    ):
        self._store = store
        self._registry = registry
        self._router = router
        self._lanes = lanes
        self._clock = clock
        self._poll_interval = max(0.05, float(poll_interval_seconds))

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._total_fired = 0
        self._total_skipped = 0

    # -------------------------------------------------------------------------
    # Registering work
    # -------------------------------------------------------------------------

    def schedule(
        self,
        conversation_id: str,
        action: str,
        trigger: Trigger,
        arguments: Optional[dict[str, Any]] = None,
        description: str = "",
    ) -> ScheduledTask:
        """
        Register *action* to run later in *conversation_id*.

        Raises UnknownToolError when the action is not a registered,
        schedulable tool, SchemaValidationError when the arguments could
        never pass, and InvalidTriggerError for a bad trigger.
        """
        tool = self._registry.require(action)
        if not tool.schedulable:
            raise UnknownToolError(action)
        arguments = dict(arguments or {})
        # Fail now rather than at fire time; firing validates again.
        self._registry.validate(action, arguments)

        now = self._clock()
        stored_trigger, first_run = resolve_trigger(trigger, now)
        task = ScheduledTask(
            conversation_id=conversation_id,
            action=action,
            arguments=arguments,
            trigger=stored_trigger,
            next_run_at=first_run,
            description=description,
            created_at=now,
        )
        self._store.save_task(task)
        logger.info(
            "scheduler.scheduled",
            task_id=task.task_id,
            conversation_id=conversation_id,
            action=action,
            kind=trigger.kind,
            next_run_at=first_run.isoformat(),
        )
        return task

    def cancel(self, task_id: str) -> bool:
        """Remove an unfired task. Unknown or already-fired ids are a no-op."""
        removed = self._store.delete_task(task_id)
        if removed:
            logger.info("scheduler.cancelled", task_id=task_id)
        return removed

    def list_pending(self, conversation_id: Optional[str] = None) -> list[ScheduledTask]:
        return self._store.list_tasks(conversation_id)

    # -------------------------------------------------------------------------
    # Firing
    # -------------------------------------------------------------------------

    async def fire_due(self, now: Optional[datetime] = None) -> list[Message]:
        """Fire every task due at *now*; returns the messages appended."""
        now = as_utc(now) if now is not None else self._clock()
        appended: list[Message] = []
        for task in self._store.list_tasks(due_before=now):
            message = await self.fire(task, now)
            if message is not None:
                appended.append(message)
        return appended

    async def fire(self, task: ScheduledTask, now: Optional[datetime] = None) -> Optional[Message]:
        """
        Deliver one occurrence of *task*.

        Returns the appended result message, or None when the occurrence was
        already delivered, the task is gone, or the call is now waiting on
        confirmation.
        """
        now = as_utc(now) if now is not None else self._clock()
        occurrence = task.next_run_at
        async with self._lanes.lane(task.conversation_id):
            if self._store.has_fired(task.task_id, occurrence):
                self._total_skipped += 1
                logger.info(
                    "scheduler.duplicate_skipped",
                    task_id=task.task_id,
                    occurrence=occurrence.isoformat(),
                )
                return None
            current = self._store.load_task(task.task_id)
            if current is None or current.next_run_at != occurrence:
                # Cancelled, or another delivery already advanced it.
                return None

            call = ToolCallRequest(name=task.action, arguments=dict(task.arguments))
            context = ToolContext(
                conversation_id=task.conversation_id,
                history=tuple(self._store.read(task.conversation_id)),
                clock=self._clock,
                scheduler=self,
            )
            routed = await self._router.route(task.conversation_id, call, context)

            following, next_trigger = None, task.trigger
            if task.trigger.is_recurring:
                try:
                    found = advance(task.trigger, max(now, occurrence))
                except InvalidTriggerError as e:
                    logger.warning("scheduler.recurrence_retired", task_id=task.task_id, error=str(e))
                    found = None
                if found is not None:
                    following, next_trigger = found

            with self._store.transaction():
                if routed.message is not None:
                    self._store.append(task.conversation_id, routed.message)
                self._store.record_firing(task.task_id, occurrence)
                if following is None:
                    self._store.delete_task(task.task_id)
                else:
                    self._store.save_task(
                        task.model_copy(
                            update={
                                "trigger": next_trigger,
                                "next_run_at": following,
                                "fire_count": task.fire_count + 1,
                            }
                        )
                    )

        self._total_fired += 1
        logger.info(
            "scheduler.fired",
            task_id=task.task_id,
            conversation_id=task.conversation_id,
            action=task.action,
            status=routed.status.value,
            next_run_at=following.isoformat() if following else None,
        )
        if routed.status is RouteStatus.SUSPENDED:
            return None
        return routed.message

    # -------------------------------------------------------------------------
    # Poller lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background poller."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler.started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        """Stop the poller; a firing in progress is cancelled at its next await."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("scheduler.stopped", total_fired=self._total_fired)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.fire_due()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("scheduler.poll_failed", error=str(e), exc_info=True)
            await asyncio.sleep(self._poll_interval)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "total_fired": self._total_fired,
            "duplicates_skipped": self._total_skipped,
            "pending": len(self._store.list_tasks()),
        }

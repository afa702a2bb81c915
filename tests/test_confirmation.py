"""Tests for studybuddy.harness.confirmation — the persisted approval gate."""

from __future__ import annotations

import pytest

from helpers import PROGRESS_ARGS, build_harness
from studybuddy.errors import (
    ConfirmationNotFoundError,
    ConfirmationStateError,
    ConfirmationTimeoutError,
)
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.models import ConfirmationState, ToolCallRequest
from studybuddy.tools.context import ToolContext


def _request(harness, conversation_id: str = "conv-1"):
    call = ToolCallRequest(name="log_study_progress", arguments=PROGRESS_ARGS)
    return harness.gate.request(conversation_id, call, dict(PROGRESS_ARGS))


def _context(harness, conversation_id: str = "conv-1") -> ToolContext:
    return ToolContext(conversation_id=conversation_id, clock=harness.clock)


def test_request_persists_pending_record(harness) -> None:
    confirmation = _request(harness)

    assert harness.gate.get(confirmation.request_id).state is ConfirmationState.PENDING
    described = harness.gate.describe_pending("conv-1")
    assert described[0]["tool_name"] == "log_study_progress"
    assert described[0]["arguments"]["subject"] == "Chemistry"
    assert harness.executor.stats["total_executions"] == 0


@pytest.mark.asyncio
async def test_approve_runs_once_and_appends_result(harness) -> None:
    confirmation = _request(harness)

    message = await harness.gate.approve(confirmation.request_id, _context(harness))

    assert message.tool_call_id == confirmation.call.id
    assert message.is_error is False
    assert harness.store.read("conv-1") == [message]
    assert harness.gate.get(confirmation.request_id).state is ConfirmationState.COMPLETED
    assert harness.executor.stats["total_executions"] == 1

    with pytest.raises(ConfirmationStateError):
        await harness.gate.approve(confirmation.request_id, _context(harness))
    assert harness.executor.stats["total_executions"] == 1


def test_deny_never_invokes_handler(harness) -> None:
    confirmation = _request(harness)

    message = harness.gate.deny(confirmation.request_id)

    assert message.text == "User declined to run log_study_progress."
    assert message.is_error is True
    assert message.metadata is None
    assert harness.store.read("conv-1") == [message]
    assert harness.gate.get(confirmation.request_id).state is ConfirmationState.DENIED
    assert harness.executor.stats["total_executions"] == 0
    assert harness.gate.list_pending() == []


def test_unknown_request_id(harness) -> None:
    with pytest.raises(ConfirmationNotFoundError):
        harness.gate.deny("confirm-missing")


def test_second_decision_is_rejected(harness) -> None:
    confirmation = _request(harness)
    harness.gate.deny(confirmation.request_id)

    with pytest.raises(ConfirmationStateError):
        harness.gate.deny(confirmation.request_id)
    assert len(harness.store.read("conv-1")) == 1


@pytest.mark.asyncio
async def test_approval_after_max_age_expires_the_request(store, clock) -> None:
    harness = build_harness(store, clock, max_age_seconds=60)
    confirmation = _request(harness)
    clock.advance(minutes=5)

    with pytest.raises(ConfirmationTimeoutError):
        await harness.gate.approve(confirmation.request_id, _context(harness))

    assert harness.gate.get(confirmation.request_id).state is ConfirmationState.DENIED
    [message] = store.read("conv-1")
    assert "expired" in message.text
    assert harness.executor.stats["total_executions"] == 0


def test_expire_stale_only_touches_old_records(store, clock) -> None:
    harness = build_harness(store, clock, max_age_seconds=60)
    old = _request(harness, "conv-old")
    clock.advance(seconds=90)
    fresh = _request(harness, "conv-new")

    expired = harness.gate.expire_stale()

    assert [m.tool_call_id for m in expired] == [old.call.id]
    assert [c.request_id for c in harness.gate.list_pending()] == [fresh.request_id]


def test_pending_survives_restart(tmp_path, clock) -> None:
    from studybuddy.store import ConversationStore

    path = tmp_path / "restart.db"
    first = ConversationStore(path)
    first.initialize()
    confirmation = _request(build_harness(first, clock))
    first.close()

    second = ConversationStore(path)
    second.initialize()
    harness = build_harness(second, clock)
    assert [c.request_id for c in harness.gate.list_pending()] == [confirmation.request_id]
    second.close()


def test_recover_returns_interrupted_records_to_pending(harness) -> None:
    confirmation = _request(harness)
    executing = confirmation.transition(ConfirmationState.APPROVED).transition(
        ConfirmationState.EXECUTING
    )
    harness.store.save_confirmation(executing)

    gate = ConfirmationGate(harness.store, harness.executor, clock=harness.clock)

    assert gate.recover() == 1
    assert gate.get(confirmation.request_id).state is ConfirmationState.PENDING
    assert gate.recover() == 0

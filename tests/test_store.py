"""Tests for studybuddy.store — the append-only conversation store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from helpers import START
from studybuddy.errors import StoreError
from studybuddy.models import (
    ConfirmationState,
    Message,
    PendingConfirmation,
    ScheduledTask,
    ToolCallRequest,
    Trigger,
)
from studybuddy.store import ConversationStore


def test_append_then_read_round_trip(store) -> None:
    call = ToolCallRequest(name="create_flashcards", arguments={"subject": "Biology"})
    written = [
        Message.user("Make me flashcards"),
        Message.assistant("", [call]),
        Message.tool_result(call, "Created", metadata={"flashcards": {"id": "f-1", "cards": [{"q": 1}]}}),
        Message.system("Note"),
        Message.assistant("Done!"),
    ]
    for message in written:
        store.append("conv-1", message)

    read = store.read("conv-1")

    assert read == written
    assert [m.id for m in read] == [m.id for m in written]
    assert read[2].metadata == {"flashcards": {"id": "f-1", "cards": [{"q": 1}]}}
    assert read[1].tool_calls[0].call_id == call.id


def test_conversations_are_independent(store) -> None:
    store.append("a", Message.user("one"))
    store.append("b", Message.user("two"))
    store.append("a", Message.user("three"))

    assert [m.text for m in store.read("a")] == ["one", "three"]
    assert [m.text for m in store.read("b")] == ["two"]
    counts = {c["conversation_id"]: c["message_count"] for c in store.list_conversations()}
    assert counts == {"a": 2, "b": 1}


def test_duplicate_message_id_is_rejected_atomically(store) -> None:
    message = Message.user("hello")
    store.append("conv-1", message)

    with pytest.raises(StoreError):
        store.append("conv-1", message)
    assert store.message_count("conv-1") == 1


def test_failed_transaction_appends_nothing(store) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.append("conv-1", Message.user("first"))
            store.append("conv-1", Message.user("second"))
            raise RuntimeError("abort")

    assert store.read("conv-1") == []


def test_append_many_keeps_order(store) -> None:
    messages = [Message.user(str(i)) for i in range(5)]
    store.append_many("conv-1", messages)
    assert [m.text for m in store.read("conv-1")] == ["0", "1", "2", "3", "4"]


def test_survives_reopen(tmp_path) -> None:
    path = tmp_path / "db.sqlite"
    first = ConversationStore(path)
    first.initialize()
    first.append("conv-1", Message.user("persist me"))
    first.close()

    second = ConversationStore(path)
    second.initialize()
    assert [m.text for m in second.read("conv-1")] == ["persist me"]
    second.close()


def test_uninitialized_store_raises(tmp_path) -> None:
    store = ConversationStore(tmp_path / "never.db")
    with pytest.raises(StoreError):
        store.read("conv-1")


def test_confirmation_records(store) -> None:
    pending = PendingConfirmation(
        conversation_id="conv-1",
        call=ToolCallRequest(name="log_study_progress"),
        arguments={"subject": "Math"},
    )
    store.save_confirmation(pending)
    store.save_confirmation(
        PendingConfirmation(
            conversation_id="conv-2",
            call=ToolCallRequest(name="schedule_task"),
            state=ConfirmationState.DENIED,
        )
    )

    assert store.load_confirmation(pending.request_id) == pending
    assert [c.request_id for c in store.list_confirmations()] == [pending.request_id]
    assert store.list_confirmations("conv-2") == []
    assert len(store.list_confirmations(states=None)) == 2


def test_task_records_and_firings(store) -> None:
    later = ScheduledTask(
        conversation_id="conv-1",
        action="generate_quiz",
        trigger=Trigger(kind="delay", delay_seconds=120),
        next_run_at=START + timedelta(minutes=2),
    )
    sooner = ScheduledTask(
        conversation_id="conv-1",
        action="generate_quiz",
        trigger=Trigger(kind="delay", delay_seconds=60),
        next_run_at=START + timedelta(minutes=1),
    )
    store.save_task(later)
    store.save_task(sooner)

    assert [t.task_id for t in store.list_tasks()] == [sooner.task_id, later.task_id]
    assert [t.task_id for t in store.list_tasks(due_before=START + timedelta(seconds=90))] == [sooner.task_id]

    assert store.record_firing(sooner.task_id, sooner.next_run_at) is True
    assert store.record_firing(sooner.task_id, sooner.next_run_at) is False
    assert store.has_fired(sooner.task_id, sooner.next_run_at) is True
    assert store.delete_task(sooner.task_id) is True
    assert store.delete_task(sooner.task_id) is False
    assert store.load_task(sooner.task_id) is None


def test_stats_counts_rows(store) -> None:
    store.append("conv-1", Message.user("x"))
    stats = store.stats()
    assert stats["messages"] == 1
    assert stats["conversations"] == 1
    assert stats["scheduled_tasks"] == 0

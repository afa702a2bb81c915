"""Tests for studybuddy/cli/ — Click commands against a temporary data dir."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from click.testing import CliRunner

from helpers import PROGRESS_ARGS, START
from studybuddy.cli.app import async_cmd, cli
from studybuddy.cli.formatters import build_table, format_arguments, get_console, render_message
from studybuddy.models import (
    Message,
    PendingConfirmation,
    ScheduledTask,
    ToolCallRequest,
    Trigger,
)
from studybuddy.store import ConversationStore


@pytest.fixture()
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("STUDYBUDDY_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("STUDYBUDDY_DB_PATH", raising=False)
    monkeypatch.delenv("STUDYBUDDY_REQUIRE_CONFIRMATION_FOR", raising=False)
    return tmp_path


@pytest.fixture()
def seeded_store(data_dir):
    """Open the CLI's database directly, for seeding and inspection."""

    def _open() -> ConversationStore:
        store = ConversationStore(data_dir / "studybuddy.db")
        store.initialize()
        return store

    return _open


def _run(*args: str):
    return CliRunner().invoke(cli, ["--no-color", *args])


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    def test_format_arguments_truncates(self) -> None:
        text = format_arguments({"topic": "x" * 200}, limit=30)
        assert len(text) == 30
        assert text.endswith("...")

    def test_render_tool_result_with_metadata(self) -> None:
        call = ToolCallRequest(name="create_flashcards")
        rendered = render_message(Message.tool_result(call, "Created", metadata={"flashcards": {}}))
        assert rendered.plain.startswith("create_flashcards: Created")
        assert "[metadata: flashcards]" in rendered.plain

    def test_render_error_result(self) -> None:
        call = ToolCallRequest(name="generate_quiz")
        rendered = render_message(Message.tool_result(call, "Error: bad", is_error=True))
        assert rendered.plain.startswith("generate_quiz (error): ")

    def test_build_table(self) -> None:
        table = build_table("T", ["A", "B"], [[1, 2]])
        assert table.row_count == 1
        assert get_console(no_color=True) is not None


class TestAsyncCmd:
    def test_runs_coroutine(self) -> None:
        @async_cmd
        async def double(x: int) -> int:
            return x * 2

        assert double(21) == 42


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestEmptyState:
    def test_conversations(self, data_dir) -> None:
        result = _run("conversations")
        assert result.exit_code == 0
        assert "No conversations yet." in result.output

    def test_pending(self, data_dir) -> None:
        result = _run("pending")
        assert result.exit_code == 0
        assert "Nothing is waiting for approval." in result.output

    def test_pending_json(self, data_dir) -> None:
        result = _run("pending", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output) == []

    def test_tasks(self, data_dir) -> None:
        result = _run("tasks")
        assert result.exit_code == 0
        assert "No scheduled tasks." in result.output

    def test_history(self, data_dir) -> None:
        result = _run("history", "conv-x")
        assert result.exit_code == 0
        assert "No messages in conv-x." in result.output

    def test_scheduler_once(self, data_dir) -> None:
        result = _run("scheduler", "--once")
        assert result.exit_code == 0
        assert "Fired 0 task(s)." in result.output


class TestApprovals:
    def _seed_confirmation(self, seeded_store) -> PendingConfirmation:
        store = seeded_store()
        call = ToolCallRequest(name="log_study_progress", arguments=PROGRESS_ARGS)
        store.append("conv-1", Message.user("Log my chemistry"))
        store.append("conv-1", Message.assistant("", [call]))
        confirmation = PendingConfirmation(
            conversation_id="conv-1", call=call, arguments=dict(PROGRESS_ARGS)
        )
        store.save_confirmation(confirmation)
        store.close()
        return confirmation

    def test_approve_unknown_request_fails(self, data_dir) -> None:
        result = _run("approve", "confirm-nope", "--no-resume")
        assert result.exit_code != 0
        assert "Confirmation not found: confirm-nope" in result.output

    def test_pending_lists_seeded_request(self, seeded_store) -> None:
        confirmation = self._seed_confirmation(seeded_store)

        result = _run("pending", "--json")

        assert result.exit_code == 0
        [entry] = json.loads(result.output)
        assert entry["request_id"] == confirmation.request_id
        assert entry["tool_name"] == "log_study_progress"

    def test_approve_without_resume_runs_the_tool_offline(self, seeded_store) -> None:
        confirmation = self._seed_confirmation(seeded_store)

        result = _run("approve", confirmation.request_id, "--no-resume")

        assert result.exit_code == 0, result.output
        assert "Logged 2 hours for Chemistry" in result.output
        store = seeded_store()
        last = store.read("conv-1")[-1]
        assert last.tool_call_id == confirmation.call.id
        assert last.metadata["studyLog"]["subject"] == "Chemistry"
        assert store.list_confirmations() == []
        store.close()

    def test_deny_without_resume(self, seeded_store) -> None:
        confirmation = self._seed_confirmation(seeded_store)

        result = _run("deny", confirmation.request_id, "--no-resume")

        assert result.exit_code == 0, result.output
        assert "User declined to run log_study_progress." in result.output
        assert _run("approve", confirmation.request_id, "--no-resume").exit_code != 0


class TestTasks:
    def test_list_and_cancel(self, seeded_store) -> None:
        store = seeded_store()
        task = ScheduledTask(
            conversation_id="conv-1",
            action="generate_quiz",
            arguments={"topic": "Cells", "numberOfQuestions": 3, "difficulty": "easy"},
            trigger=Trigger(kind="delay", delay_seconds=3600),
            next_run_at=START + timedelta(days=3650),
        )
        store.save_task(task)
        store.close()

        listed = _run("tasks", "--json")
        assert listed.exit_code == 0
        assert [t["task_id"] for t in json.loads(listed.output)] == [task.task_id]

        cancelled = _run("cancel", task.task_id)
        assert cancelled.exit_code == 0
        assert f"Cancelled {task.task_id}." in cancelled.output

        again = _run("cancel", task.task_id)
        assert f"No pending task {task.task_id}." in again.output

"""
Tests for studybuddy.agent — the wired-up process and the chat approval flow.

The agent is built from environment config against a temporary data dir,
with a scripted model and a fixed clock.
"""

from __future__ import annotations

import io

import click
import pytest
from rich.console import Console

from helpers import PROGRESS_ARGS, FixedClock, ScriptedModel, text_reply, tool_reply
from studybuddy.agent import StudyAgent
from studybuddy.cli.conversation import _settle_confirmations
from studybuddy.config import StudyBuddyConfig
from studybuddy.harness.confirmation import expired_text
from studybuddy.harness.loop import TurnStatus
from studybuddy.models import ConfirmationState, Message, ToolCallRequest


@pytest.fixture()
def make_agent(tmp_path, monkeypatch, clock):
    monkeypatch.setenv("STUDYBUDDY_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("STUDYBUDDY_DB_PATH", raising=False)
    monkeypatch.delenv("STUDYBUDDY_REQUIRE_CONFIRMATION_FOR", raising=False)
    monkeypatch.delenv("STUDYBUDDY_CONFIRMATION_MAX_AGE", raising=False)
    monkeypatch.setenv("STUDYBUDDY_SCHEDULER_ENABLED", "false")

    def _make(**env: str) -> StudyAgent:
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        return StudyAgent(StudyBuddyConfig(), model=ScriptedModel(), clock=clock)

    return _make


@pytest.mark.asyncio
async def test_study_tools_run_without_approval_by_default(make_agent) -> None:
    agent = make_agent()
    agent._model.script(
        tool_reply(("log_study_progress", PROGRESS_ARGS)),
        text_reply("Logged your Chemistry session."),
    )

    async with agent:
        turn = await agent.send("conv-1", "I did 2 hours of Chemistry")

        assert turn.status is TurnStatus.COMPLETED
        assert agent.gate.list_pending() == []
        result = [m for m in agent.history("conv-1") if m.role == "tool_result"][0]
        assert result.metadata["studyLog"]["subject"] == "Chemistry"


@pytest.mark.asyncio
async def test_start_expires_confirmations_past_max_age(make_agent, clock: FixedClock) -> None:
    agent = make_agent(STUDYBUDDY_CONFIRMATION_MAX_AGE="60")
    call = ToolCallRequest(name="schedule_task", arguments={"action": "generate_quiz"})
    async with agent:
        agent.store.append("conv-1", Message.user("Quiz me tomorrow"))
        agent.store.append("conv-1", Message.assistant("", [call]))
        confirmation = agent.gate.request("conv-1", call, dict(call.arguments))

    clock.advance(hours=1)
    restarted = make_agent(STUDYBUDDY_CONFIRMATION_MAX_AGE="60")
    async with restarted:
        assert restarted.gate.list_pending() == []
        assert restarted.gate.get(confirmation.request_id).state is ConfirmationState.DENIED
        last = restarted.history("conv-1")[-1]
        assert last.tool_call_id == call.id
        assert last.text == expired_text("schedule_task")


@pytest.mark.asyncio
async def test_expired_last_call_still_resumes_the_model(make_agent, clock, monkeypatch) -> None:
    agent = make_agent(
        STUDYBUDDY_REQUIRE_CONFIRMATION_FOR="log_study_progress",
        STUDYBUDDY_CONFIRMATION_MAX_AGE="60",
    )
    agent._model.script(
        tool_reply(
            ("log_study_progress", PROGRESS_ARGS),
            ("log_study_progress", {**PROGRESS_ARGS, "subject": "Physics"}),
        ),
        text_reply("Chemistry is logged; the Physics entry expired."),
    )
    # The user answers the first prompt at once and the second one five minutes later.
    answers = iter([(True, 0), (True, 5)])

    def _confirm(*args, **kwargs) -> bool:
        answer, minutes = next(answers)
        clock.advance(minutes=minutes)
        return answer

    monkeypatch.setattr(click, "confirm", _confirm)

    async with agent:
        turn = await agent.send("conv-1", "Log both")
        assert len(turn.pending) == 2

        await _settle_confirmations(agent, Console(file=io.StringIO()), turn)

        assert agent.gate.list_pending() == []
        assert len(agent._model.calls) == 2
        log = agent.history("conv-1")
        assert [m.role for m in log] == [
            "user",
            "assistant",
            "tool_result",
            "tool_result",
            "assistant",
        ]
        assert log[2].metadata["studyLog"]["subject"] == "Chemistry"
        assert log[3].text == expired_text("log_study_progress")
        assert log[-1].text == "Chemistry is logged; the Physics entry expired."

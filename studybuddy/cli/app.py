"""CLI application — Click-based command hierarchy for StudyBuddy.

The main CLI group and shared helpers. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from typing import Any, AsyncIterator

import click


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@contextlib.asynccontextmanager
async def agent_session(run_scheduler: bool = False) -> AsyncIterator[Any]:
    """Build, start and always stop a StudyAgent from the environment config."""
    from studybuddy.agent import StudyAgent
    from studybuddy.config import StudyBuddyConfig

    agent = StudyAgent(StudyBuddyConfig())
    await agent.start(run_scheduler=run_scheduler)
    try:
        yield agent
    finally:
        await agent.stop()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show info-level logs")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """StudyBuddy - a study assistant with tools, approvals and schedules."""
    from studybuddy.main import configure_logging

    configure_logging(logging.INFO if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommands."""
    from studybuddy.cli.approvals import approve_cmd, deny_cmd, pending_cmd
    from studybuddy.cli.conversation import chat_cmd, conversations_cmd, history_cmd
    from studybuddy.cli.tasks import cancel_cmd, scheduler_cmd, tasks_cmd

    cli.add_command(chat_cmd)
    cli.add_command(history_cmd)
    cli.add_command(conversations_cmd)
    cli.add_command(pending_cmd)
    cli.add_command(approve_cmd)
    cli.add_command(deny_cmd)
    cli.add_command(tasks_cmd)
    cli.add_command(cancel_cmd)
    cli.add_command(scheduler_cmd)


_register_subcommands()

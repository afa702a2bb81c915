"""Approval commands — pending, approve, deny."""

from __future__ import annotations

import json as json_mod
from typing import Optional

import click

from studybuddy.cli.app import agent_session, async_cmd
from studybuddy.cli.formatters import build_table, format_arguments, get_console, render_message
from studybuddy.errors import StudyBuddyError


@click.command("pending")
@click.option("--conversation", "-c", "conversation_id", default=None, help="Only this conversation")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def pending_cmd(ctx: click.Context, conversation_id: Optional[str], json_output: bool) -> None:
    """List tool calls waiting for approval."""
    async with agent_session() as agent:
        pending = agent.gate.describe_pending(conversation_id)

    if json_output:
        click.echo(json_mod.dumps(pending, indent=2))
        return
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not pending:
        console.print("Nothing is waiting for approval.")
        return
    console.print(
        build_table(
            "Pending approvals",
            ["Request", "Conversation", "Tool", "Arguments"],
            [
                [p["request_id"], p["conversation_id"], p["tool_name"], format_arguments(p["arguments"])]
                for p in pending
            ],
        )
    )


async def _resolve(ctx: click.Context, request_id: str, approve: bool, resume: bool) -> None:
    console = get_console(no_color=ctx.obj.get("no_color", False))
    try:
        async with agent_session() as agent:
            message, turn = await agent.resolve_confirmation(request_id, approve, resume=resume)
    except StudyBuddyError as e:
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        # Missing model credentials when resuming.
        raise click.ClickException(str(e)) from e

    console.print(render_message(message))
    if turn is not None:
        for appended in turn.messages[1:]:
            console.print(render_message(appended))


@click.command("approve")
@click.argument("request_id")
@click.option("--no-resume", is_flag=True, help="Record the result without asking the model to continue")
@click.pass_context
@async_cmd
async def approve_cmd(ctx: click.Context, request_id: str, no_resume: bool) -> None:
    """Approve a pending tool call and run it."""
    await _resolve(ctx, request_id, approve=True, resume=not no_resume)


@click.command("deny")
@click.argument("request_id")
@click.option("--no-resume", is_flag=True, help="Record the decline without asking the model to continue")
@click.pass_context
@async_cmd
async def deny_cmd(ctx: click.Context, request_id: str, no_resume: bool) -> None:
    """Decline a pending tool call; it is never run."""
    await _resolve(ctx, request_id, approve=False, resume=not no_resume)

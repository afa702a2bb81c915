"""Scheduler commands — tasks, cancel, scheduler."""

from __future__ import annotations

import asyncio
import json as json_mod
from typing import Optional

import click

from studybuddy.cli.app import agent_session, async_cmd
from studybuddy.cli.formatters import build_table, format_arguments, format_timestamp, get_console, render_message


@click.command("tasks")
@click.option("--conversation", "-c", "conversation_id", default=None, help="Only this conversation")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def tasks_cmd(ctx: click.Context, conversation_id: Optional[str], json_output: bool) -> None:
    """List scheduled tasks, soonest first."""
    async with agent_session() as agent:
        tasks = agent.scheduler.list_pending(conversation_id)

    if json_output:
        click.echo(json_mod.dumps([t.model_dump(mode="json") for t in tasks], indent=2))
        return
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not tasks:
        console.print("No scheduled tasks.")
        return
    console.print(
        build_table(
            "Scheduled tasks",
            ["Task", "Conversation", "Action", "Next run (UTC)", "Trigger", "Arguments"],
            [
                [
                    t.task_id,
                    t.conversation_id,
                    t.action,
                    format_timestamp(t.next_run_at),
                    t.trigger.rule if t.trigger.is_recurring else t.trigger.kind,
                    format_arguments(t.arguments),
                ]
                for t in tasks
            ],
        )
    )


@click.command("cancel")
@click.argument("task_id")
@click.pass_context
@async_cmd
async def cancel_cmd(ctx: click.Context, task_id: str) -> None:
    """Cancel a scheduled task (no-op if it already fired)."""
    async with agent_session() as agent:
        removed = agent.scheduler.cancel(task_id)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(f"Cancelled {task_id}." if removed else f"No pending task {task_id}.")


@click.command("scheduler")
@click.option("--once", is_flag=True, help="Fire what is due now and exit")
@click.pass_context
@async_cmd
async def scheduler_cmd(ctx: click.Context, once: bool) -> None:
    """Run the scheduler in the foreground, firing tasks as they come due."""
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if once:
        async with agent_session() as agent:
            fired = await agent.scheduler.fire_due()
        for message in fired:
            console.print(render_message(message))
        console.print(f"Fired {len(fired)} task(s).")
        return

    async with agent_session(run_scheduler=True) as agent:
        console.print("[dim]Scheduler running; Ctrl-C to stop.[/dim]")
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            console.print(f"Stopped. {agent.scheduler.stats['total_fired']} task(s) fired.")

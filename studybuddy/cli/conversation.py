"""Conversation commands — chat, history, conversations."""

from __future__ import annotations

import asyncio
import json as json_mod
from typing import Any, Optional

import click
from rich.console import Console

from studybuddy.cli.app import agent_session, async_cmd
from studybuddy.cli.formatters import (
    build_table,
    format_arguments,
    format_timestamp,
    get_console,
    render_message,
)
from studybuddy.errors import ConfirmationTimeoutError, ModelUnavailableError
from studybuddy.harness.loop import TurnResult

_EXIT_WORDS = {"/quit", "/exit", "quit", "exit"}


def _prompt(label: str) -> Optional[str]:
    try:
        return click.prompt(label, prompt_suffix="> ", default="", show_default=False)
    except (EOFError, click.Abort):
        return None


def _show_turn(console: Console, result: TurnResult) -> None:
    for message in result.messages:
        if message.role != "user":
            console.print(render_message(message))
    if result.status.value == "step_limit":
        console.print("[yellow]Turn stopped at the step limit.[/yellow]")


async def _settle_confirmations(agent: Any, console: Console, result: TurnResult) -> None:
    """Ask about every call the turn left pending, resuming once all are settled."""
    while result is not None and result.pending:
        next_result: Optional[TurnResult] = None
        for confirmation in result.pending:
            console.print(
                f"[bold yellow]Approval needed[/bold yellow] {confirmation.tool_name} "
                f"{format_arguments(confirmation.arguments, limit=120)}"
            )
            approve = await asyncio.to_thread(click.confirm, "Run it?", default=True)
            try:
                message, resumed = await agent.resolve_confirmation(
                    confirmation.request_id, approve
                )
            except ConfirmationTimeoutError as e:
                console.print(f"[red]{e}[/red]")
                continue
            console.print(render_message(message))
            if resumed is not None:
                next_result = resumed
        if next_result is None and not agent.gate.list_pending(result.conversation_id):
            # An expired call closed the batch, so no resolution resumed the model.
            next_result = await agent.engine.resume(result.conversation_id)
        if next_result is None:
            return
        _show_turn(console, next_result)
        result = next_result


@click.command("chat")
@click.option("--conversation", "-c", "conversation_id", default=None, help="Continue a conversation")
@click.option("--no-scheduler", is_flag=True, help="Do not fire scheduled tasks while chatting")
@click.pass_context
@async_cmd
async def chat_cmd(ctx: click.Context, conversation_id: Optional[str], no_scheduler: bool) -> None:
    """Chat interactively, approving tool calls inline."""
    console = get_console(no_color=ctx.obj.get("no_color", False))
    async with agent_session(run_scheduler=not no_scheduler) as agent:
        conversation_id = agent.store.create_conversation(conversation_id)
        console.print(f"[dim]Conversation {conversation_id} — /quit to leave[/dim]")

        # Calls left pending by an earlier session.
        for confirmation in agent.gate.list_pending(conversation_id):
            console.print(
                f"[yellow]Pending from earlier:[/yellow] {confirmation.tool_name} "
                f"({confirmation.request_id})"
            )

        while True:
            text = await asyncio.to_thread(_prompt, "you")
            if text is None or text.strip().lower() in _EXIT_WORDS:
                break
            if not text.strip():
                continue
            try:
                result = await agent.send(conversation_id, text)
            except ModelUnavailableError as e:
                console.print(f"[red]Model unavailable:[/red] {e}. Your message was saved.")
                continue
            _show_turn(console, result)
            try:
                await _settle_confirmations(agent, console, result)
            except ModelUnavailableError as e:
                console.print(f"[red]Model unavailable:[/red] {e}")


@click.command("history")
@click.argument("conversation_id")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
@async_cmd
async def history_cmd(ctx: click.Context, conversation_id: str, json_output: bool) -> None:
    """Print a conversation transcript."""
    async with agent_session() as agent:
        messages = agent.history(conversation_id)

    if json_output:
        click.echo(json_mod.dumps([m.model_dump(mode="json") for m in messages], indent=2))
        return
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not messages:
        console.print(f"No messages in {conversation_id}.")
        return
    for message in messages:
        console.print(f"[dim]{format_timestamp(message.created_at)}[/dim] ", end="")
        console.print(render_message(message))


@click.command("conversations")
@click.pass_context
@async_cmd
async def conversations_cmd(ctx: click.Context) -> None:
    """List stored conversations."""
    async with agent_session() as agent:
        rows = agent.store.list_conversations()
        pending = {c.conversation_id for c in agent.gate.list_pending()}

    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not rows:
        console.print("No conversations yet.")
        return
    console.print(
        build_table(
            "Conversations",
            ["ID", "Created", "Messages", "Pending approval"],
            [
                [
                    r["conversation_id"],
                    r["created_at"],
                    r["message_count"],
                    "yes" if r["conversation_id"] in pending else "",
                ]
                for r in rows
            ],
        )
    )

"""CLI formatters — console, tables, and message rendering."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from studybuddy.models import Message

_ROLE_STYLES = {
    "user": "bold cyan",
    "assistant": "bold green",
    "system": "dim",
    "tool_result": "magenta",
}


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table


def format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_arguments(arguments: dict[str, Any], limit: int = 60) -> str:
    text = json.dumps(arguments, ensure_ascii=False, sort_keys=True)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def render_message(message: Message) -> Text:
    """One transcript entry: role label, text, tool calls and metadata tags."""
    label = message.role
    if message.role == "tool_result":
        label = f"{message.tool_name}{' (error)' if message.is_error else ''}"
    line = Text(f"{label}: ", style=_ROLE_STYLES.get(message.role, ""))
    line.append(message.text)
    for call in message.tool_calls:
        line.append(f"\n  → {call.name} {format_arguments(call.arguments)}", style="yellow")
    if message.metadata:
        line.append(f"\n  [metadata: {', '.join(sorted(message.metadata))}]", style="dim")
    return line

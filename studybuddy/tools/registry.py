"""
Tool Registry — the catalog of callable study tools.

A tool is a name, a description the model reads, a JSON Schema for its
arguments, a handler and two flags: whether a human must approve each call,
and whether the scheduler may run it later. The registry describes the
catalog to the model and validates proposed calls against it; dispatch
itself belongs to the executor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from studybuddy.errors import DuplicateToolError, UnknownToolError
from studybuddy.tools.validation import validate_arguments

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """
    A registered tool with its schema, description, and handler.

    The handler contract is ``handler(arguments, context)`` returning a
    ToolOutput or a plain string; it may be sync or async. Tools with
    requires_confirmation=True never run before a human approves the call.
    """
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Optional[Callable] = None
    requires_confirmation: bool = False
    category: str = "study"
    enabled: bool = True
    schedulable: bool = True
    timeout: Optional[float] = None       # seconds; None means the executor default

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """
    Central registry for all tools available to the assistant.

    Registration happens at startup; names are unique.
    """

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        logger.info("tool_registry.initialized")

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool; raises DuplicateToolError on a name collision."""
        existing = self._tools.get(tool.name)
        if existing is not None:
            logger.warning(
                "tool_registry.name_collision",
                name=tool.name,
                existing_category=existing.category,
                new_category=tool.category,
            )
            raise DuplicateToolError(tool.name)

        self._tools[tool.name] = tool
        logger.info(
            "tool_registry.registered",
            name=tool.name,
            requires_confirmation=tool.requires_confirmation,
            category=tool.category,
        )

    def unregister(self, name: str) -> bool:
        """Remove a tool from the registry."""
        if name in self._tools:
            del self._tools[name]
            logger.info("tool_registry.unregistered", name=name)
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Look up a tool by name."""
        return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        """Look up an enabled tool by name or raise UnknownToolError."""
        tool = self._tools.get(name)
        if tool is None or not tool.enabled:
            raise UnknownToolError(name)
        return tool

    def validate(self, name: str, arguments: Any) -> dict[str, Any]:
        """
        Validate a proposed call against the named tool's schema.

        Returns the validated arguments (defaults filled in). Raises
        UnknownToolError or SchemaValidationError; never partially applies.
        """
        tool = self.require(name)
        return validate_arguments(tool.name, tool.input_schema, arguments)

    def describe(self, categories: Optional[list[str]] = None) -> list[dict[str, Any]]:
        """Generate the tool descriptions for a model call."""
        tools = []
        for tool in self._tools.values():
            if not tool.enabled:
                continue
            if categories and tool.category not in categories:
                continue
            tools.append(tool.to_api_format())
        return tools

    def mark_requires_confirmation(self, names: list[str]) -> None:
        """Flag the named tools as requires-confirmation (unknown names are logged)."""
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning("tool_registry.unknown_confirmation_tool", name=name)
                continue
            tool.requires_confirmation = True

    def list_tools(self) -> list[dict[str, Any]]:
        """List all registered tools with metadata."""
        return [
            {
                "name": tool.name,
                "category": tool.category,
                "enabled": tool.enabled,
                "requires_confirmation": tool.requires_confirmation,
            }
            for tool in self._tools.values()
        ]

    @property
    def count(self) -> int:
        return len(self._tools)

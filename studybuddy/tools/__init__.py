"""Tool system — the study capabilities the model can call."""
from studybuddy.tools.context import ToolContext, ToolOutput
from studybuddy.tools.executor import ToolExecutionResult, ToolExecutor
from studybuddy.tools.registry import ToolDefinition, ToolRegistry

__all__ = [
    "ToolContext",
    "ToolOutput",
    "ToolDefinition",
    "ToolRegistry",
    "ToolExecutor",
    "ToolExecutionResult",
]

"""Dialogue harness — the runtime that turns model replies into conversation state."""
from studybuddy.harness.confirmation import ConfirmationGate
from studybuddy.harness.lanes import ConversationLanes
from studybuddy.harness.loop import DialogueEngine, TurnResult, TurnStatus
from studybuddy.harness.retry import RetryConfig, with_retries
from studybuddy.harness.routing import RoutedCall, RouteStatus, ToolCallRouter

__all__ = [
    "ConfirmationGate",
    "ConversationLanes",
    "DialogueEngine",
    "TurnResult",
    "TurnStatus",
    "RetryConfig",
    "with_retries",
    "RoutedCall",
    "RouteStatus",
    "ToolCallRouter",
]

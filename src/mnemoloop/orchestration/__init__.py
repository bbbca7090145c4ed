"""Orchestration domain — reference resolution, lifecycle events and the hybrid orchestrator."""

from mnemoloop.orchestration.events import EventBus
from mnemoloop.orchestration.events import EventType
from mnemoloop.orchestration.events import OrchestratorEvent
from mnemoloop.orchestration.orchestrator import BoardTool
from mnemoloop.orchestration.orchestrator import HybridResult
from mnemoloop.orchestration.orchestrator import Orchestrator
from mnemoloop.orchestration.references import QuotedLiteralResolver
from mnemoloop.orchestration.references import ReferenceResolver
from mnemoloop.orchestration.references import Resolution

__all__ = [
    "BoardTool",
    "EventBus",
    "EventType",
    "HybridResult",
    "Orchestrator",
    "OrchestratorEvent",
    "QuotedLiteralResolver",
    "ReferenceResolver",
    "Resolution",
]

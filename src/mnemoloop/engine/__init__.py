"""Reasoning domain — tool registry, selection and the bounded reasoning loop."""

from mnemoloop.engine.errors import ConcurrentExecutionError
from mnemoloop.engine.errors import ReasoningError
from mnemoloop.engine.errors import TimedOutError
from mnemoloop.engine.errors import ToolExecutionError
from mnemoloop.engine.reasoning import ReasoningEngine
from mnemoloop.engine.schemas import ReasoningSession
from mnemoloop.engine.schemas import ReasoningStep
from mnemoloop.engine.schemas import SessionStatus
from mnemoloop.engine.schemas import StepType
from mnemoloop.engine.schemas import ToolResult
from mnemoloop.engine.selection import KeywordToolSelector
from mnemoloop.engine.selection import ToolDecision
from mnemoloop.engine.selection import ToolSelector
from mnemoloop.engine.tools import FunctionTool
from mnemoloop.engine.tools import object_schema
from mnemoloop.engine.tools import Tool
from mnemoloop.engine.tools import ToolRegistry

__all__ = [
    "ConcurrentExecutionError",
    "FunctionTool",
    "KeywordToolSelector",
    "ReasoningEngine",
    "ReasoningError",
    "ReasoningSession",
    "ReasoningStep",
    "SessionStatus",
    "StepType",
    "TimedOutError",
    "Tool",
    "ToolDecision",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolResult",
    "ToolSelector",
    "object_schema",
]

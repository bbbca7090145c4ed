"""Reasoning engine data models."""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class StepType(str, Enum):
    """Kinds of step in a reasoning session."""

    observation = "observation"
    thought = "thought"
    action = "action"
    action_result = "action_result"
    final = "final"


class SessionStatus(str, Enum):
    """Lifecycle of a reasoning session: ``running`` then one terminal state."""

    running = "running"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.running


class ToolResult(BaseModel):
    """Structured outcome of one tool invocation."""

    success: bool = True
    result: Any = None
    error: str | None = None


def coerce_tool_result(value: Any) -> ToolResult:
    """Wrap a plain return value as a successful :class:`ToolResult`."""
    if isinstance(value, ToolResult):
        return value
    return ToolResult(success=True, result=value)


def to_jsonable(value: Any) -> Any:
    """Round-trip *value* through JSON, stringifying unknown types."""
    return json.loads(json.dumps(value, default=str))


class ReasoningStep(BaseModel):
    """One step of a session; steps are totally ordered by ``step_number``."""

    id: str = Field(default_factory=lambda: f"stp_{uuid.uuid4().hex[:16]}")
    type: StepType
    content: str
    timestamp: int = Field(description="Epoch milliseconds.")
    step_number: int
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_result: Any = None
    tool_error: str | None = None

    @property
    def failed(self) -> bool:
        return self.tool_error is not None


class ReasoningSession(BaseModel):
    """State of one ``ReasoningEngine.execute`` call."""

    id: str = Field(default_factory=lambda: f"rsn_{uuid.uuid4().hex}")
    user_input: str
    status: SessionStatus = SessionStatus.running
    steps: list[ReasoningStep] = Field(default_factory=list)
    started_at: int = Field(description="Epoch milliseconds.")
    ended_at: int | None = None
    final_response: str | None = None
    error: str | None = None

    def steps_of(self, step_type: StepType) -> list[ReasoningStep]:
        return [s for s in self.steps if s.type == step_type]

    @property
    def tools_used(self) -> list[str]:
        """Names of tools invoked, in invocation order."""
        return [s.tool_name for s in self.steps_of(StepType.action) if s.tool_name]

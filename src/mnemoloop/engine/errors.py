"""Reasoning engine exceptions."""

from __future__ import annotations


class ReasoningError(Exception):
    """Base class for reasoning engine failures."""


class ToolExecutionError(ReasoningError):
    """A tool raised or timed out.  Absorbed into the transcript after retries."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"tool {tool_name!r} failed: {message}")
        self.tool_name = tool_name


class TimedOutError(ReasoningError):
    """The session ran past ``max_thinking_seconds``."""


class ConcurrentExecutionError(ReasoningError):
    """``execute()`` was called while another session was still running."""

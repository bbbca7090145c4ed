"""Tool contract and the per-engine tool registry.

A tool is anything with a unique ``name``, a ``description``, a
JSON-schema-like ``parameters`` object and an ``execute(input)`` coroutine.
Tools are the only way the reasoning loop reaches external systems.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from collections.abc import Iterable
from collections.abc import Iterator
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from mnemoloop.engine.schemas import coerce_tool_result
from mnemoloop.engine.schemas import ToolResult

ToolFunction = Callable[[dict[str, Any]], Any]
"""Sync or async callable; an awaitable return value is awaited."""


def object_schema(
    properties: dict[str, dict[str, Any]] | None = None,
    required: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Build an ``{"type": "object", ...}`` parameter schema."""
    schema: dict[str, Any] = {"type": "object", "properties": dict(properties or {})}
    if required:
        schema["required"] = list(required)
    return schema


@runtime_checkable
class Tool(Protocol):
    """Protocol for capabilities the reasoning loop may invoke."""

    name: str
    description: str
    parameters: dict[str, Any]

    async def execute(self, input: dict[str, Any]) -> ToolResult | Any: ...


class FunctionTool:
    """Tool backed by a plain sync or async callable.

    Required parameters declared in the schema are checked before the
    callable runs; a missing one yields a failed :class:`ToolResult`.
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: ToolFunction,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        if not name:
            raise ValueError("tool name must be a non-empty string")
        self.name = name
        self.description = description
        self.parameters = parameters or object_schema()
        self._func = func

    async def execute(self, input: dict[str, Any]) -> ToolResult:
        missing = [p for p in self.parameters.get("required", []) if p not in input]
        if missing:
            return ToolResult(
                success=False,
                error=f"missing required parameter(s): {', '.join(missing)}",
            )
        outcome = self._func(input)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return coerce_tool_result(outcome)

    def __repr__(self) -> str:
        return f"FunctionTool(name={self.name!r})"


class ToolRegistry:
    """Insertion-ordered tools keyed by name.

    Re-registering a name replaces the tool but keeps its original
    position, so tie-breaks stay first-registered-wins.
    """

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not getattr(tool, "name", None):
            raise ValueError("tool name must be a non-empty string")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.all())

"""Tool selection — the decision step of each reasoning cycle.

A selector looks at the instruction, the registered tools and the steps
taken so far, and names at most one tool to invoke next.  Returning
``None`` ends the loop.  The default selector is a deterministic keyword
matcher; an LLM-backed selector can be plugged in through the same
protocol.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from mnemoloop.engine.schemas import ReasoningStep
from mnemoloop.engine.schemas import StepType
from mnemoloop.engine.tools import Tool

_WORD_RE = re.compile(r"[a-z0-9]+")
_QUOTED_RE = re.compile(r'"([^"]+)"')

_STOPWORDS = frozenset(
    {
        "about",
        "after",
        "also",
        "from",
        "have",
        "into",
        "only",
        "that",
        "them",
        "then",
        "there",
        "these",
        "this",
        "those",
        "when",
        "which",
        "will",
        "with",
        "your",
    }
)

_NAME_WEIGHT = 2
_DESCRIPTION_WEIGHT = 1
_MIN_DESCRIPTION_WORD = 4


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric tokens; underscores split words."""
    return _WORD_RE.findall(text.lower())


def last_quoted_literal(text: str) -> str | None:
    """Return the last double-quoted substring of *text*, without quotes."""
    matches = _QUOTED_RE.findall(text)
    return matches[-1] if matches else None


@dataclass(frozen=True)
class ToolDecision:
    """A selector's choice for the next cycle."""

    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    thought: str = ""


@runtime_checkable
class ToolSelector(Protocol):
    """Protocol for the per-cycle decision function."""

    async def select(
        self,
        instruction: str,
        tools: Sequence[Tool],
        steps: Sequence[ReasoningStep],
    ) -> ToolDecision | None: ...


def build_tool_input(instruction: str, tool: Tool) -> dict[str, Any]:
    """Fill a tool's declared parameters from the instruction.

    ``instruction`` is always present.  Every declared property receives the
    last quoted literal of the instruction, or the whole instruction when
    it quotes nothing.
    """
    literal = last_quoted_literal(instruction)
    value = literal if literal is not None else instruction
    tool_input: dict[str, Any] = {"instruction": instruction}
    properties = (tool.parameters or {}).get("properties") or {}
    for name in properties:
        tool_input.setdefault(name, value)
    return tool_input


class KeywordToolSelector:
    """Scores tools by keyword overlap with the instruction.

    Name tokens count double, description words (four letters or more,
    minus stop words) count once.  Tools already invoked in the session are
    skipped.  The highest positive score wins; ties go to the tool
    registered first.
    """

    async def select(
        self,
        instruction: str,
        tools: Sequence[Tool],
        steps: Sequence[ReasoningStep],
    ) -> ToolDecision | None:
        words = set(tokenize(instruction))
        if not words:
            return None
        used = {s.tool_name for s in steps if s.type == StepType.action}

        best: Tool | None = None
        best_score = 0
        for tool in tools:
            if tool.name in used:
                continue
            score = self.score(words, tool)
            # Strict comparison keeps the first-registered tool on ties.
            if score > best_score:
                best, best_score = tool, score

        if best is None:
            return None
        return ToolDecision(
            tool_name=best.name,
            tool_input=build_tool_input(instruction, best),
            thought=f"The request matches tool '{best.name}': {best.description}",
        )

    @staticmethod
    def score(words: set[str], tool: Tool) -> int:
        name_hits = len(set(tokenize(tool.name)) & words)
        description_words = {
            w
            for w in tokenize(tool.description or "")
            if len(w) >= _MIN_DESCRIPTION_WORD and w not in _STOPWORDS
        }
        description_hits = len(description_words & words)
        return _NAME_WEIGHT * name_hits + _DESCRIPTION_WEIGHT * description_hits

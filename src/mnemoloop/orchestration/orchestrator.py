"""Hybrid orchestrator — memory, reference resolution and reasoning in one call.

``Orchestrator.execute`` resolves pronouns against recent memory, records
the user's instruction, runs the reasoning engine on the resolved text,
writes tool results and the final response back to memory and emits
lifecycle events along the way.
"""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from collections.abc import Callable
from collections.abc import Mapping
from datetime import datetime
from datetime import UTC
from typing import Any

from pydantic import BaseModel
from pydantic import Field

from mnemoloop.config import OrchestratorConfig
from mnemoloop.engine.errors import ConcurrentExecutionError
from mnemoloop.engine.errors import TimedOutError
from mnemoloop.engine.reasoning import ReasoningEngine
from mnemoloop.engine.schemas import coerce_tool_result
from mnemoloop.engine.schemas import ReasoningSession
from mnemoloop.engine.schemas import ReasoningStep
from mnemoloop.engine.schemas import SessionStatus
from mnemoloop.engine.schemas import StepType
from mnemoloop.engine.schemas import ToolResult
from mnemoloop.engine.tools import FunctionTool
from mnemoloop.engine.tools import object_schema
from mnemoloop.engine.tools import Tool
from mnemoloop.engine.tools import ToolFunction
from mnemoloop.memory.log import MemoryLog
from mnemoloop.memory.schemas import MemoryEntry
from mnemoloop.memory.schemas import MemoryRole
from mnemoloop.memory.schemas import MemoryStats
from mnemoloop.memory.storage import KeyValueStore
from mnemoloop.orchestration.events import EventBus
from mnemoloop.orchestration.events import EventListener
from mnemoloop.orchestration.events import EventType
from mnemoloop.orchestration.events import OrchestratorEvent
from mnemoloop.orchestration.references import QuotedLiteralResolver
from mnemoloop.orchestration.references import ReferenceResolver
from mnemoloop.orchestration.references import Resolution

logger = logging.getLogger(__name__)

_TRANSCRIPT_TAGS = {
    StepType.observation: "[OBSERVATION]",
    StepType.thought: "[THINKING]",
    StepType.action: "[ACTION]",
    StepType.action_result: "[RESULT]",
    StepType.final: "[RESPONSE]",
}


class HybridResult(BaseModel):
    """Composite outcome of one ``Orchestrator.execute`` call."""

    id: str = Field(default_factory=lambda: f"hyb_{uuid.uuid4().hex}")
    user_input: str = Field(
        description="Instruction exactly as the caller sent it.",
    )
    resolved_input: str = Field(
        description="Instruction after reference resolution, as given to the engine.",
    )
    status: SessionStatus = SessionStatus.running
    react_session: ReasoningSession | None = None
    context_used: bool = Field(
        default=False,
        description="True exactly when resolved_references is non-empty.",
    )
    resolved_references: list[str] = Field(default_factory=list)
    memory_context: list[MemoryEntry] = Field(
        default_factory=list,
        description="Recent entries the instruction was resolved against.",
    )
    started_at: int = Field(description="Epoch milliseconds.")
    ended_at: int | None = None
    final_response: str | None = None
    error: str | None = None


BoardHandler = Callable[[dict[str, Any]], Any]


class BoardTool:
    """Tool delegating to an external handler (e.g. a board/persistence API).

    Handler exceptions become failed results instead of propagating, so a
    failing external system is recorded once rather than retried.
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: BoardHandler,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        if not name:
            raise ValueError("tool name must be a non-empty string")
        self.name = name
        self.description = description
        self.parameters = parameters or object_schema()
        self._handler = handler

    async def execute(self, input: dict[str, Any]) -> ToolResult:
        try:
            outcome = self._handler(input)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            logger.warning("board tool %s failed: %s", self.name, exc)
            return ToolResult(success=False, error=str(exc) or type(exc).__name__)
        return coerce_tool_result(outcome)


class Orchestrator:
    """Composes a :class:`MemoryLog` and a :class:`ReasoningEngine`."""

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        memory: MemoryLog | None = None,
        engine: ReasoningEngine | None = None,
        resolver: ReferenceResolver | None = None,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._clock = clock or time.time
        self._memory = memory or MemoryLog(self._config.memory, store=store, clock=clock)
        self._engine = engine or ReasoningEngine(self._config.reasoning, clock=clock)
        self._resolver: ReferenceResolver = resolver or QuotedLiteralResolver()
        self._events = EventBus()
        self._active: HybridResult | None = None
        self._memory.set_entry_listener(self._on_entry_added)
        self._memory.set_clear_listener(self._on_memory_cleared)

    @classmethod
    async def open(
        cls,
        config: OrchestratorConfig | None = None,
        *,
        memory: MemoryLog | None = None,
        engine: ReasoningEngine | None = None,
        resolver: ReferenceResolver | None = None,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] | None = None,
    ) -> Orchestrator:
        """Build an orchestrator and load persisted memory from *store*.

        A caller-supplied *memory* is assumed to be loaded already.
        """
        orchestrator = cls(
            config,
            memory=memory,
            engine=engine,
            resolver=resolver,
            store=store,
            clock=clock,
        )
        if memory is None:
            await orchestrator.memory.load()
        return orchestrator

    # -- properties --

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def memory(self) -> MemoryLog:
        return self._memory

    @property
    def engine(self) -> ReasoningEngine:
        return self._engine

    @property
    def events(self) -> EventBus:
        return self._events

    def get_active_result(self) -> HybridResult | None:
        """Return the latest result, whether or not it has finished."""
        return self._active

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def is_running(self) -> bool:
        return self._engine.is_running()

    # -- tools --

    def register_tool(self, tool: Tool) -> None:
        self._engine.register_tool(tool)
        self._emit(EventType.tool_registered, {"name": tool.name})

    def register_function_tool(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any] | None,
        func: ToolFunction,
    ) -> Tool:
        tool = FunctionTool(name, description, func, parameters)
        self.register_tool(tool)
        return tool

    def register_board_tool(
        self,
        name: str,
        description: str,
        handler: BoardHandler,
        parameters: dict[str, Any] | None = None,
    ) -> Tool:
        tool = BoardTool(name, description, handler, parameters)
        self.register_tool(tool)
        return tool

    # -- execution --

    async def execute(self, user_input: str) -> HybridResult:
        """Resolve, record, reason and write back.

        Raises :class:`ConcurrentExecutionError` while another instruction
        is running and re-raises :class:`TimedOutError` after recording the
        failed result.  Any other reasoning failure is returned as a
        ``failed`` result.  Cancellation returns a ``cancelled`` result.
        """
        if self._engine.is_running():
            raise ConcurrentExecutionError("an instruction is already running")

        use_memory = self._config.enable_memory
        context: list[MemoryEntry] = []
        resolution = Resolution(rewritten=user_input)
        if use_memory and self._config.context_resolution:
            context = self._memory.get_context_window(self._config.max_memory_context)
            resolution = self._resolver.resolve(user_input, context)

        result = HybridResult(
            user_input=user_input,
            resolved_input=resolution.rewritten,
            context_used=bool(resolution.matches),
            resolved_references=list(resolution.matches),
            memory_context=context,
            started_at=self._now_ms(),
        )
        self._active = result

        if use_memory:
            metadata: dict[str, Any] = {"runId": result.id}
            if resolution.rewritten != user_input:
                metadata["resolvedInput"] = resolution.rewritten
            self._memory.add_entry(MemoryRole.user, user_input, metadata=metadata)

        self._emit(
            EventType.session_started,
            {
                "result_id": result.id,
                "user_input": user_input,
                "resolved_input": resolution.rewritten,
            },
        )

        def on_step(step: ReasoningStep) -> None:
            self._on_step(result, step)

        try:
            session = await self._engine.execute(resolution.rewritten, on_step)
        except TimedOutError as exc:
            result.react_session = self._engine.get_active_session()
            result.status = SessionStatus.failed
            result.error = str(exc)
            result.ended_at = self._now_ms()
            self._emit_completed(result)
            raise
        except ConcurrentExecutionError:
            raise
        except Exception as exc:
            logger.warning("instruction %s failed: %s", result.id, exc, exc_info=True)
            result.react_session = self._engine.get_active_session()
            result.status = SessionStatus.failed
            result.error = str(exc) or type(exc).__name__
            result.ended_at = self._now_ms()
            self._emit_completed(result)
            return result

        result.react_session = session
        result.status = session.status
        result.final_response = session.final_response
        result.ended_at = self._now_ms()

        if use_memory and session.final_response:
            metadata = {"runId": result.id}
            tools_used = session.tools_used
            if tools_used:
                metadata["toolName"] = tools_used[-1]
            self._memory.add_entry(
                MemoryRole.assistant, session.final_response, metadata=metadata
            )

        self._emit_completed(result)
        return result

    def cancel(self) -> None:
        self._engine.cancel()

    def _on_step(self, result: HybridResult, step: ReasoningStep) -> None:
        self._emit(
            EventType.step_completed,
            {"result_id": result.id, "step": step.model_dump(mode="json")},
        )
        if (
            step.type == StepType.action_result
            and self._config.enable_memory
            and self._config.record_tool_results
        ):
            metadata: dict[str, Any] = {"runId": result.id, "toolName": step.tool_name}
            if step.tool_error is not None:
                metadata["toolError"] = step.tool_error
            elif step.tool_result is not None:
                metadata["toolResult"] = step.tool_result
            self._memory.add_entry(MemoryRole.tool, step.content, metadata=metadata)

    def _emit_completed(self, result: HybridResult) -> None:
        self._emit(
            EventType.session_completed,
            {
                "result_id": result.id,
                "status": result.status.value,
                "final_response": result.final_response,
            },
        )

    # -- memory passthroughs --

    def get_memory_context(self, limit: int | None = None) -> list[MemoryEntry]:
        return self._memory.get_context_window(limit)

    def get_memory_stats(self) -> MemoryStats:
        return self._memory.get_stats()

    def clear_memory(self) -> int:
        return self._memory.clear()

    def export_memory(self) -> str:
        return self._memory.export_json()

    def import_memory(self, payload: str | bytes | Mapping[str, Any]) -> int:
        return self._memory.import_json(payload)

    def search_memory(self, term: str, limit: int | None = None) -> list[MemoryEntry]:
        return self._memory.search(term, limit)

    def start_new_session(self) -> str:
        return self._memory.start_new_session()

    async def close(self) -> None:
        """Cancel any running instruction, flush memory and drop listeners."""
        self._engine.cancel()
        await self._memory.close()
        self._events.clear()

    # -- rendering --

    def format_transcript(self, result: HybridResult | None = None) -> str:
        """Render a result as a human-readable transcript."""
        target = result or self._active
        if target is None:
            return ""

        lines = [
            "=== Session Transcript ===",
            f"Session ID: {target.id}",
            f"Started: {_iso(target.started_at)}",
            f"Status: {target.status.value}",
            "",
            f"User: {target.user_input}",
        ]
        if target.resolved_input != target.user_input:
            lines.append(f"Resolved: {target.resolved_input}")
        lines.append("")

        if target.context_used:
            lines += [f"Context: Referenced {', '.join(target.resolved_references)}", ""]

        if target.memory_context:
            lines.append("Memory:")
            lines += [f"  [{e.role.value}] {e.content}" for e in target.memory_context]
            lines.append("")

        if target.react_session is not None:
            lines += [
                f"{_TRANSCRIPT_TAGS[step.type]} {step.content}"
                for step in target.react_session.steps
            ]

        if target.error:
            lines += ["", f"Error: {target.error}"]

        if target.ended_at is not None:
            lines += [
                "",
                f"Completed: {_iso(target.ended_at)}",
                f"Duration: {target.ended_at - target.started_at}ms",
            ]
        return "\n".join(lines)

    # -- internal --

    def _on_entry_added(self, entry: MemoryEntry) -> None:
        self._emit(EventType.entry_added, {"entry": entry.to_wire()})

    def _on_memory_cleared(self, removed: int) -> None:
        self._emit(EventType.memory_cleared, {"removed": removed})

    def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        self._events.emit(
            OrchestratorEvent(type=event_type, timestamp=self._now_ms(), data=data)
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).isoformat()

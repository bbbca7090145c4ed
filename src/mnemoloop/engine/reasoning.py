"""Bounded observe / think / act / respond loop.

One :class:`ReasoningEngine` runs at most one session at a time.  A session
starts with an ``observation`` step, repeats ``thought`` / ``action`` /
``action_result`` cycles while the selector keeps choosing tools and the
step budget allows, and ends with a ``final`` step.

Cancellation and the thinking deadline are cooperative: they are checked at
loop boundaries (after the deliberation pause) and while waiting on a tool.
A tool call that is still running when the session is cancelled is left to
finish on its own; its result is discarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from collections.abc import Iterable
from time import perf_counter
from typing import Any

from mnemoloop.config import ReasoningConfig
from mnemoloop.engine.errors import ConcurrentExecutionError
from mnemoloop.engine.errors import TimedOutError
from mnemoloop.engine.errors import ToolExecutionError
from mnemoloop.engine.schemas import coerce_tool_result
from mnemoloop.engine.schemas import ReasoningSession
from mnemoloop.engine.schemas import ReasoningStep
from mnemoloop.engine.schemas import SessionStatus
from mnemoloop.engine.schemas import StepType
from mnemoloop.engine.schemas import to_jsonable
from mnemoloop.engine.schemas import ToolResult
from mnemoloop.engine.selection import KeywordToolSelector
from mnemoloop.engine.selection import ToolDecision
from mnemoloop.engine.selection import ToolSelector
from mnemoloop.engine.tools import Tool
from mnemoloop.engine.tools import ToolRegistry
from mnemoloop.observability import record_latency

logger = logging.getLogger(__name__)

StepCallback = Callable[[ReasoningStep], None]

# thought + action + action_result
_CYCLE_STEPS = 3


class ReasoningEngine:
    """Runs reasoning sessions over an instance-owned tool registry."""

    def __init__(
        self,
        config: ReasoningConfig | None = None,
        *,
        selector: ToolSelector | None = None,
        registry: ToolRegistry | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or ReasoningConfig()
        self._selector: ToolSelector = selector or KeywordToolSelector()
        self._registry = registry if registry is not None else ToolRegistry()
        self._clock = clock or time.time

        self._session: ReasoningSession | None = None
        self._running = False
        self._cancel_requested = False
        self._cancel_event: asyncio.Event | None = None
        self._last_timestamp = 0
        self._detached: set[asyncio.Future[Any]] = set()

    # -- properties --

    @property
    def config(self) -> ReasoningConfig:
        return self._config

    @property
    def tools(self) -> ToolRegistry:
        return self._registry

    # -- tools --

    def register_tool(self, tool: Tool) -> None:
        self._registry.register(tool)

    def register_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self._registry.register(tool)

    def get_tool(self, name: str) -> Tool | None:
        return self._registry.get(name)

    def get_all_tools(self) -> list[Tool]:
        return self._registry.all()

    # -- state --

    def is_running(self) -> bool:
        return self._running

    def get_active_session(self) -> ReasoningSession | None:
        """Return the latest session, whether or not it has finished."""
        return self._session

    def get_step_count(self) -> int:
        return len(self._session.steps) if self._session else 0

    def cancel(self) -> None:
        """Ask the running session to stop at its next boundary.

        Does nothing when no session is running.
        """
        if not self._running:
            return
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()
        logger.debug("cancellation requested")

    # -- execution --

    async def execute(
        self,
        user_input: str,
        on_step: StepCallback | None = None,
    ) -> ReasoningSession:
        """Run one session to a terminal state and return it.

        Raises :class:`ConcurrentExecutionError` if a session is already
        running and :class:`TimedOutError` if ``max_thinking_seconds`` is
        exceeded.  A cancelled session is returned normally.
        """
        if self._running:
            raise ConcurrentExecutionError("a reasoning session is already running")

        self._running = True
        self._cancel_requested = False
        self._cancel_event = asyncio.Event()
        session = ReasoningSession(user_input=user_input, started_at=self._next_timestamp())
        self._session = session

        start = perf_counter()
        outcome = "error"
        try:
            await self._run(session, on_step, start)
            outcome = session.status.value
            return session
        except TimedOutError:
            outcome = "timed_out"
            raise
        except asyncio.CancelledError:
            self._finish(session, SessionStatus.cancelled)
            outcome = "cancelled"
            raise
        except Exception as exc:
            if not session.status.is_terminal:
                self._finish(session, SessionStatus.failed, error=str(exc))
            raise
        finally:
            self._running = False
            self._cancel_event = None
            record_latency(
                operation="engine.execute",
                duration_ms=(perf_counter() - start) * 1000,
                ok=outcome in ("completed", "cancelled"),
                outcome=outcome,
            )

    async def _run(
        self,
        session: ReasoningSession,
        on_step: StepCallback | None,
        start: float,
    ) -> None:
        self._add_step(
            session, on_step, StepType.observation, f"User request: {session.user_input}"
        )

        while len(session.steps) + _CYCLE_STEPS < self._config.max_steps:
            if await self._boundary(session, start):
                return
            decision = await self._selector.select(
                session.user_input, self._registry.all(), list(session.steps)
            )
            if self._checkpoint(session, start):
                return
            if decision is None:
                break
            if await self._run_cycle(session, on_step, decision):
                return

        if await self._boundary(session, start):
            return
        response = self._final_response(session)
        self._add_step(session, on_step, StepType.final, response)
        session.final_response = response
        self._finish(session, SessionStatus.completed)

    async def _run_cycle(
        self,
        session: ReasoningSession,
        on_step: StepCallback | None,
        decision: ToolDecision,
    ) -> bool:
        """Run one thought/action/result cycle.  Returns True if cancelled."""
        name = decision.tool_name
        tool_input = dict(decision.tool_input)
        self._add_step(
            session,
            on_step,
            StepType.thought,
            decision.thought or f"I should use the {name} tool.",
        )
        self._add_step(
            session,
            on_step,
            StepType.action,
            f"Executing {name}...",
            tool_name=name,
            tool_input=tool_input,
        )

        tool = self._registry.get(name)
        if tool is None:
            result: ToolResult | None = ToolResult(
                success=False, error=f"Tool '{name}' not found"
            )
        else:
            result = await self._invoke(tool, tool_input)
        if result is None:
            self._finish(session, SessionStatus.cancelled)
            return True

        if result.success:
            payload = to_jsonable(result.result)
            self._add_step(
                session,
                on_step,
                StepType.action_result,
                f"Result: {json.dumps(payload)}",
                tool_name=name,
                tool_result=payload,
            )
        else:
            error = result.error or "tool reported failure"
            self._add_step(
                session,
                on_step,
                StepType.action_result,
                f"Error: {error}",
                tool_name=name,
                tool_error=error,
            )
        return False

    async def _boundary(self, session: ReasoningSession, start: float) -> bool:
        await asyncio.sleep(self._config.step_delay_seconds)
        return self._checkpoint(session, start)

    def _checkpoint(self, session: ReasoningSession, start: float) -> bool:
        """Return True if the session was cancelled; raise past the deadline."""
        if self._cancel_requested:
            self._finish(session, SessionStatus.cancelled)
            return True
        elapsed = perf_counter() - start
        limit = self._config.max_thinking_seconds
        if elapsed > limit:
            message = f"Thinking time exceeded: {elapsed:.3f}s elapsed, limit {limit}s"
            self._finish(session, SessionStatus.failed, error=message)
            raise TimedOutError(message)
        return False

    # -- tool dispatch --

    async def _invoke(self, tool: Tool, tool_input: dict[str, Any]) -> ToolResult | None:
        """Call *tool* with retries.  Returns None if the session was cancelled."""
        attempts = self._config.tool_retries + 1
        last_error = "tool execution failed"
        for attempt in range(1, attempts + 1):
            if self._cancel_requested:
                return None
            start = perf_counter()
            outcome = "error"
            try:
                result = await self._dispatch(tool, tool_input)
                if result is None:
                    outcome = "cancelled"
                    return None
                outcome = "ok" if result.success else "failed"
                return result
            except ToolExecutionError as exc:
                last_error = str(exc)
                logger.warning(
                    "tool %s attempt %d/%d failed: %s", tool.name, attempt, attempts, exc
                )
            finally:
                record_latency(
                    operation=f"tool.{tool.name}",
                    duration_ms=(perf_counter() - start) * 1000,
                    ok=outcome in ("ok", "cancelled"),
                    outcome=outcome,
                )
        return ToolResult(success=False, error=last_error)

    async def _dispatch(self, tool: Tool, tool_input: dict[str, Any]) -> ToolResult | None:
        cancel_event = self._cancel_event
        if cancel_event is None:
            raise RuntimeError("tool dispatch outside a running session")
        task = asyncio.ensure_future(tool.execute(dict(tool_input)))
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=self._config.tool_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if self._cancel_requested:
            # Cancelled while the call ran; drop the outcome even if it finished.
            self._detach(task)
            return None
        if task in done:
            if task.cancelled():
                raise ToolExecutionError(tool.name, "cancelled")
            exc = task.exception()
            if exc is not None:
                raise ToolExecutionError(tool.name, str(exc) or type(exc).__name__) from exc
            return coerce_tool_result(task.result())
        task.cancel()
        raise ToolExecutionError(
            tool.name, f"timed out after {self._config.tool_timeout_seconds}s"
        )

    def _detach(self, task: asyncio.Future[Any]) -> None:
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)

    def _on_detached_done(self, task: asyncio.Future[Any]) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("detached tool call failed after cancellation", exc_info=exc)

    # -- steps --

    def _add_step(
        self,
        session: ReasoningSession,
        on_step: StepCallback | None,
        step_type: StepType,
        content: str,
        **fields: Any,
    ) -> ReasoningStep:
        step = ReasoningStep(
            type=step_type,
            content=content,
            timestamp=self._next_timestamp(),
            step_number=len(session.steps) + 1,
            **fields,
        )
        session.steps.append(step)
        logger.debug("session %s step %d: %s", session.id, step.step_number, step_type.value)
        if on_step is not None:
            on_step(step)
        return step

    def _finish(
        self,
        session: ReasoningSession,
        status: SessionStatus,
        *,
        error: str | None = None,
    ) -> None:
        session.status = status
        session.ended_at = self._next_timestamp()
        if error is not None:
            session.error = error

    @staticmethod
    def _final_response(session: ReasoningSession) -> str:
        results = session.steps_of(StepType.action_result)
        if not results:
            return f"I understand your request: {session.user_input}. No tool was needed."
        failures = sum(1 for s in results if s.failed)
        successes = len(results) - failures
        if failures == 0:
            return f"Task completed successfully. {successes} tool(s) executed."
        return f"Task completed with {failures} error(s). {successes} tool(s) succeeded."

    def _next_timestamp(self) -> int:
        self._last_timestamp = max(int(self._clock() * 1000), self._last_timestamp)
        return self._last_timestamp

    # -- rendering --

    def export_session(self, session: ReasoningSession | None = None) -> str:
        """Serialize *session* (default: the latest) as indented JSON."""
        target = session or self._session
        if target is None:
            return "null"
        return target.model_dump_json(indent=2)

    def format_thinking_trace(self, session: ReasoningSession | None = None) -> str:
        """Render non-final steps as ``TYPE: content`` paragraphs."""
        target = session or self._session
        if target is None:
            return ""
        return "\n\n".join(
            f"{step.type.value.upper()}: {step.content}"
            for step in target.steps
            if step.type != StepType.final
        )

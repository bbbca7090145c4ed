"""mnemoloop — FastMCP v2 server exposing the hybrid orchestrator.

Tools delegate to one :class:`Orchestrator` whose memory is persisted in
Redis (or kept in process when no Redis URL is given).  Call
``configure(...)`` before using the server.
"""

from __future__ import annotations

from collections.abc import Iterable
from time import perf_counter

from fastmcp import FastMCP
from pydantic import BaseModel
from pydantic import Field

from mnemoloop.config import MemoryConfig
from mnemoloop.config import OrchestratorConfig
from mnemoloop.config import ReasoningConfig
from mnemoloop.config import StorageConfig
from mnemoloop.engine import ConcurrentExecutionError
from mnemoloop.engine import StepType
from mnemoloop.engine import TimedOutError
from mnemoloop.engine import Tool
from mnemoloop.memory import InMemoryKeyValueStore
from mnemoloop.memory import KeyValueStore
from mnemoloop.memory import MemoryEntry
from mnemoloop.memory import MemoryImportError
from mnemoloop.memory import RedisKeyValueStore
from mnemoloop.observability import record_latency
from mnemoloop.orchestration import HybridResult
from mnemoloop.orchestration import Orchestrator

mcp = FastMCP("mnemoloop")

# ---------------------------------------------------------------------------
# Orchestrator instance (set via configure())
# ---------------------------------------------------------------------------

_orchestrator: Orchestrator | None = None
_store: KeyValueStore | None = None


async def configure(
    redis_url: str | None = None,
    *,
    memory_config: MemoryConfig | None = None,
    reasoning_config: ReasoningConfig | None = None,
    orchestrator_config: OrchestratorConfig | None = None,
    storage_config: StorageConfig | None = None,
    tools: Iterable[Tool] = (),
) -> Orchestrator:
    """Build the orchestrator behind the MCP tools.

    Must be called before the MCP tools can function.  Explicit
    *memory_config* / *reasoning_config* override the matching sections of
    *orchestrator_config*.
    """
    global _orchestrator, _store
    if _orchestrator is not None:
        try:
            await shutdown()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            _orchestrator = None
            _store = None

    base = orchestrator_config or OrchestratorConfig()
    config = OrchestratorConfig(
        memory=memory_config or base.memory,
        reasoning=reasoning_config or base.reasoning,
        enable_memory=base.enable_memory,
        context_resolution=base.context_resolution,
        max_memory_context=base.max_memory_context,
        record_tool_results=base.record_tool_results,
    )

    if redis_url is not None:
        storage = storage_config or StorageConfig()
        _store = RedisKeyValueStore.from_config(
            StorageConfig(
                redis_url=redis_url,
                key_prefix=storage.key_prefix,
                ttl_seconds=storage.ttl_seconds,
            )
        )
    else:
        _store = InMemoryKeyValueStore()

    _orchestrator = await Orchestrator.open(config, store=_store)
    for tool in tools:
        _orchestrator.register_tool(tool)
    return _orchestrator


async def shutdown() -> None:
    """Flush memory, close backend clients and release server resources."""
    global _orchestrator, _store
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
    if isinstance(_store, RedisKeyValueStore):
        await _store.close()
    _store = None


def _get_orchestrator() -> Orchestrator:
    """Return the orchestrator instance or raise."""
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not configured. Call configure() first.")
    return _orchestrator


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class StepSummary(BaseModel):
    """One reasoning step as reported to MCP clients."""

    step_number: int
    type: StepType
    content: str
    tool_name: str | None = None
    failed: bool = False


class RunInstructionResult(BaseModel):
    """Response from run_instruction."""

    status: str = Field(
        description="Session status (completed, cancelled, failed) or 'error'.",
    )
    result_id: str | None = Field(
        default=None,
        description="ID of the hybrid result; use get_transcript to render it.",
    )
    final_response: str | None = Field(
        default=None,
        description="Final response of the reasoning session.",
    )
    resolved_input: str | None = Field(
        default=None,
        description="Instruction after pronoun resolution.",
    )
    resolved_references: list[str] = Field(
        default_factory=list,
        description="Referents substituted from memory.",
    )
    steps: list[StepSummary] = Field(
        default_factory=list,
        description="Reasoning steps in order.",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable failure reason (concurrent_execution, timed_out).",
    )
    message: str | None = Field(
        default=None,
        description="Human-readable failure detail.",
    )


class MemoryEntriesResult(BaseModel):
    """Response from get_memory_context and search_memory."""

    entries: list[MemoryEntry] = Field(default_factory=list)
    returned: int = 0


class MemoryStatsResult(BaseModel):
    """Response from get_memory_stats."""

    total_entries: int
    session_count: int
    entries_by_role: dict[str, int]
    storage_size: int
    oldest_entry: int | None = None
    newest_entry: int | None = None


class ClearMemoryResult(BaseModel):
    """Response from clear_memory."""

    status: str = "cleared"
    removed: int = 0


class ExportMemoryResult(BaseModel):
    """Response from export_memory."""

    payload: str = Field(description="JSON snapshot accepted by import_memory.")
    entry_count: int


class ImportMemoryResult(BaseModel):
    """Response from import_memory."""

    status: str = Field(
        default="imported",
        description="Import status (imported, rejected).",
    )
    imported: int = 0
    error_code: str | None = None
    message: str | None = None


class TranscriptResult(BaseModel):
    """Response from get_transcript."""

    status: str = Field(
        default="ok",
        description="'ok', or 'empty' when nothing has run yet.",
    )
    transcript: str = ""


def _run_result(result: HybridResult) -> RunInstructionResult:
    steps = result.react_session.steps if result.react_session else []
    return RunInstructionResult(
        status=result.status.value,
        result_id=result.id,
        final_response=result.final_response,
        resolved_input=result.resolved_input,
        resolved_references=result.resolved_references,
        steps=[
            StepSummary(
                step_number=s.step_number,
                type=s.type,
                content=s.content,
                tool_name=s.tool_name,
                failed=s.failed,
            )
            for s in steps
        ],
    )


def _entries_result(entries: list[MemoryEntry]) -> MemoryEntriesResult:
    return MemoryEntriesResult(entries=entries, returned=len(entries))


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def run_instruction(instruction: str) -> RunInstructionResult:
    """Run one instruction through memory-aware reasoning.

    Args:
        instruction: Natural-language request; pronouns such as "it" are
            resolved against recent memory.
    """
    start = perf_counter()
    ok = False
    try:
        orchestrator = _get_orchestrator()
        try:
            result = await orchestrator.execute(instruction)
        except ConcurrentExecutionError as exc:
            return RunInstructionResult(
                status="error", error_code="concurrent_execution", message=str(exc)
            )
        except TimedOutError as exc:
            failed = orchestrator.get_active_result()
            payload = _run_result(failed) if failed else RunInstructionResult(status="failed")
            payload.status = "error"
            payload.error_code = "timed_out"
            payload.message = str(exc)
            return payload
        ok = True
        return _run_result(result)
    finally:
        record_latency(
            operation="mcp.run_instruction",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_memory_context(limit: int | None = None) -> MemoryEntriesResult:
    """Return the most recent memory entries, oldest first.

    Args:
        limit: Number of entries; defaults to the configured context window.
    """
    start = perf_counter()
    ok = False
    try:
        entries = _get_orchestrator().get_memory_context(limit)
        ok = True
        return _entries_result(entries)
    finally:
        record_latency(
            operation="mcp.get_memory_context",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def search_memory(term: str, limit: int | None = None) -> MemoryEntriesResult:
    """Case-insensitive substring search over memory entries.

    Args:
        term: Text to look for.
        limit: Keep only the most recent matches.
    """
    start = perf_counter()
    ok = False
    try:
        entries = _get_orchestrator().search_memory(term, limit)
        ok = True
        return _entries_result(entries)
    finally:
        record_latency(
            operation="mcp.search_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_memory_stats() -> MemoryStatsResult:
    """Summarize the memory log (counts per role, sessions, size)."""
    start = perf_counter()
    ok = False
    try:
        stats = _get_orchestrator().get_memory_stats()
        ok = True
        return MemoryStatsResult(
            total_entries=stats.total_entries,
            session_count=stats.session_count,
            entries_by_role={role.value: n for role, n in stats.entries_by_role.items()},
            storage_size=stats.storage_size,
            oldest_entry=stats.oldest_entry,
            newest_entry=stats.newest_entry,
        )
    finally:
        record_latency(
            operation="mcp.get_memory_stats",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def clear_memory() -> ClearMemoryResult:
    """Drop every memory entry."""
    start = perf_counter()
    ok = False
    try:
        orchestrator = _get_orchestrator()
        removed = orchestrator.clear_memory()
        ok = True
        return ClearMemoryResult(removed=removed)
    finally:
        record_latency(
            operation="mcp.clear_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def export_memory() -> ExportMemoryResult:
    """Export the memory log as a JSON snapshot."""
    start = perf_counter()
    ok = False
    try:
        orchestrator = _get_orchestrator()
        payload = orchestrator.export_memory()
        ok = True
        return ExportMemoryResult(payload=payload, entry_count=orchestrator.memory.count())
    finally:
        record_latency(
            operation="mcp.export_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def import_memory(payload: str) -> ImportMemoryResult:
    """Replace the memory log with a snapshot produced by export_memory.

    Args:
        payload: JSON snapshot with an ``entries`` array.
    """
    start = perf_counter()
    ok = False
    try:
        try:
            imported = _get_orchestrator().import_memory(payload)
        except MemoryImportError as exc:
            return ImportMemoryResult(
                status="rejected", error_code="import_error", message=str(exc)
            )
        ok = True
        return ImportMemoryResult(imported=imported)
    finally:
        record_latency(
            operation="mcp.import_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def get_transcript() -> TranscriptResult:
    """Render the most recent instruction as a readable transcript."""
    start = perf_counter()
    ok = False
    try:
        transcript = _get_orchestrator().format_transcript()
        ok = True
        if not transcript:
            return TranscriptResult(status="empty")
        return TranscriptResult(transcript=transcript)
    finally:
        record_latency(
            operation="mcp.get_transcript",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


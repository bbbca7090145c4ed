"""MCP interface contract tests.

All tests use ``fastmcp.Client`` to exercise the full MCP protocol
(serialization, validation) against an in-memory orchestrator with one
``create_card`` tool registered.
"""

from __future__ import annotations

import json

import pytest

from mnemoloop.config import ReasoningConfig
from mnemoloop.observability import latency_metrics_snapshot


def _parse(result) -> dict:
    """Extract the JSON payload from a CallToolResult."""
    return json.loads(result.content[0].text)


async def _run(client, instruction: str) -> dict:
    return _parse(await client.call_tool("run_instruction", {"instruction": instruction}))


# -----------------------------------------------------------------------
# run_instruction
# -----------------------------------------------------------------------


class TestRunInstruction:
    """Contract tests for the run_instruction tool."""

    async def test_runs_matching_tool(self, mcp_client):
        data = await _run(mcp_client, 'Create a card titled "Bug Fix"')
        assert data["status"] == "completed"
        assert data["final_response"] == "Task completed successfully. 1 tool(s) executed."
        assert [s["type"] for s in data["steps"]] == [
            "observation",
            "thought",
            "action",
            "action_result",
            "final",
        ]
        assert data["steps"][2]["tool_name"] == "create_card"
        assert data["error_code"] is None

    async def test_resolves_references_from_earlier_runs(self, mcp_client):
        await _run(mcp_client, 'Create a card titled "Bug Fix"')
        data = await _run(mcp_client, "Move it to Done")
        assert any('"Bug Fix"' in ref for ref in data["resolved_references"])
        assert data["resolved_input"] == 'Move "Bug Fix" to Done'

    async def test_rejects_missing_instruction(self, mcp_client):
        with pytest.raises(Exception):
            await mcp_client.call_tool("run_instruction", {})

    async def test_timeout_is_reported_as_error(self, mcp_client):
        from mnemoloop.server import configure

        await configure(reasoning_config=ReasoningConfig(max_thinking_seconds=0.001))
        data = await _run(mcp_client, "hello")
        assert data["status"] == "error"
        assert data["error_code"] == "timed_out"
        assert "time exceeded" in data["message"]

    async def test_records_latency(self, mcp_client):
        await _run(mcp_client, "hello")
        metrics = latency_metrics_snapshot()
        assert metrics["mcp.run_instruction"]["count"] == 1
        assert metrics["engine.execute"]["count"] == 1


# -----------------------------------------------------------------------
# memory tools
# -----------------------------------------------------------------------


class TestMemoryTools:
    async def test_context_and_search(self, mcp_client):
        await _run(mcp_client, 'Create a card titled "Bug Fix"')

        context = _parse(await mcp_client.call_tool("get_memory_context", {"limit": 2}))
        assert context["returned"] == 2
        assert [e["role"] for e in context["entries"]] == ["tool", "assistant"]

        hits = _parse(await mcp_client.call_tool("search_memory", {"term": "bug fix"}))
        assert hits["returned"] >= 1
        assert hits["entries"][0]["role"] == "user"

    async def test_stats(self, mcp_client):
        await _run(mcp_client, 'Create a card titled "Bug Fix"')
        stats = _parse(await mcp_client.call_tool("get_memory_stats", {}))
        assert stats["total_entries"] == 3
        assert sum(stats["entries_by_role"].values()) == stats["total_entries"]
        assert stats["entries_by_role"]["tool"] == 1

    async def test_clear(self, mcp_client):
        await _run(mcp_client, "hello")
        cleared = _parse(await mcp_client.call_tool("clear_memory", {}))
        assert cleared == {"status": "cleared", "removed": 2}
        stats = _parse(await mcp_client.call_tool("get_memory_stats", {}))
        assert stats["total_entries"] == 0

    async def test_export_then_import(self, mcp_client):
        await _run(mcp_client, "hello")
        exported = _parse(await mcp_client.call_tool("export_memory", {}))
        assert exported["entry_count"] == 2

        await mcp_client.call_tool("clear_memory", {})
        imported = _parse(
            await mcp_client.call_tool("import_memory", {"payload": exported["payload"]})
        )
        assert imported["status"] == "imported"
        assert imported["imported"] == 2

    async def test_import_rejects_malformed_payload(self, mcp_client):
        await _run(mcp_client, "hello")
        data = _parse(await mcp_client.call_tool("import_memory", {"payload": "{oops"}))
        assert data["status"] == "rejected"
        assert data["error_code"] == "import_error"
        stats = _parse(await mcp_client.call_tool("get_memory_stats", {}))
        assert stats["total_entries"] == 2


# -----------------------------------------------------------------------
# get_transcript
# -----------------------------------------------------------------------


class TestTranscript:
    async def test_empty_before_first_run(self, mcp_client):
        data = _parse(await mcp_client.call_tool("get_transcript", {}))
        assert data["status"] == "empty"

    async def test_renders_last_run(self, mcp_client):
        await _run(mcp_client, 'Create a card titled "Bug Fix"')
        data = _parse(await mcp_client.call_tool("get_transcript", {}))
        assert data["status"] == "ok"
        assert data["transcript"].startswith("=== Session Transcript ===")
        assert "[RESPONSE] Task completed successfully." in data["transcript"]

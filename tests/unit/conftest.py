"""Unit test fixtures — fake clock, in-memory store, FastMCP client."""

from __future__ import annotations

import pytest
from fastmcp import Client

from mnemoloop.memory import InMemoryKeyValueStore
from mnemoloop.observability import reset_latency_metrics


class FakeClock:
    """Manually advanced wall clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_latency_metrics()
    yield
    reset_latency_metrics()


@pytest.fixture()
async def mcp_client():
    """Yield a FastMCP Client wired to an in-memory mnemoloop server."""
    from mnemoloop.engine import FunctionTool
    from mnemoloop.engine import object_schema
    from mnemoloop.server import configure
    from mnemoloop.server import mcp
    from mnemoloop.server import shutdown

    async def create_card(params: dict) -> dict:
        return {"created": params["title"]}

    await configure(
        tools=[
            FunctionTool(
                "create_card",
                "Create a new card with a title on the board",
                create_card,
                object_schema({"title": {"type": "string"}}, required=["title"]),
            )
        ]
    )

    async with Client(mcp) as client:
        yield client

    await shutdown()

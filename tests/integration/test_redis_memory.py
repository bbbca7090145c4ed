"""Memory persistence against a real Redis container."""

from __future__ import annotations

from mnemoloop.config import MemoryConfig
from mnemoloop.config import OrchestratorConfig
from mnemoloop.config import StorageConfig
from mnemoloop.engine import FunctionTool
from mnemoloop.memory import MemoryLog
from mnemoloop.memory import MemoryRole
from mnemoloop.memory import RedisKeyValueStore
from mnemoloop.orchestration import Orchestrator


class TestRedisKeyValueStore:
    async def test_round_trip(self, redis_client):
        store = RedisKeyValueStore(redis_client, key_prefix="t")
        await store.set("memory", "payload")
        assert await store.get("memory") == "payload"
        assert await redis_client.get("t:memory") == b"payload"
        await store.remove("memory")
        assert await store.get("memory") is None

    async def test_ttl_is_applied(self, redis_client):
        store = RedisKeyValueStore(redis_client, key_prefix="t", ttl_seconds=120)
        await store.set("memory", "payload")
        ttl = await redis_client.ttl("t:memory")
        assert 0 < ttl <= 120

    async def test_from_config(self, redis_container, redis_client):
        store = RedisKeyValueStore.from_config(
            StorageConfig(redis_url=redis_container, key_prefix="cfg")
        )
        try:
            await store.set("k", "v")
            assert await redis_client.get("cfg:k") == b"v"
        finally:
            await store.close()


class TestMemoryLogOnRedis:
    async def test_log_survives_restart(self, redis_client):
        config = MemoryConfig(storage_key="conversation")
        first = MemoryLog(config, store=RedisKeyValueStore(redis_client))
        first.add_entry(MemoryRole.user, "hello")
        first.add_entry(MemoryRole.assistant, "hi there")
        await first.close()

        second = await MemoryLog.open(config, store=RedisKeyValueStore(redis_client))
        assert [e.content for e in second.get_all_entries()] == ["hello", "hi there"]
        assert second.current_session_id == first.current_session_id

    async def test_orchestrator_reloads_conversation(self, redis_client):
        store = RedisKeyValueStore(redis_client)
        config = OrchestratorConfig()

        first = await Orchestrator.open(config, store=store)
        first.register_tool(
            FunctionTool("create_card", "Create a new card", lambda p: {"ok": True})
        )
        await first.execute('Create card "Bug Fix"')
        await first.close()

        second = await Orchestrator.open(config, store=store)
        contents = [e.content for e in second.get_memory_context()]
        assert 'Create card "Bug Fix"' in contents

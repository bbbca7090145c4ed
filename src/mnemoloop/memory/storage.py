"""Key-value stores backing memory log persistence.

The memory log only needs ``get``/``set``/``remove`` by string key, so any
backend satisfying :class:`KeyValueStore` can be injected.  Redis is the
production backend; the in-memory store serves tests and ephemeral runs.
"""

from __future__ import annotations

import logging
from typing import Protocol
from typing import runtime_checkable

from redis.asyncio import Redis  # type: ignore[import-untyped]
from redis.exceptions import RedisError  # type: ignore[import-untyped]

from mnemoloop.config import StorageConfig
from mnemoloop.memory.errors import StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for string key-value persistence backends.

    Implementations raise :class:`StorageError` when the backend is
    unreachable.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Dict-backed store; contents live as long as the instance."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class RedisKeyValueStore:
    """Redis-backed store.

    Values are plain strings under ``{key_prefix}:{key}``.  Every
    ``RedisError`` is re-raised as :class:`StorageError`.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = "mnemoloop",
        ttl_seconds: int | None = None,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._ttl = ttl_seconds

    @classmethod
    def from_config(cls, config: StorageConfig) -> RedisKeyValueStore:
        """Build a store with a fresh client for ``config.redis_url``."""
        return cls(
            Redis.from_url(config.redis_url),
            key_prefix=config.key_prefix,
            ttl_seconds=config.ttl_seconds,
        )

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> str | None:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as exc:
            raise StorageError(f"redis get failed for {key!r}: {exc}") from exc
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else raw

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(self._key(key), value, ex=self._ttl)
        except RedisError as exc:
            raise StorageError(f"redis set failed for {key!r}: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except RedisError as exc:
            raise StorageError(f"redis delete failed for {key!r}: {exc}") from exc

    async def close(self) -> None:
        """Release the underlying connection pool."""
        try:
            await self._redis.aclose()
        except RuntimeError:
            # The client may belong to an event loop that is already closed.
            logger.debug("redis client close skipped", exc_info=True)

"""Append-only, bounded conversation memory log.

Entries are held in insertion order and never mutated.  After every
mutation the log applies its retention policy (age first, then count) and
schedules a debounced flush of the full snapshot to an injected
:class:`~mnemoloop.memory.storage.KeyValueStore`.

Debounce state is explicit: ``_flush_pending`` says a snapshot still needs
writing, ``_flush_deadline`` is the event-loop time the pending flush fires
at, and ``_flush_task`` is the single timer task.  Each write cancels the
timer and starts a new one, so a burst of writes collapses into one flush.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from collections.abc import Iterable
from collections.abc import Mapping
from datetime import datetime
from datetime import UTC
from time import perf_counter
from typing import Any

from pydantic import ValidationError

from mnemoloop.config import MemoryConfig
from mnemoloop.memory.errors import MemoryImportError
from mnemoloop.memory.errors import StorageError
from mnemoloop.memory.schemas import MemoryEntry
from mnemoloop.memory.schemas import MemoryQuery
from mnemoloop.memory.schemas import MemoryRole
from mnemoloop.memory.schemas import MemorySnapshot
from mnemoloop.memory.schemas import MemoryStats
from mnemoloop.memory.storage import KeyValueStore
from mnemoloop.observability import record_latency

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"ses_{uuid.uuid4().hex}"


class MemoryLog:
    """Bounded, optionally persistent log of conversation entries."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] | None = None,
        on_entry_added: Callable[[MemoryEntry], None] | None = None,
        on_cleared: Callable[[int], None] | None = None,
    ) -> None:
        self._config = config or MemoryConfig()
        # None when persistence is off.
        self._store: KeyValueStore | None = store if self._config.persist else None
        self._clock = clock or time.time
        self._on_entry_added = on_entry_added
        self._on_cleared = on_cleared

        self._entries: list[MemoryEntry] = []
        self._session_id = new_session_id()
        self._last_timestamp = 0

        self._flush_pending = False
        self._flush_deadline: float | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        config: MemoryConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] | None = None,
        on_entry_added: Callable[[MemoryEntry], None] | None = None,
        on_cleared: Callable[[int], None] | None = None,
    ) -> MemoryLog:
        """Build a log and load any snapshot persisted under its storage key."""
        log = cls(
            config,
            store=store,
            clock=clock,
            on_entry_added=on_entry_added,
            on_cleared=on_cleared,
        )
        await log.load()
        return log

    # -- properties --

    @property
    def config(self) -> MemoryConfig:
        return self._config

    @property
    def current_session_id(self) -> str:
        return self._session_id

    @property
    def flush_pending(self) -> bool:
        return self._flush_pending

    @property
    def flush_deadline(self) -> float | None:
        return self._flush_deadline

    def set_entry_listener(
        self, listener: Callable[[MemoryEntry], None] | None
    ) -> None:
        self._on_entry_added = listener

    def set_clear_listener(self, listener: Callable[[int], None] | None) -> None:
        """Call *listener* with the number of dropped entries after ``clear()``."""
        self._on_cleared = listener

    # -- write --

    def add_entry(
        self,
        role: MemoryRole | str,
        content: str,
        *,
        metadata: Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> MemoryEntry:
        """Append a new entry and return it.

        The session id is taken from *session_id*, then from
        ``metadata["sessionId"]``, then from the current session.
        """
        meta: dict[str, Any] = dict(metadata or {})
        nested = meta.pop("sessionId", None)
        if session_id is None and isinstance(nested, str) and nested:
            session_id = nested

        entry = MemoryEntry(
            role=MemoryRole(role),
            content=content,
            timestamp=self._next_timestamp(),
            metadata=meta,
            session_id=session_id or self._session_id,
        )
        self._entries.append(entry)
        self._enforce_limits()
        self._schedule_flush()

        if self._on_entry_added is not None:
            self._on_entry_added(entry)
        return entry

    def add_entries(self, entries: Iterable[Mapping[str, Any]]) -> list[MemoryEntry]:
        """Append several ``{"role", "content", "metadata"?}`` mappings."""
        return [
            self.add_entry(
                item["role"],
                item["content"],
                metadata=item.get("metadata"),
                session_id=item.get("session_id"),
            )
            for item in entries
        ]

    def delete_entry(self, entry_id: str) -> bool:
        """Remove one entry by ID.  Returns ``False`` if it is not present."""
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                del self._entries[index]
                self._schedule_flush()
                return True
        return False

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        removed = len(self._entries)
        self._entries = []
        self._schedule_flush()
        if self._on_cleared is not None:
            self._on_cleared(removed)
        return removed

    def start_new_session(self) -> str:
        """Begin a new session and record a ``system`` boundary entry."""
        self._session_id = new_session_id()
        started = datetime.fromtimestamp(self._clock(), tz=UTC).isoformat()
        self.add_entry(
            MemoryRole.system,
            f"New session started: {started}",
            session_id=self._session_id,
        )
        return self._session_id

    # -- read --

    def get_all_entries(self) -> list[MemoryEntry]:
        """Return every entry, oldest first."""
        return list(self._entries)

    def get_context_window(self, size: int | None = None) -> list[MemoryEntry]:
        """Return the most recent *size* entries in chronological order."""
        window = self._config.context_window_size if size is None else size
        if window <= 0:
            return []
        return self._entries[-window:]

    def get_last(self, n: int) -> list[MemoryEntry]:
        return self.get_context_window(n)

    def get_by_id(self, entry_id: str) -> MemoryEntry | None:
        return next((e for e in self._entries if e.id == entry_id), None)

    def get_session_entries(self, session_id: str | None = None) -> list[MemoryEntry]:
        target = session_id or self._session_id
        return [e for e in self._entries if e.session_id == target]

    def get_session_ids(self) -> list[str]:
        """Distinct session IDs in order of first appearance."""
        return list(dict.fromkeys(e.session_id for e in self._entries if e.session_id))

    def count(self) -> int:
        return len(self._entries)

    def query(self, query: MemoryQuery | None = None, **filters: Any) -> list[MemoryEntry]:
        """Return the entries matching *query* (or keyword *filters*), in order.

        ``limit`` keeps the most recent matches.
        """
        if query is None:
            if isinstance(filters.get("role"), str):
                filters["role"] = MemoryRole(filters["role"])
            query = MemoryQuery(**filters)
        results = [e for e in self._entries if query.matches(e)]
        if query.limit:
            results = results[-query.limit :]
        return results

    def search(self, term: str, limit: int | None = None) -> list[MemoryEntry]:
        """Case-insensitive substring search over entry content."""
        return self.query(MemoryQuery(search_term=term, limit=limit))

    def get_stats(self) -> MemoryStats:
        by_role = {role: 0 for role in MemoryRole}
        for entry in self._entries:
            by_role[entry.role] += 1
        return MemoryStats(
            total_entries=len(self._entries),
            session_count=len(self.get_session_ids()),
            entries_by_role=by_role,
            storage_size=len(self._serialize()),
            oldest_entry=self._entries[0].timestamp if self._entries else None,
            newest_entry=self._entries[-1].timestamp if self._entries else None,
        )

    # -- export / import --

    def export_json(self) -> str:
        """Serialize the full log, including the current session id."""
        return self._serialize(exported_at=self._now_ms())

    def import_json(self, payload: str | bytes | Mapping[str, Any]) -> int:
        """Replace the log with the entries in *payload*.

        Raises :class:`MemoryImportError` on malformed input; the current
        entries are left untouched in that case.  Returns the number of
        entries kept after retention.
        """
        self._replace_from(payload)
        self._schedule_flush()
        return len(self._entries)

    # -- persistence --

    async def load(self) -> int:
        """Load the persisted snapshot, if any.

        Missing data leaves the log empty.  Corrupt data and storage
        failures are logged and also leave the log empty.
        """
        if self._store is None:
            return 0
        key = self._config.storage_key
        try:
            raw = await self._store.get(key)
        except StorageError:
            logger.warning(
                "memory store unavailable while loading %r; starting empty",
                key,
                exc_info=True,
            )
            return 0
        if raw is None:
            return 0
        try:
            self._replace_from(raw)
        except MemoryImportError:
            logger.warning(
                "discarding corrupt persisted memory under %r", key, exc_info=True
            )
            self._entries = []
            return 0
        return len(self._entries)

    async def flush(self) -> bool:
        """Write the snapshot now, cancelling any pending debounced flush."""
        self._cancel_flush_timer()
        if self._store is None:
            return False
        return await self._write()

    async def close(self) -> None:
        """Flush anything still pending and stop the debounce timer."""
        self._cancel_flush_timer()
        if self._store is not None and self._flush_pending:
            await self._write()

    # -- internal --

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _next_timestamp(self) -> int:
        self._last_timestamp = max(self._now_ms(), self._last_timestamp)
        return self._last_timestamp

    def _enforce_limits(self) -> None:
        """Drop entries older than ``max_age``, then the oldest surplus."""
        cutoff = self._now_ms() - int(self._config.max_age_seconds * 1000)
        self._entries = [e for e in self._entries if e.timestamp >= cutoff]

        surplus = len(self._entries) - self._config.max_entries
        if surplus > 0:
            del self._entries[:surplus]

    def _replace_from(self, payload: str | bytes | Mapping[str, Any]) -> None:
        try:
            data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
            snapshot = MemorySnapshot.model_validate(data)
        except (ValueError, TypeError, ValidationError) as exc:
            raise MemoryImportError(f"malformed memory payload: {exc}") from exc

        entries = sorted(snapshot.entries, key=lambda e: e.timestamp)
        self._entries = entries
        if snapshot.current_session_id:
            self._session_id = snapshot.current_session_id
        if entries:
            self._last_timestamp = max(self._last_timestamp, entries[-1].timestamp)
        self._enforce_limits()

    def _serialize(self, *, exported_at: int | None = None) -> str:
        payload: dict[str, Any] = {
            "entries": [e.to_wire() for e in self._entries],
            "currentSessionId": self._session_id,
        }
        if exported_at is not None:
            payload["exportedAt"] = exported_at
        return json.dumps(payload)

    def _schedule_flush(self) -> None:
        if self._store is None:
            return
        self._flush_pending = True
        self._cancel_flush_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: stays pending until flush() or close().
            return
        delay = self._config.flush_debounce_seconds
        self._flush_deadline = loop.time() + delay
        self._flush_task = loop.create_task(self._flush_after(delay))

    def _cancel_flush_timer(self) -> None:
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None
        self._flush_deadline = None

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._flush_task = None
        await self._write()

    async def _write(self) -> bool:
        store = self._store
        if store is None:
            return False
        key = self._config.storage_key
        async with self._write_lock:
            self._flush_pending = False
            self._flush_deadline = None
            data = self._serialize()
            start = perf_counter()
            ok = False
            try:
                await store.set(key, data)
                ok = True
            except StorageError:
                logger.warning(
                    "memory flush to %r failed; continuing in memory only",
                    key,
                    exc_info=True,
                )
            finally:
                record_latency(
                    operation="memory.flush",
                    duration_ms=(perf_counter() - start) * 1000,
                    ok=ok,
                )
            return ok


__all__ = ["MemoryLog", "new_session_id"]

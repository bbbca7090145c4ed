"""Memory domain data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator
from typing_extensions import TypeAliasType

MetadataValue = TypeAliasType(
    "MetadataValue",
    "Union[str, bool, int, float, None, list[MetadataValue], dict[str, MetadataValue]]",
)
"""Value held in entry metadata: a scalar, a list, or a nested map."""

Metadata = dict[str, MetadataValue]


class MemoryRole(str, Enum):
    """Who produced a memory entry."""

    user = "user"
    assistant = "assistant"
    tool = "tool"
    system = "system"
    thought = "thought"


class MemoryEntry(BaseModel):
    """A single immutable record in the memory log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(
        default_factory=lambda: f"mem_{uuid.uuid4().hex}",
        description="Unique identifier, auto-generated as mem_{uuid4_hex}.",
    )
    role: MemoryRole = Field(
        description="Producer of the entry.",
    )
    content: str = Field(
        description="Text of the message, tool result or boundary marker.",
    )
    timestamp: int = Field(
        description="Epoch milliseconds; non-decreasing within one log.",
    )
    metadata: Metadata = Field(
        default_factory=dict,
        description="Open key-value annotations (toolName, resolvedInput, ...).",
    )
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Conversation session the entry belongs to.",
    )

    @model_validator(mode="before")
    @classmethod
    def _lift_session_id(cls, data: Any) -> Any:
        """Accept payloads that keep ``sessionId`` inside ``metadata``."""
        if not isinstance(data, dict):
            return data
        metadata = data.get("metadata")
        if not isinstance(metadata, dict) or "sessionId" not in metadata:
            return data
        data = dict(data)
        metadata = dict(metadata)
        nested = metadata.pop("sessionId")
        data["metadata"] = metadata
        if data.get("sessionId") is None and data.get("session_id") is None:
            data["sessionId"] = nested
        return data

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class MemorySnapshot(BaseModel):
    """Full-log payload used for persistence, export and import."""

    model_config = ConfigDict(populate_by_name=True)

    entries: list[MemoryEntry]
    current_session_id: str | None = Field(default=None, alias="currentSessionId")
    exported_at: int | None = Field(default=None, alias="exportedAt")


@dataclass(frozen=True)
class MemoryQuery:
    """Filter for ``MemoryLog.query``.  Unset fields match everything."""

    role: MemoryRole | None = None
    session_id: str | None = None
    start_time: int | None = None
    end_time: int | None = None
    search_term: str | None = None
    limit: int | None = None

    def matches(self, entry: MemoryEntry) -> bool:
        if self.role is not None and entry.role != self.role:
            return False
        if self.session_id is not None and entry.session_id != self.session_id:
            return False
        if self.start_time is not None and entry.timestamp < self.start_time:
            return False
        if self.end_time is not None and entry.timestamp > self.end_time:
            return False
        if self.search_term:
            return self.search_term.lower() in entry.content.lower()
        return True


class MemoryStats(BaseModel):
    """Summary of the current log contents."""

    total_entries: int
    session_count: int
    entries_by_role: dict[MemoryRole, int]
    storage_size: int = Field(
        description="Length of the serialized snapshot, in characters.",
    )
    oldest_entry: int | None = None
    newest_entry: int | None = None

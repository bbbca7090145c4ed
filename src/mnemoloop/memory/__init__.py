"""Memory domain — bounded conversation log and its persistence backends."""

from mnemoloop.memory.errors import MemoryImportError
from mnemoloop.memory.errors import StorageError
from mnemoloop.memory.log import MemoryLog
from mnemoloop.memory.schemas import MemoryEntry
from mnemoloop.memory.schemas import MemoryQuery
from mnemoloop.memory.schemas import MemoryRole
from mnemoloop.memory.schemas import MemorySnapshot
from mnemoloop.memory.schemas import MemoryStats
from mnemoloop.memory.schemas import Metadata
from mnemoloop.memory.schemas import MetadataValue
from mnemoloop.memory.storage import InMemoryKeyValueStore
from mnemoloop.memory.storage import KeyValueStore
from mnemoloop.memory.storage import RedisKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MemoryEntry",
    "MemoryImportError",
    "MemoryLog",
    "MemoryQuery",
    "MemoryRole",
    "MemorySnapshot",
    "MemoryStats",
    "Metadata",
    "MetadataValue",
    "RedisKeyValueStore",
    "StorageError",
]

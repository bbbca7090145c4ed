"""Memory domain exceptions."""

from __future__ import annotations


class MemoryImportError(Exception):
    """Raised when an imported or persisted memory payload is malformed."""


class StorageError(Exception):
    """Raised by key-value stores when the backing store is unavailable."""

"""Synchronous lifecycle event bus for the orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Orchestrator lifecycle events."""

    entry_added = "entry-added"
    memory_cleared = "memory-cleared"
    session_started = "session-started"
    session_completed = "session-completed"
    tool_registered = "tool-registered"
    step_completed = "step-completed"


class OrchestratorEvent(BaseModel):
    """One emitted event."""

    type: EventType
    timestamp: int = Field(description="Epoch milliseconds.")
    data: dict[str, Any] = Field(default_factory=dict)


EventListener = Callable[[OrchestratorEvent], None]


class EventBus:
    """Delivers events to listeners in subscription order.

    Each emit works on a snapshot of the listener list.  A listener removed
    during delivery is skipped for the rest of that emit; a listener added
    during delivery first hears the next one.  A raising listener is logged
    and delivery continues.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, event: OrchestratorEvent) -> None:
        for listener in list(self._listeners):
            if listener not in self._listeners:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed for %s", event.type.value)

    def clear(self) -> None:
        self._listeners.clear()

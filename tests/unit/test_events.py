"""Event bus unit tests."""

from __future__ import annotations

import logging

from mnemoloop.orchestration import EventBus
from mnemoloop.orchestration import EventType
from mnemoloop.orchestration import OrchestratorEvent


def _event(event_type: EventType = EventType.tool_registered) -> OrchestratorEvent:
    return OrchestratorEvent(type=event_type, timestamp=0, data={"name": "echo"})


class TestEventBus:
    def test_delivers_in_subscription_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe(lambda e: seen.append(("a", e.type)))
        bus.subscribe(lambda e: seen.append(("b", e.type)))
        bus.emit(_event())
        assert seen == [("a", EventType.tool_registered), ("b", EventType.tool_registered)]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        bus.emit(_event())
        assert seen == []
        assert bus.listener_count() == 0

    def test_listener_removed_mid_dispatch_is_skipped(self):
        bus = EventBus()
        seen = []
        handles = {}

        def first(event):
            seen.append("first")
            handles["second"]()

        bus.subscribe(first)
        handles["second"] = bus.subscribe(lambda e: seen.append("second"))
        bus.emit(_event())
        assert seen == ["first"]

    def test_listener_added_mid_dispatch_waits_for_next_event(self):
        bus = EventBus()
        seen = []

        def first(event):
            seen.append("first")
            bus.subscribe(lambda e: seen.append("late"))

        bus.subscribe(first)
        bus.emit(_event())
        assert seen == ["first"]

    def test_raising_listener_does_not_stop_delivery(self, caplog):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        with caplog.at_level(logging.ERROR, logger="mnemoloop.orchestration.events"):
            bus.emit(_event(EventType.memory_cleared))
        assert len(seen) == 1
        assert "memory-cleared" in caplog.text

    def test_event_type_values(self):
        assert {t.value for t in EventType} == {
            "entry-added",
            "memory-cleared",
            "session-started",
            "session-completed",
            "tool-registered",
            "step-completed",
        }

"""
Unit tests for infrastructure/changelog.py
"""
from infrastructure.changelog import Changelog, ChangelogEntry
from infrastructure.event_bus import EventBus, EventType


def _entry(target_id, action="created", timestamp="2024-01-01T00:00:00+00:00"):
    return ChangelogEntry(timestamp=timestamp, action=action, target_kind="node", target_id=target_id)


def test_ring_buffer_drops_oldest():
    log = Changelog(max_entries=3)
    for i in range(5):
        log.append(_entry(f"n{i}"))

    assert len(log) == 3
    assert [e.target_id for e in log.get_last(10)] == ["n2", "n3", "n4"]
    assert [e.target_id for e in log.get_last(2)] == ["n3", "n4"]
    assert log.get_last(0) == []


def test_queries():
    log = Changelog()
    log.append(_entry("a", timestamp="2024-01-01T00:00:00+00:00"))
    log.append(_entry("a", action="updated", timestamp="2024-02-01T00:00:00+00:00"))
    log.append(_entry("b", action="deleted", timestamp="2024-03-01T00:00:00+00:00"))

    assert len(log.get_by_target("a")) == 2
    assert [e.target_id for e in log.get_since("2024-02-01")] == ["a", "b"]
    assert [e.target_id for e in log.get_by_action("deleted", "node")] == ["b"]
    assert log.get_by_action("deleted", "edge") == []

    log.clear()
    assert len(log) == 0


def test_records_bus_events():
    """
    Validate translation of bus events into history rows.

    Verifies:
    - Node events use the title as the display name
    - Position batches become one "moved" row
    - Selection and settings events are ignored
    """
    bus = EventBus()
    log = Changelog()
    log.attach(bus)

    bus.emit(EventType.NODE_CREATED, {"node_id": "n1", "title": "Revenue"}, source="session")
    bus.emit(EventType.EDGE_DELETED, {"edge_id": "e1", "category": "relationship"})
    bus.emit(EventType.POSITIONS_UPDATED, {"positions": {"n1": [0, 0]}, "project_id": "p"}, source="layout")
    bus.emit(EventType.SELECTION_CLEARED, {})
    bus.emit(EventType.SETTINGS_CHANGED, {})

    rows = log.get_last(10)
    assert [(r.action, r.target_kind, r.target_id) for r in rows] == [
        ("created", "node", "n1"),
        ("deleted", "edge", "e1"),
        ("moved", "canvas", "p"),
    ]
    assert rows[0].target_name == "Revenue"
    assert rows[0].source == "session"
    assert rows[2].target_name == "1 node(s)"


def test_detach_stops_recording():
    bus = EventBus()
    log = Changelog()
    log.attach(bus)
    log.detach(bus)

    bus.emit(EventType.NODE_CREATED, {"node_id": "n1"})

    assert len(log) == 0
    assert bus.subscriber_count() == 0

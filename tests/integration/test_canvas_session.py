"""
Integration tests: CanvasSession end to end.

Covers the connection-drag scenarios, the debounced auto-layout, bulk
operations routed through the session, and snapshot round trips.
"""
import unittest

import msgspec
import pytest

from core.graph_db import ConnectionRuleError, CycleViolationError
from core.graph_invariants import would_create_cycle
from core.ontology import NodeType, EdgeCategory
from core.schemas import (
    CanvasSettings,
    EdgeData,
    NodeData,
    ProjectSnapshot,
    deserialize_snapshot,
    serialize_snapshot,
)
from core.session import CanvasSession
from infrastructure.config import CanvasConfig, LayoutConfig
from infrastructure.event_bus import EventType


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _add(session, node_type, node_id, title=None):
    return session.add_node(NodeData.create(node_type, title or node_id, id=node_id))


# =============================================================================
# CONNECTION SCENARIOS
# =============================================================================

def test_metric_metric_chart_scenario(session):
    """
    A(metric), B(metric), C(chart).

    Verifies:
    - A -> B is a relationship with the default kind and weight
    - B -> C is a data-flow edge
    - C -> A is rejected and the reason names both types
    """
    _add(session, NodeType.METRIC, "A")
    _add(session, NodeType.METRIC, "B")
    _add(session, NodeType.CHART, "C")

    ab = session.connect("A", "B")
    assert ab.category == EdgeCategory.RELATIONSHIP.value
    assert ab.relationship_kind == "deterministic"
    assert ab.confidence == "medium"
    assert ab.weight == 1.0
    assert ab.notes == "Connection between A and B"

    bc = session.connect("B", "C")
    assert bc.category == EdgeCategory.DATA_FLOW.value
    assert bc.label == "Metric Data"

    with pytest.raises(ConnectionRuleError) as exc_info:
        session.connect("C", "A")
    reason = str(exc_info.value)
    assert "not allowed" in reason
    assert "chart" in reason and "metric" in reason

    assert session.graph.edge_count == 2


def test_cycle_guard_scenario():
    """S -> M -> Ch exists; Ch -> S closes a cycle, S -> Ch2 does not."""
    existing = [
        EdgeData.data_flow("S", "M", id="e1"),
        EdgeData.data_flow("M", "Ch", id="e2"),
    ]
    assert would_create_cycle("Ch", "S", existing)
    assert not would_create_cycle("S", "Ch2", existing)


def test_cycle_rejected_through_session(session):
    """Operator chains are the data-flow paths the rule table lets loop back."""
    _add(session, NodeType.DATA_SOURCE, "S")
    _add(session, NodeType.OPERATOR, "O1")
    _add(session, NodeType.OPERATOR, "O2")
    _add(session, NodeType.METRIC, "M")
    _add(session, NodeType.CHART, "Ch2")

    session.connect("S", "O1")
    session.connect("O1", "O2")
    session.connect("O2", "M")

    preview = session.check_connection("O2", "O1")
    assert not preview.allowed
    assert "cycle" in preview.reason

    with pytest.raises(CycleViolationError):
        session.connect("O2", "O1")

    edge = session.connect("M", "Ch2")
    assert edge.category == EdgeCategory.DATA_FLOW.value
    assert not session.graph.has_data_flow_cycle()
    assert session.graph.edge_count == 4


def test_connect_events_are_attributed_to_session(session):
    _add(session, NodeType.METRIC, "A")
    _add(session, NodeType.VALUE, "V")
    session.connect("A", "V")

    created = session.changelog.get_by_action("created", "edge")
    assert len(created) == 1
    assert created[0].source == "session"


# =============================================================================
# AUTO LAYOUT
# =============================================================================

class TestAutoLayout(unittest.TestCase):

    def setUp(self):
        self.clock = _Clock()
        self.session = CanvasSession("p", clock=self.clock)
        self.batches = []
        self.session.event_bus.subscribe(EventType.POSITIONS_UPDATED, self.batches.append)

    def test_disabled_by_default(self):
        _add(self.session, NodeType.METRIC, "a")
        self.assertFalse(self.session.scheduler.is_pending)
        self.clock.advance(10)
        self.assertFalse(self.session.poll())

    def test_debounced_after_node_count_changes(self):
        self.session.set_auto_layout(True)

        _add(self.session, NodeType.METRIC, "a")
        self.clock.advance(0.3)
        _add(self.session, NodeType.METRIC, "b")
        self.clock.advance(0.3)
        self.assertFalse(self.session.poll())

        self.clock.advance(0.3)
        self.assertTrue(self.session.poll())

        self.assertEqual(len(self.batches), 1)
        self.assertEqual(self.batches[0].source, "layout")
        self.assertEqual(self.batches[0].payload["project_id"], "p")
        positions = {n.id: n.position for n in self.session.graph.get_all_nodes()}
        self.assertNotEqual(positions["a"], positions["b"])

    def test_edit_does_not_schedule(self):
        self.session.set_auto_layout(True)
        _add(self.session, NodeType.METRIC, "a")
        self.session.scheduler.flush()

        self.session.graph.update_node_fields("a", title="Renamed")
        self.assertFalse(self.session.scheduler.is_pending)

    def test_disabling_cancels_pending_layout(self):
        self.session.set_auto_layout(True)
        _add(self.session, NodeType.METRIC, "a")
        self.assertTrue(self.session.scheduler.is_pending)

        self.session.set_auto_layout(False)
        self.clock.advance(1)
        self.assertFalse(self.session.poll())
        self.assertEqual(self.batches, [])

    def test_removal_schedules(self):
        _add(self.session, NodeType.METRIC, "a")
        _add(self.session, NodeType.METRIC, "b")
        self.session.set_auto_layout(True)

        self.session.remove_node("b")

        self.assertTrue(self.session.scheduler.is_pending)


def test_apply_layout_uses_project_direction(session):
    _add(session, NodeType.METRIC, "a")
    _add(session, NodeType.METRIC, "b")
    session.connect("a", "b")

    session.set_layout_direction("left-to-right")
    moved = session.apply_layout()

    assert set(moved) == {"a", "b"}
    a = session.graph.get_node("a").position
    b = session.graph.get_node("b").position
    assert a.x < b.x
    assert a.y == b.y

    # Same input, same result: nothing moves the second time
    assert session.apply_layout() == []


def test_apply_layout_on_empty_canvas(session):
    assert session.apply_layout() == []


def test_configured_node_size_is_used():
    config = CanvasConfig(layout=LayoutConfig(node_width=100.0, node_height=40.0, rank_sep=10.0))
    canvas = CanvasSession("p", config=config)
    canvas.add_node(NodeData.create(NodeType.METRIC, "a", id="a"))
    canvas.add_node(NodeData.create(NodeType.METRIC, "b", id="b"))
    canvas.connect("a", "b")

    canvas.apply_layout()

    a = canvas.graph.get_node("a").position
    b = canvas.graph.get_node("b").position
    assert b.y - a.y == pytest.approx(50.0)


# =============================================================================
# SETTINGS
# =============================================================================

def test_settings_changes_are_published(session):
    events = []
    session.event_bus.subscribe(EventType.SETTINGS_CHANGED, events.append)

    session.set_layout_direction("rl")
    session.set_auto_layout(True)

    assert [e.payload["layout_direction"] for e in events] == ["RL", "RL"]
    assert [e.payload["auto_layout_enabled"] for e in events] == [False, True]
    assert session.layout_direction.value == "RL"


def test_invalid_direction_leaves_settings_alone(session):
    with pytest.raises(ValueError):
        session.set_layout_direction("sideways")
    assert session.settings.layout_direction == "TB"


def test_unknown_stored_direction_falls_back(caplog):
    """
    A persisted layout direction nobody recognises.

    Verifies:
    - The session starts with the configured direction instead
    - apply_layout and the debounced auto-layout both run
    """
    snapshot = ProjectSnapshot(
        project_id="p",
        nodes=[
            NodeData.create(NodeType.METRIC, "a", id="a"),
            NodeData.create(NodeType.METRIC, "b", id="b"),
        ],
        settings=CanvasSettings(layout_direction="diagonal", auto_layout_enabled=True),
    )

    with caplog.at_level("WARNING", logger="core.session"):
        session = CanvasSession.from_snapshot(snapshot)

    assert session.settings.layout_direction == "TB"
    assert session.layout_direction.value == "TB"
    assert "diagonal" in caplog.text

    assert session.apply_layout()
    positions = {n.id: n.position for n in session.graph.get_all_nodes()}
    assert positions["a"] != positions["b"]

    session.add_node(NodeData.create(NodeType.METRIC, "c", id="c"))
    assert session.scheduler.flush() is True


def test_unknown_direction_set_after_load_still_lays_out(session):
    _add(session, NodeType.METRIC, "a")
    _add(session, NodeType.METRIC, "b")
    session.settings.layout_direction = "diagonal"

    assert session.layout_direction.value == "TB"
    assert session.apply_layout()
    assert session.graph.get_node("a").position != session.graph.get_node("b").position


def test_explicit_unknown_direction_is_rejected(session):
    _add(session, NodeType.METRIC, "a")
    with pytest.raises(ValueError):
        session.apply_layout("diagonal")


# =============================================================================
# BULK THROUGH THE SESSION
# =============================================================================

def test_bulk_delete_with_one_bad_id(session):
    """N valid ids plus one unknown: processed == N, success False."""
    for node_id in ("a", "b", "c"):
        _add(session, NodeType.METRIC, node_id)
    session.selection.select_nodes(["a", "b", "ghost"])

    result = session.bulk.bulk_delete()

    assert result.processed == 2
    assert not result.success
    assert len(result.errors) >= 1
    assert not session.graph.has_node("a")
    assert not session.graph.has_node("b")
    assert session.graph.has_node("c")
    assert session.selection.is_empty


def test_remove_node_drops_it_from_selection(session):
    _add(session, NodeType.METRIC, "a")
    _add(session, NodeType.METRIC, "b")
    session.selection.select_nodes(["a", "b"])

    session.remove_node("a")

    assert session.selection.node_ids == ["b"]


def test_add_tags_twice_is_idempotent(session):
    _add(session, NodeType.METRIC, "a")
    session.selection.select_nodes(["a"])

    session.bulk.bulk_add_tags(["x"])
    first = list(session.graph.get_node("a").tags)
    session.bulk.bulk_add_tags(["x"])

    assert session.graph.get_node("a").tags == first == ["x"]


# =============================================================================
# SNAPSHOTS
# =============================================================================

def test_snapshot_round_trip(session):
    _add(session, NodeType.METRIC, "a")
    _add(session, NodeType.CHART, "c")
    session.connect("a", "c")
    session.graph.group_nodes(["a", "c"], name="Pair")
    session.set_layout_direction("BT")

    data = serialize_snapshot(session.export_snapshot())
    restored = CanvasSession.from_snapshot(deserialize_snapshot(data))

    assert restored.project_id == "project-1"
    assert restored.graph.node_count == 2
    assert restored.graph.edge_count == 1
    assert [g.name for g in restored.graph.get_all_groups()] == ["Pair"]
    assert restored.settings.layout_direction == "BT"
    # Loading is silent: nothing lands in the changelog
    assert len(restored.changelog) == 0


def test_malformed_snapshot_items_are_skipped():
    snapshot = ProjectSnapshot(
        project_id="p",
        nodes=[
            NodeData.create(NodeType.OPERATOR, "o1", id="o1"),
            NodeData.create(NodeType.OPERATOR, "o2", id="o2"),
        ],
        edges=[
            EdgeData.data_flow("o1", "o2", id="ok"),
            EdgeData.data_flow("o2", "o1", id="loop"),
            EdgeData.data_flow("o1", "ghost", id="dangling"),
        ],
        settings=CanvasSettings(auto_layout_enabled=True),
    )

    session = CanvasSession("p")
    skipped = session.load_snapshot(snapshot)

    assert [e.id for e in session.graph.get_all_edges()] == ["ok"]
    assert len(skipped) == 2
    assert session.settings.auto_layout_enabled


def test_snapshot_with_id_less_items_still_lays_out():
    snapshot = ProjectSnapshot(
        project_id="p",
        nodes=[
            NodeData.create(NodeType.METRIC, "a", id="a"),
            NodeData.create(NodeType.METRIC, "b", id="b"),
            NodeData(id="", type="metric"),
        ],
        edges=[EdgeData(id="", source_id="a", target_id="b", category="relationship")],
    )
    session = CanvasSession("p")

    skipped = session.load_snapshot(snapshot)

    assert len(skipped) == 2
    assert session.graph.node_count == 2
    assert session.graph.edge_count == 0
    assert set(session.apply_layout()) <= {"a", "b"}
    assert session.graph.get_node("a").position != session.graph.get_node("b").position


def test_snapshot_rejects_non_finite_positions():
    bad = b'{"project_id": "p", "nodes": [{"id": "a", "type": "metric", "position": {"x": 1e999, "y": 0}}]}'
    with pytest.raises(msgspec.DecodeError):
        deserialize_snapshot(bad)


def test_repr(session):
    _add(session, NodeType.METRIC, "a")
    assert repr(session) == "CanvasSession(project_id='project-1', nodes=1, edges=0)"

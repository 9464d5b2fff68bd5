"""
Pytest configuration and shared fixtures for the Metrimap test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def fresh_graph():
    """Provide an empty CanvasGraph wired to its own EventBus."""
    from core.graph_db import CanvasGraph
    from infrastructure.event_bus import EventBus
    return CanvasGraph(event_bus=EventBus())


@pytest.fixture
def sample_graph(fresh_graph):
    """
    Provide a graph with a small mixed canvas:

        revenue(metric) -> churn(metric)        relationship
        source(data-source) -> revenue          data-flow
        revenue -> chart(chart)                 data-flow
        note(comment) -> revenue                reference
    """
    from core.schemas import NodeData
    from core.ontology import NodeType

    nodes = {
        "revenue": NodeData.create(
            NodeType.METRIC, "Revenue", id="revenue",
            category="Data/Metric", tags=["finance", "kpi"], owner="ana",
        ),
        "churn": NodeData.create(
            NodeType.METRIC, "Churn", id="churn",
            category="Data/Metric", tags=["retention"], owner="ben",
        ),
        "source": NodeData.create(NodeType.DATA_SOURCE, "Billing DB", id="source"),
        "chart": NodeData.create(NodeType.CHART, "Revenue chart", id="chart"),
        "note": NodeData.create(NodeType.COMMENT, "Check Q3 numbers", id="note"),
    }
    for node in nodes.values():
        fresh_graph.add_node(node)

    edges = {
        "rel": fresh_graph.connect("revenue", "churn", id="rel"),
        "feed": fresh_graph.connect("source", "revenue", id="feed"),
        "viz": fresh_graph.connect("revenue", "chart", id="viz"),
        "ref": fresh_graph.connect("note", "revenue", id="ref"),
    }
    return fresh_graph, nodes, edges


@pytest.fixture
def session(manual_clock):
    """Provide an empty CanvasSession driven by a manual clock."""
    from core.session import CanvasSession
    return CanvasSession("project-1", clock=manual_clock)


class ManualClock:
    """Deterministic stand-in for time.monotonic."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def manual_clock():
    return ManualClock()

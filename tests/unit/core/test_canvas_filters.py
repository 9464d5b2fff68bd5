"""
Unit tests for core/filters.py

Tests node and edge predicates, the combined FilterState, and the
helpers the filter panel uses.
"""
import pytest

from core.filters import (
    DateRange,
    FilterOptions,
    apply_filters,
    filter_nodes,
    filter_edges,
    get_available_filter_options,
    get_filter_summary,
    matches_tags,
)
from core.schemas import NodeData, EdgeData
from core.ontology import NodeType


@pytest.fixture
def cards():
    nodes = [
        NodeData.create(
            NodeType.METRIC, "Monthly Revenue", id="rev",
            description="Recurring revenue", category="Data/Metric",
            tags=["Finance", "kpi"], owner="ana",
            created_at="2024-03-01T10:00:00+00:00",
        ),
        NodeData.create(
            NodeType.VALUE, "Customer happiness", id="happy",
            category="Core/Value", tags=["nps"], owner="ben",
            created_at="2024-03-15T23:30:00+00:00",
        ),
        NodeData.create(
            NodeType.ACTION, "Launch referral program", id="ref",
            category="Work/Action", created_at="2024-04-02T08:00:00+00:00",
        ),
    ]
    edges = [
        EdgeData.relationship("ref", "rev", id="e1", relationship_kind="causal",
                              confidence="high", created_at="2024-03-20T00:00:00+00:00"),
        EdgeData.relationship("happy", "rev", id="e2", confidence="low",
                              created_at="2024-04-05T00:00:00+00:00"),
        EdgeData.data_flow("rev", "chart", id="e3", label="Metric Data",
                           created_at="2024-03-02T00:00:00+00:00"),
    ]
    return nodes, edges


def _ids(items):
    return [i.id for i in items]


# =============================================================================
# NODE FILTERS
# =============================================================================

def test_no_options_keeps_everything(cards):
    nodes, edges = cards
    options = FilterOptions()
    assert not options.is_active
    assert _ids(filter_nodes(nodes, options)) == ["rev", "happy", "ref"]
    assert _ids(filter_edges(edges, options)) == ["e1", "e2", "e3"]


def test_category_and_owner(cards):
    nodes, _ = cards
    assert _ids(filter_nodes(nodes, FilterOptions(categories=["Core/Value", "Work/Action"]))) == ["happy", "ref"]
    assert _ids(filter_nodes(nodes, FilterOptions(owners=["ana"]))) == ["rev"]


def test_tags_match_case_insensitive_substring(cards):
    """
    Validate tag matching against the node's joined tags.

    Verifies:
    - Case is ignored
    - A substring of a tag matches
    - Nodes without tags never match a tag filter
    """
    nodes, _ = cards
    assert _ids(filter_nodes(nodes, FilterOptions(tags=["finance"]))) == ["rev"]
    assert _ids(filter_nodes(nodes, FilterOptions(tags=["np"]))) == ["happy"]
    assert not matches_tags(nodes[2], ["anything"])


def test_search_term_covers_title_description_and_tags(cards):
    nodes, _ = cards
    assert _ids(filter_nodes(nodes, FilterOptions(search_term="REVENUE"))) == ["rev"]
    assert _ids(filter_nodes(nodes, FilterOptions(search_term="recurring"))) == ["rev"]
    assert _ids(filter_nodes(nodes, FilterOptions(search_term="nps"))) == ["happy"]


def test_date_range_is_inclusive(cards):
    """A date-only end covers that whole day."""
    nodes, _ = cards
    options = FilterOptions(date_range=DateRange(start="2024-03-01", end="2024-03-15"))
    assert _ids(filter_nodes(nodes, options)) == ["rev", "happy"]


def test_unparseable_dates_never_match(cards):
    nodes, _ = cards
    options = FilterOptions(date_range=DateRange(start="not-a-date", end="2024-12-31"))
    assert filter_nodes(nodes, options) == []


# =============================================================================
# EDGE FILTERS
# =============================================================================

def test_edge_confidence_and_kind(cards):
    _, edges = cards
    assert _ids(filter_edges(edges, FilterOptions(confidence=["high", "low"]))) == ["e1", "e2"]
    assert _ids(filter_edges(edges, FilterOptions(relationship_kinds=["deterministic"]))) == ["e2"]


def test_edge_search_uses_kind_and_label(cards):
    _, edges = cards
    assert _ids(filter_edges(edges, FilterOptions(search_term="causal"))) == ["e1"]
    assert _ids(filter_edges(edges, FilterOptions(search_term="metric data"))) == ["e3"]


def test_apply_filters(cards):
    nodes, edges = cards
    options = FilterOptions(owners=["ben"], confidence=["low"])

    state = apply_filters(nodes, edges, options)

    assert state.is_active
    assert state.visible_node_ids == {"happy"}
    assert state.visible_edge_ids == {"e2"}


# =============================================================================
# PANEL HELPERS
# =============================================================================

def test_available_options(cards):
    nodes, edges = cards
    available = get_available_filter_options(nodes, edges)

    assert available["categories"] == ["Data/Metric", "Core/Value", "Work/Action"]
    assert available["tags"] == ["Finance", "kpi", "nps"]
    assert available["owners"] == ["ana", "ben"]
    assert available["confidence"] == ["high", "low"]
    assert available["relationship_kinds"] == ["causal", "deterministic"]


def test_filter_summary():
    assert get_filter_summary(FilterOptions()) == "No filters"
    summary = get_filter_summary(FilterOptions(categories=["a", "b"], search_term="churn"))
    assert summary == '2 categories, search: "churn"'

"""
Unit tests for core/rules.py and the rule table in core/ontology.py

Tests the Connection Rule Engine:
- First-match-wins evaluation and determinism
- Rejection reasons naming both types
- Target/source affordance queries
- Edge label inference
"""
import itertools

import pytest

from core.ontology import (
    CONNECTION_RULES,
    NodeType,
    EdgeCategory,
    ConnectionRule,
    _validate_rules,
)
from core.rules import (
    evaluate_connection,
    find_rule,
    is_connection_allowed,
    get_valid_targets_for_source,
    get_valid_sources_for_target,
    infer_edge_label,
    relationship_note,
    describe_rules,
)


ALL_TYPES = [t.value for t in NodeType]


# =============================================================================
# RULE TABLE
# =============================================================================

def test_rule_table_is_self_consistent():
    """
    Validate that the bundled rule table passes its own load-time check.

    Verifies:
    - No unknown node types, categories or kinds in CONNECTION_RULES
    """
    assert _validate_rules() == []
    assert len(CONNECTION_RULES) == 9


def test_validate_rules_reports_unknown_types():
    """A rule naming a type outside the vocabulary is reported."""
    bad = (
        ConnectionRule(
            source_types=("widget",),
            target_types=("metric",),
            edge_category="relationship",
        ),
    )
    errors = _validate_rules(bad)
    assert any("widget" in e for e in errors)


# =============================================================================
# EVALUATION
# =============================================================================

@pytest.mark.parametrize("source,target,category", [
    ("metric", "metric", "relationship"),
    ("metric", "value", "relationship"),
    ("value", "metric", "relationship"),
    ("action", "action", "relationship"),
    ("hypothesis", "hypothesis", "relationship"),
    ("data-source", "metric", "data-flow"),
    ("data-source", "operator", "data-flow"),
    ("operator", "chart", "data-flow"),
    ("operator", "operator", "data-flow"),
    ("metric", "chart", "data-flow"),
    ("metric", "operator", "data-flow"),
    ("evidence", "metric", "reference"),
    ("metadata", "chart", "reference"),
    ("comment", "hypothesis", "reference"),
])
def test_covered_pairs_get_their_category(source, target, category):
    """Every pair in the table maps to exactly the category of its first rule."""
    decision = evaluate_connection(source, target)
    assert decision.allowed
    assert decision.edge_category == category
    assert decision.reason is None


@pytest.mark.parametrize("source,target", [
    ("chart", "metric"),
    ("metric", "data-source"),
    ("value", "action"),
    ("metric", "evidence"),
    ("group", "metric"),
    ("metric", "group"),
    ("comment", "comment"),
])
def test_uncovered_pairs_are_rejected_with_both_types(source, target):
    """
    Validate that pairs outside the table are rejected.

    Verifies:
    - allowed is False, no category
    - The reason says "not allowed" and names both types
    """
    decision = evaluate_connection(source, target)
    assert not decision.allowed
    assert decision.edge_category is None
    assert "not allowed" in decision.reason
    assert source in decision.reason
    assert target in decision.reason


def test_evaluation_is_deterministic_over_all_pairs():
    """Same inputs always give the same decision, for every pair of types."""
    for source, target in itertools.product(ALL_TYPES, repeat=2):
        first = evaluate_connection(source, target)
        second = evaluate_connection(source, target)
        assert first == second


def test_allowed_iff_some_rule_matches():
    for source, target in itertools.product(ALL_TYPES, repeat=2):
        covered = any(r.matches(source, target) for r in CONNECTION_RULES)
        assert evaluate_connection(source, target).allowed == covered
        assert is_connection_allowed(source, target) == covered


def test_first_match_wins():
    """
    Validate that earlier rules shadow later ones.

    Verifies:
    - metric -> metric resolves to the first (relationship) rule object
    - A custom table with overlapping rules picks the first
    """
    assert find_rule("metric", "metric") is CONNECTION_RULES[0]

    overlapping = (
        ConnectionRule(source_types=("metric",), target_types=("chart",), edge_category="reference"),
        ConnectionRule(source_types=("metric",), target_types=("chart",), edge_category="data-flow"),
    )
    decision = evaluate_connection("metric", "chart", rules=overlapping)
    assert decision.edge_category == "reference"


def test_enum_members_and_strings_are_equivalent():
    assert evaluate_connection(NodeType.METRIC, NodeType.CHART) == evaluate_connection("metric", "chart")


# =============================================================================
# AFFORDANCE QUERIES
# =============================================================================

def test_valid_targets_for_metric():
    """Union across the relationship and data-flow rules, without duplicates."""
    targets = get_valid_targets_for_source("metric")
    assert targets == ["metric", "value", "chart", "operator"]


def test_valid_targets_for_chart_is_empty():
    assert get_valid_targets_for_source(NodeType.CHART) == []


def test_valid_sources_for_chart():
    sources = get_valid_sources_for_target("chart")
    assert set(sources) == {"operator", "metric", "evidence", "metadata", "comment"}
    assert len(sources) == len(set(sources))


def test_queries_agree_with_evaluation():
    """t in targets(s) exactly when s in sources(t) exactly when s -> t is allowed."""
    for source, target in itertools.product(ALL_TYPES, repeat=2):
        allowed = is_connection_allowed(source, target)
        assert (target in get_valid_targets_for_source(source)) == allowed
        assert (source in get_valid_sources_for_target(target)) == allowed


# =============================================================================
# LABELS
# =============================================================================

@pytest.mark.parametrize("source,target,label", [
    ("data-source", "metric", "Data Feed"),
    ("data-source", "operator", "Raw Data"),
    ("operator", "metric", "Processed Data"),
    ("operator", "chart", "Visualization Data"),
    ("metric", "chart", "Metric Data"),
    ("metric", "operator", "Data Flow"),
    ("operator", "operator", "Data Flow"),
])
def test_data_flow_labels(source, target, label):
    assert infer_edge_label(EdgeCategory.DATA_FLOW, source, target) == label


@pytest.mark.parametrize("source,label", [
    ("evidence", "Evidence"),
    ("metadata", "Metadata"),
    ("comment", "Comment"),
])
def test_reference_labels(source, label):
    assert infer_edge_label("reference", source, "metric") == label


def test_relationship_edges_have_no_inferred_label():
    assert infer_edge_label("relationship", "metric", "metric") is None


def test_relationship_note():
    assert relationship_note("Revenue", "Churn") == "Connection between Revenue and Churn"


def test_describe_rules_lists_every_rule():
    rows = describe_rules()
    assert [r["index"] for r in rows] == list(range(len(CONNECTION_RULES)))
    assert rows[3]["edge_category"] == "data-flow"
    assert rows[3]["sources"] == ["data-source"]

"""
METRIMAP CONNECTION RULES - The Gatekeeper

Given two node type tags, decide whether a connection is legal and which
edge category it produces.

The engine is a pure function over the immutable CONNECTION_RULES table
in ontology.py:
- First rule whose source set AND target set contain the types wins
- No match means the connection is rejected with a reason naming both types
- No hidden state: same inputs, same output

Also answers the affordance queries the canvas uses while dragging
("which targets can this source reach?") and infers the descriptive
label carried by data-flow and reference edges.
"""
from typing import Optional, List, Tuple

import msgspec

from core.ontology import (
    EdgeCategory,
    ConnectionRule,
    CONNECTION_RULES,
    DATA_FLOW_LABELS,
    DEFAULT_DATA_FLOW_LABEL,
    REFERENCE_LABELS,
    DEFAULT_REFERENCE_LABEL,
    type_value,
)


# =============================================================================
# DECISION RECORD
# =============================================================================

class ConnectionDecision(msgspec.Struct, kw_only=True, frozen=True):
    """Outcome of evaluating one (source type, target type) pair."""
    allowed: bool
    edge_category: Optional[str] = None
    relationship_kind: Optional[str] = None
    reason: Optional[str] = None
    rule: Optional[ConnectionRule] = None


# =============================================================================
# RULE ENGINE
# =============================================================================

def find_rule(
    source_type,
    target_type,
    rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES,
) -> Optional[ConnectionRule]:
    """Return the first rule matching the pair, or None."""
    source = type_value(source_type)
    target = type_value(target_type)
    for rule in rules:
        if rule.matches(source, target):
            return rule
    return None


def evaluate_connection(
    source_type,
    target_type,
    rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES,
) -> ConnectionDecision:
    """
    Decide whether source_type -> target_type is a legal connection.

    Args:
        source_type: NodeType or its string value
        target_type: NodeType or its string value
        rules: Ordered rule table (defaults to CONNECTION_RULES)

    Returns:
        ConnectionDecision with allowed=True and the edge category,
        or allowed=False and a reason naming both types.
    """
    source = type_value(source_type)
    target = type_value(target_type)

    rule = find_rule(source, target, rules)
    if rule is None:
        return ConnectionDecision(
            allowed=False,
            reason=f"Connection from {source} to {target} is not allowed",
        )

    return ConnectionDecision(
        allowed=True,
        edge_category=rule.edge_category,
        relationship_kind=rule.relationship_kind,
        rule=rule,
    )


def is_connection_allowed(source_type, target_type) -> bool:
    return find_rule(source_type, target_type) is not None


def get_valid_targets_for_source(
    source_type,
    rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES,
) -> List[str]:
    """
    Union of all target types reachable from source_type by any rule.

    Order follows the rule table (first appearance), without duplicates.
    """
    source = type_value(source_type)
    targets: List[str] = []
    for rule in rules:
        if source in rule.source_types:
            for t in rule.target_types:
                if t not in targets:
                    targets.append(t)
    return targets


def get_valid_sources_for_target(
    target_type,
    rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES,
) -> List[str]:
    """Union of all source types that may connect into target_type."""
    target = type_value(target_type)
    sources: List[str] = []
    for rule in rules:
        if target in rule.target_types:
            for s in rule.source_types:
                if s not in sources:
                    sources.append(s)
    return sources


# =============================================================================
# EDGE LABELS
# =============================================================================

def infer_edge_label(edge_category, source_type, target_type) -> Optional[str]:
    """
    Descriptive label for a new edge.

    Data-flow edges are labelled by the (source, target) pair, reference
    edges by their annotation source. Relationship edges carry no label.
    """
    category = type_value(edge_category)
    source = type_value(source_type)
    target = type_value(target_type)

    if category == EdgeCategory.DATA_FLOW.value:
        return DATA_FLOW_LABELS.get((source, target), DEFAULT_DATA_FLOW_LABEL)
    if category == EdgeCategory.REFERENCE.value:
        return REFERENCE_LABELS.get(source, DEFAULT_REFERENCE_LABEL)
    return None


def relationship_note(source_title: str, target_title: str) -> str:
    return f"Connection between {source_title} and {target_title}"


def describe_rules(rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES) -> List[dict]:
    """Rule table as plain dicts (for the CLI and tabular views)."""
    return [
        {
            "index": i,
            "sources": list(rule.source_types),
            "targets": list(rule.target_types),
            "edge_category": rule.edge_category,
            "description": rule.description,
        }
        for i, rule in enumerate(rules)
    ]

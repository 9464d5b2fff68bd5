"""
METRIMAP ONTOLOGY - The Dictionary of the Canvas

If schemas.py is the Grammar (how we structure records),
ontology.py is the Dictionary (the words we can use).

This module defines:
- Enums: The vocabulary (NodeType, EdgeCategory, RelationshipKind, ...)
- ConnectionRule: Which node types may connect, and what edge results
- CONNECTION_RULES: The ordered rule table (first match wins)
- Edge labels inferred from the (source type, target type) pair

Key Principle: the rule table is DATA, not a class hierarchy.
Evaluating a connection is a linear scan over immutable records,
so the engine in rules.py stays a pure function.
"""
from typing import Dict, List, Tuple, Optional
from enum import Enum
import warnings

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Types of cards that can live on the canvas."""
    # Business nodes
    METRIC = "metric"                # Data/Metric card
    VALUE = "value"                  # Core business value
    ACTION = "action"                # Task or initiative
    HYPOTHESIS = "hypothesis"        # Idea under test
    # Annotation nodes
    EVIDENCE = "evidence"            # Report or documentation
    METADATA = "metadata"            # Context and enrichment
    COMMENT = "comment"              # Discussion
    # Data pipeline nodes
    DATA_SOURCE = "data-source"      # Raw data input
    CHART = "chart"                  # Visualization
    OPERATOR = "operator"            # Data transformation
    # Container
    GROUP = "group"                  # Visual grouping only


class EdgeCategory(str, Enum):
    """The three kinds of edges. Fixed at creation time."""
    RELATIONSHIP = "relationship"    # Business-logic dependency
    DATA_FLOW = "data-flow"          # Data pipeline hop (must stay acyclic)
    REFERENCE = "reference"          # Lightweight annotation


class RelationshipKind(str, Enum):
    """How one business node drives another."""
    DETERMINISTIC = "deterministic"
    PROBABILISTIC = "probabilistic"
    CAUSAL = "causal"
    COMPOSITIONAL = "compositional"


class ConfidenceLevel(str, Enum):
    """Confidence attached to a relationship edge."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CardCategory(str, Enum):
    """Card categories a node can be filed under."""
    CORE_VALUE = "Core/Value"
    DATA_METRIC = "Data/Metric"
    WORK_ACTION = "Work/Action"
    IDEAS_HYPOTHESIS = "Ideas/Hypothesis"
    METADATA = "Metadata"


# Relationship edges always start from these values; the user edits them later.
DEFAULT_RELATIONSHIP_KIND = RelationshipKind.DETERMINISTIC.value
DEFAULT_CONFIDENCE = ConfidenceLevel.MEDIUM.value
DEFAULT_WEIGHT = 1.0


def type_value(tag) -> str:
    """Normalize an enum member or raw string to its string value."""
    if isinstance(tag, Enum):
        return tag.value
    return str(tag)


# =============================================================================
# CONNECTION RULES (The Physics of Connections)
# =============================================================================

class ConnectionRule(msgspec.Struct, kw_only=True, frozen=True):
    """
    One row of the connection table.

    A connection source -> target matches this rule when source is in
    source_types AND target is in target_types. The rule then fixes the
    edge category (and, optionally, a relationship kind).
    """
    source_types: Tuple[str, ...]
    target_types: Tuple[str, ...]
    edge_category: str                       # EdgeCategory.value
    relationship_kind: Optional[str] = None  # Fixed kind, None = default-then-edit
    description: str = ""

    def matches(self, source_type: str, target_type: str) -> bool:
        return source_type in self.source_types and target_type in self.target_types


_BUSINESS = (
    NodeType.METRIC.value,
    NodeType.VALUE.value,
)

# Every node an annotation may point at
_ANNOTATABLE = (
    NodeType.METRIC.value,
    NodeType.VALUE.value,
    NodeType.ACTION.value,
    NodeType.HYPOTHESIS.value,
    NodeType.DATA_SOURCE.value,
    NodeType.CHART.value,
    NodeType.OPERATOR.value,
)


# Ordered: the first rule whose source and target sets match wins.
CONNECTION_RULES: Tuple[ConnectionRule, ...] = (

    # =========================================================================
    # RELATIONSHIP EDGES - business logic between core nodes
    # =========================================================================
    ConnectionRule(
        source_types=_BUSINESS,
        target_types=_BUSINESS,
        edge_category=EdgeCategory.RELATIONSHIP.value,
        description="Business logic relationships between core nodes",
    ),
    ConnectionRule(
        source_types=(NodeType.ACTION.value,),
        target_types=_BUSINESS + (NodeType.ACTION.value,),
        edge_category=EdgeCategory.RELATIONSHIP.value,
        description="Action relationships with metrics and values",
    ),
    ConnectionRule(
        source_types=(NodeType.HYPOTHESIS.value,),
        target_types=_BUSINESS + (NodeType.ACTION.value, NodeType.HYPOTHESIS.value),
        edge_category=EdgeCategory.RELATIONSHIP.value,
        description="Hypothesis relationships with business nodes",
    ),

    # =========================================================================
    # DATA FLOW EDGES - data pipeline hops
    # =========================================================================
    ConnectionRule(
        source_types=(NodeType.DATA_SOURCE.value,),
        target_types=(NodeType.METRIC.value, NodeType.OPERATOR.value),
        edge_category=EdgeCategory.DATA_FLOW.value,
        description="Data source to metric or data operator",
    ),
    ConnectionRule(
        source_types=(NodeType.OPERATOR.value,),
        target_types=(NodeType.METRIC.value, NodeType.CHART.value, NodeType.OPERATOR.value),
        edge_category=EdgeCategory.DATA_FLOW.value,
        description="Data operator to metric, chart, or another operator",
    ),
    ConnectionRule(
        source_types=(NodeType.METRIC.value,),
        target_types=(NodeType.CHART.value, NodeType.OPERATOR.value),
        edge_category=EdgeCategory.DATA_FLOW.value,
        description="Metric to visualization or data operator",
    ),

    # =========================================================================
    # REFERENCE EDGES - annotations pointing at primary nodes
    # =========================================================================
    ConnectionRule(
        source_types=(NodeType.EVIDENCE.value,),
        target_types=_ANNOTATABLE,
        edge_category=EdgeCategory.REFERENCE.value,
        description="Evidence supporting any node",
    ),
    ConnectionRule(
        source_types=(NodeType.METADATA.value,),
        target_types=_ANNOTATABLE,
        edge_category=EdgeCategory.REFERENCE.value,
        description="Metadata enriching any node",
    ),
    ConnectionRule(
        source_types=(NodeType.COMMENT.value,),
        target_types=_ANNOTATABLE,
        edge_category=EdgeCategory.REFERENCE.value,
        description="Comments on any node",
    ),
)


# =============================================================================
# EDGE LABELS
# =============================================================================

DATA_FLOW_LABELS: Dict[Tuple[str, str], str] = {
    (NodeType.DATA_SOURCE.value, NodeType.METRIC.value): "Data Feed",
    (NodeType.DATA_SOURCE.value, NodeType.OPERATOR.value): "Raw Data",
    (NodeType.OPERATOR.value, NodeType.METRIC.value): "Processed Data",
    (NodeType.OPERATOR.value, NodeType.CHART.value): "Visualization Data",
    (NodeType.METRIC.value, NodeType.CHART.value): "Metric Data",
}
DEFAULT_DATA_FLOW_LABEL = "Data Flow"

REFERENCE_LABELS: Dict[str, str] = {
    NodeType.EVIDENCE.value: "Evidence",
    NodeType.METADATA.value: "Metadata",
    NodeType.COMMENT.value: "Comment",
}
DEFAULT_REFERENCE_LABEL = "Reference"


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def is_node_type(tag: str) -> bool:
    """Check if a string is a valid NodeType value."""
    return tag in {nt.value for nt in NodeType}


def is_card_category(value: str) -> bool:
    return value in {c.value for c in CardCategory}


def is_relationship_kind(value: str) -> bool:
    return value in {k.value for k in RelationshipKind}


def is_confidence_level(value: str) -> bool:
    return value in {c.value for c in ConfidenceLevel}


# =============================================================================
# MODULE INITIALIZATION
# =============================================================================

def _validate_rules(rules: Tuple[ConnectionRule, ...] = CONNECTION_RULES) -> List[str]:
    """Validate that every rule references known types and categories."""
    errors = []

    valid_node_types = {nt.value for nt in NodeType}
    valid_categories = {ec.value for ec in EdgeCategory}
    valid_kinds = {rk.value for rk in RelationshipKind}

    for i, rule in enumerate(rules):
        for t in rule.source_types:
            if t not in valid_node_types:
                errors.append(f"Invalid source type in rule {i}: {t}")
        for t in rule.target_types:
            if t not in valid_node_types:
                errors.append(f"Invalid target type in rule {i}: {t}")
        if rule.edge_category not in valid_categories:
            errors.append(f"Invalid edge category in rule {i}: {rule.edge_category}")
        if rule.relationship_kind is not None:
            if rule.edge_category != EdgeCategory.RELATIONSHIP.value:
                errors.append(f"Rule {i} fixes a relationship kind on a non-relationship edge")
            elif rule.relationship_kind not in valid_kinds:
                errors.append(f"Invalid relationship kind in rule {i}: {rule.relationship_kind}")

    return errors


# Run validation on module load
_validation_errors = _validate_rules()
if _validation_errors:
    for err in _validation_errors:
        warnings.warn(f"Ontology validation: {err}")

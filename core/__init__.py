"""
METRIMAP CORE - Central exports for the canvas graph.

This module provides access to:
- Vocabulary and the connection rule table (ontology, rules)
- Data records (NodeData, EdgeData, GroupData, ProjectSnapshot)
- The Graph Model (CanvasGraph) and its exceptions
- The Bulk Operation Coordinator and Selection

CanvasSession lives in core.session (it pulls in the layout engine).
"""

from core.ontology import (
    NodeType,
    EdgeCategory,
    RelationshipKind,
    ConfidenceLevel,
    CardCategory,
    CONNECTION_RULES,
)
from core.schemas import (
    Position,
    Size,
    NodeData,
    EdgeData,
    GroupData,
    CanvasSettings,
    ProjectSnapshot,
)
from core.rules import (
    ConnectionDecision,
    evaluate_connection,
    is_connection_allowed,
    get_valid_targets_for_source,
    get_valid_sources_for_target,
)
from core.graph_invariants import would_create_cycle
from core.graph_db import (
    CanvasGraph,
    GraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
    GroupNotFoundError,
    DuplicateNodeError,
    DuplicateEdgeError,
    InvalidIdError,
    GraphInvariantError,
    CycleViolationError,
    ConnectionRuleError,
)
from core.bulk import (
    BulkOperationCoordinator,
    BulkUpdateData,
    OperationResult,
    Selection,
    TargetKind,
)

__all__ = [
    # Vocabulary
    "NodeType",
    "EdgeCategory",
    "RelationshipKind",
    "ConfidenceLevel",
    "CardCategory",
    "CONNECTION_RULES",
    # Records
    "Position",
    "Size",
    "NodeData",
    "EdgeData",
    "GroupData",
    "CanvasSettings",
    "ProjectSnapshot",
    # Rules / Cycle Guard
    "ConnectionDecision",
    "evaluate_connection",
    "is_connection_allowed",
    "get_valid_targets_for_source",
    "get_valid_sources_for_target",
    "would_create_cycle",
    # Graph Model
    "CanvasGraph",
    "GraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "GroupNotFoundError",
    "DuplicateNodeError",
    "DuplicateEdgeError",
    "InvalidIdError",
    "GraphInvariantError",
    "CycleViolationError",
    "ConnectionRuleError",
    # Bulk
    "BulkOperationCoordinator",
    "BulkUpdateData",
    "OperationResult",
    "Selection",
    "TargetKind",
]

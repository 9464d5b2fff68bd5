"""
METRIMAP GRAPH INVARIANTS - The Mathematical Superego

This module enforces the physics of the canvas graph.

Invariants Implemented:
1. Data-Flow Acyclicity: data-flow edges, taken together, form a DAG
2. Referential Integrity: every edge endpoint references an existing node
3. Category Consistency: an edge's category is what the rule table gives
   for its endpoint types
4. Finite Geometry: every node position is two finite numbers

The Cycle Guard (would_create_cycle) is the pre-insert check run when a
new data-flow edge is requested. It never mutates anything.

Design Philosophy:
- These are MATHEMATICAL constraints, not presentation rules
- Checks are O(V+E)
- Relationship and reference edges may form cycles; only data flow may not
"""
import math
import rustworkx as rx
from typing import List, Set, Tuple, Dict, Any, Optional, Iterable
from dataclasses import dataclass, field
from enum import Enum

from core.ontology import EdgeCategory
from core.schemas import NodeData, EdgeData
from core.rules import evaluate_connection


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # Graph is corrupt
    WARNING = "warning"  # Should be investigated
    INFO = "info"


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str
    severity: InvariantSeverity
    message: str
    nodes_involved: List[str] = field(default_factory=list)
    edges_involved: List[str] = field(default_factory=list)


@dataclass
class InvariantReport:
    """Complete invariant validation report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]


# =============================================================================
# CYCLE GUARD
# =============================================================================

def _edge_endpoints(edge) -> Tuple[str, str]:
    if isinstance(edge, tuple):
        return edge[0], edge[1]
    return edge.source_id, edge.target_id


def would_create_cycle(
    source_id: str,
    target_id: str,
    existing_edges: Iterable,
) -> bool:
    """
    Check whether adding source_id -> target_id closes a directed cycle.

    Depth-first traversal from source_id over existing_edges plus the
    candidate edge, keeping an on-path set and a done set. Returns True
    as soon as a node on the current path is reached again.

    Args:
        source_id: Candidate edge source
        target_id: Candidate edge target
        existing_edges: Existing data-flow edges, as EdgeData or
            (source_id, target_id) tuples

    Returns:
        True if the candidate edge would create a cycle
    """
    if source_id == target_id:
        return True

    adjacency: Dict[str, List[str]] = {}
    for edge in existing_edges:
        src, tgt = _edge_endpoints(edge)
        adjacency.setdefault(src, []).append(tgt)
    adjacency.setdefault(source_id, []).append(target_id)

    on_path: Set[str] = {source_id}
    done: Set[str] = set()
    stack = [(source_id, iter(adjacency.get(source_id, ())))]

    while stack:
        node, successors = stack[-1]
        advanced = False
        for succ in successors:
            if succ in on_path:
                return True
            if succ in done:
                continue
            on_path.add(succ)
            stack.append((succ, iter(adjacency.get(succ, ()))))
            advanced = True
            break
        if not advanced:
            stack.pop()
            on_path.discard(node)
            done.add(node)

    return False


# =============================================================================
# GRAPH INVARIANTS (Rustworkx-Native)
# =============================================================================

def build_data_flow_graph(edges: Iterable[EdgeData]) -> Tuple[rx.PyDiGraph, Dict[int, str]]:
    """Project the data-flow edges onto a fresh PyDiGraph."""
    graph = rx.PyDiGraph(multigraph=True)
    node_map: Dict[str, int] = {}
    for edge in edges:
        if edge.category != EdgeCategory.DATA_FLOW.value:
            continue
        for node_id in (edge.source_id, edge.target_id):
            if node_id not in node_map:
                node_map[node_id] = graph.add_node(node_id)
        graph.add_edge(node_map[edge.source_id], node_map[edge.target_id], edge.id)
    return graph, {idx: node_id for node_id, idx in node_map.items()}


class GraphInvariants:
    """
    Invariant validators over plain node/edge lists.

    All methods are static. CanvasGraph wraps them for business-friendly
    access; the CLI uses them to validate snapshot files.
    """

    @staticmethod
    def validate_data_flow_acyclicity(
        edges: List[EdgeData],
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """Data-flow edges must form a DAG."""
        graph, inv_map = build_data_flow_graph(edges)
        if rx.is_directed_acyclic_graph(graph):
            return True, None

        cycle = rx.digraph_find_cycle(graph)
        nodes = [inv_map[src] for src, _ in cycle]
        if not nodes:
            # find_cycle only searches from one start node
            for component in rx.strongly_connected_components(graph):
                if len(component) > 1:
                    nodes = [inv_map[idx] for idx in component]
                    break
        return False, InvariantViolation(
            invariant="data_flow_acyclicity",
            severity=InvariantSeverity.ERROR,
            message=f"Data-flow cycle detected involving {len(nodes)} nodes",
            nodes_involved=nodes[:10],
        )

    @staticmethod
    def validate_edge_references(
        nodes: List[NodeData],
        edges: List[EdgeData],
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """Every edge must reference existing nodes."""
        known = {n.id for n in nodes}
        dangling = [
            e.id for e in edges
            if e.source_id not in known or e.target_id not in known
        ]
        if dangling:
            return False, InvariantViolation(
                invariant="edge_references",
                severity=InvariantSeverity.ERROR,
                message=f"{len(dangling)} edge(s) reference missing nodes",
                edges_involved=dangling[:10],
            )
        return True, None

    @staticmethod
    def validate_edge_categories(
        nodes: List[NodeData],
        edges: List[EdgeData],
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """
        Each edge's category must match what the rule table gives today.

        A mismatch usually means the edge was created under an older rule
        table. It is a warning: the edge still renders.
        """
        types = {n.id: n.type for n in nodes}
        mismatched = []
        for edge in edges:
            if edge.source_id not in types or edge.target_id not in types:
                continue
            decision = evaluate_connection(types[edge.source_id], types[edge.target_id])
            if not decision.allowed or decision.edge_category != edge.category:
                mismatched.append(edge.id)
        if mismatched:
            return False, InvariantViolation(
                invariant="edge_categories",
                severity=InvariantSeverity.WARNING,
                message=f"{len(mismatched)} edge(s) disagree with the connection rules",
                edges_involved=mismatched[:10],
            )
        return True, None

    @staticmethod
    def validate_positions(nodes: List[NodeData]) -> Tuple[bool, Optional[InvariantViolation]]:
        bad = [
            n.id for n in nodes
            if not (math.isfinite(n.position.x) and math.isfinite(n.position.y))
        ]
        if bad:
            return False, InvariantViolation(
                invariant="finite_positions",
                severity=InvariantSeverity.ERROR,
                message=f"{len(bad)} node(s) have non-finite positions",
                nodes_involved=bad[:10],
            )
        return True, None

    @staticmethod
    def validate_all(
        nodes: List[NodeData],
        edges: List[EdgeData],
        raise_on_error: bool = False,
    ) -> InvariantReport:
        """
        Run all invariant validations and return a comprehensive report.

        Args:
            nodes: Node payloads
            edges: Edge payloads
            raise_on_error: If True, raise GraphInvariantError on first ERROR
        """
        violations = []
        checks = (
            GraphInvariants.validate_edge_references(nodes, edges),
            GraphInvariants.validate_data_flow_acyclicity(edges),
            GraphInvariants.validate_edge_categories(nodes, edges),
            GraphInvariants.validate_positions(nodes),
        )
        for _, violation in checks:
            if violation is None:
                continue
            violations.append(violation)
            if raise_on_error and violation.severity == InvariantSeverity.ERROR:
                from core.graph_db import GraphInvariantError
                raise GraphInvariantError(violation.message)

        metrics = {
            "node_count": len(nodes),
            "edge_count": len(edges),
            "data_flow_edge_count": sum(
                1 for e in edges if e.category == EdgeCategory.DATA_FLOW.value
            ),
        }

        is_valid = all(v.severity != InvariantSeverity.ERROR for v in violations)
        return InvariantReport(valid=is_valid, violations=violations, metrics=metrics)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_graph(nodes: List[NodeData], edges: List[EdgeData], **kwargs) -> InvariantReport:
    """Convenience function to validate a node/edge set."""
    return GraphInvariants.validate_all(nodes, edges, **kwargs)


def is_data_flow_dag(edges: List[EdgeData]) -> bool:
    """Quick check that the data-flow projection is acyclic."""
    graph, _ = build_data_flow_graph(edges)
    return rx.is_directed_acyclic_graph(graph)

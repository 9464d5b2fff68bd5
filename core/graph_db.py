"""
METRIMAP GRAPH DATABASE - The Canvas Graph Model

The single source of truth for one canvas: nodes (cards), edges and
groups. Every other component reads and mutates the canvas through this
class.

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string UUIDs: "abc123", "def456"
  - Calls: graph.add_node(data), graph.connect("abc123", "def456")

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (UUID -> node index)
  - _inv_map: Dict[int, str]   (node index -> UUID)
  - _edge_map: Dict[str, int]  (edge UUID -> edge index)

  Rust Layer (rustworkx.PyDiGraph, multigraph)
  - Uses integer indices: 0, 1, 2, ...

Invariants enforced at write time:
- Node, edge and group ids are unique
- Both edge endpoints reference existing nodes
- An edge's category is the one the rule table gives for its endpoint types
- Data-flow edges never form a cycle

Ownership:
  One CanvasGraph per canvas session, passed explicitly to whoever needs
  it. Mutations are announced on the (optional) EventBus handed to the
  constructor so persistence can mirror them.

Thread Safety:
  NOT thread-safe. One editor session owns the graph at a time.
"""
import logging
import math
import rustworkx as rx
from typing import Dict, List, Optional, Set, Tuple, Any, Iterator, Iterable

import msgspec
import polars as pl

from core.ontology import EdgeCategory, type_value
from core.schemas import (
    NodeData,
    EdgeData,
    GroupData,
    Position,
    Size,
    generate_id,
    now_utc,
)
from core.rules import (
    ConnectionDecision,
    evaluate_connection,
    infer_edge_label,
    relationship_note,
)
from core.graph_invariants import (
    GraphInvariants,
    InvariantReport,
    would_create_cycle,
)
from infrastructure.config import GroupConfig
from infrastructure.event_bus import EventBus, EventType


logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class NodeNotFoundError(GraphError):
    """Raised when a node UUID is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(GraphError):
    """Raised when an edge UUID is not in the graph."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


class GroupNotFoundError(GraphError):
    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group not found: {group_id}")


class DuplicateNodeError(GraphError):
    """Raised when attempting to add a node with existing ID."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class DuplicateEdgeError(GraphError):
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge already exists: {edge_id}")


class InvalidIdError(GraphError, ValueError):
    """Raised when a node or edge id is empty."""
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind.capitalize()} id must be non-empty")


class GraphInvariantError(GraphError):
    """Raised when a graph invariant is violated."""
    pass


class CycleViolationError(GraphInvariantError):
    """Raised when a data-flow edge would close a cycle."""
    def __init__(self, source_id: str, target_id: str):
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(
            f"Cannot connect {source_id} -> {target_id}: "
            f"data-flow edge would create a cycle"
        )


class ConnectionRuleError(GraphError):
    """Raised when no connection rule allows the requested edge."""
    def __init__(self, source_type: str, target_type: str, reason: str):
        self.source_type = source_type
        self.target_type = target_type
        self.reason = reason
        super().__init__(reason)


# =============================================================================
# CANVAS GRAPH (The Graph Model)
# =============================================================================

class CanvasGraph:
    """
    In-memory canvas graph backed by rustworkx.

    All public methods accept/return string UUIDs; the translation to/from
    integer indices is handled internally.

    Usage:
        graph = CanvasGraph(event_bus=bus)

        revenue = graph.add_node(NodeData.create(NodeType.METRIC, "Revenue"))
        chart = graph.add_node(NodeData.create(NodeType.CHART, "Revenue chart"))

        edge = graph.connect(revenue.id, chart.id)   # data-flow edge
        graph.connect(chart.id, revenue.id)          # ConnectionRuleError
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        group_config: Optional[GroupConfig] = None,
    ):
        # Parallel edges between the same two cards are legal
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)

        # The Bridge
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}
        self._edge_map: Dict[str, int] = {}

        # Groups carry no topology, so they live beside the graph
        self._groups: Dict[str, GroupData] = {}

        self._event_bus = event_bus
        self._group_config = group_config or GroupConfig()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    @property
    def group_count(self) -> int:
        return len(self._groups)

    @property
    def is_empty(self) -> bool:
        """True if graph has no nodes."""
        return self.node_count == 0

    @property
    def event_bus(self) -> Optional[EventBus]:
        return self._event_bus

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _emit(self, event_type: EventType, payload: Dict[str, Any], source: str = "graph") -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, payload, source=source)

    @staticmethod
    def _node_payload(node: NodeData) -> Dict[str, Any]:
        return {"node_id": node.id, "node_type": node.type, "title": node.title}

    @staticmethod
    def _edge_payload(edge: EdgeData) -> Dict[str, Any]:
        return {
            "edge_id": edge.id,
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "category": edge.category,
        }

    @staticmethod
    def _group_payload(group: GroupData) -> Dict[str, Any]:
        return {"group_id": group.id, "name": group.name, "node_ids": list(group.node_ids)}

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(self, data: NodeData, source: str = "graph") -> NodeData:
        """
        Add a node to the graph.

        Raises:
            DuplicateNodeError: If the node ID already exists
            InvalidIdError: If the node ID is empty
        """
        if not data.id:
            raise InvalidIdError("node")
        if data.id in self._node_map:
            raise DuplicateNodeError(data.id)

        idx = self._graph.add_node(data)
        self._node_map[data.id] = idx
        self._inv_map[idx] = data.id

        logger.debug(f"Added node {data.id} ({data.type})")
        self._emit(EventType.NODE_CREATED, self._node_payload(data), source)
        return data

    def add_nodes_batch(self, nodes: List[NodeData]) -> List[int]:
        """
        Add multiple nodes in a single Rust call.

        Nodes whose id already exists are skipped (existing index returned),
        and so are nodes without an id (-1).
        Emits no per-node events; used when hydrating from storage.
        """
        if not nodes:
            return []

        new_nodes: List[NodeData] = []
        result_indices: List[int] = []
        node_positions: List[int] = []
        seen: Set[str] = set()

        for i, node in enumerate(nodes):
            if not node.id:
                logger.warning(f"Skipping {node.type} node without an id")
                result_indices.append(-1)
            elif node.id in self._node_map or node.id in seen:
                logger.warning(f"Skipping duplicate node id {node.id}")
                result_indices.append(self._node_map.get(node.id, -1))
            else:
                seen.add(node.id)
                new_nodes.append(node)
                node_positions.append(i)
                result_indices.append(-1)

        if new_nodes:
            indices = self._graph.add_nodes_from(new_nodes)
            for j, (node, idx) in enumerate(zip(new_nodes, indices)):
                self._node_map[node.id] = idx
                self._inv_map[idx] = node.id
                result_indices[node_positions[j]] = idx

        return result_indices

    def get_node(self, node_id: str) -> NodeData:
        """
        Retrieve a node by its UUID.

        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)
        return self._graph[self._node_map[node_id]]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def update_node(self, node_id: str, data: NodeData, source: str = "graph") -> NodeData:
        """
        Replace a node's data in-place.

        The node type is part of the node's identity for connection
        purposes and cannot change through an update.

        Raises:
            NodeNotFoundError: If node doesn't exist
            ValueError: If data.id or data.type doesn't match
        """
        if data.id != node_id:
            raise ValueError(f"Node ID mismatch: {node_id} vs {data.id}")
        current = self.get_node(node_id)
        if current.type != data.type:
            raise ValueError(
                f"Node type is fixed: {node_id} is {current.type}, not {data.type}"
            )

        self._graph[self._node_map[node_id]] = data
        logger.debug(f"Updated node {node_id}")
        self._emit(EventType.NODE_UPDATED, self._node_payload(data), source)
        return data

    def update_node_fields(self, node_id: str, source: str = "graph", **changes) -> NodeData:
        """
        Apply field changes to a node, bump its version and store it.

        Example:
            graph.update_node_fields(node_id, owner="ana", tags=["kpi"])
        """
        current = self.get_node(node_id)
        updated = msgspec.structs.replace(current, **changes)
        updated.touch()
        return self.update_node(node_id, updated, source=source)

    def set_position(self, node_id: str, x: float, y: float, source: str = "graph") -> NodeData:
        """Move one node. Raises ValueError for non-finite coordinates."""
        return self.update_node_fields(node_id, source=source, position=Position(x=x, y=y))

    def apply_positions(
        self,
        positions: Dict[str, Tuple[float, float]],
        source: str = "layout",
        project_id: Optional[str] = None,
    ) -> List[str]:
        """
        Write many positions at once and announce them as one batch.

        Unknown ids and non-finite coordinates are skipped with a warning.

        Returns:
            Ids of the nodes that moved
        """
        moved: List[str] = []
        written: Dict[str, List[float]] = {}

        for node_id, (x, y) in positions.items():
            if node_id not in self._node_map:
                logger.warning(f"Position for unknown node {node_id} ignored")
                continue
            if not (math.isfinite(x) and math.isfinite(y)):
                logger.warning(f"Non-finite position for node {node_id} ignored")
                continue
            idx = self._node_map[node_id]
            current = self._graph[idx]
            if current.position.x == x and current.position.y == y:
                continue
            updated = msgspec.structs.replace(current, position=Position(x=x, y=y))
            updated.updated_at = now_utc()
            self._graph[idx] = updated
            moved.append(node_id)
            written[node_id] = [x, y]

        if moved:
            payload: Dict[str, Any] = {"positions": written}
            if project_id is not None:
                payload["project_id"] = project_id
            self._emit(EventType.POSITIONS_UPDATED, payload, source)
        return moved

    def remove_node(self, node_id: str, source: str = "graph") -> NodeData:
        """
        Remove a node, all its edges, and its membership in every group.

        Returns:
            The removed NodeData

        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)

        idx = self._node_map[node_id]
        data = self._graph[idx]

        cascaded = self.incident_edges(node_id)
        for edge in cascaded:
            del self._edge_map[edge.id]

        # Also removes incident edges on the Rust side
        self._graph.remove_node(idx)
        del self._node_map[node_id]
        del self._inv_map[idx]

        for edge in cascaded:
            self._emit(EventType.EDGE_DELETED, self._edge_payload(edge), source)

        for group in self.groups_containing(node_id):
            group.node_ids = [n for n in group.node_ids if n != node_id]
            group.touch()
            self._emit(EventType.GROUP_UPDATED, self._group_payload(group), source)

        logger.debug(f"Removed node {node_id} ({len(cascaded)} incident edge(s))")
        self._emit(EventType.NODE_DELETED, self._node_payload(data), source)
        return data

    def iter_nodes(self) -> Iterator[NodeData]:
        return iter(self._graph.nodes())

    def get_all_nodes(self) -> List[NodeData]:
        """All nodes, in insertion order."""
        return [self._graph[idx] for idx in self._node_map.values()]

    def get_nodes_by_type(self, node_type) -> List[NodeData]:
        tag = type_value(node_type)
        return [n for n in self.get_all_nodes() if n.type == tag]

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def _check_edge_invariants(self, edge: EdgeData) -> None:
        if not edge.id:
            raise InvalidIdError("edge")
        if edge.id in self._edge_map:
            raise DuplicateEdgeError(edge.id)

        source = self.get_node(edge.source_id)
        target = self.get_node(edge.target_id)

        if edge.source_id == edge.target_id:
            raise ConnectionRuleError(
                source.type, target.type,
                f"Cannot connect {source.type} node {edge.source_id} to itself",
            )

        decision = evaluate_connection(source.type, target.type)
        if not decision.allowed:
            raise ConnectionRuleError(source.type, target.type, decision.reason)
        if decision.edge_category != edge.category:
            raise ConnectionRuleError(
                source.type, target.type,
                f"Connection from {source.type} to {target.type} must be "
                f"{decision.edge_category}, not {edge.category}",
            )

        if edge.category == EdgeCategory.DATA_FLOW.value and would_create_cycle(
            edge.source_id, edge.target_id, self.get_edges_by_category(EdgeCategory.DATA_FLOW)
        ):
            raise CycleViolationError(edge.source_id, edge.target_id)

    def add_edge(self, edge: EdgeData, source: str = "graph") -> EdgeData:
        """
        Add a fully-formed edge.

        Raises:
            NodeNotFoundError: If source or target node doesn't exist
            InvalidIdError: If the edge id is empty
            DuplicateEdgeError: If the edge id already exists
            ConnectionRuleError: If the category disagrees with the rule table
            CycleViolationError: If a data-flow edge would close a cycle
        """
        self._check_edge_invariants(edge)

        edge_idx = self._graph.add_edge(
            self._node_map[edge.source_id],
            self._node_map[edge.target_id],
            edge,
        )
        self._edge_map[edge.id] = edge_idx

        logger.debug(f"Added {edge.category} edge {edge.source_id} -> {edge.target_id}")
        self._emit(EventType.EDGE_CREATED, self._edge_payload(edge), source)
        return edge

    def get_edge(self, edge_id: str) -> EdgeData:
        if edge_id not in self._edge_map:
            raise EdgeNotFoundError(edge_id)
        return self._graph.get_edge_data_by_index(self._edge_map[edge_id])

    def has_edge(self, edge_id: str) -> bool:
        return edge_id in self._edge_map

    def update_edge(self, edge_id: str, data: EdgeData, source: str = "graph") -> EdgeData:
        """
        Replace an edge's data in-place.

        Endpoints and category are fixed; changing them means deleting the
        edge and connecting again.
        """
        current = self.get_edge(edge_id)
        if data.id != edge_id:
            raise ValueError(f"Edge ID mismatch: {edge_id} vs {data.id}")
        if (data.source_id, data.target_id, data.category) != (
            current.source_id, current.target_id, current.category
        ):
            raise ValueError(f"Edge {edge_id}: endpoints and category cannot change")

        self._graph.update_edge_by_index(self._edge_map[edge_id], data)
        logger.debug(f"Updated edge {edge_id}")
        self._emit(EventType.EDGE_UPDATED, self._edge_payload(data), source)
        return data

    def update_edge_fields(self, edge_id: str, source: str = "graph", **changes) -> EdgeData:
        current = self.get_edge(edge_id)
        updated = msgspec.structs.replace(current, **changes)
        updated.touch()
        return self.update_edge(edge_id, updated, source=source)

    def remove_edge(self, edge_id: str, source: str = "graph") -> EdgeData:
        """
        Remove a single edge.

        Raises:
            EdgeNotFoundError: If the edge doesn't exist
        """
        data = self.get_edge(edge_id)
        self._graph.remove_edge_from_index(self._edge_map.pop(edge_id))
        logger.debug(f"Removed edge {edge_id}")
        self._emit(EventType.EDGE_DELETED, self._edge_payload(data), source)
        return data

    def get_all_edges(self) -> List[EdgeData]:
        """All edges, in insertion order."""
        return [self._graph.get_edge_data_by_index(idx) for idx in self._edge_map.values()]

    def get_edges_by_category(self, category) -> List[EdgeData]:
        tag = type_value(category)
        return [e for e in self.get_all_edges() if e.category == tag]

    def incident_edges(self, node_id: str) -> List[EdgeData]:
        """Every edge with node_id as source or target."""
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)
        idx = self._node_map[node_id]
        edges: Dict[str, EdgeData] = {}
        for _, _, data in self._graph.in_edges(idx):
            edges[data.id] = data
        for _, _, data in self._graph.out_edges(idx):
            edges[data.id] = data
        return list(edges.values())

    def edges_between(self, source_id: str, target_id: str) -> List[EdgeData]:
        """All edges from source_id to target_id (parallel edges included)."""
        return [
            e for e in self.get_all_edges()
            if e.source_id == source_id and e.target_id == target_id
        ]

    # =========================================================================
    # CONNECTION GATE
    # =========================================================================

    def check_connection(self, source_id: str, target_id: str) -> ConnectionDecision:
        """
        Preview a connection-drag without mutating anything.

        Runs the rule table, then (for data flow) the Cycle Guard.

        Raises:
            NodeNotFoundError: If either node doesn't exist
        """
        source = self.get_node(source_id)
        target = self.get_node(target_id)

        if source_id == target_id:
            return ConnectionDecision(
                allowed=False,
                reason=f"Cannot connect {source.type} node {source_id} to itself",
            )

        decision = evaluate_connection(source.type, target.type)
        if not decision.allowed:
            return decision

        if decision.edge_category == EdgeCategory.DATA_FLOW.value and would_create_cycle(
            source_id, target_id, self.get_edges_by_category(EdgeCategory.DATA_FLOW)
        ):
            return ConnectionDecision(
                allowed=False,
                edge_category=decision.edge_category,
                reason=f"Connection from {source.type} to {target.type} would create a data-flow cycle",
                rule=decision.rule,
            )
        return decision

    def connect(self, source_id: str, target_id: str, source: str = "graph", **overrides) -> EdgeData:
        """
        Create the edge the rule table prescribes for source -> target.

        Relationship edges start as deterministic / medium / 1.0 with an
        auto-generated note. Data-flow and reference edges get a label
        inferred from the endpoint types.

        Raises:
            NodeNotFoundError: If either node doesn't exist
            ConnectionRuleError: If no rule allows the pair
            CycleViolationError: If a data-flow edge would close a cycle
        """
        source_node = self.get_node(source_id)
        target_node = self.get_node(target_id)

        decision = self.check_connection(source_id, target_id)
        if not decision.allowed:
            logger.info(f"Connection rejected: {decision.reason}")
            if decision.edge_category == EdgeCategory.DATA_FLOW.value:
                raise CycleViolationError(source_id, target_id)
            raise ConnectionRuleError(source_node.type, target_node.type, decision.reason)

        category = decision.edge_category
        if category == EdgeCategory.RELATIONSHIP.value:
            if decision.relationship_kind is not None:
                overrides.setdefault("relationship_kind", decision.relationship_kind)
            overrides.setdefault(
                "notes",
                relationship_note(source_node.display_title(), target_node.display_title()),
            )
            edge = EdgeData.relationship(source_id, target_id, **overrides)
        else:
            overrides.setdefault(
                "label", infer_edge_label(category, source_node.type, target_node.type)
            )
            overrides.setdefault("source_type", source_node.type)
            overrides.setdefault("target_type", target_node.type)
            edge = EdgeData.create(source_id, target_id, category, **overrides)

        return self.add_edge(edge, source=source)

    # =========================================================================
    # GROUP OPERATIONS
    # =========================================================================

    def add_group(self, group: GroupData, source: str = "graph") -> GroupData:
        """
        Add a group. Member ids must reference existing nodes.

        Raises:
            GraphError: If the group id already exists
            NodeNotFoundError: If a member id is unknown
        """
        if group.id in self._groups:
            raise GraphError(f"Group already exists: {group.id}")
        for node_id in group.node_ids:
            if node_id not in self._node_map:
                raise NodeNotFoundError(node_id)
        self._groups[group.id] = group
        logger.debug(f"Added group {group.id} with {len(group.node_ids)} node(s)")
        self._emit(EventType.GROUP_CREATED, self._group_payload(group), source)
        return group

    def get_group(self, group_id: str) -> GroupData:
        if group_id not in self._groups:
            raise GroupNotFoundError(group_id)
        return self._groups[group_id]

    def has_group(self, group_id: str) -> bool:
        return group_id in self._groups

    def get_all_groups(self) -> List[GroupData]:
        return list(self._groups.values())

    def update_group(self, group_id: str, source: str = "graph", **changes) -> GroupData:
        """Apply field changes (name, position, size, color, ...) to a group."""
        current = self.get_group(group_id)
        if "id" in changes and changes["id"] != group_id:
            raise ValueError(f"Group ID mismatch: {group_id} vs {changes['id']}")
        for node_id in changes.get("node_ids", ()):
            if node_id not in self._node_map:
                raise NodeNotFoundError(node_id)
        updated = msgspec.structs.replace(current, **changes)
        updated.touch()
        self._groups[group_id] = updated
        self._emit(EventType.GROUP_UPDATED, self._group_payload(updated), source)
        return updated

    def remove_group(self, group_id: str, source: str = "graph") -> GroupData:
        """Ungroup: drop the container, member nodes are untouched."""
        group = self.get_group(group_id)
        del self._groups[group_id]
        logger.debug(f"Removed group {group_id}")
        self._emit(EventType.GROUP_DELETED, self._group_payload(group), source)
        return group

    def group_nodes(
        self,
        node_ids: List[str],
        name: Optional[str] = None,
        source: str = "graph",
    ) -> GroupData:
        """
        Create a group around at least two existing nodes.

        The group rectangle is the padded bounding box of the members,
        each assumed to have the configured node size.

        Raises:
            ValueError: If fewer than two nodes are given
            NodeNotFoundError: If a node id is unknown
        """
        unique_ids = list(dict.fromkeys(node_ids))
        if len(unique_ids) < 2:
            raise ValueError("At least 2 nodes must be selected to create a group")
        members = [self.get_node(node_id) for node_id in unique_ids]

        cfg = self._group_config
        min_x = min(n.position.x for n in members) - cfg.padding
        min_y = min(n.position.y for n in members) - cfg.padding
        max_x = max(n.position.x + cfg.assumed_node_width for n in members) + cfg.padding
        max_y = max(n.position.y + cfg.assumed_node_height for n in members) + cfg.padding

        if name is None:
            titles = ", ".join(n.title for n in members[:2])
            name = f"Group ({titles}{'...' if len(members) > 2 else ''})"

        group = GroupData(
            id=generate_id(),
            name=name,
            node_ids=unique_ids,
            position=Position(x=min_x, y=min_y),
            size=Size(width=max_x - min_x, height=max_y - min_y),
            description=f"Automatically created group containing {len(unique_ids)} nodes",
        )
        return self.add_group(group, source=source)

    def add_nodes_to_group(self, group_id: str, node_ids: List[str], source: str = "graph") -> GroupData:
        group = self.get_group(group_id)
        merged = list(group.node_ids)
        for node_id in node_ids:
            if node_id not in merged:
                merged.append(node_id)
        return self.update_group(group_id, source=source, node_ids=merged)

    def remove_nodes_from_group(self, group_id: str, node_ids: List[str], source: str = "graph") -> GroupData:
        group = self.get_group(group_id)
        drop = set(node_ids)
        return self.update_group(
            group_id, source=source, node_ids=[n for n in group.node_ids if n not in drop]
        )

    def groups_containing(self, node_id: str) -> List[GroupData]:
        return [g for g in self._groups.values() if node_id in g.node_ids]

    # =========================================================================
    # BULK LOADING
    # =========================================================================

    def load(
        self,
        nodes: Iterable[NodeData],
        edges: Iterable[EdgeData] = (),
        groups: Iterable[GroupData] = (),
    ) -> List[str]:
        """
        Hydrate the graph from storage (no events are emitted).

        Edges that break an invariant (missing endpoint, wrong category,
        data-flow cycle) are skipped with a warning, and so are group
        members that reference unknown nodes.

        Returns:
            One message per skipped item
        """
        nodes = list(nodes)
        skipped: List[str] = [
            f"Skipped {node.type} node without an id" for node in nodes if not node.id
        ]
        self.add_nodes_batch(nodes)

        bus, self._event_bus = self._event_bus, None
        try:
            for edge in edges:
                try:
                    self.add_edge(edge)
                except GraphError as e:
                    message = f"Skipped edge {edge.id}: {e}"
                    logger.warning(message)
                    skipped.append(message)
            for group in groups:
                unknown = [n for n in group.node_ids if n not in self._node_map]
                if unknown:
                    message = f"Group {group.id}: dropped unknown node(s) {unknown}"
                    logger.warning(message)
                    skipped.append(message)
                    group = msgspec.structs.replace(
                        group, node_ids=[n for n in group.node_ids if n in self._node_map]
                    )
                try:
                    self.add_group(group)
                except GraphError as e:
                    message = f"Skipped group {group.id}: {e}"
                    logger.warning(message)
                    skipped.append(message)
        finally:
            self._event_bus = bus

        logger.info(
            f"Loaded {self.node_count} node(s), {self.edge_count} edge(s), "
            f"{self.group_count} group(s); skipped {len(skipped)}"
        )
        return skipped

    def clear(self) -> None:
        """Drop everything (no events)."""
        self._graph = rx.PyDiGraph(multigraph=True)
        self._node_map.clear()
        self._inv_map.clear()
        self._edge_map.clear()
        self._groups.clear()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self) -> InvariantReport:
        """Run the full invariant suite over the current graph."""
        return GraphInvariants.validate_all(self.get_all_nodes(), self.get_all_edges())

    def has_data_flow_cycle(self) -> bool:
        valid, _ = GraphInvariants.validate_data_flow_acyclicity(self.get_all_edges())
        return not valid

    # =========================================================================
    # EXPORT (Polars)
    # =========================================================================

    def to_polars_nodes(self) -> pl.DataFrame:
        """Export nodes to a Polars DataFrame."""
        nodes = self.get_all_nodes()
        return pl.DataFrame(
            {
                "id": [n.id for n in nodes],
                "type": [n.type for n in nodes],
                "title": [n.title for n in nodes],
                "category": [n.category for n in nodes],
                "owner": [n.owner for n in nodes],
                "tags": [list(n.tags) for n in nodes],
                "x": [n.position.x for n in nodes],
                "y": [n.position.y for n in nodes],
                "created_at": [n.created_at for n in nodes],
                "updated_at": [n.updated_at for n in nodes],
            },
            schema={
                "id": pl.Utf8,
                "type": pl.Utf8,
                "title": pl.Utf8,
                "category": pl.Utf8,
                "owner": pl.Utf8,
                "tags": pl.List(pl.Utf8),
                "x": pl.Float64,
                "y": pl.Float64,
                "created_at": pl.Utf8,
                "updated_at": pl.Utf8,
            },
        )

    def to_polars_edges(self) -> pl.DataFrame:
        """Export edges to a Polars DataFrame."""
        edges = self.get_all_edges()
        return pl.DataFrame(
            {
                "id": [e.id for e in edges],
                "source_id": [e.source_id for e in edges],
                "target_id": [e.target_id for e in edges],
                "category": [e.category for e in edges],
                "relationship_kind": [e.relationship_kind for e in edges],
                "confidence": [e.confidence for e in edges],
                "weight": [e.weight for e in edges],
                "label": [e.label for e in edges],
            },
            schema={
                "id": pl.Utf8,
                "source_id": pl.Utf8,
                "target_id": pl.Utf8,
                "category": pl.Utf8,
                "relationship_kind": pl.Utf8,
                "confidence": pl.Utf8,
                "weight": pl.Float64,
                "label": pl.Utf8,
            },
        )

    # =========================================================================
    # UTILITY
    # =========================================================================

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._node_map

    def __repr__(self) -> str:
        return (
            f"CanvasGraph(nodes={self.node_count}, edges={self.edge_count}, "
            f"groups={self.group_count})"
        )


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_graph_from_nodes(
    nodes: List[NodeData],
    edges: Optional[List[EdgeData]] = None,
    event_bus: Optional[EventBus] = None,
) -> CanvasGraph:
    """Create a graph pre-populated with nodes and edges."""
    graph = CanvasGraph(event_bus=event_bus)
    graph.load(nodes, edges or [])
    return graph

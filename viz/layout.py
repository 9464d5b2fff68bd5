"""
METRIMAP LAYOUT ENGINE - Layered Graph Drawing

Computes non-overlapping card positions from the canvas topology using a
Sugiyama-style pipeline:

  1. Cycle removal      greedy-FAS ordering, back-edges reversed, self-loops dropped
  2. Layer assignment   rx.topological_generations on the acyclic copy
  3. Dummy insertion    long edges become chains of zero-width dummy nodes
  4. Crossing reduction barycenter sweeps, best ordering kept
  5. Coordinates        neighbour-median pull with minimum separations, then
                        rotation for the flow direction and the margin

Every node is a fixed-size rectangle (default 320x200). Output positions
are top-left anchored: the computed center minus half the node size.

Failure semantics: layout never raises. Any exception inside the pipeline
is logged and the original node list is returned unchanged, so callers
treat unchanged positions as "layout failed".
"""
import logging
import math
from enum import Enum
from typing import Dict, List, Optional, Tuple, Callable, Iterable, Any

import msgspec
import rustworkx as rx

from core.schemas import NodeData, EdgeData, Position
from infrastructure.config import LayoutConfig


logger = logging.getLogger(__name__)


# =============================================================================
# OPTIONS
# =============================================================================

class LayoutDirection(str, Enum):
    """Overall flow direction of the drawing."""
    TOP_TO_BOTTOM = "TB"
    BOTTOM_TO_TOP = "BT"
    LEFT_TO_RIGHT = "LR"
    RIGHT_TO_LEFT = "RL"

    @classmethod
    def parse(cls, value) -> "LayoutDirection":
        """
        Accept an enum member, a short code ("TB", "lr") or a long name
        ("top-to-bottom", "left_to_right").

        Raises:
            ValueError: If the value names no direction
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.upper() == member.value:
                return member
        normalized = text.lower().replace("_", "-").replace(" ", "-")
        for member in cls:
            if normalized == member.name.lower().replace("_", "-"):
                return member
        raise ValueError(f"Unknown layout direction: {value!r}")

    @property
    def is_horizontal(self) -> bool:
        return self in (LayoutDirection.LEFT_TO_RIGHT, LayoutDirection.RIGHT_TO_LEFT)


# Which side of a card edges leave from / arrive at, per direction
HANDLE_POSITIONS: Dict[LayoutDirection, Dict[str, str]] = {
    LayoutDirection.TOP_TO_BOTTOM: {"source": "bottom", "target": "top"},
    LayoutDirection.BOTTOM_TO_TOP: {"source": "top", "target": "bottom"},
    LayoutDirection.LEFT_TO_RIGHT: {"source": "right", "target": "left"},
    LayoutDirection.RIGHT_TO_LEFT: {"source": "left", "target": "right"},
}


def get_handle_positions_for_direction(direction) -> Dict[str, str]:
    """Edge handle sides for a direction; unknown values fall back to TB."""
    try:
        parsed = LayoutDirection.parse(direction)
    except ValueError:
        parsed = LayoutDirection.TOP_TO_BOTTOM
    return dict(HANDLE_POSITIONS[parsed])


class LayoutOptions(msgspec.Struct, kw_only=True, frozen=True):
    """Geometry constants for one layout pass."""
    direction: LayoutDirection = LayoutDirection.TOP_TO_BOTTOM
    node_width: float = 320.0
    node_height: float = 200.0
    rank_sep: float = 150.0
    node_sep: float = 100.0
    edge_sep: float = 10.0
    margin_x: float = 50.0
    margin_y: float = 50.0
    crossing_sweeps: int = 8

    @classmethod
    def from_config(cls, config: LayoutConfig, direction=None, node_size=None) -> "LayoutOptions":
        width, height = node_size or (config.node_width, config.node_height)
        return cls(
            direction=LayoutDirection.parse(direction or config.direction),
            node_width=float(width),
            node_height=float(height),
            rank_sep=config.rank_sep,
            node_sep=config.node_sep,
            edge_sep=config.edge_sep,
            margin_x=config.margin_x,
            margin_y=config.margin_y,
            crossing_sweeps=config.crossing_sweeps,
        )


class LayoutResult(msgspec.Struct, kw_only=True):
    nodes: List[NodeData]
    issues: List[str] = msgspec.field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues


# =============================================================================
# PHASE 1: CYCLE REMOVAL (Greedy-FAS)
# =============================================================================

def greedy_fas_order(
    node_count: int,
    successors: List[List[int]],
    predecessors: List[List[int]],
) -> List[int]:
    """
    Node ordering with few back-edges (Eades, Lin, Smyth 1993).

    Sinks are peeled to the right, sources to the left; when only cycles
    remain, the node with the largest out-in surplus moves left.
    Ties resolve by index so the ordering is deterministic.
    """
    out_deg = [len(s) for s in successors]
    in_deg = [len(p) for p in predecessors]
    remaining = set(range(node_count))
    left: List[int] = []
    right: List[int] = []

    def _remove(v: int) -> None:
        remaining.discard(v)
        for u in predecessors[v]:
            if u in remaining:
                out_deg[u] -= 1
        for w in successors[v]:
            if w in remaining:
                in_deg[w] -= 1

    while remaining:
        changed = True
        while changed:
            changed = False
            for v in sorted(remaining):
                if v in remaining and out_deg[v] == 0:
                    _remove(v)
                    right.append(v)
                    changed = True
            for v in sorted(remaining):
                if v in remaining and in_deg[v] == 0:
                    _remove(v)
                    left.append(v)
                    changed = True
        if remaining:
            best = max(sorted(remaining), key=lambda v: out_deg[v] - in_deg[v])
            _remove(best)
            left.append(best)

    right.reverse()
    return left + right


def remove_cycles(node_count: int, edges: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """
    Acyclic copy of an edge list: back-edges reversed, self-loops and
    duplicates dropped.
    """
    unique = list(dict.fromkeys((u, v) for u, v in edges if u != v))
    successors: List[List[int]] = [[] for _ in range(node_count)]
    predecessors: List[List[int]] = [[] for _ in range(node_count)]
    for u, v in unique:
        successors[u].append(v)
        predecessors[v].append(u)

    rank = {v: i for i, v in enumerate(greedy_fas_order(node_count, successors, predecessors))}
    acyclic = []
    for u, v in unique:
        acyclic.append((v, u) if rank[u] > rank[v] else (u, v))
    return list(dict.fromkeys(acyclic))


# =============================================================================
# PHASE 2-3: LAYERS AND DUMMY NODES
# =============================================================================

def assign_layers(node_count: int, edges: List[Tuple[int, int]]) -> List[int]:
    """Longest-path layering of an acyclic edge list."""
    dag = rx.PyDiGraph()
    dag.add_nodes_from(range(node_count))
    dag.add_edges_from_no_data(edges)
    rank = [0] * node_count
    for layer, generation in enumerate(rx.topological_generations(dag)):
        for idx in generation:
            rank[idx] = layer
    return rank


def insert_dummy_nodes(
    node_count: int,
    edges: List[Tuple[int, int]],
    rank: List[int],
) -> Tuple[rx.PyDiGraph, List[int]]:
    """
    Split every edge spanning more than one layer into unit-length hops.

    Returns:
        (augmented graph, rank per augmented node). Indices below
        node_count are real nodes; the rest are dummies.
    """
    aug = rx.PyDiGraph()
    aug.add_nodes_from(range(node_count))
    ranks = list(rank)

    for u, v in edges:
        prev = u
        for layer in range(rank[u] + 1, rank[v]):
            dummy = aug.add_node(None)
            ranks.append(layer)
            aug.add_edge(prev, dummy, None)
            prev = dummy
        aug.add_edge(prev, v, None)

    return aug, ranks


# =============================================================================
# PHASE 4: CROSSING REDUCTION (Barycenter)
# =============================================================================

def count_crossings(aug: rx.PyDiGraph, layers: List[List[int]]) -> int:
    """Count edge crossings between consecutive layers."""
    total = 0
    for r in range(len(layers) - 1):
        lower = {v: i for i, v in enumerate(layers[r + 1])}
        segments = []
        for i, u in enumerate(layers[r]):
            for v in aug.successor_indices(u):
                if v in lower:
                    segments.append((i, lower[v]))
        for a in range(len(segments)):
            for b in range(a + 1, len(segments)):
                (a0, a1), (b0, b1) = segments[a], segments[b]
                if (a0 < b0 and a1 > b1) or (a0 > b0 and a1 < b1):
                    total += 1
    return total


def _reorder_by_barycenter(
    layer: List[int],
    fixed: List[int],
    neighbours: Callable[[int], Iterable[int]],
) -> None:
    pos = {v: i for i, v in enumerate(fixed)}
    keys: Dict[int, Tuple[float, int]] = {}
    for i, v in enumerate(layer):
        adjacent = [pos[u] for u in neighbours(v) if u in pos]
        # Nodes without neighbours in the fixed layer keep their slot
        bary = sum(adjacent) / len(adjacent) if adjacent else float(i)
        keys[v] = (bary, i)
    layer.sort(key=lambda v: keys[v])


def minimize_crossings(aug: rx.PyDiGraph, layers: List[List[int]], sweeps: int) -> List[List[int]]:
    """Alternate down/up barycenter sweeps, keeping the best ordering seen."""
    current = [list(layer) for layer in layers]
    best = [list(layer) for layer in current]
    best_crossings = count_crossings(aug, best)

    for _ in range(max(0, sweeps)):
        if best_crossings == 0:
            break
        for r in range(1, len(current)):
            _reorder_by_barycenter(current[r], current[r - 1], aug.predecessor_indices)
        for r in range(len(current) - 2, -1, -1):
            _reorder_by_barycenter(current[r], current[r + 1], aug.successor_indices)
        crossings = count_crossings(aug, current)
        if crossings < best_crossings:
            best = [list(layer) for layer in current]
            best_crossings = crossings

    return best


# =============================================================================
# PHASE 5: COORDINATE ASSIGNMENT
# =============================================================================

def _place_layer(
    layer: List[int],
    desired: List[float],
    gaps: List[float],
) -> List[float]:
    """
    Positions as close to `desired` as the minimum gaps allow.

    Averages a left-anchored and a right-anchored sweep; both satisfy the
    gaps, so their mean does too.
    """
    n = len(layer)
    left = list(desired)
    for i in range(1, n):
        left[i] = max(desired[i], left[i - 1] + gaps[i])
    right = list(desired)
    for i in range(n - 2, -1, -1):
        right[i] = min(desired[i], right[i + 1] - gaps[i + 1])
    return [(a + b) / 2.0 for a, b in zip(left, right)]


def assign_cross_coordinates(
    aug: rx.PyDiGraph,
    layers: List[List[int]],
    node_count: int,
    cross_size: float,
    options: LayoutOptions,
    passes: int = 4,
) -> Dict[int, float]:
    """Center coordinate of every node along the within-layer axis."""

    def size(v: int) -> float:
        return cross_size if v < node_count else 0.0

    def separation(a: int, b: int) -> float:
        real_a, real_b = a < node_count, b < node_count
        if real_a and real_b:
            sep = options.node_sep
        elif not real_a and not real_b:
            sep = options.edge_sep
        else:
            sep = (options.node_sep + options.edge_sep) / 2.0
        return (size(a) + size(b)) / 2.0 + sep

    layer_gaps = [
        [0.0] + [separation(layer[i - 1], layer[i]) for i in range(1, len(layer))]
        for layer in layers
    ]

    x: Dict[int, float] = {}
    for layer, gaps in zip(layers, layer_gaps):
        cursor = 0.0
        for v, gap in zip(layer, gaps):
            cursor += gap
            x[v] = cursor
        # Center every layer on 0
        mid = (x[layer[0]] + x[layer[-1]]) / 2.0 if layer else 0.0
        for v in layer:
            x[v] -= mid

    def _pull(r: int, neighbours: Callable[[int], Iterable[int]]) -> None:
        layer = layers[r]
        desired = []
        for v in layer:
            adjacent = [x[u] for u in neighbours(v)]
            desired.append(sum(adjacent) / len(adjacent) if adjacent else x[v])
        for v, placed in zip(layer, _place_layer(layer, desired, layer_gaps[r])):
            x[v] = placed

    for _ in range(passes):
        for r in range(1, len(layers)):
            _pull(r, aug.predecessor_indices)
        for r in range(len(layers) - 2, -1, -1):
            _pull(r, aug.successor_indices)

    leftmost = min((x[v] - size(v) / 2.0 for v in x), default=0.0)
    return {v: c - leftmost for v, c in x.items()}


# =============================================================================
# PIPELINE
# =============================================================================

def _layout_centers(
    node_ids: List[str],
    edges: List[Tuple[int, int]],
    options: LayoutOptions,
) -> Dict[str, Tuple[float, float]]:
    """Run all phases; returns node id -> (center x, center y) in canvas space."""
    n = len(node_ids)
    horizontal = options.direction.is_horizontal

    # Sizes in layout space: ranks run along the primary axis
    cross_size = options.node_height if horizontal else options.node_width
    rank_extent = options.node_width if horizontal else options.node_height

    acyclic = remove_cycles(n, edges)
    rank = assign_layers(n, acyclic)
    aug, ranks = insert_dummy_nodes(n, acyclic, rank)

    layer_count = max(ranks) + 1 if ranks else 0
    layers: List[List[int]] = [[] for _ in range(layer_count)]
    for v in range(len(ranks)):
        layers[ranks[v]].append(v)

    layers = minimize_crossings(aug, layers, options.crossing_sweeps)
    cross = assign_cross_coordinates(aug, layers, n, cross_size, options)

    total_rank = layer_count * rank_extent + max(0, layer_count - 1) * options.rank_sep

    centers: Dict[str, Tuple[float, float]] = {}
    for v, node_id in enumerate(node_ids):
        along = rank[v] * (rank_extent + options.rank_sep) + rank_extent / 2.0
        if options.direction in (LayoutDirection.BOTTOM_TO_TOP, LayoutDirection.RIGHT_TO_LEFT):
            along = total_rank - along
        if horizontal:
            cx, cy = along, cross[v]
        else:
            cx, cy = cross[v], along
        centers[node_id] = (cx + options.margin_x, cy + options.margin_y)
    return centers


def compute_layout(
    nodes: List[NodeData],
    edges: List[EdgeData],
    direction=LayoutDirection.TOP_TO_BOTTOM,
    node_size: Optional[Tuple[float, float]] = None,
    options: Optional[LayoutOptions] = None,
) -> List[NodeData]:
    """
    Position nodes from the graph topology.

    Args:
        nodes: Nodes with unique, non-empty ids
        edges: Edges between them; edges with a missing endpoint are skipped
        direction: TB / BT / LR / RL (or long form, see LayoutDirection.parse)
        node_size: (width, height) of every card; overrides options
        options: Geometry constants (defaults follow LayoutConfig)

    Returns:
        New node list, same order, positions replaced by top-left anchored
        coordinates. On any internal failure, the original list.
    """
    if not nodes:
        return nodes

    try:
        opts = options or LayoutOptions()
        changes: Dict[str, Any] = {"direction": LayoutDirection.parse(direction)}
        if node_size is not None:
            changes["node_width"], changes["node_height"] = (float(s) for s in node_size)
        opts = msgspec.structs.replace(opts, **changes)

        index: Dict[str, int] = {}
        for i, node in enumerate(nodes):
            if not node.id:
                raise ValueError("Layout input contains a node without an id")
            if node.id in index:
                raise ValueError(f"Duplicate node id in layout input: {node.id}")
            index[node.id] = i

        pairs: List[Tuple[int, int]] = []
        for edge in edges:
            if edge.source_id not in index or edge.target_id not in index:
                logger.warning(
                    f"Layout: skipping edge {edge.id} with missing endpoint "
                    f"({edge.source_id} -> {edge.target_id})"
                )
                continue
            if edge.source_id == edge.target_id:
                logger.debug(f"Layout: ignoring self-loop {edge.id}")
                continue
            pairs.append((index[edge.source_id], index[edge.target_id]))

        logger.debug(
            f"Layout: {len(nodes)} node(s), {len(pairs)} edge(s), "
            f"direction {opts.direction.value}"
        )
        centers = _layout_centers([n.id for n in nodes], pairs, opts)
    except Exception:
        logger.exception("Layout computation failed; keeping original positions")
        return list(nodes)

    half_w, half_h = opts.node_width / 2.0, opts.node_height / 2.0
    result: List[NodeData] = []
    for node in nodes:
        cx, cy = centers.get(node.id, (math.nan, math.nan))
        x, y = cx - half_w, cy - half_h
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.warning(f"Layout: no position computed for node {node.id}; keeping original")
            result.append(node)
            continue
        result.append(msgspec.structs.replace(node, position=Position(x=x, y=y)))

    logger.info(f"Layout complete: {len(result)} node(s) positioned ({opts.direction.value})")
    return result


# =============================================================================
# VALIDATION
# =============================================================================

def validate_layout_result(
    original: List[Any],
    result: List[Any],
    overlap_threshold: float = 10.0,
) -> List[str]:
    """
    Sanity checks on a layout result; an empty list means valid.

    Checks same node count and id set, finite positions, and that no two
    nodes sit closer than overlap_threshold on both axes. Accepts any
    objects with `.id` and `.position.x/.y`.
    """
    issues: List[str] = []

    if len(original) != len(result):
        issues.append(f"Node count mismatch: {len(original)} -> {len(result)}")

    original_ids = {n.id for n in original}
    result_ids = {n.id for n in result}
    for node_id in sorted(original_ids - result_ids):
        issues.append(f"Missing node after layout: {node_id}")
    for node_id in sorted(result_ids - original_ids):
        issues.append(f"Unexpected node after layout: {node_id}")

    finite = []
    for node in result:
        pos = getattr(node, "position", None)
        x = getattr(pos, "x", None)
        y = getattr(pos, "y", None)
        if not (isinstance(x, (int, float)) and isinstance(y, (int, float))
                and math.isfinite(x) and math.isfinite(y)):
            issues.append(f"Invalid position for node {node.id}: ({x}, {y})")
            continue
        finite.append((node.id, x, y))

    for i in range(len(finite)):
        for j in range(i + 1, len(finite)):
            id_a, xa, ya = finite[i]
            id_b, xb, yb = finite[j]
            if abs(xa - xb) < overlap_threshold and abs(ya - yb) < overlap_threshold:
                issues.append(f"Potential overlap between nodes {id_a} and {id_b}")

    return issues


def compute_layout_with_validation(
    nodes: List[NodeData],
    edges: List[EdgeData],
    direction=LayoutDirection.TOP_TO_BOTTOM,
    node_size: Optional[Tuple[float, float]] = None,
    options: Optional[LayoutOptions] = None,
    overlap_threshold: float = 10.0,
) -> LayoutResult:
    """compute_layout plus validate_layout_result in one call."""
    laid_out = compute_layout(nodes, edges, direction, node_size=node_size, options=options)
    issues = validate_layout_result(nodes, laid_out, overlap_threshold)
    if issues:
        logger.warning(f"Layout validation failed: {issues}")
    return LayoutResult(nodes=laid_out, issues=issues)

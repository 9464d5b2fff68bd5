"""
Canvas filtering: which cards and edges are visible for a set of filter
options. Pure functions over node/edge lists.

Node predicates: category, tags (case-insensitive substring against the
node's joined tags), owner, search term (title / description / tags),
created-at date range (inclusive).

Edge predicates: confidence, relationship kind, search term (kind /
label), created-at date range. Confidence and kind filters only admit
relationship edges, since other edges carry neither.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set, Dict

import msgspec

from core.schemas import NodeData, EdgeData


class DateRange(msgspec.Struct, kw_only=True, frozen=True):
    start: str
    end: str


class FilterOptions(msgspec.Struct, kw_only=True):
    categories: List[str] = msgspec.field(default_factory=list)
    tags: List[str] = msgspec.field(default_factory=list)
    owners: List[str] = msgspec.field(default_factory=list)
    confidence: List[str] = msgspec.field(default_factory=list)
    relationship_kinds: List[str] = msgspec.field(default_factory=list)
    search_term: str = ""
    date_range: Optional[DateRange] = None

    @property
    def is_active(self) -> bool:
        return bool(
            self.categories or self.tags or self.owners or self.confidence
            or self.relationship_kinds or self.search_term or self.date_range
        )


class FilterState(msgspec.Struct, kw_only=True):
    is_active: bool
    options: FilterOptions
    visible_node_ids: Set[str]
    visible_edge_ids: Set[str]


# =============================================================================
# HELPERS
# =============================================================================

def _normalize(value: Optional[str]) -> str:
    return (value or "").lower()


def _parse_timestamp(value: str, end_of_day: bool = False) -> Optional[datetime]:
    """ISO timestamp or date; naive values are UTC. A bare end date covers the whole day."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if end_of_day and len(value.strip()) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def _in_range(created_at: str, date_range: Optional[DateRange]) -> bool:
    if date_range is None:
        return True
    created = _parse_timestamp(created_at)
    start = _parse_timestamp(date_range.start)
    end = _parse_timestamp(date_range.end, end_of_day=True)
    if created is None or start is None or end is None:
        return False
    return start <= created <= end


# =============================================================================
# NODE PREDICATES
# =============================================================================

def matches_tags(node: NodeData, tags: List[str]) -> bool:
    if not tags:
        return True
    if not node.tags:
        return False
    haystack = " ".join(_normalize(t) for t in node.tags)
    return any(_normalize(t) in haystack for t in tags)


def matches_node_search(node: NodeData, term: str) -> bool:
    if not term:
        return True
    q = _normalize(term)
    return (
        q in _normalize(node.title)
        or q in _normalize(node.description)
        or any(q in _normalize(t) for t in node.tags)
    )


def node_matches(node: NodeData, options: FilterOptions) -> bool:
    if options.categories and node.category not in options.categories:
        return False
    if not matches_tags(node, options.tags):
        return False
    if options.owners and (not node.owner or node.owner not in options.owners):
        return False
    if not matches_node_search(node, options.search_term):
        return False
    return _in_range(node.created_at, options.date_range)


# =============================================================================
# EDGE PREDICATES
# =============================================================================

def edge_matches(edge: EdgeData, options: FilterOptions) -> bool:
    if options.confidence and edge.confidence not in options.confidence:
        return False
    if options.relationship_kinds and edge.relationship_kind not in options.relationship_kinds:
        return False
    if options.search_term:
        q = _normalize(options.search_term)
        if q not in _normalize(edge.relationship_kind) and q not in _normalize(edge.label):
            return False
    return _in_range(edge.created_at, options.date_range)


# =============================================================================
# PUBLIC API
# =============================================================================

def filter_nodes(nodes: List[NodeData], options: FilterOptions) -> List[NodeData]:
    return [n for n in nodes if node_matches(n, options)]


def filter_edges(edges: List[EdgeData], options: FilterOptions) -> List[EdgeData]:
    return [e for e in edges if edge_matches(e, options)]


def apply_filters(
    nodes: List[NodeData],
    edges: List[EdgeData],
    options: FilterOptions,
) -> FilterState:
    """Visible node and edge ids for the given options."""
    return FilterState(
        is_active=options.is_active,
        options=options,
        visible_node_ids={n.id for n in filter_nodes(nodes, options)},
        visible_edge_ids={e.id for e in filter_edges(edges, options)},
    )


def _unique(values) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def get_available_filter_options(nodes: List[NodeData], edges: List[EdgeData]) -> Dict[str, List[str]]:
    """Distinct values present in the data, in first-seen order."""
    return {
        "categories": _unique(n.category for n in nodes),
        "tags": _unique(t for n in nodes for t in n.tags),
        "owners": _unique(n.owner for n in nodes),
        "confidence": _unique(e.confidence for e in edges),
        "relationship_kinds": _unique(e.relationship_kind for e in edges),
    }


def get_filter_summary(options: FilterOptions) -> str:
    """Short human description, e.g. '2 categories, search: "churn"'."""
    parts = []
    if options.categories:
        parts.append(f"{len(options.categories)} categories")
    if options.tags:
        parts.append(f"{len(options.tags)} tags")
    if options.owners:
        parts.append(f"{len(options.owners)} owners")
    if options.confidence:
        parts.append(f"{len(options.confidence)} confidence levels")
    if options.relationship_kinds:
        parts.append(f"{len(options.relationship_kinds)} relationship types")
    if options.search_term:
        parts.append(f'search: "{options.search_term}"')
    if options.date_range:
        parts.append("date range")
    return ", ".join(parts) if parts else "No filters"

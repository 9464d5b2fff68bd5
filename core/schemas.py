"""
METRIMAP SCHEMAS - The Grammar of the Canvas

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure records).

This module defines the data structures that flow through the graph:
- Position / Size: Canvas geometry
- NodeData: The payload attached to every graph node (a card)
- EdgeData: The payload attached to every graph edge
- GroupData: A visual container referencing node ids
- CanvasSettings / ProjectSnapshot: What the persistence collaborator hands us
- Serialization helpers for persistence and export

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. IMMUTABLE IDS: Node/edge IDs are set once and never change
4. FINITE GEOMETRY: A position is always two finite numbers
"""
import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import msgspec

from core.ontology import (
    EdgeCategory,
    DEFAULT_RELATIONSHIP_KIND,
    DEFAULT_CONFIDENCE,
    DEFAULT_WEIGHT,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Generate a new UUID hex string for node/edge/group IDs."""
    return uuid.uuid4().hex


# =============================================================================
# GEOMETRY
# =============================================================================

class Position(msgspec.Struct, kw_only=True):
    """Top-left anchored canvas coordinate."""
    x: float = 0.0
    y: float = 0.0

    def __post_init__(self):
        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise ValueError(f"Position must be finite, got ({self.x}, {self.y})")

    def offset(self, dx: float, dy: float) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


class Size(msgspec.Struct, kw_only=True):
    width: float = 0.0
    height: float = 0.0


# =============================================================================
# NODE DATA (The Card Payload)
# =============================================================================

class NodeData(msgspec.Struct, kw_only=True):
    """
    The payload attached to every node in the rustworkx graph.

    Architecture Notes:
    - `id`: Business UUID (string), NOT the rustworkx integer index
    - `type`: NodeType.value - decides which connections are legal
    - `data`: Arbitrary type-specific payload (formula, chart config, ...)

    The card fields (category, tags, owner, assignees) are the ones
    bulk operations edit.
    """
    # === Identity ===
    id: str                                    # Business UUID (not rx index)
    type: str                                  # NodeType.value (e.g., "metric")

    # === Content ===
    title: str = ""
    description: str = ""
    position: Position = msgspec.field(default_factory=Position)

    # === Card Fields ===
    category: Optional[str] = None             # CardCategory.value
    tags: List[str] = msgspec.field(default_factory=list)
    owner: Optional[str] = None
    assignees: List[str] = msgspec.field(default_factory=list)

    # === Type-specific payload ===
    data: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === Provenance ===
    created_by: str = "system"
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)
    version: int = 1                           # Incremented on each update

    def touch(self) -> None:
        """Update the updated_at timestamp and increment version."""
        self.updated_at = now_utc()
        self.version += 1

    def display_title(self) -> str:
        """Title for labels and messages; falls back to type and short id."""
        return self.title or f"{self.type} ({self.id[:8]})"

    @classmethod
    def create(
        cls,
        type: str,
        title: str = "",
        created_by: str = "system",
        **kwargs
    ) -> "NodeData":
        """Factory method to create a new NodeData with optional custom ID."""
        node_id = kwargs.pop("id", None) or generate_id()
        position = kwargs.pop("position", None)
        if position is None:
            position = Position()
        elif not isinstance(position, Position):
            x, y = position
            position = Position(x=float(x), y=float(y))
        return cls(
            id=node_id,
            type=type.value if hasattr(type, "value") else type,
            title=title,
            position=position,
            created_by=created_by,
            **kwargs
        )


# =============================================================================
# EDGE DATA (The Connection Payload)
# =============================================================================

class EdgeData(msgspec.Struct, kw_only=True):
    """
    The payload attached to every edge in the rustworkx graph.

    `category` is decided by the connection rules when the edge is created
    and never changes afterwards. Only relationship edges carry
    relationship_kind / confidence / weight.
    """
    # === Identity ===
    id: str
    source_id: str                             # Source node UUID
    target_id: str                             # Target node UUID
    category: str                              # EdgeCategory.value

    # === Relationship fields ===
    relationship_kind: Optional[str] = None
    confidence: Optional[str] = None
    weight: Optional[float] = None

    # === Data-flow / reference fields ===
    label: Optional[str] = None
    source_type: Optional[str] = None
    target_type: Optional[str] = None

    notes: str = ""
    data: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === Provenance ===
    created_by: str = "system"
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    @property
    def is_relationship(self) -> bool:
        return self.category == EdgeCategory.RELATIONSHIP.value

    @property
    def is_data_flow(self) -> bool:
        return self.category == EdgeCategory.DATA_FLOW.value

    def touch(self) -> None:
        self.updated_at = now_utc()

    @classmethod
    def create(
        cls,
        source_id: str,
        target_id: str,
        category: str,
        **kwargs
    ) -> "EdgeData":
        """Factory method to create an EdgeData."""
        edge_id = kwargs.pop("id", None) or generate_id()
        return cls(
            id=edge_id,
            source_id=source_id,
            target_id=target_id,
            category=category.value if hasattr(category, "value") else category,
            **kwargs
        )

    @classmethod
    def relationship(cls, source_id: str, target_id: str, **kwargs) -> "EdgeData":
        """Create a relationship edge with the default kind/confidence/weight."""
        kwargs.setdefault("relationship_kind", DEFAULT_RELATIONSHIP_KIND)
        kwargs.setdefault("confidence", DEFAULT_CONFIDENCE)
        kwargs.setdefault("weight", DEFAULT_WEIGHT)
        return cls.create(source_id, target_id, EdgeCategory.RELATIONSHIP.value, **kwargs)

    @classmethod
    def data_flow(cls, source_id: str, target_id: str, **kwargs) -> "EdgeData":
        """Create a data-flow edge (source feeds target)."""
        return cls.create(source_id, target_id, EdgeCategory.DATA_FLOW.value, **kwargs)

    @classmethod
    def reference(cls, source_id: str, target_id: str, **kwargs) -> "EdgeData":
        """Create a reference edge (annotation points at target)."""
        return cls.create(source_id, target_id, EdgeCategory.REFERENCE.value, **kwargs)


# =============================================================================
# GROUP DATA
# =============================================================================

class GroupData(msgspec.Struct, kw_only=True):
    """
    A named rectangle around a set of nodes.

    Purely visual: groups never take part in connection rules,
    cycle checks or layout.
    """
    id: str
    name: str
    node_ids: List[str] = msgspec.field(default_factory=list)
    position: Position = msgspec.field(default_factory=Position)
    size: Size = msgspec.field(default_factory=Size)
    description: str = ""
    color: str = "#e5e7eb"
    is_collapsed: bool = False
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    def touch(self) -> None:
        self.updated_at = now_utc()


# =============================================================================
# PROJECT SNAPSHOT (Persistence Boundary)
# =============================================================================

class CanvasSettings(msgspec.Struct, kw_only=True):
    """Per-project canvas configuration persisted with the project."""
    layout_direction: str = "TB"
    auto_layout_enabled: bool = False


class ProjectSnapshot(msgspec.Struct, kw_only=True):
    """Full node/edge/group lists for one project, as loaded from storage."""
    project_id: str
    nodes: List[NodeData] = msgspec.field(default_factory=list)
    edges: List[EdgeData] = msgspec.field(default_factory=list)
    groups: List[GroupData] = msgspec.field(default_factory=list)
    settings: CanvasSettings = msgspec.field(default_factory=CanvasSettings)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application
_encoder = msgspec.json.Encoder()
_node_decoder = msgspec.json.Decoder(type=NodeData)
_snapshot_decoder = msgspec.json.Decoder(type=ProjectSnapshot)


def serialize_snapshot(snapshot: ProjectSnapshot) -> bytes:
    """Serialize a whole project snapshot to JSON bytes."""
    return _encoder.encode(snapshot)


def deserialize_snapshot(data: bytes) -> ProjectSnapshot:
    """
    Deserialize JSON bytes to a ProjectSnapshot.

    Raises:
        msgspec.ValidationError: If the payload does not match the schema
            (including non-finite positions).
    """
    return _snapshot_decoder.decode(data)


def clone_node(node: NodeData) -> NodeData:
    """Deep copy a node through its JSON form, so nested lists are not shared."""
    return _node_decoder.decode(_encoder.encode(node))

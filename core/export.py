"""
METRIMAP EXPORT - Selection Snapshots

Read-only serialization of a selection:
- JSON: selected nodes, every edge touching them, export timestamp and counts
- CSV: flat node table (id, title, description, category, tags, owner,
  created_at, updated_at), tags joined by ";", every field quoted

Nothing here mutates the graph. The bulk coordinator wraps these into
an OperationResult; the CLI writes them to disk.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Tuple, Iterable, Optional, Union

import msgspec
import polars as pl

from core.schemas import NodeData, EdgeData, now_utc


logger = logging.getLogger(__name__)


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"

    @classmethod
    def parse(cls, value) -> "ExportFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported export format: {value}") from None


MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
}

CSV_COLUMNS = [
    "id",
    "title",
    "description",
    "category",
    "tags",
    "owner",
    "created_at",
    "updated_at",
]


class ExportCount(msgspec.Struct, kw_only=True):
    nodes: int
    edges: int


class ExportSnapshot(msgspec.Struct, kw_only=True):
    """The JSON export document."""
    nodes: List[NodeData]
    edges: List[EdgeData]
    exported_at: str
    count: ExportCount


class ExportArtifact(msgspec.Struct, kw_only=True, frozen=True):
    """A downloadable file: name, media type and bytes."""
    filename: str
    media_type: str
    content: bytes


# =============================================================================
# SNAPSHOT
# =============================================================================

def collect_selection(graph, ids: Iterable[str]) -> Tuple[List[NodeData], List[EdgeData], List[str]]:
    """
    Resolve a selection against the graph.

    Returns:
        (selected nodes, edges touching them or selected directly, unknown ids)
    """
    node_ids: List[str] = []
    edge_ids: List[str] = []
    missing: List[str] = []
    for item_id in dict.fromkeys(ids):
        if graph.has_node(item_id):
            node_ids.append(item_id)
        elif graph.has_edge(item_id):
            edge_ids.append(item_id)
        else:
            missing.append(item_id)

    selected = set(node_ids)
    explicit = set(edge_ids)
    nodes = [graph.get_node(node_id) for node_id in node_ids]
    edges = [
        e for e in graph.get_all_edges()
        if e.id in explicit or e.source_id in selected or e.target_id in selected
    ]
    return nodes, edges, missing


def build_snapshot(
    nodes: List[NodeData],
    edges: List[EdgeData],
    exported_at: Optional[str] = None,
) -> ExportSnapshot:
    return ExportSnapshot(
        nodes=list(nodes),
        edges=list(edges),
        exported_at=exported_at or now_utc(),
        count=ExportCount(nodes=len(nodes), edges=len(edges)),
    )


# =============================================================================
# SERIALIZERS
# =============================================================================

def to_json(snapshot: ExportSnapshot) -> bytes:
    """Pretty-printed JSON document."""
    return msgspec.json.format(msgspec.json.encode(snapshot), indent=2)


def nodes_to_frame(nodes: List[NodeData]) -> pl.DataFrame:
    """Flat node table with the CSV columns, all strings, no nulls."""
    rows = {
        "id": [n.id for n in nodes],
        "title": [n.title for n in nodes],
        "description": [n.description for n in nodes],
        "category": [n.category or "" for n in nodes],
        "tags": [";".join(n.tags) for n in nodes],
        "owner": [n.owner or "" for n in nodes],
        "created_at": [n.created_at for n in nodes],
        "updated_at": [n.updated_at for n in nodes],
    }
    return pl.DataFrame(rows, schema={col: pl.Utf8 for col in CSV_COLUMNS})


def to_csv(nodes: List[NodeData]) -> bytes:
    """CSV node table with every field quoted."""
    return nodes_to_frame(nodes).write_csv(quote_style="always").encode("utf-8")


def export_filename(fmt: ExportFormat, prefix: str, when: Optional[datetime] = None) -> str:
    """e.g. metrimap-export-2024-05-01.json"""
    day = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{prefix}-{day}.{fmt.value}"


def build_artifact(
    nodes: List[NodeData],
    edges: List[EdgeData],
    fmt,
    json_prefix: str = "metrimap-export",
    csv_prefix: str = "metrimap-metrics",
    exported_at: Optional[str] = None,
) -> ExportArtifact:
    """
    Serialize a selection into a downloadable artifact.

    Raises:
        ValueError: If the format is not json or csv
    """
    fmt = ExportFormat.parse(fmt)
    if fmt == ExportFormat.JSON:
        content = to_json(build_snapshot(nodes, edges, exported_at))
        filename = export_filename(fmt, json_prefix)
    else:
        content = to_csv(nodes)
        filename = export_filename(fmt, csv_prefix)
    return ExportArtifact(filename=filename, media_type=MEDIA_TYPES[fmt], content=content)


def write_artifact(artifact: ExportArtifact, destination: Union[str, Path]) -> Path:
    """
    Write an artifact into a directory (created if needed).

    Returns:
        Path of the written file
    """
    directory = Path(destination)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / artifact.filename
    path.write_bytes(artifact.content)
    logger.info(f"Wrote export {path} ({len(artifact.content)} bytes)")
    return path

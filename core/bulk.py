"""
METRIMAP BULK OPERATIONS - One Operation, Many Items

Applies a single logical operation (update / delete / duplicate / tag /
export) across a selection of nodes and/or edges, and aggregates the
per-item outcome into one OperationResult.

Execution model:
- Iterate the target ids; look each one up in the graph; apply; record
- A per-item failure is recorded in `errors` and the loop continues
- Partial success is normal: success == (no errors), processed == items
  that did succeed
- Operation-level preconditions (nothing selected, empty or invalid
  payload) produce a failed result with processed == 0; nothing raises

Also home of Selection, the transient set of ids the user operates on.
"""
import logging
import math
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable, Union, Set

import msgspec

from core.ontology import is_card_category, is_relationship_kind, is_confidence_level
from core.schemas import clone_node, generate_id, now_utc
from core.graph_db import CanvasGraph, GraphError
from core.export import ExportArtifact, ExportFormat, build_artifact, collect_selection, write_artifact
from infrastructure.config import BulkConfig
from infrastructure.event_bus import EventType


logger = logging.getLogger(__name__)


# =============================================================================
# SELECTION
# =============================================================================

class Selection:
    """
    Ordered node and edge ids the next bulk operation targets.

    Owned by the UI layer; the coordinator clears it after a delete.
    """

    def __init__(self, node_ids: Iterable[str] = (), edge_ids: Iterable[str] = ()):
        self._node_ids: Dict[str, None] = dict.fromkeys(node_ids)
        self._edge_ids: Dict[str, None] = dict.fromkeys(edge_ids)

    @property
    def node_ids(self) -> List[str]:
        return list(self._node_ids)

    @property
    def edge_ids(self) -> List[str]:
        return list(self._edge_ids)

    def ids(self) -> List[str]:
        """Node ids first, then edge ids."""
        return self.node_ids + self.edge_ids

    @property
    def count(self) -> int:
        return len(self._node_ids) + len(self._edge_ids)

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    @property
    def is_multi_select(self) -> bool:
        return self.count > 1

    def select_nodes(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            self._node_ids[node_id] = None

    def select_edges(self, edge_ids: Iterable[str]) -> None:
        for edge_id in edge_ids:
            self._edge_ids[edge_id] = None

    def deselect(self, item_id: str) -> None:
        self._node_ids.pop(item_id, None)
        self._edge_ids.pop(item_id, None)

    def toggle_node(self, node_id: str) -> bool:
        """Returns True if the node is selected afterwards."""
        if node_id in self._node_ids:
            del self._node_ids[node_id]
            return False
        self._node_ids[node_id] = None
        return True

    def toggle_edge(self, edge_id: str) -> bool:
        if edge_id in self._edge_ids:
            del self._edge_ids[edge_id]
            return False
        self._edge_ids[edge_id] = None
        return True

    def replace(self, node_ids: Iterable[str] = (), edge_ids: Iterable[str] = ()) -> None:
        self._node_ids = dict.fromkeys(node_ids)
        self._edge_ids = dict.fromkeys(edge_ids)

    def clear(self) -> None:
        self._node_ids.clear()
        self._edge_ids.clear()

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._node_ids or item_id in self._edge_ids

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return f"Selection(nodes={len(self._node_ids)}, edges={len(self._edge_ids)})"


# =============================================================================
# PAYLOADS AND RESULTS
# =============================================================================

class TargetKind(str, Enum):
    """Which shape of item a bulk update targets."""
    NODES = "nodes"
    EDGES = "edges"


NODE_FIELDS = ("category", "tags", "owner", "assignees")
EDGE_FIELDS = ("relationship_kind", "confidence", "weight")


class BulkUpdateData(msgspec.Struct, kw_only=True):
    """
    Fields to set on every target. None means "leave unchanged".

    Node-shaped: category, tags, owner, assignees.
    Edge-shaped: relationship_kind, confidence, weight.
    """
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    owner: Optional[str] = None
    assignees: Optional[List[str]] = None
    relationship_kind: Optional[str] = None
    confidence: Optional[str] = None
    weight: Optional[float] = None

    @classmethod
    def coerce(cls, data: Union["BulkUpdateData", Dict[str, Any]]) -> "BulkUpdateData":
        """
        Type-check a payload field by field.

        Raises:
            msgspec.ValidationError: If a field has the wrong type
        """
        raw = msgspec.structs.asdict(data) if isinstance(data, cls) else data
        return msgspec.convert(raw, cls)

    def node_fields(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in NODE_FIELDS if getattr(self, f) is not None}

    def edge_fields(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in EDGE_FIELDS if getattr(self, f) is not None}

    def validate(self, target_kind: TargetKind) -> List[str]:
        """Payload problems, empty when the payload is usable."""
        problems = []
        own, other = (
            (self.node_fields(), self.edge_fields())
            if target_kind == TargetKind.NODES
            else (self.edge_fields(), self.node_fields())
        )
        if other:
            problems.append(
                f"Fields {sorted(other)} cannot be applied to {target_kind.value}"
            )
        if not own:
            problems.append(f"No {target_kind.value[:-1]} fields to update")
        if self.category is not None and not is_card_category(self.category):
            problems.append(f"Invalid category: {self.category}")
        if self.relationship_kind is not None and not is_relationship_kind(self.relationship_kind):
            problems.append(f"Invalid relationship kind: {self.relationship_kind}")
        if self.confidence is not None and not is_confidence_level(self.confidence):
            problems.append(f"Invalid confidence level: {self.confidence}")
        if self.weight is not None and not math.isfinite(self.weight):
            problems.append(f"Invalid weight: {self.weight}")
        return problems


class OperationResult(msgspec.Struct, kw_only=True):
    success: bool
    processed: int
    errors: List[str] = msgspec.field(default_factory=list)
    updated_ids: List[str] = msgspec.field(default_factory=list)
    artifact: Optional[ExportArtifact] = None

    @classmethod
    def from_items(cls, updated_ids: List[str], errors: List[str], **kwargs) -> "OperationResult":
        return cls(
            success=not errors,
            processed=len(updated_ids),
            errors=list(errors),
            updated_ids=list(updated_ids),
            **kwargs,
        )

    @classmethod
    def failure(cls, *messages: str) -> "OperationResult":
        return cls(success=False, processed=0, errors=list(messages))


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip, drop empties, dedupe (first occurrence wins)."""
    return list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))


# =============================================================================
# COORDINATOR
# =============================================================================

class BulkOperationCoordinator:
    """
    Runs bulk operations against one CanvasGraph and Selection.

    Every operation accepts an explicit id list; None means the current
    selection. State exposed while running: is_processing, and the
    last_result of the most recent operation until clear_last_result().
    """

    def __init__(
        self,
        graph: CanvasGraph,
        selection: Optional[Selection] = None,
        config: Optional[BulkConfig] = None,
    ):
        self._graph = graph
        self._selection = selection if selection is not None else Selection()
        self._config = config or BulkConfig()
        self._is_processing = False
        self._last_result: Optional[OperationResult] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def last_result(self) -> Optional[OperationResult]:
        return self._last_result

    def clear_last_result(self) -> None:
        self._last_result = None

    def _targets(self, ids: Optional[Iterable[str]]) -> List[str]:
        source = self._selection.ids() if ids is None else ids
        return list(dict.fromkeys(source))

    def _finish(self, operation: str, result: OperationResult) -> OperationResult:
        self._last_result = result
        logger.info(
            f"Bulk {operation}: processed {result.processed}, "
            f"{len(result.errors)} error(s)"
        )
        return result

    def _fail_item(self, errors: List[str], message: str) -> None:
        logger.warning(message)
        errors.append(message)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def bulk_update(
        self,
        data: Union[BulkUpdateData, Dict[str, Any]],
        target_kind: Union[TargetKind, str],
        ids: Optional[Iterable[str]] = None,
    ) -> OperationResult:
        """
        Set the same fields on every target node (or every target edge).

        Edge-shaped fields only apply to relationship edges; other edges
        are per-item errors, as are ids of the wrong kind.
        """
        self._is_processing = True
        try:
            try:
                kind = TargetKind(target_kind)
            except ValueError:
                return self._finish("update", OperationResult.failure(
                    f"Unknown target kind: {target_kind}"
                ))
            targets = self._targets(ids)
            if not targets:
                return self._finish("update", OperationResult.failure(
                    f"No {kind.value} selected for update"
                ))
            try:
                data = BulkUpdateData.coerce(data)
            except msgspec.ValidationError as e:
                return self._finish("update", OperationResult.failure(
                    f"Invalid update payload: {e}"
                ))
            problems = data.validate(kind)
            if problems:
                return self._finish("update", OperationResult.failure(*problems))

            errors: List[str] = []
            updated: List[str] = []
            if kind == TargetKind.NODES:
                fields = data.node_fields()
                for item_id in targets:
                    if not self._graph.has_node(item_id):
                        reason = "is an edge" if self._graph.has_edge(item_id) else "node not found"
                        self._fail_item(errors, f"Failed to update {item_id}: {reason}")
                        continue
                    try:
                        changes = {
                            k: list(v) if isinstance(v, list) else v
                            for k, v in fields.items()
                        }
                        self._graph.update_node_fields(item_id, source="bulk", **changes)
                        updated.append(item_id)
                    except (GraphError, ValueError, TypeError) as e:
                        self._fail_item(errors, f"Failed to update {item_id}: {e}")
            else:
                fields = data.edge_fields()
                for item_id in targets:
                    if not self._graph.has_edge(item_id):
                        reason = "is a node" if self._graph.has_node(item_id) else "edge not found"
                        self._fail_item(errors, f"Failed to update relationship {item_id}: {reason}")
                        continue
                    try:
                        edge = self._graph.get_edge(item_id)
                        if not edge.is_relationship:
                            self._fail_item(
                                errors,
                                f"Failed to update relationship {item_id}: "
                                f"{edge.category} edges carry no kind, confidence or weight",
                            )
                            continue
                        self._graph.update_edge_fields(item_id, source="bulk", **fields)
                        updated.append(item_id)
                    except (GraphError, ValueError, TypeError) as e:
                        self._fail_item(errors, f"Failed to update relationship {item_id}: {e}")

            return self._finish("update", OperationResult.from_items(updated, errors))
        finally:
            self._is_processing = False

    # =========================================================================
    # DELETE
    # =========================================================================

    def bulk_delete(self, ids: Optional[Iterable[str]] = None) -> OperationResult:
        """
        Delete target nodes first, then target edges, then clear the
        selection (always, even on partial failure).

        Edges removed because their node went away count as processed
        when they were targets themselves.
        """
        self._is_processing = True
        try:
            targets = self._targets(ids)
            if not targets:
                return self._finish("delete", OperationResult.failure(
                    "No items selected for deletion"
                ))

            errors: List[str] = []
            deleted: List[str] = []
            handled: Set[str] = set()
            target_set = set(targets)

            for item_id in targets:
                if not self._graph.has_node(item_id):
                    continue
                handled.add(item_id)
                try:
                    cascaded = [e.id for e in self._graph.incident_edges(item_id)]
                    self._graph.remove_node(item_id, source="bulk")
                    deleted.append(item_id)
                    for edge_id in cascaded:
                        if edge_id in target_set and edge_id not in handled:
                            handled.add(edge_id)
                            deleted.append(edge_id)
                except GraphError as e:
                    self._fail_item(errors, f"Failed to delete node {item_id}: {e}")

            for item_id in targets:
                if item_id in handled:
                    continue
                handled.add(item_id)
                if not self._graph.has_edge(item_id):
                    self._fail_item(errors, f"Failed to delete {item_id}: not found")
                    continue
                try:
                    self._graph.remove_edge(item_id, source="bulk")
                    deleted.append(item_id)
                except GraphError as e:
                    self._fail_item(errors, f"Failed to delete relationship {item_id}: {e}")

            return self._finish("delete", OperationResult.from_items(deleted, errors))
        finally:
            self._selection.clear()
            bus = self._graph.event_bus
            if bus is not None:
                bus.emit(EventType.SELECTION_CLEARED, {}, source="bulk")
            self._is_processing = False

    # =========================================================================
    # DUPLICATE
    # =========================================================================

    def bulk_duplicate(self, ids: Optional[Iterable[str]] = None) -> OperationResult:
        """
        Copy every target node: fresh id, suffixed title, offset position.
        Edges are never copied; edge ids in the targets are ignored.
        """
        self._is_processing = True
        try:
            targets = [t for t in self._targets(ids) if not self._graph.has_edge(t)]
            if not targets:
                return self._finish("duplicate", OperationResult.failure(
                    "No nodes selected for duplication"
                ))

            cfg = self._config
            errors: List[str] = []
            created: List[str] = []
            for item_id in targets:
                if not self._graph.has_node(item_id):
                    self._fail_item(errors, f"Failed to duplicate {item_id}: node not found")
                    continue
                try:
                    original = self._graph.get_node(item_id)
                    copy = clone_node(original)
                    timestamp = now_utc()
                    copy = msgspec.structs.replace(
                        copy,
                        id=generate_id(),
                        title=f"{original.title}{cfg.duplicate_suffix}",
                        position=original.position.offset(
                            cfg.duplicate_offset_x, cfg.duplicate_offset_y
                        ),
                        created_at=timestamp,
                        updated_at=timestamp,
                        version=1,
                    )
                    self._graph.add_node(copy, source="bulk")
                    created.append(copy.id)
                except (GraphError, ValueError) as e:
                    self._fail_item(errors, f"Failed to duplicate {item_id}: {e}")

            return self._finish("duplicate", OperationResult.from_items(created, errors))
        finally:
            self._is_processing = False

    # =========================================================================
    # TAGS
    # =========================================================================

    def _retag(self, operation: str, tags: Iterable[str], ids, merge) -> OperationResult:
        self._is_processing = True
        try:
            requested = normalize_tags(tags)
            if not requested:
                return self._finish(operation, OperationResult.failure("No tags given"))
            targets = [t for t in self._targets(ids) if not self._graph.has_edge(t)]
            if not targets:
                return self._finish(operation, OperationResult.failure(
                    "No nodes selected for tagging"
                ))

            errors: List[str] = []
            updated: List[str] = []
            for item_id in targets:
                if not self._graph.has_node(item_id):
                    self._fail_item(errors, f"Failed to update tags for {item_id}: node not found")
                    continue
                try:
                    node = self._graph.get_node(item_id)
                    new_tags = merge(list(node.tags), requested)
                    # Already in the requested state: a no-op, not an error
                    if new_tags != list(node.tags):
                        self._graph.update_node_fields(item_id, source="bulk", tags=new_tags)
                    updated.append(item_id)
                except (GraphError, ValueError) as e:
                    self._fail_item(errors, f"Failed to update tags for {item_id}: {e}")

            return self._finish(operation, OperationResult.from_items(updated, errors))
        finally:
            self._is_processing = False

    def bulk_add_tags(self, tags: Iterable[str], ids: Optional[Iterable[str]] = None) -> OperationResult:
        """Union of each node's tags with `tags` (idempotent)."""
        return self._retag(
            "add-tags", tags, ids,
            lambda current, requested: current + [t for t in requested if t not in current],
        )

    def bulk_remove_tags(self, tags: Iterable[str], ids: Optional[Iterable[str]] = None) -> OperationResult:
        """Difference of each node's tags with `tags` (idempotent)."""
        return self._retag(
            "remove-tags", tags, ids,
            lambda current, requested: [t for t in current if t not in requested],
        )

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_selection(
        self,
        format: Union[ExportFormat, str] = ExportFormat.JSON,
        ids: Optional[Iterable[str]] = None,
        destination: Optional[Union[str, Path]] = None,
    ) -> OperationResult:
        """
        Snapshot the selected nodes plus every edge touching them.

        Read-only. The serialized file is returned as result.artifact and,
        when `destination` is a directory path, written there too.
        """
        self._is_processing = True
        try:
            try:
                fmt = ExportFormat.parse(format)
            except ValueError as e:
                return self._finish("export", OperationResult.failure(str(e)))

            targets = self._targets(ids)
            if not targets:
                return self._finish("export", OperationResult.failure(
                    "No items selected for export"
                ))

            nodes, edges, missing = collect_selection(self._graph, targets)
            errors = [f"Cannot export {item_id}: not found" for item_id in missing]
            for message in errors:
                logger.warning(message)

            artifact = build_artifact(
                nodes, edges, fmt,
                json_prefix=self._config.export_prefix,
                csv_prefix=self._config.csv_prefix,
            )
            if destination is not None:
                try:
                    write_artifact(artifact, destination)
                except OSError as e:
                    self._fail_item(errors, f"Failed to write export to {destination}: {e}")

            exported = [n.id for n in nodes] + [e.id for e in edges]
            return self._finish("export", OperationResult.from_items(
                exported, errors, artifact=artifact
            ))
        finally:
            self._is_processing = False

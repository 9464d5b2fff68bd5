"""
METRIMAP SESSION - One Canvas, One Owner

CanvasSession is the explicit context object for a single project's
canvas. It owns the Graph Model and everything that operates on it:

    CanvasSession
    ├── EventBus          (persistence / collaboration subscribe here)
    ├── CanvasGraph       (nodes, edges, groups)
    ├── Selection         (ids the next bulk operation targets)
    ├── BulkOperationCoordinator
    ├── LayoutScheduler   (debounced auto-layout)
    ├── Changelog         (recent history)
    └── CanvasSettings    (layout direction, auto-layout flag)

Components never reach for shared global state; they are handed the
session (or the piece of it they need).

Usage:
    session = CanvasSession.from_snapshot(snapshot, config=load_config())
    edge = session.connect(source_id, target_id)   # connection drag
    session.apply_layout("LR")
    result = session.bulk.bulk_add_tags(["q3"])
"""
import logging
from typing import List, Optional, Dict, Tuple

from core.schemas import CanvasSettings, EdgeData, NodeData, ProjectSnapshot
from core.rules import ConnectionDecision
from core.graph_db import CanvasGraph
from core.bulk import BulkOperationCoordinator, Selection
from infrastructure.config import CanvasConfig
from infrastructure.changelog import Changelog
from infrastructure.event_bus import EventBus, EventType, GraphEvent
from viz.layout import LayoutDirection, LayoutOptions, compute_layout
from viz.scheduler import LayoutScheduler


logger = logging.getLogger(__name__)


class CanvasSession:
    """Single owner of one project's in-memory canvas."""

    def __init__(
        self,
        project_id: str,
        config: Optional[CanvasConfig] = None,
        settings: Optional[CanvasSettings] = None,
        clock=None,
    ):
        self.project_id = project_id
        self.config = config or CanvasConfig()
        self.settings = self._checked_settings(settings or CanvasSettings(
            layout_direction=self.config.layout.direction,
            auto_layout_enabled=self.config.layout.auto_layout,
        ))

        self.event_bus = EventBus()
        self.graph = CanvasGraph(event_bus=self.event_bus, group_config=self.config.groups)
        self.selection = Selection()
        self.bulk = BulkOperationCoordinator(self.graph, self.selection, self.config.bulk)

        scheduler_kwargs = {"delay": self.config.layout.debounce_seconds}
        if clock is not None:
            scheduler_kwargs["clock"] = clock
        self.scheduler = LayoutScheduler(self.apply_layout, **scheduler_kwargs)

        self.changelog = Changelog(max_entries=self.config.changelog.max_entries)
        self.changelog.attach(self.event_bus)

        self.event_bus.subscribe(EventType.NODE_CREATED, self._on_node_count_changed)
        self.event_bus.subscribe(EventType.NODE_DELETED, self._on_node_count_changed)

    # =========================================================================
    # LOADING / SNAPSHOTS
    # =========================================================================

    @classmethod
    def from_snapshot(
        cls,
        snapshot: ProjectSnapshot,
        config: Optional[CanvasConfig] = None,
        clock=None,
    ) -> "CanvasSession":
        session = cls(snapshot.project_id, config=config, settings=snapshot.settings, clock=clock)
        session.load_snapshot(snapshot)
        return session

    def load_snapshot(self, snapshot: ProjectSnapshot) -> List[str]:
        """
        Replace the canvas with a persisted snapshot.

        Malformed edges and group members are skipped with warnings.

        Returns:
            One message per skipped item
        """
        if snapshot.project_id != self.project_id:
            logger.warning(
                f"Loading snapshot of project {snapshot.project_id} "
                f"into session {self.project_id}"
            )
        self.graph.clear()
        self.selection.clear()
        self.scheduler.cancel()
        self.settings = self._checked_settings(snapshot.settings)
        return self.graph.load(snapshot.nodes, snapshot.edges, snapshot.groups)

    def export_snapshot(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            project_id=self.project_id,
            nodes=self.graph.get_all_nodes(),
            edges=self.graph.get_all_edges(),
            groups=self.graph.get_all_groups(),
            settings=self.settings,
        )

    # =========================================================================
    # CONNECTION DRAG
    # =========================================================================

    def check_connection(self, source_id: str, target_id: str) -> ConnectionDecision:
        return self.graph.check_connection(source_id, target_id)

    def connect(self, source_id: str, target_id: str, **overrides) -> EdgeData:
        """
        Accept a connection-drag event.

        Raises:
            NodeNotFoundError, ConnectionRuleError, CycleViolationError
        """
        return self.graph.connect(source_id, target_id, source="session", **overrides)

    # =========================================================================
    # LAYOUT
    # =========================================================================

    @property
    def layout_direction(self) -> LayoutDirection:
        return self._resolve_direction(self.settings.layout_direction)

    def _resolve_direction(self, value) -> LayoutDirection:
        """Parse a stored direction, falling back to the configured default."""
        try:
            return LayoutDirection.parse(value)
        except ValueError:
            logger.warning(f"Unknown layout direction {value!r}, using {self.config.layout.direction!r}")
        try:
            return LayoutDirection.parse(self.config.layout.direction)
        except ValueError:
            logger.warning(f"Unknown configured layout direction {self.config.layout.direction!r}, using TB")
            return LayoutDirection.TOP_TO_BOTTOM

    def _checked_settings(self, settings: CanvasSettings) -> CanvasSettings:
        settings.layout_direction = self._resolve_direction(settings.layout_direction).value
        return settings

    def apply_layout(
        self,
        direction=None,
        node_size: Optional[Tuple[float, float]] = None,
    ) -> List[str]:
        """
        Lay out the whole canvas and write the positions back.

        One POSITIONS_UPDATED event is published for the batch. A failed
        layout leaves every position unchanged.
        An unknown stored direction falls back to the configured one.

        Returns:
            Ids of the nodes that moved

        Raises:
            ValueError: If an explicit direction names no direction
        """
        nodes = self.graph.get_all_nodes()
        if not nodes:
            return []
        options = LayoutOptions.from_config(
            self.config.layout,
            direction=direction or self.layout_direction,
            node_size=node_size,
        )
        laid_out = compute_layout(
            nodes,
            self.graph.get_all_edges(),
            options.direction,
            options=options,
        )
        positions: Dict[str, Tuple[float, float]] = {
            n.id: (n.position.x, n.position.y) for n in laid_out
        }
        return self.graph.apply_positions(positions, project_id=self.project_id)

    def poll(self) -> bool:
        """Host tick: run the debounced auto-layout if it is due."""
        return self.scheduler.poll()

    def _on_node_count_changed(self, event: GraphEvent) -> None:
        if self.settings.auto_layout_enabled:
            self.scheduler.schedule()

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def set_layout_direction(self, direction) -> CanvasSettings:
        parsed = LayoutDirection.parse(direction)
        self.settings.layout_direction = parsed.value
        self._settings_changed()
        return self.settings

    def set_auto_layout(self, enabled: bool) -> CanvasSettings:
        self.settings.auto_layout_enabled = bool(enabled)
        if not enabled:
            self.scheduler.cancel()
        self._settings_changed()
        return self.settings

    def _settings_changed(self) -> None:
        self.event_bus.emit(
            EventType.SETTINGS_CHANGED,
            {
                "project_id": self.project_id,
                "layout_direction": self.settings.layout_direction,
                "auto_layout_enabled": self.settings.auto_layout_enabled,
            },
            source="session",
        )

    # =========================================================================
    # CONVENIENCE
    # =========================================================================

    def add_node(self, node: NodeData) -> NodeData:
        return self.graph.add_node(node, source="session")

    def remove_node(self, node_id: str) -> NodeData:
        self.selection.deselect(node_id)
        return self.graph.remove_node(node_id, source="session")

    def __repr__(self) -> str:
        return (
            f"CanvasSession(project_id={self.project_id!r}, "
            f"nodes={self.graph.node_count}, edges={self.graph.edge_count})"
        )

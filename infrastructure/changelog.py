"""
METRIMAP CHANGELOG - Recent Canvas History

Subscribes to the session's EventBus and keeps a bounded, in-memory
ring buffer of what changed on the canvas ("Node created: Revenue").

Architecture:
- ChangelogEntry: One row of history (msgspec struct)
- Changelog: Thread-safe ring buffer + EventBus subscriber

Usage:
    changelog = Changelog(max_entries=500)
    changelog.attach(session.event_bus)
    ...
    for entry in changelog.get_last(10):
        print(entry.timestamp, entry.action, entry.target_name)
"""
import threading
from collections import deque
from datetime import datetime, timezone
from typing import List, Optional, Dict, Tuple

import msgspec

from infrastructure.event_bus import EventBus, EventType, GraphEvent


class ChangelogEntry(msgspec.Struct, kw_only=True, frozen=True):
    timestamp: str
    action: str               # "created" | "updated" | "deleted" | "moved" | ...
    target_kind: str          # "node" | "edge" | "group" | "canvas"
    target_id: str
    target_name: str = ""
    source: str = ""


# EventType -> (action, target kind, payload id key, payload name key)
_EVENT_ROWS: Dict[EventType, Tuple[str, str, str, str]] = {
    EventType.NODE_CREATED: ("created", "node", "node_id", "title"),
    EventType.NODE_UPDATED: ("updated", "node", "node_id", "title"),
    EventType.NODE_DELETED: ("deleted", "node", "node_id", "title"),
    EventType.EDGE_CREATED: ("created", "edge", "edge_id", "category"),
    EventType.EDGE_UPDATED: ("updated", "edge", "edge_id", "category"),
    EventType.EDGE_DELETED: ("deleted", "edge", "edge_id", "category"),
    EventType.GROUP_CREATED: ("created", "group", "group_id", "name"),
    EventType.GROUP_UPDATED: ("updated", "group", "group_id", "name"),
    EventType.GROUP_DELETED: ("deleted", "group", "group_id", "name"),
}


class Changelog:
    """
    Thread-safe ring buffer of canvas changes.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_entries: int = 1000):
        self._buffer: deque = deque(maxlen=max_entries)
        self._lock = threading.RLock()

    # =========================================================================
    # EVENT BUS INTEGRATION
    # =========================================================================

    def attach(self, bus: EventBus) -> None:
        bus.subscribe_all(self.record_event)

    def detach(self, bus: EventBus) -> None:
        for event_type in EventType:
            bus.unsubscribe(event_type, self.record_event)

    def record_event(self, event: GraphEvent) -> None:
        """Translate a GraphEvent into a ChangelogEntry."""
        timestamp = datetime.fromtimestamp(event.timestamp, timezone.utc).isoformat()
        row = _EVENT_ROWS.get(event.type)

        if row is not None:
            action, kind, id_key, name_key = row
            self.append(ChangelogEntry(
                timestamp=timestamp,
                action=action,
                target_kind=kind,
                target_id=str(event.payload.get(id_key, "")),
                target_name=str(event.payload.get(name_key) or ""),
                source=event.source,
            ))
        elif event.type == EventType.POSITIONS_UPDATED:
            count = len(event.payload.get("positions", {}))
            self.append(ChangelogEntry(
                timestamp=timestamp,
                action="moved",
                target_kind="canvas",
                target_id=str(event.payload.get("project_id", "")),
                target_name=f"{count} node(s)",
                source=event.source,
            ))
        # Selection and settings events are not history

    # =========================================================================
    # BUFFER
    # =========================================================================

    def append(self, entry: ChangelogEntry) -> None:
        with self._lock:
            self._buffer.append(entry)

    def get_last(self, n: int) -> List[ChangelogEntry]:
        """Get the last n entries (oldest first)."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if n > 0 else []

    def get_since(self, timestamp: str) -> List[ChangelogEntry]:
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_by_target(self, target_id: str) -> List[ChangelogEntry]:
        """All entries about one node/edge/group."""
        with self._lock:
            return [e for e in self._buffer if e.target_id == target_id]

    def get_by_action(self, action: str, target_kind: Optional[str] = None) -> List[ChangelogEntry]:
        with self._lock:
            return [
                e for e in self._buffer
                if e.action == action and (target_kind is None or e.target_kind == target_kind)
            ]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

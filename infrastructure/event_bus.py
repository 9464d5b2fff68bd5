"""
METRIMAP EVENT BUS - Canvas Mutation Notifications

The Graph Model announces every accepted mutation here; the persistence
and collaboration collaborators (and the Changelog) subscribe to mirror
them. Nothing in the core waits on a subscriber.

- One bus per CanvasSession, handed to the graph explicitly
- Sync handlers run inline, in subscription order
- Coroutine handlers are scheduled on the running loop, if there is one
- A failing handler is logged; the mutation that triggered it stands

Usage:
    bus = EventBus()
    graph = CanvasGraph(event_bus=bus)

    def mirror(event: GraphEvent):
        store.upsert_card(event.payload["node_id"])

    bus.subscribe(EventType.NODE_CREATED, mirror)
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import msgspec


logger = logging.getLogger("metrimap.event_bus")


class EventType(str, Enum):
    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    EDGE_DELETED = "edge_deleted"
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    POSITIONS_UPDATED = "positions_updated"    # One batch per layout pass
    SELECTION_CLEARED = "selection_cleared"
    SETTINGS_CHANGED = "settings_changed"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    One canvas change.

    Attributes:
        type: What happened
        payload: Ids and display fields of the affected item(s)
        timestamp: Unix time of publication
        source: Who caused it ("graph", "bulk", "layout", "session")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


class Subscription(msgspec.Struct, frozen=True):
    handler: Callable
    is_async: bool


Handler = Callable[[GraphEvent], Any]


class EventBus:
    """
    Per-session publish/subscribe hub.

    Not thread-safe: the canvas runs on one logical thread.
    """

    def __init__(self):
        self._registry: Dict[EventType, List[Subscription]] = {t: [] for t in EventType}
        self._pending: Set[asyncio.Task] = set()

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def _add(self, event_type: EventType, handler: Handler, is_async: bool) -> None:
        entries = self._registry[event_type]
        if any(s.handler == handler and s.is_async == is_async for s in entries):
            return
        entries.append(Subscription(handler, is_async))
        logger.debug(f"Subscribed {'async' if is_async else 'sync'} handler to {event_type.value}")

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """Register a plain callable; subscribing the same handler twice is a no-op."""
        self._add(event_type, handler, is_async=False)

    def subscribe_async(self, event_type: EventType, handler: Handler) -> None:
        """Register a coroutine function, scheduled with create_task on publish."""
        self._add(event_type, handler, is_async=True)

    def subscribe_all(self, handler: Handler) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        before = len(self._registry[event_type])
        self._registry[event_type] = [
            s for s in self._registry[event_type] if s.handler != handler
        ]
        if len(self._registry[event_type]) != before:
            logger.debug(f"Unsubscribed handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        targets = list(EventType) if event_type is None else [event_type]
        for t in targets:
            self._registry[t] = []
        logger.info(
            "Cleared all event subscribers" if event_type is None
            else f"Cleared subscribers for {event_type.value}"
        )

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._registry[event_type])
        return sum(len(entries) for entries in self._registry.values())

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def publish(self, event: GraphEvent) -> None:
        """Deliver an event to every subscriber of its type."""
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )
        for subscription in list(self._registry[event.type]):
            if subscription.is_async:
                self._schedule(subscription.handler, event)
            else:
                self._call(subscription.handler, event)

    def emit(self, event_type: EventType, payload: Dict[str, Any], source: str = "graph") -> None:
        """Stamp a GraphEvent with the current time and publish it."""
        self.publish(GraphEvent(type=event_type, payload=payload, timestamp=time.time(), source=source))

    @staticmethod
    def _call(handler: Handler, event: GraphEvent) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Error in sync handler for {event.type.value}: {e}", exc_info=True)

    def _schedule(self, handler: Handler, event: GraphEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Cannot schedule async handler for {event.type.value}: no event loop running")
            return
        try:
            task = loop.create_task(handler(event), name=f"metrimap:{event.type.value}")
        except Exception as e:
            logger.error(f"Error scheduling async handler for {event.type.value}: {e}", exc_info=True)
            return
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    @property
    def pending_tasks(self) -> int:
        """Async handlers scheduled but not finished yet."""
        return len(self._pending)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async handler ({task.get_name()}): {error}", exc_info=error)

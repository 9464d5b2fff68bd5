"""
METRIMAP INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration (msgspec structs) and logging setup
- event_bus: Mutation notifications for persistence and collaboration
- changelog: Bounded history of canvas changes
"""

from infrastructure.config import (
    CanvasConfig,
    LayoutConfig,
    BulkConfig,
    GroupConfig,
    load_config,
    configure_logging,
)
from infrastructure.event_bus import EventBus, EventType, GraphEvent
from infrastructure.changelog import Changelog, ChangelogEntry

__all__ = [
    "CanvasConfig",
    "LayoutConfig",
    "BulkConfig",
    "GroupConfig",
    "load_config",
    "configure_logging",
    "EventBus",
    "EventType",
    "GraphEvent",
    "Changelog",
    "ChangelogEntry",
]

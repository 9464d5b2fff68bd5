"""
METRIMAP VISUALIZATION - Canvas Geometry

This package positions cards on the canvas:
- layout: Layered (Sugiyama-style) layout engine and result validation
- scheduler: Debounced auto-layout trigger
"""

from viz.layout import (
    LayoutDirection,
    LayoutOptions,
    LayoutResult,
    compute_layout,
    compute_layout_with_validation,
    validate_layout_result,
    get_handle_positions_for_direction,
)
from viz.scheduler import LayoutScheduler

__all__ = [
    "LayoutDirection",
    "LayoutOptions",
    "LayoutResult",
    "compute_layout",
    "compute_layout_with_validation",
    "validate_layout_result",
    "get_handle_positions_for_direction",
    "LayoutScheduler",
]

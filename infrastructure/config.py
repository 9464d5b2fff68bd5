"""
METRIMAP CONFIG - Canvas Configuration

Configuration is read once from config/metrimap.toml and converted into
frozen msgspec structs. Components receive the struct they need
(LayoutConfig, BulkConfig, ...) instead of reading files themselves.

Resolution order for the file:
1. Explicit path argument
2. METRIMAP_CONFIG environment variable
3. The bundled config/metrimap.toml

A missing file or a bad value is never fatal: a warning is issued and
the defaults below are used.

Usage:
    from infrastructure.config import load_config, configure_logging

    config = load_config()
    configure_logging(config.logging.level)
    session = CanvasSession(project_id, config=config)
"""
import logging
import os
import tomllib
import warnings
from pathlib import Path
from typing import Optional, Dict, Any, Union

import msgspec


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "metrimap.toml"
CONFIG_ENV_VAR = "METRIMAP_CONFIG"


# =============================================================================
# CONFIG STRUCTS
# =============================================================================

class LayoutConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Layered layout constants and the auto-layout trigger."""
    node_width: float = 320.0
    node_height: float = 200.0
    rank_sep: float = 150.0
    node_sep: float = 100.0
    edge_sep: float = 10.0
    margin_x: float = 50.0
    margin_y: float = 50.0
    overlap_threshold: float = 10.0
    direction: str = "TB"
    auto_layout: bool = False
    debounce_seconds: float = 0.5
    crossing_sweeps: int = 8


class BulkConfig(msgspec.Struct, kw_only=True, frozen=True):
    duplicate_offset_x: float = 50.0
    duplicate_offset_y: float = 50.0
    duplicate_suffix: str = " (Copy)"
    export_prefix: str = "metrimap-export"
    csv_prefix: str = "metrimap-metrics"


class GroupConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Bounding box used when grouping selected nodes."""
    padding: float = 20.0
    assumed_node_width: float = 160.0
    assumed_node_height: float = 100.0


class ChangelogConfig(msgspec.Struct, kw_only=True, frozen=True):
    max_entries: int = 1000


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class CanvasConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Root configuration object."""
    layout: LayoutConfig = msgspec.field(default_factory=LayoutConfig)
    bulk: BulkConfig = msgspec.field(default_factory=BulkConfig)
    groups: GroupConfig = msgspec.field(default_factory=GroupConfig)
    changelog: ChangelogConfig = msgspec.field(default_factory=ChangelogConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)


# =============================================================================
# LOADING
# =============================================================================

def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Pick the config file: explicit path, then env var, then bundled file."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the raw TOML tables.

    Returns:
        Dict with all configuration sections, or {} if the file
        cannot be read.
    """
    config_path = resolve_config_path(path)
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from {config_path}: {e}")
        return {}


def config_from_dict(raw: Dict[str, Any]) -> CanvasConfig:
    """
    Convert raw TOML tables into a CanvasConfig.

    Unknown keys are ignored. A section with a bad value falls back to
    its defaults (with a warning); the other sections are kept.
    """
    sections = {
        "layout": LayoutConfig,
        "bulk": BulkConfig,
        "groups": GroupConfig,
        "changelog": ChangelogConfig,
        "logging": LoggingConfig,
    }
    values = {}
    for name, struct_type in sections.items():
        table = raw.get(name)
        if table is None:
            continue
        try:
            values[name] = msgspec.convert(table, type=struct_type)
        except msgspec.ValidationError as e:
            warnings.warn(f"Invalid [{name}] config, using defaults: {e}")
    return CanvasConfig(**values)


def load_config(path: Optional[Union[str, Path]] = None) -> CanvasConfig:
    """Load the canvas configuration (see module docstring for resolution)."""
    return config_from_dict(load_toml_config(path))


# =============================================================================
# LOGGING SETUP
# =============================================================================

def configure_logging(level: Union[str, int] = "INFO", fmt: Optional[str] = None) -> None:
    """Configure root logging for CLI use."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            warnings.warn(f"Unknown log level {level!r}, using INFO")
            resolved = logging.INFO
        level = resolved
    logging.basicConfig(level=level, format=fmt or LoggingConfig().format)

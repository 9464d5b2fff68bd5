"""
METRIMAP MAIN - Entry Point and CLI

Every command works on a project snapshot file (JSON: project_id, nodes,
edges, groups, settings) as the persistence collaborator would hand it
to a canvas session.

Commands:
    rules    - Show the connection rule table (or targets for one type)
    check    - Ask whether a connection drag between two cards is allowed
    layout   - Run the layered layout and print or save the result
    validate - Check a snapshot against the graph invariants
    export   - Export selected cards as JSON or CSV

Usage:
    # Full rule table
    python main.py rules

    # What can a metric connect to?
    python main.py rules --type metric

    # Would dragging chart-1 onto metric-1 be accepted?
    python main.py check project.json chart-1 metric-1

    # Lay out left-to-right and write a new snapshot
    python main.py layout project.json --direction LR --output project.laid-out.json

    # Invariant report
    python main.py validate project.json

    # Export two cards as CSV into ./export
    python main.py export project.json --ids metric-1 metric-2 --format csv --output ./export
"""
import sys
from pathlib import Path
from typing import Optional

import msgspec

# Add metrimap to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from infrastructure.config import CanvasConfig, load_config, configure_logging


def _load_session(path: str, config: CanvasConfig):
    """Read a snapshot file into a CanvasSession, exiting on bad input."""
    from core.schemas import deserialize_snapshot
    from core.session import CanvasSession

    snapshot_path = Path(path)
    try:
        snapshot = deserialize_snapshot(snapshot_path.read_bytes())
    except OSError as e:
        print(f"Error: cannot read snapshot {snapshot_path}: {e}")
        sys.exit(1)
    except msgspec.DecodeError as e:
        print(f"Error: invalid snapshot {snapshot_path}: {e}")
        sys.exit(1)

    session = CanvasSession(snapshot.project_id, config=config, settings=snapshot.settings)
    skipped = session.load_snapshot(snapshot)
    for message in skipped:
        print(f"Warning: {message}")
    return session


def cmd_rules(args, config: CanvasConfig):
    """Handle rules command - print the rule table."""
    from core.ontology import NodeType
    from core.rules import describe_rules, get_valid_targets_for_source, get_valid_sources_for_target

    if args.type:
        try:
            node_type = NodeType(args.type)
        except ValueError:
            print(f"Error: unknown node type: {args.type}")
            print(f"  Known types: {', '.join(t.value for t in NodeType)}")
            sys.exit(1)
        targets = get_valid_targets_for_source(node_type)
        sources = get_valid_sources_for_target(node_type)
        print(f"{node_type.value} can connect to:   {', '.join(targets) or '(nothing)'}")
        print(f"{node_type.value} can receive from: {', '.join(sources) or '(nothing)'}")
        return

    for row in describe_rules():
        print(f"[{row['index'] + 1}] {row['edge_category']}")
        print(f"    from: {', '.join(row['sources'])}")
        print(f"    to:   {', '.join(row['targets'])}")
        if row["description"]:
            print(f"    {row['description']}")


def cmd_check(args, config: CanvasConfig):
    """Handle check command - preview a connection drag."""
    from core.graph_db import NodeNotFoundError

    session = _load_session(args.snapshot, config)
    try:
        decision = session.check_connection(args.source, args.target)
    except NodeNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if decision.allowed:
        print(f"Allowed: {decision.edge_category} edge")
        if decision.relationship_kind:
            print(f"  Relationship kind: {decision.relationship_kind}")
    else:
        print(f"Rejected: {decision.reason}")
        sys.exit(2)


def cmd_layout(args, config: CanvasConfig):
    """Handle layout command - compute positions and print or save them."""
    from core.schemas import serialize_snapshot
    from viz.layout import validate_layout_result

    session = _load_session(args.snapshot, config)
    if args.direction:
        try:
            session.set_layout_direction(args.direction)
        except ValueError as e:
            print(f"Error: {e}")
            sys.exit(1)

    before = session.graph.get_all_nodes()
    moved = session.apply_layout()
    after = session.graph.get_all_nodes()
    issues = validate_layout_result(before, after, config.layout.overlap_threshold)

    direction = session.layout_direction
    print(f"Laid out {len(after)} nodes ({direction.value}), {len(moved)} moved")
    for issue in issues:
        print(f"  Issue: {issue}")

    if args.output:
        output = Path(args.output)
        output.write_bytes(msgspec.json.format(serialize_snapshot(session.export_snapshot()), indent=2))
        print(f"Wrote {output}")
    else:
        for node in after:
            print(f"  {node.id}: ({node.position.x:.1f}, {node.position.y:.1f})  {node.title}")


def cmd_validate(args, config: CanvasConfig):
    """Handle validate command - print the invariant report."""
    session = _load_session(args.snapshot, config)
    report = session.graph.validate()

    print(f"Nodes: {session.graph.node_count}, edges: {session.graph.edge_count}, "
          f"groups: {session.graph.group_count}")
    if not report.violations:
        print("All invariants hold")
        return
    for violation in report.violations:
        print(f"  [{violation.severity.value}] {violation.invariant}: {violation.message}")
    if not report.valid:
        sys.exit(2)


def cmd_export(args, config: CanvasConfig):
    """Handle export command - export selected cards."""
    session = _load_session(args.snapshot, config)
    ids = args.ids or [n.id for n in session.graph.get_all_nodes()]

    result = session.bulk.export_selection(args.format, ids=ids, destination=args.output)
    for error in result.errors:
        print(f"  Error: {error}")
    if result.artifact is None:
        print("Export failed")
        sys.exit(1)
    print(f"Exported {result.processed} items to {Path(args.output) / result.artifact.filename}")
    if not result.success:
        sys.exit(2)


def main(argv: Optional[list] = None):
    """Main entry point with subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Metrimap - Metric Canvas Tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to a metrimap.toml (default: METRIMAP_CONFIG or bundled)")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # rules command
    rules_parser = subparsers.add_parser("rules", help="Show the connection rule table")
    rules_parser.add_argument("--type", help="Only show what this node type connects to/from")
    rules_parser.set_defaults(func=cmd_rules)

    # check command
    check_parser = subparsers.add_parser("check", help="Preview a connection between two cards")
    check_parser.add_argument("snapshot", help="Path to project snapshot JSON")
    check_parser.add_argument("source", help="Source node id")
    check_parser.add_argument("target", help="Target node id")
    check_parser.set_defaults(func=cmd_check)

    # layout command
    layout_parser = subparsers.add_parser("layout", help="Lay out a snapshot")
    layout_parser.add_argument("snapshot", help="Path to project snapshot JSON")
    layout_parser.add_argument("--direction", "-d", help="TB, BT, LR or RL (default: project setting)")
    layout_parser.add_argument("--output", "-o", help="Write the laid-out snapshot here")
    layout_parser.set_defaults(func=cmd_layout)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Check graph invariants")
    validate_parser.add_argument("snapshot", help="Path to project snapshot JSON")
    validate_parser.set_defaults(func=cmd_validate)

    # export command
    export_parser = subparsers.add_parser("export", help="Export selected cards")
    export_parser.add_argument("snapshot", help="Path to project snapshot JSON")
    export_parser.add_argument("--ids", nargs="*", help="Node/edge ids to export (default: all nodes)")
    export_parser.add_argument("--format", choices=["json", "csv"], default="json")
    export_parser.add_argument("--output", "-o", default="./export", help="Output directory")
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)

    config = load_config(args.config)
    configure_logging(args.log_level or config.logging.level, config.logging.format)

    if args.command is None:
        parser.print_help()
        return

    args.func(args, config)


if __name__ == "__main__":
    main()

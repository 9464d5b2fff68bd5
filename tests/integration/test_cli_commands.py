"""
Integration tests for main.py subcommands over snapshot files.
"""
import json

import pytest

import main
from core.ontology import NodeType
from core.schemas import (
    CanvasSettings,
    EdgeData,
    NodeData,
    ProjectSnapshot,
    deserialize_snapshot,
    serialize_snapshot,
)


@pytest.fixture
def snapshot_file(tmp_path):
    snapshot = ProjectSnapshot(
        project_id="cli",
        nodes=[
            NodeData.create(NodeType.DATA_SOURCE, "Warehouse", id="src"),
            NodeData.create(NodeType.METRIC, "Revenue", id="rev", tags=["kpi"]),
            NodeData.create(NodeType.CHART, "Revenue chart", id="chart"),
        ],
        edges=[
            EdgeData.data_flow("src", "rev", id="feed"),
            EdgeData.data_flow("rev", "chart", id="viz"),
        ],
    )
    path = tmp_path / "project.json"
    path.write_bytes(serialize_snapshot(snapshot))
    return path


def _exit_code(argv):
    with pytest.raises(SystemExit) as exc_info:
        main.main(argv)
    return exc_info.value.code


def test_rules_table(capsys):
    main.main(["rules"])
    out = capsys.readouterr().out
    assert "[1] relationship" in out
    assert "data-flow" in out


def test_rules_for_type(capsys):
    main.main(["rules", "--type", "chart"])
    out = capsys.readouterr().out
    assert "chart can connect to:   (nothing)" in out
    assert "metric" in out.splitlines()[1]


def test_rules_unknown_type():
    assert _exit_code(["rules", "--type", "widget"]) == 1


def test_check_allowed_and_rejected(snapshot_file, capsys):
    main.main(["check", str(snapshot_file), "rev", "chart"])
    assert "Allowed: data-flow edge" in capsys.readouterr().out

    assert _exit_code(["check", str(snapshot_file), "chart", "src"]) == 2
    assert "Rejected: Connection from chart to data-source is not allowed" in capsys.readouterr().out

    assert _exit_code(["check", str(snapshot_file), "rev", "ghost"]) == 1


def test_layout_writes_snapshot(snapshot_file, tmp_path, capsys):
    output = tmp_path / "laid-out.json"

    main.main(["layout", str(snapshot_file), "--direction", "LR", "--output", str(output)])

    out = capsys.readouterr().out
    assert "Laid out 3 nodes (LR), 3 moved" in out
    assert "Issue" not in out

    laid_out = deserialize_snapshot(output.read_bytes())
    xs = {n.id: n.position.x for n in laid_out.nodes}
    assert xs["src"] < xs["rev"] < xs["chart"]
    assert laid_out.settings.layout_direction == "LR"


def test_layout_bad_direction(snapshot_file):
    assert _exit_code(["layout", str(snapshot_file), "--direction", "up"]) == 1


def test_layout_with_unknown_stored_direction(tmp_path, capsys):
    snapshot = ProjectSnapshot(
        project_id="cli",
        nodes=[
            NodeData.create(NodeType.METRIC, "a", id="a"),
            NodeData.create(NodeType.METRIC, "b", id="b"),
        ],
        settings=CanvasSettings(layout_direction="diagonal"),
    )
    path = tmp_path / "diagonal.json"
    path.write_bytes(serialize_snapshot(snapshot))

    main.main(["layout", str(path)])

    assert "Laid out 2 nodes (TB)" in capsys.readouterr().out


def test_validate(snapshot_file, capsys):
    main.main(["validate", str(snapshot_file)])
    out = capsys.readouterr().out
    assert "Nodes: 3, edges: 2, groups: 0" in out
    assert "All invariants hold" in out


def test_missing_and_corrupt_snapshot(tmp_path, capsys):
    assert _exit_code(["validate", str(tmp_path / "absent.json")]) == 1

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert _exit_code(["validate", str(corrupt)]) == 1
    assert "invalid snapshot" in capsys.readouterr().out


def test_export_json(snapshot_file, tmp_path, capsys):
    out_dir = tmp_path / "out"

    main.main(["export", str(snapshot_file), "--ids", "rev", "--output", str(out_dir)])

    files = list(out_dir.glob("metrimap-export-*.json"))
    assert len(files) == 1
    document = json.loads(files[0].read_text())
    assert [n["id"] for n in document["nodes"]] == ["rev"]
    assert sorted(e["id"] for e in document["edges"]) == ["feed", "viz"]
    assert "Exported" in capsys.readouterr().out


def test_export_csv_with_unknown_id(snapshot_file, tmp_path, capsys):
    out_dir = tmp_path / "csv"

    code = _exit_code([
        "export", str(snapshot_file), "--ids", "rev", "ghost",
        "--format", "csv", "--output", str(out_dir),
    ])

    assert code == 2
    assert len(list(out_dir.glob("metrimap-metrics-*.csv"))) == 1
    assert "Cannot export ghost: not found" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    main.main([])
    assert "Available commands" in capsys.readouterr().out

import json
from typer.testing import CliRunner

from plan_dag.cli import app

runner = CliRunner()


def test_cli_validate_json_success():
    r = runner.invoke(app, ["validate", "examples/basic-plan.yaml", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["tool"] == "plan-dag"
    assert payload["command"] == "validate"
    assert payload["ok"] is True
    assert payload["error_count"] == 0
    assert payload["errors"] == []
    assert payload["summary"] == {
        "node_count": 5,
        "edge_count": 4,
        "roots": ["RESEARCH", "READ"],
        "longest_path": 4,
        "completion_percentage": 20.0,
    }


def test_cli_validate_json_failure_contains_codes():
    r = runner.invoke(app, ["validate", "examples/invalid-unknown-dep.yaml", "--format", "json"])
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["ok"] is False
    assert payload["summary"] is None
    codes = {e["code"] for e in payload["errors"]}
    assert "E_UNKNOWN_DEPENDENCY" in codes


def test_cli_validate_json_cycle_is_graph_error():
    r = runner.invoke(app, ["validate", "examples/invalid-cycle.yaml", "--format", "json"])
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    [item] = payload["errors"]
    assert item["code"] == "E_CYCLE_DETECTED"
    assert item["source"] == "graph"
    assert item["file"].endswith("invalid-cycle.yaml")


def test_cli_validate_json_load_error():
    r = runner.invoke(app, ["validate", "examples/does-not-exist.yaml", "--format", "json"])
    assert r.exit_code == 1
    payload = json.loads(r.stdout)
    assert payload["errors"][0]["code"] == "E_FILE_NOT_FOUND"
    assert payload["errors"][0]["source"] == "load"

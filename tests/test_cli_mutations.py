import shutil
from pathlib import Path

import yaml
from typer.testing import CliRunner

from plan_dag.cli import app
from plan_dag.core.io.load_plan import load_plan
from plan_dag.core.validate.validate_plan import validate_plan

runner = CliRunner()


def _copy(tmp_path: Path, name: str) -> str:
    dst = tmp_path / name
    shutil.copy(Path("examples") / name, dst)
    return str(dst)


def _nodes(path: str) -> dict:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return {n["id"]: n for n in data["nodes"]}


def test_cli_link_adds_dependency_in_place(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["link", path, "READ", "REVIEW"])
    assert r.exit_code == 0
    assert "OK: REVIEW now depends on READ" in r.stdout
    assert _nodes(path)["REVIEW"]["depends_on"] == ["DRAFT", "READ"]

    _, errors = validate_plan(load_plan(path))
    assert errors == []


def test_cli_link_reason_soft_and_out(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    out = tmp_path / "out" / "plan.yaml"
    r = runner.invoke(
        app, ["link", path, "READ", "REVIEW", "--reason", "Quote check", "--soft", "--out", str(out)]
    )
    assert r.exit_code == 0
    review = _nodes(str(out))["REVIEW"]
    assert review["soft_dependencies"] == ["READ"]
    assert review["dependency_reasons"] == {"READ": "Quote check"}
    assert "soft_dependencies" not in _nodes(path)["REVIEW"]


def test_cli_link_rejects_cycle_and_leaves_file_untouched(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    before = Path(path).read_text(encoding="utf-8")

    r = runner.invoke(app, ["link", path, "REVIEW", "RESEARCH"])
    assert r.exit_code == 2
    assert "E_CYCLE_DETECTED" in r.output
    assert "RESEARCH already leads to REVIEW through: RESEARCH -> OUTLINE -> DRAFT -> REVIEW" in r.output
    assert Path(path).read_text(encoding="utf-8") == before


def test_cli_link_rejects_self_loop_and_unknown_node(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["link", path, "DRAFT", "DRAFT"])
    assert r.exit_code == 2
    assert "E_SELF_LOOP" in r.output

    r = runner.invoke(app, ["link", path, "NOPE", "DRAFT"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_NODE" in r.output


def test_cli_link_existing_dependency_is_noop(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["link", path, "OUTLINE", "DRAFT"])
    assert r.exit_code == 0
    assert _nodes(path)["DRAFT"]["depends_on"] == ["OUTLINE", "READ"]
    assert _nodes(path)["DRAFT"]["dependency_reasons"] == {"READ": "Draft cites the chapter"}


def test_cli_unlink(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["unlink", path, "READ", "DRAFT"])
    assert r.exit_code == 0
    assert "OK: DRAFT no longer depends on READ" in r.stdout
    draft = _nodes(path)["DRAFT"]
    assert draft["depends_on"] == ["OUTLINE"]
    assert "dependency_reasons" not in draft

    r = runner.invoke(app, ["unlink", path, "READ", "DRAFT"])
    assert r.exit_code == 0
    assert "nothing to do" in r.stdout


def test_cli_unlink_all_repairs_cyclic_plan(tmp_path):
    path = _copy(tmp_path, "invalid-cycle.yaml")
    r = runner.invoke(app, ["unlink-all", path])
    assert r.exit_code == 0
    assert "OK: removed 3 dependencies" in r.stdout
    assert all(n["depends_on"] == [] for n in _nodes(path).values())

    _, errors = validate_plan(load_plan(path))
    assert errors == []


def test_cli_mutation_refuses_cyclic_plan_when_strict(tmp_path):
    path = _copy(tmp_path, "invalid-cycle.yaml")
    r = runner.invoke(app, ["unlink-all", path], env={"PLAN_DAG_STRICT_LOAD": "1"})
    assert r.exit_code == 2
    assert "E_CYCLE_DETECTED" in r.output


def test_cli_complete_and_reopen(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["complete", path, "OUTLINE"])
    assert r.exit_code == 0
    assert "OK: OUTLINE marked completed" in r.stdout
    assert _nodes(path)["OUTLINE"]["completed"] is True

    r = runner.invoke(app, ["reopen", path, "RESEARCH"])
    assert r.exit_code == 0
    assert "OK: RESEARCH marked incomplete" in r.stdout
    assert _nodes(path)["RESEARCH"]["completed"] is False


def test_cli_complete_unknown_node(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["complete", path, "NOPE"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_NODE" in r.output


def test_cli_complete_respects_sequence_enforcement(tmp_path):
    path = _copy(tmp_path, "enforced-plan.yaml")
    r = runner.invoke(app, ["complete", path, "LAB"])
    assert r.exit_code == 2
    assert "E_NODE_BLOCKED" in r.output
    assert "waiting on: PREP" in r.output
    assert _nodes(path)["LAB"].get("completed") is not True

    r = runner.invoke(app, ["complete", path, "PREP"])
    assert r.exit_code == 0
    r = runner.invoke(app, ["complete", path, "LAB"])
    assert r.exit_code == 0


def test_cli_complete_force_overrides_enforcement(tmp_path):
    path = _copy(tmp_path, "enforced-plan.yaml")
    r = runner.invoke(app, ["complete", path, "LAB", "--force"])
    assert r.exit_code == 0
    assert _nodes(path)["LAB"]["completed"] is True


def test_cli_complete_enforcement_from_environment(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["complete", path, "DRAFT"], env={"PLAN_DAG_ENFORCE_SEQUENCE": "true"})
    assert r.exit_code == 2
    assert "E_NODE_BLOCKED" in r.output


def test_cli_mutation_writes_json_plans(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    out = tmp_path / "plan.json"
    r = runner.invoke(app, ["complete", path, "READ", "--out", str(out)])
    assert r.exit_code == 0
    plan = load_plan(str(out))
    assert "__file__" in plan
    graph, errors = validate_plan(plan)
    assert errors == []
    assert graph.get_node("READ").is_completed


def test_cli_rewrite_keeps_unknown_top_level_keys(tmp_path):
    path = tmp_path / "plan.yaml"
    path.write_text(
        "schema_version: '0.1.0'\n"
        "owner: alice\n"
        "description: keep me\n"
        "nodes:\n"
        "  - {id: A, title: First, estimated_minutes: 10}\n"
        "  - {id: B, title: Second, estimated_minutes: 10}\n",
        encoding="utf-8",
    )
    r = runner.invoke(app, ["link", str(path), "A", "B"])
    assert r.exit_code == 0

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["owner"] == "alice"
    assert data["description"] == "keep me"
    assert "version" not in data
    assert "__extra__" not in data
    assert data["nodes"][1]["depends_on"] == ["A"]


def test_cli_complete_records_and_reopen_clears_timestamp(tmp_path):
    path = _copy(tmp_path, "basic-plan.yaml")
    r = runner.invoke(app, ["complete", path, "READ"])
    assert r.exit_code == 0
    assert isinstance(_nodes(path)["READ"]["completed_at"], str)

    _, errors = validate_plan(load_plan(path))
    assert errors == []

    r = runner.invoke(app, ["reopen", path, "READ"])
    assert r.exit_code == 0
    assert "completed_at" not in _nodes(path)["READ"]

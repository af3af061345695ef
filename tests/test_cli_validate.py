from typer.testing import CliRunner

from plan_dag.cli import app


runner = CliRunner()


def test_cli_validate_success():
    r = runner.invoke(app, ["validate", "examples/basic-plan.yaml"])
    assert r.exit_code == 0
    assert "OK: 5 nodes, 4 dependencies" in r.stdout
    assert "Roots: RESEARCH, READ" in r.stdout
    assert "Longest chain: 4" in r.stdout


def test_cli_validate_failure():
    r = runner.invoke(app, ["validate", "examples/invalid-unknown-dep.yaml"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_DEPENDENCY" in r.output
    assert "nodes[1].depends_on[0]" in r.output


def test_cli_validate_cycle():
    r = runner.invoke(app, ["validate", "examples/invalid-cycle.yaml"])
    assert r.exit_code == 2
    assert "E_CYCLE_DETECTED" in r.output
    assert "A -> B -> C -> A" in r.output


def test_cli_validate_missing_file():
    r = runner.invoke(app, ["validate", "examples/does-not-exist.yaml"])
    assert r.exit_code == 1
    assert "E_FILE_NOT_FOUND" in r.output


def test_cli_validate_unknown_format():
    r = runner.invoke(app, ["validate", "examples/basic-plan.yaml", "--format", "xml"])
    assert r.exit_code == 2
    assert "E_VALIDATE_UNKNOWN_FORMAT" in r.output

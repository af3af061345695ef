from plan_dag.core.errors import GraphValidationError
from plan_dag.core.io.load_plan import load_plan
from plan_dag.core.validate.validate_plan import summarize_plan, validate_plan


def _plan(*nodes, **extra) -> dict:
    plan = {"schema_version": "0.1.0", "nodes": list(nodes)}
    plan.update(extra)
    return plan


def _node(nid: str, deps=None, **fields) -> dict:
    node = {"id": nid, "title": f"Task {nid}", "estimated_minutes": 15}
    if deps is not None:
        node["depends_on"] = deps
    node.update(fields)
    return node


def test_validate_happy_path():
    plan = load_plan("examples/basic-plan.yaml")
    graph, errors = validate_plan(plan)
    assert errors == []
    assert graph is not None
    assert "RESEARCH" in graph
    assert [n.id for n in graph.get_root_nodes()] == ["RESEARCH", "READ"]


def test_validate_missing_required_field():
    plan = load_plan("examples/invalid-missing-field.yaml")
    graph, errors = validate_plan(plan)
    assert graph is None
    assert any(e.code == "E_REQUIRED_FIELD" and e.path == "nodes[0].title" for e in errors)


def test_validate_unknown_dependency():
    plan = load_plan("examples/invalid-unknown-dep.yaml")
    graph, errors = validate_plan(plan)
    assert graph is None
    assert [e.code for e in errors] == ["E_UNKNOWN_DEPENDENCY"]
    assert errors[0].path == "nodes[1].depends_on[0]"


def test_validate_cycle():
    plan = load_plan("examples/invalid-cycle.yaml")
    graph, errors = validate_plan(plan)
    assert graph is None
    assert [e.code for e in errors] == ["E_CYCLE_DETECTED"]
    assert isinstance(errors[0], GraphValidationError)
    assert errors[0].node_ids == ("A", "B", "C", "A")
    assert errors[0].file.endswith("invalid-cycle.yaml")


def test_validate_duplicate_id():
    plan = load_plan("examples/invalid-duplicate-id.yaml")
    graph, errors = validate_plan(plan)
    assert graph is None
    assert [e.code for e in errors] == ["E_DUPLICATE_ID"]


def test_validate_self_dependency_and_duplicate_dependency():
    graph, errors = validate_plan(_plan(_node("A"), _node("B", ["B", "A", "A"])))
    assert graph is None
    assert [(e.code, e.path) for e in errors] == [
        ("E_SELF_LOOP", "nodes[1].depends_on[0]"),
        ("E_DUPLICATE_EDGE", "nodes[1].depends_on[2]"),
    ]


def test_validate_estimate_must_be_positive_int():
    graph, errors = validate_plan(
        _plan(_node("A", estimated_minutes=0), _node("B", estimated_minutes=True), _node("C", estimated_minutes=5))
    )
    assert graph is None
    assert [e.path for e in errors if e.code == "E_INVALID_ESTIMATE"] == [
        "nodes[0].estimated_minutes",
        "nodes[1].estimated_minutes",
    ]


def test_validate_optional_field_types():
    plan = _plan(
        _node("A", completed="yes", sort_index="1", type="nap", notes=3),
        version="two",
        sequence_enforcement="on",
    )
    graph, errors = validate_plan(plan)
    assert graph is None
    codes = {(e.code, e.path) for e in errors}
    assert ("E_INVALID_TYPE", "nodes[0].completed") in codes
    assert ("E_INVALID_TYPE", "nodes[0].sort_index") in codes
    assert ("E_INVALID_ENUM", "nodes[0].type") in codes
    assert ("E_INVALID_TYPE", "nodes[0].notes") in codes
    assert ("E_INVALID_TYPE", "version") in codes
    assert ("E_INVALID_TYPE", "sequence_enforcement") in codes


def test_validate_requires_nodes_and_schema_version():
    graph, errors = validate_plan({"nodes": None})
    assert graph is None
    assert {e.path for e in errors} == {"schema_version", "nodes"}


def test_errors_sorted_by_path():
    graph, errors = validate_plan(_plan(_node("B", ["X"]), _node("A", ["Y"])))
    assert [e.path for e in errors] == ["nodes[0].depends_on[0]", "nodes[1].depends_on[0]"]


def test_summarize_plan():
    graph, _ = validate_plan(load_plan("examples/basic-plan.yaml"))
    text = summarize_plan(graph)
    assert text.startswith("OK: 5 nodes, 4 dependencies (1/5 completed, 20%)")
    assert "Roots: RESEARCH, READ" in text
    assert "Longest chain: 4" in text


def test_validate_completed_at_must_be_timestamp():
    plan = _plan(
        _node("A", completed=True, completed_at="yesterday"),
        _node("B", completed_at="2026-03-01T09:30:00+00:00"),
    )
    graph, errors = validate_plan(plan)
    assert graph is None
    assert [(e.code, e.path) for e in errors] == [("E_INVALID_TYPE", "nodes[0].completed_at")]

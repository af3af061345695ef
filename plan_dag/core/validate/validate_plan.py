from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional, cast

from plan_dag.core.adapter.plan_adapter import build_graph
from plan_dag.core.errors import PlanValidationError
from plan_dag.core.graph.dag import PlanGraph
from plan_dag.core.model import ALLOWED_NODE_TYPES


def _is_list_of_str(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_timestamp(v: Any) -> bool:
    if isinstance(v, datetime):
        return True
    if not isinstance(v, str):
        return False
    try:
        datetime.fromisoformat(v)
    except ValueError:
        return False
    return True


def validate_plan(plan: dict[str, Any]) -> tuple[Optional[PlanGraph], list[PlanValidationError]]:
    """Validate plan shape, references and graph structure.

    Returns (graph, errors). Graph is None when errors exist.
    """

    file = cast(Optional[str], plan.get("__file__"))
    errors: list[PlanValidationError] = []

    def err(code: str, message: str, path: str) -> None:
        errors.append(PlanValidationError(code=code, message=message, file=file, path=path))

    schema_version = plan.get("schema_version")
    if not isinstance(schema_version, str) or not schema_version.strip():
        err("E_REQUIRED_FIELD", "schema_version is required and must be a non-empty string", "schema_version")

    if "version" in plan and not _is_int(plan.get("version")):
        err("E_INVALID_TYPE", "version must be an integer", "version")
    if "sequence_enforcement" in plan and not isinstance(plan.get("sequence_enforcement"), bool):
        err("E_INVALID_TYPE", "sequence_enforcement must be a boolean", "sequence_enforcement")
    if plan.get("name") is not None and not isinstance(plan.get("name"), str):
        err("E_INVALID_TYPE", "name must be a string", "name")

    nodes = plan.get("nodes")
    if not isinstance(nodes, list):
        err("E_REQUIRED_FIELD", "nodes is required and must be an array", "nodes")
        return None, _sorted(errors)

    # Validate each node; keep raw nodes that are usable for reference checks.
    raw_nodes_by_id: dict[str, dict[str, Any]] = {}
    index_by_id: dict[str, int] = {}

    for i, raw in enumerate(nodes):
        node_path = f"nodes[{i}]"
        if not isinstance(raw, dict):
            err("E_INVALID_TYPE", "node must be an object", node_path)
            continue

        nid = raw.get("id")
        if not isinstance(nid, str) or not nid.strip():
            err("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{node_path}.id")
            continue

        if nid in raw_nodes_by_id:
            err("E_DUPLICATE_ID", f"duplicate node id: {nid}", f"{node_path}.id")
            continue

        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            err("E_REQUIRED_FIELD", "title is required and must be a non-empty string", f"{node_path}.title")
            continue

        minutes = raw.get("estimated_minutes")
        if minutes is None:
            err("E_REQUIRED_FIELD", "estimated_minutes is required", f"{node_path}.estimated_minutes")
        elif not _is_int(minutes) or minutes <= 0:
            err("E_INVALID_ESTIMATE", "estimated_minutes must be a positive integer", f"{node_path}.estimated_minutes")

        deps = raw.get("depends_on")
        if deps is not None and not _is_list_of_str(deps):
            err("E_INVALID_TYPE", "depends_on must be an array of strings", f"{node_path}.depends_on")
            continue

        completed = raw.get("completed")
        if completed is not None and not isinstance(completed, bool):
            err("E_INVALID_TYPE", "completed must be a boolean", f"{node_path}.completed")

        sort_index = raw.get("sort_index")
        if sort_index is not None and not _is_int(sort_index):
            err("E_INVALID_TYPE", "sort_index must be an integer", f"{node_path}.sort_index")

        ntype = raw.get("type")
        if ntype is not None and ntype not in ALLOWED_NODE_TYPES:
            err("E_INVALID_ENUM", f"type must be one of {sorted(ALLOWED_NODE_TYPES)}", f"{node_path}.type")

        notes = raw.get("notes")
        if notes is not None and not isinstance(notes, str):
            err("E_INVALID_TYPE", "notes must be a string", f"{node_path}.notes")

        completed_at = raw.get("completed_at")
        if completed_at is not None and not _is_timestamp(completed_at):
            err("E_INVALID_TYPE", "completed_at must be an ISO 8601 timestamp", f"{node_path}.completed_at")

        reasons = raw.get("dependency_reasons")
        if reasons is not None and not (
            isinstance(reasons, dict)
            and all(isinstance(k, str) and isinstance(v, str) for k, v in reasons.items())
        ):
            err("E_INVALID_TYPE", "dependency_reasons must map ids to strings", f"{node_path}.dependency_reasons")

        soft = raw.get("soft_dependencies")
        if soft is not None and not _is_list_of_str(soft):
            err("E_INVALID_TYPE", "soft_dependencies must be an array of strings", f"{node_path}.soft_dependencies")

        raw_nodes_by_id[nid] = raw
        index_by_id[nid] = i

    # Referential integrity checks.
    for nid, raw in raw_nodes_by_id.items():
        node_path = f"nodes[{index_by_id[nid]}]"
        seen: set[str] = set()
        for di, dep in enumerate(raw.get("depends_on") or []):
            dep_path = f"{node_path}.depends_on[{di}]"
            if dep == nid:
                err("E_SELF_LOOP", f"node {nid} cannot depend on itself", dep_path)
            elif dep not in raw_nodes_by_id:
                err("E_UNKNOWN_DEPENDENCY", f"depends_on references unknown id: {dep}", dep_path)
            elif dep in seen:
                err("E_DUPLICATE_EDGE", f"duplicate dependency: {dep} -> {nid}", dep_path)
            seen.add(dep)

    if errors:
        return None, _sorted(errors)

    graph = build_graph(plan, check=False)
    for problem in graph.validate():
        first = problem.node_ids[0] if problem.node_ids else None
        path = f"nodes[{index_by_id[first]}].depends_on" if first in index_by_id else "nodes"
        errors.append(replace(problem, file=file, path=path))

    if errors:
        return None, _sorted(errors)
    return graph, []


def summarize_plan(graph: PlanGraph) -> str:
    stats = graph.get_statistics()
    roots = [n.id for n in graph.get_root_nodes()]
    return (
        f"OK: {stats.total_nodes} nodes, {stats.total_edges} dependencies "
        f"({stats.completed_nodes}/{stats.total_nodes} completed, {stats.completion_percentage:.0f}%)"
        + "\nRoots: "
        + ", ".join(roots)
        + f"\nLongest chain: {stats.longest_path}"
    )


def _sorted(errors: Iterable[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )

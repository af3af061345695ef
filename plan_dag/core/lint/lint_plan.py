from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any, Optional

from plan_dag.core.errors import PlanValidationError
from plan_dag.core.graph.dag import PlanGraph
from plan_dag.core.model import PlanEdge, PlanNode


# Lint rules (beyond schema validation):
# - L_DUPLICATE_ID: duplicate node IDs
# - L_CYCLE_DETECTED: dependency cycle exists
# - L_COMPLETED_WHILE_BLOCKED: node completed while a direct prerequisite is not
# - L_REDUNDANT_DEPENDENCY: depends_on entry already implied through another entry
# - L_DUPLICATE_SORT_INDEX: two nodes share a sort_index


def lint_plan(plan: dict[str, Any]) -> list[PlanValidationError]:
    """Lint a plan.

    Lint runs *in addition to* schema validation. It is allowed to operate on
    partially-invalid inputs (best effort) and enforce stronger standards.

    The CLI prints lint + validation errors together.
    """

    file = _cast_optional_str(plan.get("__file__"))

    nodes = plan.get("nodes")
    if not isinstance(nodes, list):
        # Let validator handle shape.
        return []

    # Index nodes (best effort).
    id_to_index: dict[str, int] = {}
    id_to_raw: dict[str, dict[str, Any]] = {}
    ids: list[str] = []

    for i, raw in enumerate(nodes):
        if not isinstance(raw, dict):
            continue
        nid = raw.get("id")
        if not isinstance(nid, str):
            continue
        ids.append(nid)
        id_to_index.setdefault(nid, i)
        id_to_raw.setdefault(nid, raw)

    errors: list[PlanValidationError] = []

    def err(code: str, message: str, nid: str, field: str) -> None:
        errors.append(
            PlanValidationError(
                code=code,
                message=message,
                file=file,
                path=f"nodes[{id_to_index.get(nid, 0)}].{field}",
            )
        )

    # Rule: duplicate IDs
    counts = Counter(ids)
    dupes = {k: v for k, v in counts.items() if v > 1}
    if dupes:
        seen: set[str] = set()
        for i, raw in enumerate(nodes):
            if not isinstance(raw, dict):
                continue
            nid = raw.get("id")
            if not isinstance(nid, str) or nid not in dupes:
                continue
            if nid not in seen:
                seen.add(nid)
                continue
            errors.append(
                PlanValidationError(
                    code="L_DUPLICATE_ID",
                    message=f"duplicate node id: {nid} (count={dupes[nid]})",
                    file=file,
                    path=f"nodes[{i}].id",
                )
            )

    graph = _best_effort_graph(id_to_raw)

    # Rule: cycle detection
    cycle = graph.detect_cycle()
    if cycle is not None:
        err("L_CYCLE_DETECTED", "dependency cycle detected: " + " -> ".join(cycle), cycle[0], "depends_on")

    # Rule: completed nodes must not have incomplete prerequisites
    for node in graph.nodes:
        if not node.is_completed:
            continue
        pending = [p.id for p in graph.get_prerequisites(node.id) if not p.is_completed]
        if pending:
            err(
                "L_COMPLETED_WHILE_BLOCKED",
                f"node is completed but prerequisites are not: {', '.join(pending)}",
                node.id,
                "completed",
            )

    # Rule: redundant dependencies (only meaningful on an acyclic graph)
    if cycle is None:
        for node in graph.nodes:
            direct = [p.id for p in graph.get_prerequisites(node.id)]
            for dep in direct:
                via = next(
                    (
                        other
                        for other in direct
                        if other != dep and any(a.id == dep for a in graph.get_all_prerequisites(other))
                    ),
                    None,
                )
                if via is not None:
                    err(
                        "L_REDUNDANT_DEPENDENCY",
                        f"dependency on {dep} is already implied through {via}",
                        node.id,
                        "depends_on",
                    )

    # Rule: sort_index values must be unique
    by_sort_index: dict[int, list[str]] = defaultdict(list)
    for nid, raw in id_to_raw.items():
        si = raw.get("sort_index")
        if isinstance(si, int) and not isinstance(si, bool):
            by_sort_index[si].append(nid)
    for si, holders in by_sort_index.items():
        for nid in holders[1:]:
            err(
                "L_DUPLICATE_SORT_INDEX",
                f"sort_index {si} is also used by {holders[0]}",
                nid,
                "sort_index",
            )

    return _sorted(errors)


def _best_effort_graph(id_to_raw: dict[str, dict[str, Any]]) -> PlanGraph:
    nodes = [
        PlanNode(id=nid, title=str(raw.get("title", "")), is_completed=raw.get("completed") is True)
        for nid, raw in id_to_raw.items()
    ]
    edges: list[PlanEdge] = []
    for nid, raw in id_to_raw.items():
        deps = raw.get("depends_on")
        if not isinstance(deps, list):
            continue
        for dep in deps:
            if isinstance(dep, str) and dep in id_to_raw:
                edges.append(PlanEdge(from_id=dep, to_id=nid))
    return PlanGraph.restore(nodes, edges)


def _sorted(errors: list[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))


def _cast_optional_str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) else None

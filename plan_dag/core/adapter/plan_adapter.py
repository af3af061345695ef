from __future__ import annotations

import logging
from copy import deepcopy
from datetime import datetime
from typing import Any, Optional

from plan_dag.core.graph.dag import PlanGraph
from plan_dag.core.model import PlanEdge, PlanGraphMetadata, PlanNode

logger = logging.getLogger(__name__)


def build_graph(plan: dict[str, Any], *, strict: bool = False, check: bool = True) -> PlanGraph:
    """Build a PlanGraph from a plan dict (as returned by load_plan).

    Expects a plan that passed shape validation. Nodes keep document order; each
    ``depends_on`` entry becomes an edge ``dep -> node``.

    strict=False restores the persisted edges as-is and, when ``check`` is set,
    logs whatever ``validate()`` finds. strict=True inserts every edge through
    ``add_edge`` and raises the first GraphValidationError.
    """
    metadata = PlanGraphMetadata(
        name=plan.get("name") if isinstance(plan.get("name"), str) else None,
        version=plan.get("version") if isinstance(plan.get("version"), int) else 1,
    )

    raw_nodes = [n for n in plan.get("nodes") or [] if isinstance(n, dict)]
    nodes = [_node_from_raw(raw, i) for i, raw in enumerate(raw_nodes)]
    edges = [edge for raw in raw_nodes for edge in _edges_from_raw(raw)]

    if strict:
        graph = PlanGraph.restore(nodes, [], metadata=metadata)
        for e in edges:
            graph.add_edge(e.from_id, e.to_id, is_hard=e.is_hard, reason=e.reason)
        return graph

    graph = PlanGraph.restore(nodes, edges, metadata=metadata)
    if not check:
        return graph
    for problem in graph.validate():
        logger.warning("%s: %s", plan.get("__file__") or "<plan>", problem.message)
    return graph


def apply_graph(plan: dict[str, Any], graph: PlanGraph) -> dict[str, Any]:
    """Return a copy of ``plan`` carrying the graph's node state and edges.

    Nodes missing from the graph are dropped; graph nodes missing from the plan
    are appended. Unknown keys on existing nodes are preserved.
    """
    out: dict[str, Any] = deepcopy(plan)
    raw_nodes = out.get("nodes")
    if not isinstance(raw_nodes, list):
        raw_nodes = []

    seen: set[str] = set()
    new_nodes: list[dict[str, Any]] = []
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            continue
        nid = raw.get("id")
        if not isinstance(nid, str) or nid in seen or not graph.has_node(nid):
            continue
        seen.add(nid)
        new_nodes.append(_write_node(raw, graph, nid))

    for node in graph.nodes:
        if node.id not in seen:
            new_nodes.append(_write_node({"id": node.id}, graph, node.id))

    out["nodes"] = new_nodes
    if "version" in out or graph.metadata.version != 1:
        out["version"] = graph.metadata.version
    return out


def _node_from_raw(raw: dict[str, Any], position: int) -> PlanNode:
    sort_index = raw.get("sort_index")
    return PlanNode(
        id=raw["id"],
        title=raw.get("title", ""),
        estimated_minutes=raw.get("estimated_minutes", 1),
        is_completed=bool(raw.get("completed", False)),
        sort_index=sort_index if isinstance(sort_index, int) else position,
        node_type=raw.get("type", "task"),
        notes=raw.get("notes"),
        completed_at=_parse_timestamp(raw.get("completed_at")),
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    # YAML may already have turned an unquoted timestamp into a datetime.
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return None


def _edges_from_raw(raw: dict[str, Any]) -> list[PlanEdge]:
    reasons = raw.get("dependency_reasons") or {}
    soft = set(raw.get("soft_dependencies") or [])
    return [
        PlanEdge(from_id=dep, to_id=raw["id"], is_hard=dep not in soft, reason=reasons.get(dep))
        for dep in raw.get("depends_on") or []
    ]


def _write_node(raw: dict[str, Any], graph: PlanGraph, node_id: str) -> dict[str, Any]:
    node = graph.get_node(node_id)
    assert node is not None

    raw["title"] = node.title
    raw["estimated_minutes"] = node.estimated_minutes
    raw["sort_index"] = node.sort_index
    raw["completed"] = node.is_completed
    if node.node_type != "task" or "type" in raw:
        raw["type"] = node.node_type
    if node.notes is not None:
        raw["notes"] = node.notes
    else:
        raw.pop("notes", None)
    if node.completed_at is not None:
        raw["completed_at"] = node.completed_at.isoformat()
    else:
        raw.pop("completed_at", None)

    prereqs = [p.id for p in graph.get_prerequisites(node_id)]
    raw["depends_on"] = prereqs

    reasons: dict[str, str] = {}
    soft: list[str] = []
    for pid in prereqs:
        edge = graph.get_edge(pid, node_id)
        assert edge is not None
        if edge.reason:
            reasons[pid] = edge.reason
        if not edge.is_hard:
            soft.append(pid)
    _set_or_drop(raw, "dependency_reasons", reasons)
    _set_or_drop(raw, "soft_dependencies", soft)
    return raw


def _set_or_drop(raw: dict[str, Any], key: str, value: Any) -> None:
    if value:
        raw[key] = value
    else:
        raw.pop(key, None)

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PlanError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<plan>"
        return f"{loc}: {self.code}: {self.message}"


class PlanLoadError(PlanError):
    pass


class PlanValidationError(PlanError):
    pass


@dataclass(frozen=True)
class GraphValidationError(PlanValidationError):
    """Structural problem with the dependency graph.

    ``node_ids`` holds the ids involved: the offending node, the edge endpoints,
    or the full cycle path (first id repeated at the end).
    """

    node_ids: tuple[str, ...] = ()


E_UNKNOWN_NODE = "E_UNKNOWN_NODE"
E_SELF_LOOP = "E_SELF_LOOP"
E_CYCLE_DETECTED = "E_CYCLE_DETECTED"
E_DUPLICATE_EDGE = "E_DUPLICATE_EDGE"
E_DUPLICATE_NODE = "E_DUPLICATE_NODE"
E_ORPHAN_EDGE = "E_ORPHAN_EDGE"


def unknown_node(node_id: str, *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_UNKNOWN_NODE,
        message=f"unknown node: {node_id}",
        path=path,
        node_ids=(node_id,),
    )


def self_loop(node_id: str, *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_SELF_LOOP,
        message=f"node {node_id} cannot depend on itself",
        path=path,
        node_ids=(node_id,),
    )


def cycle_detected(cycle: list[str], *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_CYCLE_DETECTED,
        message="dependency cycle detected: " + " -> ".join(cycle),
        path=path,
        node_ids=tuple(cycle),
    )


def duplicate_edge(from_id: str, to_id: str, *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_DUPLICATE_EDGE,
        message=f"duplicate dependency: {from_id} -> {to_id}",
        path=path,
        node_ids=(from_id, to_id),
    )


def duplicate_node(node_id: str, *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_DUPLICATE_NODE,
        message=f"duplicate node id: {node_id}",
        path=path,
        node_ids=(node_id,),
    )


def orphan_edge(from_id: str, to_id: str, *, path: Optional[str] = None) -> GraphValidationError:
    return GraphValidationError(
        code=E_ORPHAN_EDGE,
        message=f"edge references a missing node: {from_id} -> {to_id}",
        path=path,
        node_ids=(from_id, to_id),
    )

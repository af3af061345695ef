"""Dependency graph of plan nodes.

Edges flow from prerequisite to dependent: ``A -> B`` means B cannot start until A
is completed. Node and edge storage is private; every structural change goes
through the methods below so the graph stays acyclic.

The graph is not thread-safe. Callers that share one between threads must
serialize mutations; read-only queries may run concurrently with each other.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from plan_dag.core.errors import (
    GraphValidationError,
    cycle_detected,
    duplicate_node,
    orphan_edge,
    self_loop,
    unknown_node,
)
from plan_dag.core.graph.statistics import compute_statistics
from plan_dag.core.model import GraphStatistics, PlanEdge, PlanGraphMetadata, PlanNode

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"title", "estimated_minutes", "sort_index", "node_type", "notes"}


class PlanGraph:
    def __init__(self, metadata: Optional[PlanGraphMetadata] = None) -> None:
        self.metadata = metadata or PlanGraphMetadata()
        self._nodes: dict[str, PlanNode] = {}
        self._seq: dict[str, int] = {}
        self._next_seq = 0
        self._edges: dict[tuple[str, str], PlanEdge] = {}
        # Ordered adjacency (dict used as an insertion-ordered set).
        self._succ: dict[str, dict[str, None]] = {}
        self._pred: dict[str, dict[str, None]] = {}

    @classmethod
    def restore(
        cls,
        nodes: Iterable[PlanNode],
        edges: Iterable[PlanEdge],
        metadata: Optional[PlanGraphMetadata] = None,
    ) -> PlanGraph:
        """Rebuild a graph from persisted data.

        Edges are installed as given, without the checks ``add_edge`` performs;
        persisted edge lists are expected to have been validated when they were
        written. Call ``validate()`` afterwards to find anything that slipped through.
        Duplicate node ids still raise.
        """
        graph = cls(metadata=metadata)
        for node in nodes:
            graph.add_node(node)
        for edge in edges:
            graph._insert_edge(edge)
        return graph

    def copy(self) -> PlanGraph:
        other = PlanGraph(metadata=self.metadata)
        other._nodes = dict(self._nodes)
        other._seq = dict(self._seq)
        other._next_seq = self._next_seq
        other._edges = dict(self._edges)
        other._succ = {k: dict(v) for k, v in self._succ.items()}
        other._pred = {k: dict(v) for k, v in self._pred.items()}
        return other

    # -- accessors ---------------------------------------------------------

    @property
    def nodes(self) -> tuple[PlanNode, ...]:
        return tuple(self._nodes.values())

    @property
    def edges(self) -> tuple[PlanEdge, ...]:
        return tuple(self._edges.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[PlanNode]:
        return iter(self.nodes)

    def __repr__(self) -> str:
        return f"PlanGraph(nodes={len(self._nodes)}, edges={len(self._edges)})"

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return (from_id, to_id) in self._edges

    def get_node(self, node_id: str) -> Optional[PlanNode]:
        return self._nodes.get(node_id)

    def get_edge(self, from_id: str, to_id: str) -> Optional[PlanEdge]:
        return self._edges.get((from_id, to_id))

    # -- node mutations ----------------------------------------------------

    def add_node(self, node: PlanNode) -> None:
        """Add a node.

        Restored edges that were waiting on this id become live here, so they get
        the same checks as add_edge: a self-loop or a cycle through the new node
        raises and leaves the graph unchanged.
        """
        if node.id in self._nodes:
            raise duplicate_node(node.id)
        self._nodes[node.id] = node
        self._seq[node.id] = self._next_seq

        for pre in self._pred.get(node.id, {}):
            if pre not in self._nodes:
                continue
            back = self.find_path(node.id, pre)
            if back is None:
                continue
            del self._nodes[node.id]
            del self._seq[node.id]
            err = self_loop(node.id) if pre == node.id else cycle_detected(back + [node.id])
            logger.info("rejected node %s: %s", node.id, err.message)
            raise err

        self._next_seq += 1
        logger.debug("added node %s", node.id)

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it. No-op for unknown ids."""
        if node_id not in self._nodes:
            return
        for dep in list(self._succ.get(node_id, {})):
            self._drop_edge(node_id, dep)
        for pre in list(self._pred.get(node_id, {})):
            self._drop_edge(pre, node_id)
        del self._nodes[node_id]
        del self._seq[node_id]
        logger.debug("removed node %s", node_id)

    def update_node(self, node_id: str, **fields: Any) -> PlanNode:
        """Replace descriptive fields of a node; returns the updated node."""
        node = self._nodes.get(node_id)
        if node is None:
            raise unknown_node(node_id)
        bad = sorted(set(fields) - _UPDATABLE_FIELDS)
        if bad:
            raise ValueError(f"fields cannot be updated: {', '.join(bad)}")
        updated = replace(node, **fields)
        self._nodes[node_id] = updated
        return updated

    def mark_completed(self, node_id: str) -> None:
        self._set_completed(node_id, True)

    def mark_incomplete(self, node_id: str) -> None:
        self._set_completed(node_id, False)

    def _set_completed(self, node_id: str, value: bool) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            logger.debug("ignoring completion change for unknown node %s", node_id)
            return
        if node.is_completed != value:
            completed_at = datetime.now(timezone.utc) if value else None
            self._nodes[node_id] = replace(node, is_completed=value, completed_at=completed_at)

    def clear(self) -> None:
        self._nodes.clear()
        self._seq.clear()
        self.remove_all_edges()

    # -- edge mutations ----------------------------------------------------

    def add_edge(
        self,
        from_id: str,
        to_id: str,
        *,
        is_hard: bool = True,
        reason: Optional[str] = None,
    ) -> None:
        """Add ``from_id -> to_id`` (``from_id`` becomes a prerequisite of ``to_id``).

        Raises GraphValidationError (E_UNKNOWN_NODE, E_SELF_LOOP, E_CYCLE_DETECTED)
        and leaves the graph untouched when the edge is rejected. Adding an edge
        that already exists is a no-op.
        """
        for nid in (from_id, to_id):
            if nid not in self._nodes:
                raise unknown_node(nid)
        if from_id == to_id:
            raise self_loop(from_id)
        if (from_id, to_id) in self._edges:
            return

        back = self.find_path(to_id, from_id)
        if back is not None:
            err = cycle_detected(back + [to_id])
            logger.info("rejected edge %s -> %s: %s", from_id, to_id, err.message)
            raise err

        self._insert_edge(PlanEdge(from_id=from_id, to_id=to_id, is_hard=is_hard, reason=reason))
        logger.debug("added edge %s -> %s", from_id, to_id)

    def remove_edge(self, from_id: str, to_id: str) -> None:
        if (from_id, to_id) in self._edges:
            self._drop_edge(from_id, to_id)
            logger.debug("removed edge %s -> %s", from_id, to_id)

    def remove_all_edges(self) -> None:
        self._edges.clear()
        self._succ.clear()
        self._pred.clear()

    def _insert_edge(self, edge: PlanEdge) -> None:
        self._edges[edge.key] = edge
        self._succ.setdefault(edge.from_id, {})[edge.to_id] = None
        self._pred.setdefault(edge.to_id, {})[edge.from_id] = None

    def _drop_edge(self, from_id: str, to_id: str) -> None:
        del self._edges[(from_id, to_id)]
        self._succ[from_id].pop(to_id, None)
        self._pred[to_id].pop(from_id, None)

    # -- queries -------------------------------------------------------------

    def _in_order(self, ids: Iterable[str]) -> list[PlanNode]:
        present = [i for i in ids if i in self._nodes]
        present.sort(key=self._seq.__getitem__)
        return [self._nodes[i] for i in present]

    def get_prerequisites(self, node_id: str) -> list[PlanNode]:
        """Direct prerequisites of a node (not transitive)."""
        return self._in_order(self._pred.get(node_id, {}))

    def get_dependents(self, node_id: str) -> list[PlanNode]:
        """Direct dependents of a node (not transitive)."""
        return self._in_order(self._succ.get(node_id, {}))

    def get_all_prerequisites(self, node_id: str) -> list[PlanNode]:
        return self._in_order(self._reach(node_id, self._pred))

    def get_all_dependents(self, node_id: str) -> list[PlanNode]:
        return self._in_order(self._reach(node_id, self._succ))

    def _reach(self, start: str, adjacency: dict[str, dict[str, None]]) -> set[str]:
        seen: set[str] = set()
        q: deque[str] = deque(adjacency.get(start, {}))
        while q:
            cur = q.popleft()
            if cur in seen:
                continue
            seen.add(cur)
            q.extend(n for n in adjacency.get(cur, {}) if n not in seen)
        seen.discard(start)
        return seen

    def is_blocked(self, node_id: str) -> bool:
        """True if any *direct* prerequisite is incomplete.

        Completion flags are taken at face value: a node whose direct
        prerequisites are all complete is not blocked, even when an ancestor
        further up the chain is not. See get_incomplete_ancestors().
        """
        return any(not n.is_completed for n in self.get_prerequisites(node_id))

    def get_incomplete_ancestors(self, node_id: str) -> list[PlanNode]:
        return [n for n in self.get_all_prerequisites(node_id) if not n.is_completed]

    def get_unblocked_nodes(self) -> list[PlanNode]:
        return [n for n in self._nodes.values() if not self.is_blocked(n.id)]

    def get_blocked_nodes(self) -> list[PlanNode]:
        return [n for n in self._nodes.values() if self.is_blocked(n.id)]

    def get_ready_nodes(self) -> list[PlanNode]:
        """Incomplete nodes whose direct prerequisites are all complete."""
        return [n for n in self.get_unblocked_nodes() if not n.is_completed]

    def get_root_nodes(self) -> list[PlanNode]:
        return [n for n in self._nodes.values() if not self.get_prerequisites(n.id)]

    def get_leaf_nodes(self) -> list[PlanNode]:
        return [n for n in self._nodes.values() if not self.get_dependents(n.id)]

    def sorted_nodes(self) -> list[PlanNode]:
        """Nodes ordered by sort_index, then insertion order. Ignores edges."""
        return sorted(self._nodes.values(), key=lambda n: (n.sort_index, self._seq[n.id]))

    def find_path(self, source: str, target: str) -> Optional[list[str]]:
        """Shortest forward path from source to target (inclusive), or None."""
        if source not in self._nodes or target not in self._nodes:
            return None
        if source == target:
            return [source]
        parent: dict[str, str] = {}
        seen = {source}
        q: deque[str] = deque([source])
        while q:
            cur = q.popleft()
            for nxt in self._succ.get(cur, {}):
                if nxt in seen or nxt not in self._nodes:
                    continue
                parent[nxt] = cur
                if nxt == target:
                    path = [target]
                    while path[-1] != source:
                        path.append(parent[path[-1]])
                    path.reverse()
                    return path
                seen.add(nxt)
                q.append(nxt)
        return None

    def topological_sort(self) -> Optional[list[PlanNode]]:
        """Kahn's algorithm; ties broken by sort_index, then insertion order.

        Returns None when a cycle prevents a complete ordering. That only happens
        when bad edges were installed through restore().
        """
        in_degree = {nid: 0 for nid in self._nodes}
        for from_id, to_id in self._edges:
            if from_id in self._nodes and to_id in self._nodes:
                in_degree[to_id] += 1

        heap: list[tuple[int, int, str]] = []
        for nid, degree in in_degree.items():
            if degree == 0:
                heapq.heappush(heap, self._heap_key(nid))

        result: list[PlanNode] = []
        while heap:
            _, _, nid = heapq.heappop(heap)
            result.append(self._nodes[nid])
            for dep in self._succ.get(nid, {}):
                if dep not in in_degree:
                    continue
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    heapq.heappush(heap, self._heap_key(dep))

        if len(result) != len(self._nodes):
            logger.warning(
                "topological sort incomplete: %d of %d nodes ordered",
                len(result),
                len(self._nodes),
            )
            return None
        return result

    def _heap_key(self, node_id: str) -> tuple[int, int, str]:
        return (self._nodes[node_id].sort_index, self._seq[node_id], node_id)

    def detect_cycle(self, *, include_self_loops: bool = True) -> Optional[list[str]]:
        """Return the first cycle found by depth-first search, or None.

        The path starts and ends with the same node id.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        state = {nid: WHITE for nid in self._nodes}

        for start in self._nodes:
            if state[start] != WHITE:
                continue
            state[start] = GRAY
            stack: list[tuple[str, Iterator[str]]] = [(start, iter(list(self._succ.get(start, {}))))]
            while stack:
                u, it = stack[-1]
                advanced = False
                for v in it:
                    if v not in state:
                        continue
                    if v == u and not include_self_loops:
                        continue
                    if state[v] == GRAY:
                        chain = [frame[0] for frame in stack]
                        return chain[chain.index(v):] + [v]
                    if state[v] == WHITE:
                        state[v] = GRAY
                        stack.append((v, iter(list(self._succ.get(v, {})))))
                        advanced = True
                        break
                if not advanced:
                    state[u] = BLACK
                    stack.pop()
        return None

    def validate(self) -> list[GraphValidationError]:
        """Rescan nodes and edges and report every structural problem found.

        Reports orphan edges, self-loops and (at most) one cycle. Never repairs.
        """
        errors: list[GraphValidationError] = []
        for from_id, to_id in self._edges:
            if from_id not in self._nodes or to_id not in self._nodes:
                errors.append(orphan_edge(from_id, to_id))
            elif from_id == to_id:
                errors.append(self_loop(from_id))

        cycle = self.detect_cycle(include_self_loops=False)
        if cycle is not None:
            errors.append(cycle_detected(cycle))
        return errors

    def is_valid(self) -> bool:
        return not self.validate()

    def get_statistics(self) -> GraphStatistics:
        return compute_statistics(self)

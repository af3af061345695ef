from __future__ import annotations

from typing import TYPE_CHECKING

from plan_dag.core.model import GraphStatistics

if TYPE_CHECKING:
    from plan_dag.core.graph.dag import PlanGraph


def compute_statistics(graph: PlanGraph) -> GraphStatistics:
    """Derive progress and shape statistics from the current graph state.

    Always computed fresh. Edges with a missing endpoint are ignored.
    """
    nodes = graph.nodes
    ids = {n.id for n in nodes}
    edges = [e for e in graph.edges if e.from_id in ids and e.to_id in ids]

    in_degree = {nid: 0 for nid in ids}
    out_degree = {nid: 0 for nid in ids}
    for e in edges:
        out_degree[e.from_id] += 1
        in_degree[e.to_id] += 1

    return GraphStatistics(
        total_nodes=len(nodes),
        completed_nodes=sum(1 for n in nodes if n.is_completed),
        total_edges=len(edges),
        root_node_count=sum(1 for d in in_degree.values() if d == 0),
        leaf_node_count=sum(1 for d in out_degree.values() if d == 0),
        longest_path=longest_path(graph),
        estimated_total_minutes=sum(n.estimated_minutes for n in nodes),
    )


def longest_path(graph: PlanGraph) -> int:
    """Number of nodes on the longest dependency chain (the critical chain).

    0 for an empty graph, and 0 when the graph is not acyclic.
    """
    order = graph.topological_sort()
    if not order:
        return 0

    longest: dict[str, int] = {}
    for node in order:
        prereqs = graph.get_prerequisites(node.id)
        longest[node.id] = 1 + max((longest[p.id] for p in prereqs), default=0)
    return max(longest.values())

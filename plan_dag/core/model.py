from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional


NodeType = Literal[
    "task",
    "reading",
    "practice",
    "review",
    "research",
    "writing",
    "preparation",
    "exam",
    "quiz",
    "lab",
]

ALLOWED_NODE_TYPES: tuple[str, ...] = (
    "task",
    "reading",
    "practice",
    "review",
    "research",
    "writing",
    "preparation",
    "exam",
    "quiz",
    "lab",
)


@dataclass(frozen=True)
class PlanNode:
    id: str
    title: str
    estimated_minutes: int = 1
    is_completed: bool = False
    sort_index: int = 0

    node_type: NodeType = "task"
    notes: Optional[str] = None
    # Set when the node is marked completed, cleared when it is reopened.
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class PlanEdge:
    from_id: str  # prerequisite
    to_id: str  # dependent

    is_hard: bool = True
    reason: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.from_id, self.to_id)


@dataclass(frozen=True)
class PlanGraphMetadata:
    name: Optional[str] = None
    description: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class GraphStatistics:
    total_nodes: int
    completed_nodes: int
    total_edges: int
    root_node_count: int
    leaf_node_count: int
    longest_path: int
    estimated_total_minutes: int = 0

    @property
    def completion_percentage(self) -> float:
        if self.total_nodes == 0:
            return 0.0
        return self.completed_nodes / self.total_nodes * 100

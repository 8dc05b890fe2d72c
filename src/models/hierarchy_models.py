from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

__all__ = [
    "AssignedUser",
    "DiscoveryResult",
    "FailedStep",
    "HierarchyLevel",
    "HierarchyNode",
]


@dataclass(slots=True, frozen=True)
class HierarchyNode:
    id: int
    display_name: str
    level_name: str
    parent_id: int | None = None
    is_active: bool = True
    assigned_user_count: int = 0
    # Explicit leaf declaration from storage; None when the level kind does not declare one
    is_leaf_level: bool | None = None


@dataclass(slots=True, frozen=True)
class AssignedUser:
    user_id: int
    level_id: int
    first_name: str
    last_name: str | None = None
    email: str | None = None
    is_active: bool = True
    assigned_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass(slots=True, frozen=True)
class HierarchyLevel:
    index: int
    name: str
    members: tuple[HierarchyNode, ...]

    def member_ids(self) -> tuple[int, ...]:
        return tuple(m.id for m in self.members)


@dataclass(slots=True, frozen=True)
class FailedStep:
    """The fetch that failed last: children of ``parent_node_id`` for ``level_index``."""

    level_index: int
    parent_node_id: int
    message: str


@dataclass(slots=True, frozen=True)
class DiscoveryResult:
    start_node_id: int
    levels: tuple[HierarchyLevel, ...] = ()
    selections: tuple[int, ...] = ()
    leaf_nodes: tuple[HierarchyNode, ...] = field(default=())
    leaf_filter: int | None = None
    dead_end: bool = False
    failed_step: FailedStep | None = None

    @property
    def awaiting_selection(self) -> bool:
        return len(self.levels) > len(self.selections) and self.failed_step is None

    @property
    def filtered_leaf_nodes(self) -> tuple[HierarchyNode, ...]:
        if self.leaf_filter is None:
            return self.leaf_nodes
        return tuple(n for n in self.leaf_nodes if n.id == self.leaf_filter)

"""TTL cache for fetched children batches."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import structlog

from src.models.hierarchy_models import HierarchyNode

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _CacheEntry:
    children: tuple[HierarchyNode, ...]
    stored_at: float


class ChildrenCache:
    """Memoise ``fetch_children`` per parent node id.

    Only successful fetches are stored, empty batches included; failures
    never are, so a retry always reaches storage. A ``ttl_seconds`` of 0
    disables caching.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[int, _CacheEntry] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, node_id: int) -> tuple[HierarchyNode, ...] | None:
        entry = self._entries.get(node_id)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            del self._entries[node_id]
            return None
        return entry.children

    def set(self, node_id: int, children: tuple[HierarchyNode, ...]) -> None:
        if not self.enabled:
            return
        self._entries[node_id] = _CacheEntry(children=children, stored_at=self._clock())

    def invalidate(self, node_id: int) -> None:
        """Drop the batch of ``node_id`` and any batch that contains it as a child."""
        dropped = [
            key
            for key, entry in self._entries.items()
            if key == node_id or any(child.id == node_id for child in entry.children)
        ]
        for key in dropped:
            del self._entries[key]
        if dropped:
            LOGGER.debug("hierarchy.cache.invalidated", node_id=node_id, dropped=len(dropped))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["ChildrenCache"]

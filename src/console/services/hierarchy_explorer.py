"""Level-by-level discovery of an arbitrary-depth administrative hierarchy.

The explorer walks downward from a start node one batch of children at a
time. Every batch is either an intermediate level, which waits for the
caller to pick a member, or the leaf set, which ends the walk. Level names
and depth are never assumed up front.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import structlog

from src.config.settings import DEFAULT_LEAF_LEVEL_MARKERS
from src.console.services.hierarchy_cache import ChildrenCache
from src.console.services.hierarchy_errors import (
    HierarchyError,
    HierarchyErrorCode,
    HierarchyFetchError,
    InvalidSelectionError,
)
from src.console.services.level_registry import LevelKindRegistry
from src.infra.result import Err, Ok, Result
from src.models.hierarchy_models import (
    DiscoveryResult,
    FailedStep,
    HierarchyLevel,
    HierarchyNode,
)

LOGGER = structlog.get_logger(__name__)


class ChildrenSource(Protocol):
    async def fetch_children(
        self, node_id: int
    ) -> Result[Sequence[HierarchyNode], HierarchyError]: ...


class LeafClassifier:
    """Decide whether a fetched batch of children is the leaf level.

    Each child is judged on its own: its stored ``is_leaf_level`` flag when
    set, otherwise the level kind registry, then substring markers on the
    level name. A batch is leaf as soon as one member is.
    """

    def __init__(
        self,
        *,
        registry: LevelKindRegistry | None = None,
        markers: Sequence[str] = DEFAULT_LEAF_LEVEL_MARKERS,
    ) -> None:
        self._registry = registry
        self._markers = tuple(m.lower() for m in markers)

    def matches_marker(self, level_name: str) -> bool:
        lowered = level_name.lower()
        return any(marker in lowered for marker in self._markers)

    def is_leaf_name(self, level_name: str) -> bool:
        if self._registry is not None:
            declared = self._registry.is_leaf(level_name)
            if declared is not None:
                return declared
        return self.matches_marker(level_name)

    def is_leaf_node(self, node: HierarchyNode) -> bool:
        if node.is_leaf_level is not None:
            return node.is_leaf_level
        return self.is_leaf_name(node.level_name)

    def is_leaf_batch(self, children: Sequence[HierarchyNode]) -> bool:
        return any(self.is_leaf_node(c) for c in children)


class HierarchyExplorer:
    """Stateful traversal from one start node.

    One explorer serves one traversal root; call ``discover`` again to start
    over. Every operation returns the full ``DiscoveryResult`` snapshot so
    callers never need to track partial state themselves.
    """

    def __init__(
        self,
        source: ChildrenSource,
        *,
        classifier: LeafClassifier | None = None,
        cache: ChildrenCache | None = None,
    ) -> None:
        self._source = source
        self._classifier = classifier or LeafClassifier()
        self._cache = cache
        self._start_node_id: int | None = None
        self._levels: list[HierarchyLevel] = []
        self._selections: list[int] = []
        self._leaf_nodes: tuple[HierarchyNode, ...] = ()
        self._leaf_filter: int | None = None
        self._dead_end = False
        self._failed_step: FailedStep | None = None

    @property
    def cache(self) -> ChildrenCache | None:
        return self._cache

    def result(self) -> DiscoveryResult:
        if self._start_node_id is None:
            raise RuntimeError("discover() has not been called")
        return DiscoveryResult(
            start_node_id=self._start_node_id,
            levels=tuple(self._levels),
            selections=tuple(self._selections),
            leaf_nodes=self._leaf_nodes,
            leaf_filter=self._leaf_filter,
            dead_end=self._dead_end,
            failed_step=self._failed_step,
        )

    async def discover(self, start_node_id: int) -> Result[DiscoveryResult, HierarchyError]:
        self._start_node_id = start_node_id
        self._levels = []
        self._selections = []
        self._reset_tail()
        LOGGER.debug("hierarchy.explorer.discover", start_node_id=start_node_id)
        return await self._expand(0, start_node_id)

    async def select(
        self, level_index: int, node_id: int
    ) -> Result[DiscoveryResult, HierarchyError]:
        if self._start_node_id is None:
            return Err(InvalidSelectionError("Nothing discovered yet; call discover() first."))
        if level_index < 0 or level_index >= len(self._levels):
            return Err(
                InvalidSelectionError(
                    f"Level {level_index} has not been discovered.",
                    context={"level_index": level_index, "discovered": len(self._levels)},
                )
            )
        level = self._levels[level_index]
        if node_id not in level.member_ids():
            return Err(
                InvalidSelectionError(
                    f"Node {node_id} is not a member of level {level_index}.",
                    context={"level_index": level_index, "node_id": node_id},
                )
            )

        del self._levels[level_index + 1 :]
        del self._selections[level_index:]
        self._selections.append(node_id)
        self._reset_tail()
        LOGGER.debug(
            "hierarchy.explorer.selected",
            level_index=level_index,
            level_name=level.name,
            node_id=node_id,
        )
        return await self._expand(level_index + 1, node_id)

    def select_leaf(self, node_id: int) -> Result[DiscoveryResult, HierarchyError]:
        if node_id not in {n.id for n in self._leaf_nodes}:
            return Err(
                InvalidSelectionError(
                    f"Node {node_id} is not in the leaf set.",
                    context={"node_id": node_id},
                )
            )
        self._leaf_filter = node_id
        return Ok(self.result())

    def clear_leaf_filter(self) -> DiscoveryResult:
        self._leaf_filter = None
        return self.result()

    async def retry_failed_step(self) -> Result[DiscoveryResult, HierarchyError]:
        step = self._failed_step
        if step is None:
            return Err(
                InvalidSelectionError(
                    "There is no failed step to retry.",
                    error_code=HierarchyErrorCode.HIERARCHY_NOTHING_TO_RETRY,
                )
            )
        self._failed_step = None
        LOGGER.info(
            "hierarchy.explorer.retry",
            level_index=step.level_index,
            parent_node_id=step.parent_node_id,
        )
        return await self._expand(step.level_index, step.parent_node_id)

    def _reset_tail(self) -> None:
        self._leaf_nodes = ()
        self._leaf_filter = None
        self._dead_end = False
        self._failed_step = None

    async def _fetch(self, node_id: int) -> Result[tuple[HierarchyNode, ...], HierarchyError]:
        if self._cache is not None:
            cached = self._cache.get(node_id)
            if cached is not None:
                return Ok(cached)
        fetched = await self._source.fetch_children(node_id)
        if isinstance(fetched, Err):
            return Err(fetched.error)
        children = tuple(fetched.value)
        if self._cache is not None:
            self._cache.set(node_id, children)
        return Ok(children)

    async def _expand(
        self, level_index: int, parent_node_id: int
    ) -> Result[DiscoveryResult, HierarchyError]:
        fetched = await self._fetch(parent_node_id)
        if isinstance(fetched, Err):
            error = fetched.error
            if isinstance(error, HierarchyFetchError):
                self._failed_step = FailedStep(
                    level_index=level_index,
                    parent_node_id=parent_node_id,
                    message=error.message,
                )
            LOGGER.warning(
                "hierarchy.explorer.fetch_failed",
                level_index=level_index,
                parent_node_id=parent_node_id,
                error_code=error.error_code.value,
                error=error.message,
            )
            return Err(error)

        children = fetched.value
        if not children:
            self._dead_end = True
            LOGGER.debug(
                "hierarchy.explorer.dead_end",
                level_index=level_index,
                parent_node_id=parent_node_id,
            )
            return Ok(self.result())

        if self._classifier.is_leaf_batch(children):
            self._leaf_nodes = children
            LOGGER.debug(
                "hierarchy.explorer.leaf_level",
                level_index=level_index,
                parent_node_id=parent_node_id,
                count=len(children),
            )
            return Ok(self.result())

        # Label comes from the first member even if the batch is not homogeneous
        level = HierarchyLevel(index=level_index, name=children[0].level_name, members=children)
        self._levels.append(level)
        LOGGER.debug(
            "hierarchy.explorer.level_discovered",
            level_index=level_index,
            level_name=level.name,
            count=len(children),
        )
        return Ok(self.result())


__all__ = ["ChildrenSource", "HierarchyExplorer", "LeafClassifier"]

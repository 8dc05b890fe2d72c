"""Storage-backed hierarchy lookups and the explorer factory."""

from __future__ import annotations

from typing import Sequence, cast

import structlog

from src.config.settings import ConsoleSettings, get_settings
from src.console.services.hierarchy_cache import ChildrenCache
from src.console.services.hierarchy_errors import (
    HierarchyError,
    HierarchyFetchError,
    NodeNotFoundError,
)
from src.console.services.hierarchy_explorer import HierarchyExplorer, LeafClassifier
from src.console.services.level_registry import LevelKindRegistry, get_registry
from src.db.gateway.hierarchy_nodes import HierarchyGateway
from src.db.pool import get_pool
from src.infra.result import Err, Ok, Result, async_returns_result
from src.infra.types.db import ConnectionProtocol, PoolProtocol
from src.models.hierarchy_models import AssignedUser, HierarchyNode

LOGGER = structlog.get_logger(__name__)

# Anything unexpected while reading is a retryable fetch failure
_FETCH_ERRORS = {HierarchyError: HierarchyError, Exception: HierarchyFetchError}


async def eligible_forward_levels(
    gateway: HierarchyGateway,
    connection: ConnectionProtocol,
    *,
    caller_level_ids: Sequence[int],
    current_level_id: int | None = None,
) -> list[HierarchyNode]:
    """Levels above the caller's own that a report may be escalated to."""
    excluded = set(caller_level_ids)
    if current_level_id is not None:
        excluded.add(current_level_id)
    ancestors = await gateway.fetch_ancestors(connection, node_ids=caller_level_ids)
    return [node for node in ancestors if node.id not in excluded]


class HierarchyService:
    """Read access to hierarchy nodes and assignments.

    Also acts as the children source of every ``HierarchyExplorer`` it
    builds; all explorers share one ``ChildrenCache``.
    """

    def __init__(
        self,
        *,
        pool: PoolProtocol | None = None,
        gateway: HierarchyGateway | None = None,
        settings: ConsoleSettings | None = None,
        registry: LevelKindRegistry | None = None,
        cache: ChildrenCache | None = None,
    ) -> None:
        self._pool = pool
        self._gateway = gateway or HierarchyGateway()
        self._settings = settings or get_settings()
        if registry is None:
            registry = (
                LevelKindRegistry(self._settings.level_kinds_path)
                if self._settings.level_kinds_path
                else get_registry()
            )
        self._classifier = LeafClassifier(
            registry=registry, markers=self._settings.leaf_level_markers
        )
        self._cache = (
            cache
            if cache is not None
            else ChildrenCache(ttl_seconds=self._settings.discovery_cache_ttl_seconds)
        )

    @property
    def cache(self) -> ChildrenCache:
        return self._cache

    @property
    def classifier(self) -> LeafClassifier:
        return self._classifier

    def _acquire_pool(self) -> PoolProtocol:
        return self._pool or cast(PoolProtocol, get_pool())

    def explorer(self) -> HierarchyExplorer:
        return HierarchyExplorer(self, classifier=self._classifier, cache=self._cache)

    def invalidate(self, node_id: int) -> None:
        """Forget cached children around ``node_id`` after it was edited."""
        self._cache.invalidate(node_id)

    @async_returns_result(HierarchyFetchError, exception_map=_FETCH_ERRORS)
    async def fetch_children(
        self, node_id: int
    ) -> Result[Sequence[HierarchyNode], HierarchyError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            children = await self._gateway.fetch_children(c, node_id=node_id)
            # An empty batch is only meaningful for a node that exists
            if not children and await self._gateway.fetch_node(c, node_id=node_id) is None:
                return Err(NodeNotFoundError(context={"node_id": node_id}))
        LOGGER.debug("hierarchy.children.fetched", node_id=node_id, count=len(children))
        return Ok(children)

    @async_returns_result(HierarchyFetchError, exception_map=_FETCH_ERRORS)
    async def fetch_node(self, node_id: int) -> Result[HierarchyNode, HierarchyError]:
        async with self._acquire_pool().acquire() as conn:
            node = await self._gateway.fetch_node(conn, node_id=node_id)
        if node is None:
            return Err(NodeNotFoundError(context={"node_id": node_id}))
        return Ok(node)

    @async_returns_result(HierarchyFetchError, exception_map=_FETCH_ERRORS)
    async def fetch_assigned_users(
        self, node_id: int
    ) -> Result[Sequence[AssignedUser], HierarchyError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            users = await self._gateway.fetch_assigned_users(c, node_id=node_id)
            if not users and await self._gateway.fetch_node(c, node_id=node_id) is None:
                return Err(NodeNotFoundError(context={"node_id": node_id}))
        return Ok(users)

    @async_returns_result(HierarchyFetchError, exception_map=_FETCH_ERRORS)
    async def fetch_caller_level_ids(self, user_id: int) -> Result[Sequence[int], HierarchyError]:
        async with self._acquire_pool().acquire() as conn:
            return Ok(await self._gateway.fetch_caller_level_ids(conn, user_id=user_id))

    @async_returns_result(HierarchyFetchError, exception_map=_FETCH_ERRORS)
    async def fetch_eligible_forward_levels(
        self, user_id: int, current_level_id: int | None = None
    ) -> Result[Sequence[HierarchyNode], HierarchyError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            own = await self._gateway.fetch_caller_level_ids(c, user_id=user_id)
            levels = await eligible_forward_levels(
                self._gateway, c, caller_level_ids=own, current_level_id=current_level_id
            )
        LOGGER.debug(
            "hierarchy.forward_levels.resolved",
            user_id=user_id,
            own_levels=len(own),
            eligible=len(levels),
        )
        return Ok(levels)


__all__ = ["HierarchyService", "eligible_forward_levels"]

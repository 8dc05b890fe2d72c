"""Wire the console services into a dependency injection container."""

from __future__ import annotations

import structlog

from src.config.settings import ConsoleSettings, get_settings
from src.console.services.hierarchy_cache import ChildrenCache
from src.console.services.hierarchy_explorer import HierarchyExplorer
from src.console.services.hierarchy_service import HierarchyService
from src.console.services.level_registry import LevelKindRegistry, get_registry
from src.console.services.vic_report_service import VicReportService
from src.db import pool as db_pool
from src.db.gateway.hierarchy_nodes import HierarchyGateway
from src.db.gateway.vic_reports import VicReportGateway
from src.infra.di.container import DependencyContainer
from src.infra.di.lifecycle import Lifecycle
from src.infra.types.db import PoolProtocol

LOGGER = structlog.get_logger(__name__)


def bootstrap_container(
    *,
    pool: PoolProtocol | None = None,
    settings: ConsoleSettings | None = None,
    schema: str = "console",
) -> DependencyContainer:
    """Build the container used by every entry point.

    The database pool must be initialised before calling this function
    unless ``pool`` is passed explicitly. ``schema`` should match
    ``PoolConfig.db_schema``.
    """
    container = DependencyContainer()
    resolved_settings = settings or get_settings()

    container.register_instance(PoolProtocol, pool or db_pool.get_pool())  # type: ignore[type-abstract]
    container.register_instance(ConsoleSettings, resolved_settings)

    # Gateways are stateless
    container.register(HierarchyGateway, factory=lambda: HierarchyGateway(schema=schema))
    container.register(VicReportGateway, factory=lambda: VicReportGateway(schema=schema))

    def create_registry() -> LevelKindRegistry:
        if resolved_settings.level_kinds_path:
            return LevelKindRegistry(resolved_settings.level_kinds_path)
        return get_registry()

    container.register(LevelKindRegistry, factory=create_registry)
    container.register(
        ChildrenCache,
        factory=lambda: ChildrenCache(ttl_seconds=resolved_settings.discovery_cache_ttl_seconds),
    )
    container.register(HierarchyService, lifecycle=Lifecycle.SINGLETON)
    container.register(VicReportService, lifecycle=Lifecycle.SINGLETON)

    # One explorer per traversal, all sharing the service's cache
    container.register(
        HierarchyExplorer,
        factory=lambda: container.resolve(HierarchyService).explorer(),
        lifecycle=Lifecycle.FACTORY,
    )

    LOGGER.info(
        "di.container.bootstrapped",
        schema=schema,
        allow_reforward=resolved_settings.allow_reforward,
    )
    return container


__all__ = ["bootstrap_container"]

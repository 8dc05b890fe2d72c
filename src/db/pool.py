"""asyncpg pool lifecycle for the console.

Each running event loop gets its own pool (pytest-asyncio starts a new
loop per test, and an asyncpg pool cannot cross loops). ``get_pool`` falls
back to the most recently created pool when called outside a loop, which
is what synchronous wiring code such as ``bootstrap_container`` needs.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, cast
from weakref import WeakKeyDictionary

import asyncpg
import structlog
from dotenv import load_dotenv

from src.config.db_settings import PoolConfig

LOGGER = structlog.get_logger(__name__)

_DEFAULT_ACQUIRE_TIMEOUT = 60.0


@dataclass
class _LoopSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pool: asyncpg.Pool | None = None


_SLOTS: "WeakKeyDictionary[asyncio.AbstractEventLoop, _LoopSlot]" = WeakKeyDictionary()
_last_pool: asyncpg.Pool | None = None


def load_pool_config() -> PoolConfig:
    load_dotenv(override=False)
    return PoolConfig.model_validate({})


def _slot(loop: asyncio.AbstractEventLoop) -> _LoopSlot:
    slot = _SLOTS.get(loop)
    if slot is None:
        slot = _SLOTS[loop] = _LoopSlot()
    return slot


async def init_pool(config: PoolConfig | None = None) -> asyncpg.Pool:
    """Create the pool for the running loop, or return the one it already has."""
    global _last_pool
    slot = _slot(asyncio.get_running_loop())
    async with slot.lock:
        if slot.pool is None:
            cfg = config if config is not None else load_pool_config()
            slot.pool = await cast(Any, asyncpg).create_pool(
                dsn=cfg.dsn,
                min_size=cfg.db_pool_min_size,
                max_size=cfg.db_pool_max_size,
                timeout=cfg.db_pool_timeout_seconds or _DEFAULT_ACQUIRE_TIMEOUT,
                init=_configure_connection,
                server_settings=cfg.server_settings,
            )
            LOGGER.info(
                "db.pool.initialised",
                min_size=cfg.db_pool_min_size,
                max_size=cfg.db_pool_max_size,
                schema=cfg.db_schema,
                application_name=cfg.application_name,
            )
        _last_pool = slot.pool
        return slot.pool


def get_pool() -> asyncpg.Pool:
    try:
        slot = _SLOTS.get(asyncio.get_running_loop())
    except RuntimeError:
        slot = None
    if slot is not None and slot.pool is not None:
        return slot.pool
    if _last_pool is None:
        raise RuntimeError("Database pool not initialised. Call init_pool() first.")
    return _last_pool


async def close_pool() -> None:
    """Close the running loop's pool; a no-op when none was created."""
    global _last_pool
    slot = _slot(asyncio.get_running_loop())
    async with slot.lock:
        pool, slot.pool = slot.pool, None
    if pool is None:
        return
    await pool.close()
    if _last_pool is pool:
        _last_pool = None
    LOGGER.info("db.pool.closed")


async def _configure_connection(connection: asyncpg.Connection) -> None:
    # Attachments live in a jsonb column and come back as Python lists
    for type_name in ("json", "jsonb"):
        await cast(Any, connection).set_type_codec(
            type_name,
            schema="pg_catalog",
            encoder=json.dumps,
            decoder=json.loads,
            format="text",
        )


__all__ = ["init_pool", "get_pool", "close_pool", "load_pool_config"]

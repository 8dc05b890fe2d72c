"""The slice of asyncpg that gateways and services rely on.

Services and gateways are annotated with these protocols so that the
in-memory fakes in the unit tests and real asyncpg objects are
interchangeable.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Protocol


class ConnectionProtocol(Protocol):
    async def fetch(self, query: str, *args: Any) -> list[Any]: ...

    async def fetchrow(self, query: str, *args: Any) -> Any: ...

    async def fetchval(self, query: str, *args: Any) -> Any: ...

    async def execute(self, query: str, *args: Any) -> str: ...

    # Used as ``async with conn.transaction():``; report writes and their
    # timeline rows commit or roll back together
    def transaction(self) -> AsyncContextManager[Any]: ...


class PoolProtocol(Protocol):
    def acquire(self) -> AsyncContextManager[ConnectionProtocol]: ...


__all__ = ["ConnectionProtocol", "PoolProtocol"]

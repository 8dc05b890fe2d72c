from __future__ import annotations

from typing import Any, Mapping, Sequence, cast

from src.infra.types.db import ConnectionProtocol
from src.models.hierarchy_models import AssignedUser, HierarchyNode

_NODE_COLUMNS = """
    n.id,
    n.display_name,
    n.level_name,
    n.parent_id,
    n.is_active,
    n.is_leaf_level,
    (
        SELECT count(*)
        FROM {schema}.level_assignments a
        WHERE a.level_id = n.id AND a.is_active
    ) AS assigned_user_count
"""


def _node_from_row(row: Mapping[str, Any]) -> HierarchyNode:
    return HierarchyNode(
        id=int(row["id"]),
        display_name=str(row["display_name"]),
        level_name=str(row["level_name"]),
        parent_id=cast(int | None, row["parent_id"]),
        is_active=bool(row["is_active"]),
        assigned_user_count=int(row["assigned_user_count"] or 0),
        is_leaf_level=cast(bool | None, row["is_leaf_level"]),
    )


def _assigned_user_from_row(row: Mapping[str, Any]) -> AssignedUser:
    return AssignedUser(
        user_id=int(row["user_id"]),
        level_id=int(row["level_id"]),
        first_name=str(row["first_name"]),
        last_name=cast(str | None, row["last_name"]),
        email=cast(str | None, row["email"]),
        is_active=bool(row["is_active"]),
        assigned_at=row["assigned_at"],
    )


class HierarchyGateway:
    """Read-only queries over hierarchy nodes and level assignments."""

    def __init__(self, *, schema: str = "console") -> None:
        self._schema = schema

    def _columns(self) -> str:
        return _NODE_COLUMNS.format(schema=self._schema)

    async def fetch_node(
        self, connection: ConnectionProtocol, *, node_id: int
    ) -> HierarchyNode | None:
        sql = f"""
            SELECT {self._columns()}
            FROM {self._schema}.hierarchy_nodes n
            WHERE n.id = $1
        """
        row = await connection.fetchrow(sql, node_id)
        if row is None:
            return None
        return _node_from_row(row)

    async def fetch_nodes(
        self, connection: ConnectionProtocol, *, node_ids: Sequence[int]
    ) -> Sequence[HierarchyNode]:
        if not node_ids:
            return []
        sql = f"""
            SELECT {self._columns()}
            FROM {self._schema}.hierarchy_nodes n
            WHERE n.id = ANY($1::bigint[])
            ORDER BY n.id
        """
        rows = await connection.fetch(sql, list(dict.fromkeys(int(x) for x in node_ids)))
        return [_node_from_row(r) for r in rows]

    async def fetch_children(
        self, connection: ConnectionProtocol, *, node_id: int
    ) -> Sequence[HierarchyNode]:
        """Direct children in display order; empty for a node without descendants."""
        sql = f"""
            SELECT {self._columns()}
            FROM {self._schema}.hierarchy_nodes n
            WHERE n.parent_id = $1
            ORDER BY n.display_name, n.id
        """
        rows = await connection.fetch(sql, node_id)
        return [_node_from_row(r) for r in rows]

    async def fetch_assigned_users(
        self, connection: ConnectionProtocol, *, node_id: int
    ) -> Sequence[AssignedUser]:
        sql = f"""
            SELECT
                a.user_id,
                a.level_id,
                u.first_name,
                u.last_name,
                u.email,
                (a.is_active AND u.is_active) AS is_active,
                a.assigned_at
            FROM {self._schema}.level_assignments a
            JOIN {self._schema}.users u ON u.id = a.user_id
            WHERE a.level_id = $1
            ORDER BY u.first_name, u.last_name, a.user_id
        """
        rows = await connection.fetch(sql, node_id)
        return [_assigned_user_from_row(r) for r in rows]

    async def fetch_caller_level_ids(
        self, connection: ConnectionProtocol, *, user_id: int
    ) -> Sequence[int]:
        sql = f"""
            SELECT a.level_id
            FROM {self._schema}.level_assignments a
            WHERE a.user_id = $1 AND a.is_active
            ORDER BY a.level_id
        """
        rows = await connection.fetch(sql, user_id)
        return [int(r["level_id"]) for r in rows]

    async def fetch_ancestors(
        self, connection: ConnectionProtocol, *, node_ids: Sequence[int]
    ) -> Sequence[HierarchyNode]:
        """Every proper ancestor of ``node_ids``, nearest first."""
        if not node_ids:
            return []
        sql = f"""
            WITH RECURSIVE up(id, depth) AS (
                SELECT h.parent_id, 1
                FROM {self._schema}.hierarchy_nodes h
                WHERE h.id = ANY($1::bigint[]) AND h.parent_id IS NOT NULL
                UNION ALL
                SELECT h.parent_id, up.depth + 1
                FROM {self._schema}.hierarchy_nodes h
                JOIN up ON h.id = up.id
                WHERE h.parent_id IS NOT NULL
            ),
            nearest AS (
                SELECT id, min(depth) AS depth FROM up GROUP BY id
            )
            SELECT {self._columns()}
            FROM nearest
            JOIN {self._schema}.hierarchy_nodes n ON n.id = nearest.id
            ORDER BY nearest.depth, n.display_name, n.id
        """
        rows = await connection.fetch(sql, list(dict.fromkeys(int(x) for x in node_ids)))
        return [_node_from_row(r) for r in rows]


__all__ = ["HierarchyGateway"]

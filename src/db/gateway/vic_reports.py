from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence, cast

from src.infra.types.db import ConnectionProtocol
from src.models.vic_report_models import (
    EntryStatus,
    ReportPriority,
    ReportStatistics,
    ReportStatus,
    ReportType,
    TimelineEntry,
    VicReport,
)

# Columns a submitter may still edit before anybody acted on the report
EDITABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "report_type",
        "priority",
        "report_content",
        "voter_id_epic_no",
        "voter_first_name",
        "voter_last_name",
        "part_no",
        "voter_relative_name",
        "attachments",
    }
)

_CLOSED = (
    ReportStatus.APPROVED.value,
    ReportStatus.REJECTED.value,
    ReportStatus.RESOLVED.value,
)


@dataclass(frozen=True, slots=True)
class ReportQuery:
    """Scope and filters of one list query; unset fields do not filter."""

    limit: int
    offset: int = 0
    status: ReportStatus | None = None
    priority: ReportPriority | None = None
    report_type: ReportType | None = None
    search: str | None = None
    submitted_by: int | None = None
    # Reports waiting on one of these levels
    assigned_level_ids: Sequence[int] | None = None
    current_level_id: int | None = None


def _entry_from_row(row: Mapping[str, Any]) -> TimelineEntry:
    return TimelineEntry(
        id=cast(int | None, row["id"]),
        hierarchy_order=int(row["hierarchy_order"]),
        level_id=int(row["level_id"]),
        level_display_name=str(row["level_display_name"] or ""),
        status=EntryStatus(row["status"]),
        assigned_user_id=cast(int | None, row["assigned_user_id"]),
        action_notes=cast(str | None, row["action_notes"]),
        action_taken_at=cast(datetime | None, row["action_taken_at"]),
        action_taken_by=cast(int | None, row["action_taken_by"]),
        forwarded_to_level_id=cast(int | None, row["forwarded_to_level_id"]),
    )


def _report_from_row(
    row: Mapping[str, Any], timeline: Sequence[TimelineEntry] = ()
) -> VicReport:
    return VicReport(
        id=int(row["id"]),
        status=ReportStatus(row["status"]),
        priority=ReportPriority(row["priority"]),
        report_type=ReportType(row["report_type"]),
        submitted_by=int(row["submitted_by"]),
        submitted_at=cast(datetime, row["submitted_at"]),
        current_level_id=int(row["current_level_id"]),
        current_level_display_name=str(row["current_level_display_name"] or ""),
        report_content=str(row["report_content"]),
        voter_id_epic_no=str(row["voter_id_epic_no"]),
        voter_first_name=str(row["voter_first_name"]),
        voter_last_name=cast(str | None, row["voter_last_name"]),
        part_no=str(row["part_no"]),
        voter_relative_name=str(row["voter_relative_name"]),
        attachments=tuple(row["attachments"] or ()),
        resolution_notes=cast(str | None, row["resolution_notes"]),
        resolved_at=cast(datetime | None, row["resolved_at"]),
        resolved_by=cast(int | None, row["resolved_by"]),
        version=int(row["version"]),
        is_deleted=bool(row["is_deleted"]),
        updated_at=cast(datetime | None, row["updated_at"]),
        timeline=tuple(timeline),
    )


class VicReportGateway:
    """Persistence for VIC reports and their escalation timeline."""

    def __init__(self, *, schema: str = "console") -> None:
        self._schema = schema

    def _report_select(self) -> str:
        return f"""
            SELECT r.*, n.display_name AS current_level_display_name
            FROM {self._schema}.vic_reports r
            JOIN {self._schema}.hierarchy_nodes n ON n.id = r.current_level_id
        """

    # --- Reads ---
    async def fetch_timeline(
        self, connection: ConnectionProtocol, *, report_ids: Sequence[int]
    ) -> dict[int, list[TimelineEntry]]:
        if not report_ids:
            return {}
        sql = f"""
            SELECT t.*, n.display_name AS level_display_name
            FROM {self._schema}.vic_report_timeline t
            JOIN {self._schema}.hierarchy_nodes n ON n.id = t.level_id
            WHERE t.report_id = ANY($1::bigint[])
            ORDER BY t.report_id, t.hierarchy_order
        """
        rows = await connection.fetch(sql, list(report_ids))
        grouped: dict[int, list[TimelineEntry]] = {int(rid): [] for rid in report_ids}
        for row in rows:
            grouped.setdefault(int(row["report_id"]), []).append(_entry_from_row(row))
        return grouped

    async def fetch_report(
        self,
        connection: ConnectionProtocol,
        *,
        report_id: int,
        for_update: bool = False,
    ) -> VicReport | None:
        """Load a live report with its timeline.

        With ``for_update`` the report row stays locked until the surrounding
        transaction ends.
        """
        sql = f"{self._report_select()} WHERE r.id = $1 AND NOT r.is_deleted"
        if for_update:
            sql += " FOR UPDATE OF r"
        row = await connection.fetchrow(sql, report_id)
        if row is None:
            return None
        timelines = await self.fetch_timeline(connection, report_ids=[report_id])
        return _report_from_row(row, timelines.get(report_id, ()))

    async def list_reports(
        self, connection: ConnectionProtocol, *, query: ReportQuery
    ) -> tuple[Sequence[VicReport], int]:
        """Return one page of reports and the total number of matches."""
        conditions = ["NOT r.is_deleted"]
        params: list[Any] = []

        def _param(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if query.status is not None:
            conditions.append(f"r.status = {_param(query.status.value)}")
        if query.priority is not None:
            conditions.append(f"r.priority = {_param(query.priority.value)}")
        if query.report_type is not None:
            conditions.append(f"r.report_type = {_param(query.report_type.value)}")
        if query.submitted_by is not None:
            conditions.append(f"r.submitted_by = {_param(query.submitted_by)}")
        if query.current_level_id is not None:
            conditions.append(f"r.current_level_id = {_param(query.current_level_id)}")
        if query.assigned_level_ids is not None:
            levels = _param(list(query.assigned_level_ids))
            conditions.append(
                f"""(
                    EXISTS (
                        SELECT 1 FROM {self._schema}.vic_report_timeline t
                        WHERE t.report_id = r.id
                          AND t.status = 'Pending'
                          AND t.level_id = ANY({levels}::bigint[])
                    )
                    OR (
                        r.status = 'Pending'
                        AND r.current_level_id = ANY({levels}::bigint[])
                        AND NOT EXISTS (
                            SELECT 1 FROM {self._schema}.vic_report_timeline t
                            WHERE t.report_id = r.id
                        )
                    )
                )"""
            )
        if query.search:
            pattern = _param(f"%{query.search}%")
            conditions.append(
                f"""(
                    r.report_content ILIKE {pattern}
                    OR r.voter_id_epic_no ILIKE {pattern}
                    OR r.voter_first_name ILIKE {pattern}
                    OR coalesce(r.voter_last_name, '') ILIKE {pattern}
                    OR r.part_no ILIKE {pattern}
                )"""
            )

        where_clause = " AND ".join(conditions)
        limit = _param(query.limit)
        offset = _param(query.offset)
        sql = f"""
            SELECT sub.*, count(*) OVER () AS total_count
            FROM ({self._report_select()} WHERE {where_clause}) sub
            ORDER BY sub.submitted_at DESC, sub.id DESC
            LIMIT {limit} OFFSET {offset}
        """
        rows = await connection.fetch(sql, *params)
        if not rows:
            total = await connection.fetchval(
                f"SELECT count(*) FROM {self._schema}.vic_reports r WHERE {where_clause}",
                *params[:-2],
            )
            return [], int(total or 0)

        total = int(rows[0]["total_count"])
        timelines = await self.fetch_timeline(
            connection, report_ids=[int(r["id"]) for r in rows]
        )
        return [_report_from_row(r, timelines.get(int(r["id"]), ())) for r in rows], total

    async def count_statistics(
        self,
        connection: ConnectionProtocol,
        *,
        user_id: int,
        level_ids: Sequence[int],
    ) -> ReportStatistics:
        """Counts over reports the user submitted or that reached one of their levels."""
        sql = f"""
            WITH visible AS (
                SELECT r.*
                FROM {self._schema}.vic_reports r
                WHERE NOT r.is_deleted
                  AND (
                      r.submitted_by = $1
                      OR r.current_level_id = ANY($2::bigint[])
                      OR EXISTS (
                          SELECT 1 FROM {self._schema}.vic_report_timeline t
                          WHERE t.report_id = r.id AND t.level_id = ANY($2::bigint[])
                      )
                  )
            )
            SELECT
                count(*) FILTER (WHERE submitted_by = $1) AS my_reports_count,
                count(*) FILTER (
                    WHERE status NOT IN ('{_CLOSED[0]}', '{_CLOSED[1]}', '{_CLOSED[2]}')
                      AND current_level_id = ANY($2::bigint[])
                ) AS assigned_reports_count,
                count(*) FILTER (WHERE status = 'Pending') AS pending_count,
                count(*) FILTER (WHERE status = 'In_Progress') AS in_progress_count,
                count(*) FILTER (WHERE status = 'Approved') AS approved_count,
                count(*) FILTER (WHERE status = 'Rejected') AS rejected_count,
                count(*) FILTER (WHERE status = 'Resolved') AS resolved_count
            FROM visible
        """
        row = await connection.fetchrow(sql, user_id, list(level_ids))
        if row is None:
            return ReportStatistics(0, 0, 0, 0, 0, 0, 0)
        return ReportStatistics(
            my_reports_count=int(row["my_reports_count"]),
            assigned_reports_count=int(row["assigned_reports_count"]),
            pending_count=int(row["pending_count"]),
            in_progress_count=int(row["in_progress_count"]),
            approved_count=int(row["approved_count"]),
            rejected_count=int(row["rejected_count"]),
            resolved_count=int(row["resolved_count"]),
        )

    # --- Writes ---
    async def create_report(
        self,
        connection: ConnectionProtocol,
        *,
        submitted_by: int,
        current_level_id: int,
        fields: Mapping[str, Any],
    ) -> int:
        sql = f"""
            INSERT INTO {self._schema}.vic_reports (
                status, priority, report_type, submitted_by, current_level_id,
                report_content, voter_id_epic_no, voter_first_name, voter_last_name,
                part_no, voter_relative_name, attachments
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING id
        """
        report_id = await connection.fetchval(
            sql,
            ReportStatus.PENDING.value,
            ReportPriority(fields["priority"]).value,
            ReportType(fields["report_type"]).value,
            submitted_by,
            current_level_id,
            fields["report_content"],
            fields["voter_id_epic_no"],
            fields["voter_first_name"],
            fields.get("voter_last_name"),
            fields["part_no"],
            fields["voter_relative_name"],
            list(fields.get("attachments") or ()),
        )
        if report_id is None:
            raise RuntimeError("INSERT into vic_reports returned no id.")
        return int(report_id)

    async def apply_transition(
        self,
        connection: ConnectionProtocol,
        *,
        before: VicReport,
        after: VicReport,
    ) -> bool:
        """Persist ``after`` if the stored version still equals ``before.version``.

        Returns False when another writer got there first. Call inside a
        transaction so report fields and timeline rows commit together.
        """
        updated_id = await connection.fetchval(
            f"""
                UPDATE {self._schema}.vic_reports
                SET status = $3,
                    current_level_id = $4,
                    resolution_notes = $5,
                    resolved_at = $6,
                    resolved_by = $7,
                    version = $8,
                    updated_at = coalesce($9, timezone('utc', now()))
                WHERE id = $1 AND version = $2 AND NOT is_deleted
                RETURNING id
            """,
            before.id,
            before.version,
            after.status.value,
            after.current_level_id,
            after.resolution_notes,
            after.resolved_at,
            after.resolved_by,
            after.version,
            after.updated_at,
        )
        if updated_id is None:
            return False

        previous = {e.hierarchy_order: e for e in before.timeline}
        # Existing rows first so the old Pending row is gone before a new one lands
        for entry in after.timeline:
            old = previous.get(entry.hierarchy_order)
            if old is None or old == entry:
                continue
            await connection.execute(
                f"""
                    UPDATE {self._schema}.vic_report_timeline
                    SET status = $3,
                        action_notes = $4,
                        action_taken_at = $5,
                        action_taken_by = $6,
                        forwarded_to_level_id = $7
                    WHERE report_id = $1 AND hierarchy_order = $2
                """,
                before.id,
                entry.hierarchy_order,
                entry.status.value,
                entry.action_notes,
                entry.action_taken_at,
                entry.action_taken_by,
                entry.forwarded_to_level_id,
            )
        for entry in after.timeline:
            if entry.hierarchy_order in previous:
                continue
            await connection.execute(
                f"""
                    INSERT INTO {self._schema}.vic_report_timeline (
                        report_id, hierarchy_order, level_id, status, assigned_user_id,
                        action_notes, action_taken_at, action_taken_by, forwarded_to_level_id
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                before.id,
                entry.hierarchy_order,
                entry.level_id,
                entry.status.value,
                entry.assigned_user_id,
                entry.action_notes,
                entry.action_taken_at,
                entry.action_taken_by,
                entry.forwarded_to_level_id,
            )
        return True

    async def update_report(
        self,
        connection: ConnectionProtocol,
        *,
        report_id: int,
        expected_version: int,
        changes: Mapping[str, Any],
    ) -> bool:
        unknown = set(changes) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns are not editable: {sorted(unknown)}")
        if not changes:
            return True

        assignments: list[str] = []
        params: list[Any] = [report_id, expected_version]
        for column, value in changes.items():
            if column == "attachments":
                value = list(value or ())
            elif column in {"priority", "report_type"}:
                value = getattr(value, "value", value)
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        sql = f"""
            UPDATE {self._schema}.vic_reports
            SET {", ".join(assignments)},
                version = version + 1,
                updated_at = timezone('utc', now())
            WHERE id = $1 AND version = $2 AND NOT is_deleted
            RETURNING id
        """
        return await connection.fetchval(sql, *params) is not None

    async def soft_delete(
        self, connection: ConnectionProtocol, *, report_id: int, expected_version: int
    ) -> bool:
        sql = f"""
            UPDATE {self._schema}.vic_reports
            SET is_deleted = TRUE,
                version = version + 1,
                updated_at = timezone('utc', now())
            WHERE id = $1 AND version = $2 AND NOT is_deleted
            RETURNING id
        """
        return await connection.fetchval(sql, report_id, expected_version) is not None


__all__ = ["EDITABLE_COLUMNS", "ReportQuery", "VicReportGateway"]

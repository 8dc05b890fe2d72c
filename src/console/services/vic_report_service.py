"""VIC report service implementation using Result pattern.

Wraps the pure workflow in ``report_workflow`` with storage, locking and
event publication. ``submit_action`` is the only way a report moves along
its escalation chain.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence, cast

import structlog

from src.config.settings import ConsoleSettings, get_settings
from src.console.services.hierarchy_service import eligible_forward_levels
from src.console.services.report_errors import (
    ReportAuthorizationError,
    ReportConflictError,
    ReportError,
    ReportErrorCode,
    ReportNotFoundError,
    ReportValidationError,
)
from src.console.services.report_schemas import (
    ActionPayload,
    ReportFilters,
    ReportSubmission,
    ReportUpdate,
    parse_payload,
)
from src.console.services.report_workflow import (
    apply_action,
    available_actions,
    can_act,
    check_timeline,
)
from src.db.gateway.hierarchy_nodes import HierarchyGateway
from src.db.gateway.vic_reports import ReportQuery, VicReportGateway
from src.db.pool import get_pool
from src.infra.events.report_events import ReportEvent
from src.infra.events.report_events import publish as publish_report_event
from src.infra.result import Err, Ok, Result, async_returns_result
from src.infra.types.db import ConnectionProtocol, PoolProtocol
from src.models.hierarchy_models import HierarchyNode
from src.models.vic_report_models import (
    ReportAction,
    ReportPage,
    ReportStatistics,
    ReportStatus,
    VicReport,
)

LOGGER = structlog.get_logger(__name__)

_REPORT_ERRORS = {ReportError: ReportError, Exception: ReportError}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VicReportService:
    """Submission, listing and escalation of VIC reports."""

    def __init__(
        self,
        *,
        pool: PoolProtocol | None = None,
        gateway: VicReportGateway | None = None,
        hierarchy_gateway: HierarchyGateway | None = None,
        settings: ConsoleSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._pool = pool
        self._gateway = gateway or VicReportGateway()
        self._hierarchy = hierarchy_gateway or HierarchyGateway()
        self._settings = settings or get_settings()
        self._clock = clock

    def _acquire_pool(self) -> PoolProtocol:
        return self._pool or cast(PoolProtocol, get_pool())

    # --- Submission and editing ---
    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def submit_report(
        self,
        *,
        submitted_by: int,
        current_level_id: int,
        payload: Mapping[str, Any] | ReportSubmission,
    ) -> Result[VicReport, ReportError]:
        parsed = parse_payload(ReportSubmission, payload)
        if isinstance(parsed, Err):
            return Err(parsed.error)
        submission = parsed.value

        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            async with c.transaction():
                if await self._hierarchy.fetch_node(c, node_id=current_level_id) is None:
                    return Err(
                        ReportValidationError(
                            f"Unknown hierarchy level {current_level_id}.",
                            context={"current_level_id": current_level_id},
                        )
                    )
                report_id = await self._gateway.create_report(
                    c,
                    submitted_by=submitted_by,
                    current_level_id=current_level_id,
                    fields=submission.model_dump(),
                )
                report = await self._gateway.fetch_report(c, report_id=report_id)
                if report is None:
                    raise RuntimeError(f"Report {report_id} vanished after insert.")

        LOGGER.info(
            "vic_report.submitted",
            report_id=report.id,
            submitted_by=submitted_by,
            current_level_id=current_level_id,
            priority=report.priority.value,
        )
        await publish_report_event(
            ReportEvent(
                level_id=current_level_id,
                report_id=report.id,
                kind="report_submitted",
                status=report.status.value,
                actor_user_id=submitted_by,
            )
        )
        return Ok(report)

    def _editable_error(self, report: VicReport, user_id: int) -> ReportError | None:
        context = {"report_id": report.id, "user_id": user_id}
        if report.submitted_by != user_id:
            return ReportAuthorizationError(
                "Only the submitter can change this report.",
                error_code=ReportErrorCode.REPORT_AUTH_NOT_SUBMITTER,
                context=context,
            )
        if report.status is not ReportStatus.PENDING or report.timeline:
            return ReportValidationError(
                "Report can no longer be changed; an action was already taken.",
                error_code=ReportErrorCode.REPORT_VALIDATION_NOT_EDITABLE,
                context={**context, "status": report.status.value},
            )
        return None

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def update_report(
        self,
        *,
        report_id: int,
        editor_user_id: int,
        changes: Mapping[str, Any] | ReportUpdate,
    ) -> Result[VicReport, ReportError]:
        parsed = parse_payload(ReportUpdate, changes)
        if isinstance(parsed, Err):
            return Err(parsed.error)

        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            async with c.transaction():
                report = await self._gateway.fetch_report(c, report_id=report_id, for_update=True)
                if report is None:
                    return Err(ReportNotFoundError(context={"report_id": report_id}))
                error = self._editable_error(report, editor_user_id)
                if error is not None:
                    return Err(error)
                applied = await self._gateway.update_report(
                    c,
                    report_id=report_id,
                    expected_version=report.version,
                    changes=parsed.value.changes(),
                )
                if not applied:
                    raise ReportConflictError(context={"report_id": report_id})
                updated = await self._gateway.fetch_report(c, report_id=report_id)
                if updated is None:
                    raise RuntimeError(f"Report {report_id} vanished during update.")

        LOGGER.info("vic_report.updated", report_id=report_id, editor_user_id=editor_user_id)
        await publish_report_event(
            ReportEvent(
                level_id=updated.current_level_id,
                report_id=report_id,
                kind="report_updated",
                status=updated.status.value,
                actor_user_id=editor_user_id,
            )
        )
        return Ok(updated)

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def delete_report(self, *, report_id: int, user_id: int) -> Result[bool, ReportError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            async with c.transaction():
                report = await self._gateway.fetch_report(c, report_id=report_id, for_update=True)
                if report is None:
                    return Err(ReportNotFoundError(context={"report_id": report_id}))
                error = self._editable_error(report, user_id)
                if error is not None:
                    return Err(error)
                deleted = await self._gateway.soft_delete(
                    c, report_id=report_id, expected_version=report.version
                )
                if not deleted:
                    raise ReportConflictError(context={"report_id": report_id})

        LOGGER.info("vic_report.deleted", report_id=report_id, user_id=user_id)
        await publish_report_event(
            ReportEvent(
                level_id=report.current_level_id,
                report_id=report_id,
                kind="report_deleted",
                actor_user_id=user_id,
            )
        )
        return Ok(True)

    # --- Reads ---
    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def get_report(self, report_id: int) -> Result[VicReport, ReportError]:
        async with self._acquire_pool().acquire() as conn:
            report = await self._gateway.fetch_report(conn, report_id=report_id)
        if report is None:
            return Err(ReportNotFoundError(context={"report_id": report_id}))
        return Ok(report)

    def _build_query(
        self, filters: Mapping[str, Any] | ReportFilters | None, **scope: Any
    ) -> Result[ReportQuery, ReportError]:
        parsed = parse_payload(ReportFilters, filters or {})
        if isinstance(parsed, Err):
            return Err(parsed.error)
        f = parsed.value
        limit = f.limit or self._settings.default_page_limit
        if limit > self._settings.max_page_limit:
            return Err(
                ReportValidationError(
                    f"limit must not exceed {self._settings.max_page_limit}.",
                    context={"limit": limit},
                )
            )
        search = f.search or None
        return Ok(
            ReportQuery(
                limit=limit,
                offset=(f.page - 1) * limit,
                status=f.status,
                priority=f.priority,
                report_type=f.report_type,
                search=search,
                **scope,
            )
        )

    async def _list(self, query: ReportQuery) -> ReportPage:
        async with self._acquire_pool().acquire() as conn:
            items, total = await self._gateway.list_reports(conn, query=query)
        return ReportPage(
            items=tuple(items),
            total=total,
            page=query.offset // query.limit + 1,
            limit=query.limit,
        )

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def list_reports(
        self, filters: Mapping[str, Any] | ReportFilters | None = None
    ) -> Result[ReportPage, ReportError]:
        query = self._build_query(filters)
        if isinstance(query, Err):
            return Err(query.error)
        return Ok(await self._list(query.value))

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def list_my_reports(
        self, user_id: int, filters: Mapping[str, Any] | ReportFilters | None = None
    ) -> Result[ReportPage, ReportError]:
        query = self._build_query(filters, submitted_by=user_id)
        if isinstance(query, Err):
            return Err(query.error)
        return Ok(await self._list(query.value))

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def list_assigned_reports(
        self, user_id: int, filters: Mapping[str, Any] | ReportFilters | None = None
    ) -> Result[ReportPage, ReportError]:
        """Reports currently waiting on one of the caller's levels."""
        async with self._acquire_pool().acquire() as conn:
            level_ids = await self._hierarchy.fetch_caller_level_ids(conn, user_id=user_id)
        query = self._build_query(filters, assigned_level_ids=list(level_ids))
        if isinstance(query, Err):
            return Err(query.error)
        if not level_ids:
            return Ok(ReportPage(items=(), total=0, page=1, limit=query.value.limit))
        return Ok(await self._list(query.value))

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def list_reports_by_level(
        self, level_id: int, filters: Mapping[str, Any] | ReportFilters | None = None
    ) -> Result[ReportPage, ReportError]:
        query = self._build_query(filters, current_level_id=level_id)
        if isinstance(query, Err):
            return Err(query.error)
        return Ok(await self._list(query.value))

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def get_statistics(self, user_id: int) -> Result[ReportStatistics, ReportError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            level_ids = await self._hierarchy.fetch_caller_level_ids(c, user_id=user_id)
            stats = await self._gateway.count_statistics(c, user_id=user_id, level_ids=level_ids)
        return Ok(stats)

    # --- Eligibility ---
    async def _load_for_caller(
        self, c: ConnectionProtocol, report_id: int, user_id: int, *, for_update: bool = False
    ) -> tuple[VicReport, Sequence[int], list[HierarchyNode]] | None:
        report = await self._gateway.fetch_report(c, report_id=report_id, for_update=for_update)
        if report is None:
            return None
        own = await self._hierarchy.fetch_caller_level_ids(c, user_id=user_id)
        forward = await eligible_forward_levels(
            self._hierarchy, c, caller_level_ids=own, current_level_id=report.current_level_id
        )
        return report, own, forward

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def get_forward_levels(
        self, user_id: int, report_id: int | None = None
    ) -> Result[Sequence[HierarchyNode], ReportError]:
        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            current_level_id: int | None = None
            if report_id is not None:
                report = await self._gateway.fetch_report(c, report_id=report_id)
                if report is None:
                    return Err(ReportNotFoundError(context={"report_id": report_id}))
                current_level_id = report.current_level_id
            own = await self._hierarchy.fetch_caller_level_ids(c, user_id=user_id)
            levels = await eligible_forward_levels(
                self._hierarchy, c, caller_level_ids=own, current_level_id=current_level_id
            )
        return Ok(levels)

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def can_act(self, *, report_id: int, user_id: int) -> Result[bool, ReportError]:
        async with self._acquire_pool().acquire() as conn:
            loaded = await self._load_for_caller(conn, report_id, user_id)
        if loaded is None:
            return Err(ReportNotFoundError(context={"report_id": report_id}))
        report, own, _ = loaded
        return Ok(can_act(report, own))

    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def available_actions(
        self, *, report_id: int, user_id: int
    ) -> Result[frozenset[ReportAction], ReportError]:
        async with self._acquire_pool().acquire() as conn:
            loaded = await self._load_for_caller(conn, report_id, user_id)
        if loaded is None:
            return Err(ReportNotFoundError(context={"report_id": report_id}))
        report, own, forward = loaded
        return Ok(available_actions(report, own, [n.id for n in forward]))

    # --- Workflow ---
    @async_returns_result(ReportError, exception_map=_REPORT_ERRORS)
    async def submit_action(
        self,
        *,
        report_id: int,
        user_id: int,
        payload: Mapping[str, Any] | ActionPayload,
    ) -> Result[VicReport, ReportError]:
        """Apply one workflow action atomically.

        The report row is locked for the whole transaction and the write is
        guarded by the version read under that lock, so of two racing
        actors exactly one succeeds and the other gets a ConflictError.
        """
        parsed = parse_payload(ActionPayload, payload)
        if isinstance(parsed, Err):
            return Err(parsed.error)
        request = parsed.value.to_request()

        async with self._acquire_pool().acquire() as conn:
            c: ConnectionProtocol = conn
            async with c.transaction():
                loaded = await self._load_for_caller(c, report_id, user_id, for_update=True)
                if loaded is None:
                    return Err(ReportNotFoundError(context={"report_id": report_id}))
                report, own, forward = loaded

                outcome = apply_action(
                    report,
                    request,
                    caller_level_ids=own,
                    eligible_forward_level_ids=[n.id for n in forward],
                    actor_user_id=user_id,
                    now=self._clock(),
                    allow_reforward=self._settings.allow_reforward,
                    level_names={n.id: n.display_name for n in forward},
                )
                if isinstance(outcome, Err):
                    return Err(outcome.error)
                updated = outcome.value

                problems = check_timeline(updated)
                if problems:
                    raise ReportError(
                        "Refusing to store an inconsistent escalation chain.",
                        context={"report_id": report_id, "problems": problems},
                    )
                if not await self._gateway.apply_transition(c, before=report, after=updated):
                    raise ReportConflictError(
                        context={"report_id": report_id, "version": report.version}
                    )
                stored = await self._gateway.fetch_report(c, report_id=report_id)
                if stored is None:
                    raise RuntimeError(f"Report {report_id} vanished during action.")

        await self._publish_action(report, stored, request.action, user_id)
        return Ok(stored)

    async def _publish_action(
        self, before: VicReport, after: VicReport, action: ReportAction, user_id: int
    ) -> None:
        await publish_report_event(
            ReportEvent(
                level_id=before.current_level_id,
                report_id=after.id,
                kind="report_action_taken",
                status=after.status.value,
                action=action.value,
                actor_user_id=user_id,
            )
        )
        if action is ReportAction.FORWARD:
            await publish_report_event(
                ReportEvent(
                    level_id=after.current_level_id,
                    report_id=after.id,
                    kind="report_forwarded",
                    status=after.status.value,
                    action=action.value,
                    actor_user_id=user_id,
                )
            )


__all__ = ["VicReportService"]

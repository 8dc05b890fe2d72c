"""VIC report state machine, escalation chain and authorization predicate.

Everything here is pure: functions take a ``VicReport`` and return a new
one (or an ``Err``) without touching storage. ``VicReportService`` wraps
them in a transaction.

Report status moves ``Pending -> {Approved, Rejected, Resolved}`` while
``forward`` only moves the pending timeline entry to another level. A
freshly submitted report has an empty timeline; the first action creates
the origin entry at the report's current level and then applies.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Collection, Mapping, cast

import structlog

from src.console.services.report_errors import (
    ReportAuthorizationError,
    ReportConflictError,
    ReportError,
    ReportErrorCode,
    ReportValidationError,
)
from src.infra.result import Err, Ok, Result
from src.models.vic_report_models import (
    EntryStatus,
    ReportAction,
    ReportStatus,
    TimelineEntry,
    VicReport,
)

LOGGER = structlog.get_logger(__name__)

# Report status reached by each closing action
_CLOSING_TRANSITIONS: dict[ReportAction, tuple[EntryStatus, ReportStatus]] = {
    ReportAction.APPROVE: (EntryStatus.APPROVED, ReportStatus.APPROVED),
    ReportAction.REJECT: (EntryStatus.REJECTED, ReportStatus.REJECTED),
    ReportAction.RESOLVE: (EntryStatus.RESOLVED, ReportStatus.RESOLVED),
}

# Report statuses after which no entry may stay Pending
_CLOSED_STATUSES = frozenset({ReportStatus.APPROVED, ReportStatus.REJECTED, ReportStatus.RESOLVED})


@dataclass(frozen=True, slots=True)
class ActionRequest:
    action: ReportAction
    notes: str
    forward_target_level_id: int | None = None
    expected_version: int | None = None


def can_act(report: VicReport, caller_level_ids: Collection[int]) -> bool:
    """Whether a caller assigned to ``caller_level_ids`` may act on ``report`` now."""
    if report.is_terminal:
        return False
    if report.timeline:
        pending = report.pending_entry()
        return pending is not None and pending.level_id in caller_level_ids
    # Origin case: only the level the report was submitted to
    return report.status is ReportStatus.PENDING and report.current_level_id in caller_level_ids


def available_actions(
    report: VicReport,
    caller_level_ids: Collection[int],
    eligible_forward_level_ids: Collection[int],
) -> frozenset[ReportAction]:
    if not can_act(report, caller_level_ids):
        return frozenset()
    actions = {ReportAction.APPROVE, ReportAction.REJECT}
    if eligible_forward_level_ids:
        actions.add(ReportAction.FORWARD)
    if not report.is_terminal:
        actions.add(ReportAction.RESOLVE)
    return frozenset(actions)


def _validate(
    report: VicReport,
    request: ActionRequest,
    *,
    caller_level_ids: Collection[int],
    eligible_forward_level_ids: Collection[int],
    allow_reforward: bool,
) -> ReportError | None:
    context = {"report_id": report.id, "action": request.action.value}

    if not request.notes or not request.notes.strip():
        return ReportValidationError(
            "Notes are required for every action.",
            error_code=ReportErrorCode.REPORT_VALIDATION_NOTES_REQUIRED,
            context=context,
        )
    if request.expected_version is not None and request.expected_version != report.version:
        return ReportConflictError(
            context={
                **context,
                "expected_version": request.expected_version,
                "actual_version": report.version,
            }
        )
    if report.is_terminal:
        return ReportValidationError(
            f"Report is already {report.status.value}; no further actions are allowed.",
            error_code=ReportErrorCode.REPORT_VALIDATION_TERMINAL,
            context={**context, "status": report.status.value},
        )

    target = request.forward_target_level_id
    if request.action is ReportAction.FORWARD and target is None:
        return ReportValidationError(
            "A forward target level is required to forward a report.",
            error_code=ReportErrorCode.REPORT_VALIDATION_FORWARD_TARGET_REQUIRED,
            context=context,
        )

    if not can_act(report, caller_level_ids):
        return ReportAuthorizationError(context=context)

    if request.action is ReportAction.FORWARD:
        if target not in eligible_forward_level_ids:
            return ReportValidationError(
                f"Level {target} is not an eligible forward target.",
                error_code=ReportErrorCode.REPORT_VALIDATION_FORWARD_TARGET_NOT_ELIGIBLE,
                context={**context, "target_level_id": target},
            )
        visited = {entry.level_id for entry in report.timeline}
        if target == report.current_level_id or (not allow_reforward and target in visited):
            return ReportValidationError(
                f"Report cannot be forwarded back to level {target}.",
                error_code=ReportErrorCode.REPORT_VALIDATION_FORWARD_LOOP,
                context={**context, "target_level_id": target},
            )

    return None


def _with_origin(report: VicReport) -> tuple[TimelineEntry, ...]:
    if report.timeline:
        return report.timeline
    origin = TimelineEntry(
        hierarchy_order=0,
        level_id=report.current_level_id,
        status=EntryStatus.PENDING,
        level_display_name=report.current_level_display_name,
    )
    return (origin,)


def apply_action(
    report: VicReport,
    request: ActionRequest,
    *,
    caller_level_ids: Collection[int],
    eligible_forward_level_ids: Collection[int],
    actor_user_id: int,
    now: datetime,
    allow_reforward: bool = True,
    level_names: Mapping[int, str] | None = None,
) -> Result[VicReport, ReportError]:
    """Validate ``request`` against ``report`` and return the updated report.

    Nothing is changed when validation fails. ``level_names`` supplies
    display names for a forward target; it is optional.
    """
    error = _validate(
        report,
        request,
        caller_level_ids=caller_level_ids,
        eligible_forward_level_ids=eligible_forward_level_ids,
        allow_reforward=allow_reforward,
    )
    if error is not None:
        LOGGER.info(
            "vic_report.action.rejected",
            report_id=report.id,
            action=request.action.value,
            error_code=error.error_code.value,
        )
        return Err(error)

    timeline = list(_with_origin(report))
    pending_index = next(
        i for i, entry in enumerate(timeline) if entry.status is EntryStatus.PENDING
    )
    pending = timeline[pending_index]
    notes = request.notes.strip()
    stamp = {"action_notes": notes, "action_taken_at": now, "action_taken_by": actor_user_id}

    if request.action is ReportAction.FORWARD:
        target = cast(int, request.forward_target_level_id)
        timeline[pending_index] = replace(
            pending, status=EntryStatus.FORWARDED, forwarded_to_level_id=target, **stamp
        )
        target_name = (level_names or {}).get(target, "")
        timeline.append(
            TimelineEntry(
                hierarchy_order=max(e.hierarchy_order for e in timeline) + 1,
                level_id=target,
                status=EntryStatus.PENDING,
                level_display_name=target_name,
            )
        )
        updated = replace(
            report,
            timeline=tuple(timeline),
            current_level_id=target,
            current_level_display_name=target_name,
            version=report.version + 1,
            updated_at=now,
        )
    else:
        entry_status, report_status = _CLOSING_TRANSITIONS[request.action]
        timeline[pending_index] = replace(pending, status=entry_status, **stamp)
        changes: dict[str, object] = {}
        if request.action is ReportAction.RESOLVE:
            changes = {"resolution_notes": notes, "resolved_at": now, "resolved_by": actor_user_id}
        updated = replace(
            report,
            timeline=tuple(timeline),
            status=report_status,
            version=report.version + 1,
            updated_at=now,
            **changes,
        )

    LOGGER.info(
        "vic_report.action.applied",
        report_id=report.id,
        action=request.action.value,
        from_level_id=pending.level_id,
        current_level_id=updated.current_level_id,
        status=updated.status.value,
        version=updated.version,
    )
    return Ok(updated)


def check_timeline(report: VicReport) -> list[str]:
    """List every chain invariant ``report`` violates; empty when consistent."""
    problems: list[str] = []
    timeline = report.timeline
    if not timeline:
        return problems

    orders = [e.hierarchy_order for e in timeline]
    if orders[0] != 0:
        problems.append(f"origin entry has hierarchy_order {orders[0]}, expected 0")
    for prev, cur in zip(orders, orders[1:]):
        if cur <= prev:
            problems.append(f"hierarchy_order not strictly increasing: {prev} then {cur}")

    pending = [e for e in timeline if e.status is EntryStatus.PENDING]
    if report.status in _CLOSED_STATUSES:
        if pending:
            problems.append(f"{report.status.value} report still has {len(pending)} pending entries")
    elif len(pending) != 1:
        problems.append(f"expected exactly one pending entry, found {len(pending)}")
    elif pending[0].level_id != report.current_level_id:
        problems.append(
            f"pending entry is at level {pending[0].level_id} "
            f"but current level is {report.current_level_id}"
        )

    for entry, following in zip(timeline, timeline[1:]):
        if entry.status is EntryStatus.FORWARDED and entry.forwarded_to_level_id != following.level_id:
            problems.append(
                f"entry {entry.hierarchy_order} forwarded to {entry.forwarded_to_level_id} "
                f"but next entry is at level {following.level_id}"
            )
    last = timeline[-1]
    if last.status is EntryStatus.FORWARDED:
        problems.append(f"last entry {last.hierarchy_order} is Forwarded with no successor")
    return problems


__all__ = [
    "ActionRequest",
    "apply_action",
    "available_actions",
    "can_act",
    "check_timeline",
]

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import pytest

from src.config.settings import ConsoleSettings
from src.console.services import vic_report_service as service_module
from src.console.services.report_errors import (
    ReportAuthorizationError,
    ReportConflictError,
    ReportErrorCode,
    ReportNotFoundError,
    ReportValidationError,
)
from src.console.services.vic_report_service import VicReportService
from src.db.gateway.vic_reports import ReportQuery
from src.infra.events.report_events import ReportEvent
from src.infra.result import Err, Ok
from src.models.hierarchy_models import HierarchyNode
from src.models.vic_report_models import (
    EntryStatus,
    ReportAction,
    ReportPriority,
    ReportStatistics,
    ReportStatus,
    ReportType,
    VicReport,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

# Assembly 42 -> Block 30 -> Mandal 20 -> Booth 10 -> Ward 15
NODES = {
    42: HierarchyNode(id=42, display_name="Assembly 42", level_name="Assembly"),
    30: HierarchyNode(id=30, display_name="Block 30", level_name="Block", parent_id=42),
    20: HierarchyNode(id=20, display_name="Mandal 20", level_name="Mandal", parent_id=30),
    10: HierarchyNode(id=10, display_name="Booth 10", level_name="Booth", parent_id=20),
    15: HierarchyNode(id=15, display_name="Ward 15", level_name="Ward", parent_id=10),
}
BOOTH_OFFICER = 501
MANDAL_OFFICER = 502
SUBMITTER = 900

# ---- Fakes (no DB required) ----


class _FakeTxn:
    def __init__(self, conn: "_FakeConnection") -> None:
        self._conn = conn

    async def __aenter__(self) -> None:
        self._conn.open_transactions += 1
        return None

    async def __aexit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        self._conn.open_transactions -= 1
        if exc_type is not None:
            self._conn.rollbacks += 1
        return False


class _FakeConnection:
    def __init__(self) -> None:
        self.open_transactions = 0
        self.rollbacks = 0

    def transaction(self) -> _FakeTxn:
        return _FakeTxn(self)


class _FakeAcquire:
    def __init__(self, conn: _FakeConnection) -> None:
        self._conn = conn

    async def __aenter__(self) -> _FakeConnection:
        return self._conn

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        return None


class _FakePool:
    def __init__(self) -> None:
        self.conn = _FakeConnection()

    def acquire(self) -> _FakeAcquire:
        return _FakeAcquire(self.conn)


class _FakeHierarchyGateway:
    def __init__(self) -> None:
        self.assignments: dict[int, list[int]] = {
            BOOTH_OFFICER: [10],
            MANDAL_OFFICER: [20],
        }

    async def fetch_node(self, conn: Any, *, node_id: int) -> HierarchyNode | None:
        return NODES.get(node_id)

    async def fetch_caller_level_ids(self, conn: Any, *, user_id: int) -> Sequence[int]:
        return list(self.assignments.get(user_id, []))

    async def fetch_ancestors(self, conn: Any, *, node_ids: Sequence[int]) -> Sequence[HierarchyNode]:
        found: list[HierarchyNode] = []
        for node_id in node_ids:
            parent = NODES[node_id].parent_id
            while parent is not None:
                if all(n.id != parent for n in found):
                    found.append(NODES[parent])
                parent = NODES[parent].parent_id
        return found


class _FakeReportGateway:
    def __init__(self) -> None:
        self.reports: dict[int, VicReport] = {}
        self.next_id = 1
        self.next_entry_id = 1
        self.lock_requests: list[int] = []
        self.race_on_write = False
        self.last_query: ReportQuery | None = None

    async def create_report(
        self, conn: Any, *, submitted_by: int, current_level_id: int, fields: Mapping[str, Any]
    ) -> int:
        report_id = self.next_id
        self.next_id += 1
        self.reports[report_id] = VicReport(
            id=report_id,
            status=ReportStatus.PENDING,
            priority=ReportPriority(fields["priority"]),
            report_type=ReportType(fields["report_type"]),
            submitted_by=submitted_by,
            submitted_at=NOW,
            current_level_id=current_level_id,
            current_level_display_name=NODES[current_level_id].display_name,
            report_content=fields["report_content"],
            voter_id_epic_no=fields["voter_id_epic_no"],
            voter_first_name=fields["voter_first_name"],
            voter_last_name=fields.get("voter_last_name"),
            part_no=fields["part_no"],
            voter_relative_name=fields["voter_relative_name"],
            attachments=tuple(fields.get("attachments") or ()),
        )
        return report_id

    async def fetch_report(
        self, conn: Any, *, report_id: int, for_update: bool = False
    ) -> VicReport | None:
        if for_update:
            assert conn.open_transactions > 0, "row lock outside a transaction"
            self.lock_requests.append(report_id)
        report = self.reports.get(report_id)
        if report is None or report.is_deleted:
            return None
        return report

    async def apply_transition(self, conn: Any, *, before: VicReport, after: VicReport) -> bool:
        stored = self.reports[before.id]
        if self.race_on_write:
            stored = replace(stored, version=stored.version + 1)
            self.reports[before.id] = stored
        if stored.version != before.version:
            return False
        timeline = []
        for entry in after.timeline:
            if entry.id is None:
                entry = replace(entry, id=self.next_entry_id)
                self.next_entry_id += 1
            timeline.append(entry)
        self.reports[before.id] = replace(after, timeline=tuple(timeline))
        return True

    async def update_report(
        self, conn: Any, *, report_id: int, expected_version: int, changes: Mapping[str, Any]
    ) -> bool:
        stored = self.reports[report_id]
        if stored.version != expected_version:
            return False
        self.reports[report_id] = replace(stored, version=stored.version + 1, **changes)
        return True

    async def soft_delete(self, conn: Any, *, report_id: int, expected_version: int) -> bool:
        stored = self.reports[report_id]
        if stored.version != expected_version:
            return False
        self.reports[report_id] = replace(stored, is_deleted=True, version=stored.version + 1)
        return True

    async def list_reports(
        self, conn: Any, *, query: ReportQuery
    ) -> tuple[Sequence[VicReport], int]:
        self.last_query = query
        items = [r for r in self.reports.values() if not r.is_deleted]
        if query.submitted_by is not None:
            items = [r for r in items if r.submitted_by == query.submitted_by]
        if query.assigned_level_ids is not None:
            items = [r for r in items if r.current_level_id in query.assigned_level_ids]
        if query.status is not None:
            items = [r for r in items if r.status is query.status]
        return items[query.offset : query.offset + query.limit], len(items)

    async def count_statistics(
        self, conn: Any, *, user_id: int, level_ids: Sequence[int]
    ) -> ReportStatistics:
        mine = [r for r in self.reports.values() if r.submitted_by == user_id]
        return ReportStatistics(len(mine), 0, len(mine), 0, 0, 0, 0)


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[ReportEvent]:
    published: list[ReportEvent] = []

    async def _record(event: ReportEvent) -> None:
        published.append(event)

    monkeypatch.setattr(service_module, "publish_report_event", _record)
    return published


@pytest.fixture
def gateway() -> _FakeReportGateway:
    return _FakeReportGateway()


@pytest.fixture
def pool() -> _FakePool:
    return _FakePool()


def _service(pool: _FakePool, gateway: _FakeReportGateway, **settings: Any) -> VicReportService:
    return VicReportService(
        pool=pool,  # type: ignore[arg-type]
        gateway=gateway,  # type: ignore[arg-type]
        hierarchy_gateway=_FakeHierarchyGateway(),  # type: ignore[arg-type]
        settings=ConsoleSettings(**settings),
        clock=lambda: NOW,
    )


@pytest.fixture
def service(pool: _FakePool, gateway: _FakeReportGateway) -> VicReportService:
    return _service(pool, gateway)


def _submission(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "report_type": "Complaint",
        "priority": "High",
        "report_content": "Name misspelt on the electoral roll",
        "voter_id_epic_no": "ABC1234567",
        "voter_first_name": "Lakshmi",
        "voter_last_name": "Rao",
        "part_no": "112",
        "voter_relative_name": "Venkat Rao",
    }
    payload.update(overrides)
    return payload


def _payload(
    action: str, *, version: int, notes: str = "ok", target: int | None = None
) -> dict[str, Any]:
    payload: dict[str, Any] = {"action": action, "notes": notes, "expected_version": version}
    if target is not None:
        payload["forward_target_level_id"] = target
    return payload


async def _submitted(service: VicReportService) -> VicReport:
    result = await service.submit_report(
        submitted_by=SUBMITTER, current_level_id=10, payload=_submission()
    )
    return result.unwrap()


# ---- submission ----


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_report_creates_pending_report_with_empty_timeline(
    service: VicReportService, events: list[ReportEvent]
) -> None:
    report = await _submitted(service)

    assert report.status is ReportStatus.PENDING
    assert report.priority is ReportPriority.HIGH
    assert report.timeline == ()
    assert report.version == 0
    assert [(e.kind, e.level_id) for e in events] == [("report_submitted", 10)]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_report_rejects_invalid_payload(service: VicReportService) -> None:
    result = await service.submit_report(
        submitted_by=SUBMITTER,
        current_level_id=10,
        payload=_submission(report_type="Rumour", report_content=""),
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportValidationError)
    assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD
    assert set(result.error.context["fields"]) >= {"report_type", "report_content"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_report_rejects_unknown_level(service: VicReportService) -> None:
    result = await service.submit_report(
        submitted_by=SUBMITTER, current_level_id=12345, payload=_submission()
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportValidationError)


# ---- submit_action ----


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_assigned_level_can_act_on_new_report(service: VicReportService) -> None:
    report = await _submitted(service)

    can_act = await service.can_act(report_id=report.id, user_id=BOOTH_OFFICER)
    actions = await service.available_actions(report_id=report.id, user_id=BOOTH_OFFICER)

    assert can_act.unwrap() is True
    assert actions.unwrap() == frozenset(ReportAction)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_approve_makes_report_terminal(
    service: VicReportService, gateway: _FakeReportGateway, events: list[ReportEvent]
) -> None:
    report = await _submitted(service)

    result = await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("approve", version=0, notes="looks correct"),
    )

    approved = result.unwrap()
    assert approved.status is ReportStatus.APPROVED
    assert approved.timeline[0].status is EntryStatus.APPROVED
    assert approved.timeline[0].action_taken_by == BOOTH_OFFICER
    assert approved.timeline[0].id is not None
    assert gateway.lock_requests == [report.id]
    for user in (BOOTH_OFFICER, MANDAL_OFFICER, SUBMITTER):
        assert (await service.can_act(report_id=report.id, user_id=user)).unwrap() is False
    assert events[-1].kind == "report_action_taken"
    assert events[-1].action == "approve"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_forward_moves_report_to_target_level(
    service: VicReportService, events: list[ReportEvent]
) -> None:
    report = await _submitted(service)

    forwarded = (
        await service.submit_action(
            report_id=report.id,
            user_id=BOOTH_OFFICER,
            payload=_payload("forward", version=0, notes="escalating", target=20),
        )
    ).unwrap()

    assert forwarded.current_level_id == 20
    assert forwarded.current_level_display_name == "Mandal 20"
    assert [e.status for e in forwarded.timeline] == [EntryStatus.FORWARDED, EntryStatus.PENDING]
    assert [e.hierarchy_order for e in forwarded.timeline] == [0, 1]
    assert (await service.can_act(report_id=report.id, user_id=MANDAL_OFFICER)).unwrap() is True
    assert (await service.can_act(report_id=report.id, user_id=BOOTH_OFFICER)).unwrap() is False
    assert [(e.kind, e.level_id) for e in events[-2:]] == [
        ("report_action_taken", 10),
        ("report_forwarded", 20),
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_forward_without_target_leaves_report_untouched(
    service: VicReportService, gateway: _FakeReportGateway
) -> None:
    report = await _submitted(service)

    result = await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up"),
    )

    assert isinstance(result, Err)
    assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_FORWARD_TARGET_REQUIRED
    assert gateway.reports[report.id] == report


@pytest.mark.unit
@pytest.mark.asyncio
async def test_forward_target_outside_caller_ancestors_is_rejected(
    service: VicReportService,
) -> None:
    report = await _submitted(service)

    result = await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=10),
    )

    assert isinstance(result, Err)
    assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_FORWARD_TARGET_NOT_ELIGIBLE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unassigned_user_is_not_authorized_after_chain_started(
    service: VicReportService,
) -> None:
    report = await _submitted(service)
    await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=20),
    )

    result = await service.submit_action(
        report_id=report.id, user_id=BOOTH_OFFICER, payload=_payload("approve", version=1)
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportAuthorizationError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stale_expected_version_is_conflict(service: VicReportService) -> None:
    report = await _submitted(service)
    await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=20),
    )

    result = await service.submit_action(
        report_id=report.id,
        user_id=MANDAL_OFFICER,
        payload=_payload("approve", version=0),
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportConflictError)


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["approve", "reject", "resolve"])
async def test_second_actor_at_forwarded_level_gets_conflict(
    service: VicReportService, gateway: _FakeReportGateway, action: str
) -> None:
    report = await _submitted(service)
    await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=20),
    )
    forwarded = gateway.reports[report.id]

    # A colleague at Booth 10 still holds the version it saw before the forward
    result = await service.submit_action(
        report_id=report.id, user_id=BOOTH_OFFICER, payload=_payload(action, version=0)
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportConflictError)
    assert result.error.context["actual_version"] == 1
    assert gateway.reports[report.id] == forwarded


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stale_action_after_approval_gets_conflict(
    service: VicReportService, gateway: _FakeReportGateway
) -> None:
    report = await _submitted(service)
    approved = (
        await service.submit_action(
            report_id=report.id, user_id=BOOTH_OFFICER, payload=_payload("approve", version=0)
        )
    ).unwrap()

    result = await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("reject", version=0, notes="duplicate"),
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportConflictError)
    assert gateway.reports[report.id].status is ReportStatus.APPROVED
    assert gateway.reports[report.id].version == approved.version


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", [SUBMITTER, MANDAL_OFFICER])
async def test_only_submitted_level_can_act_on_new_report(
    service: VicReportService, gateway: _FakeReportGateway, user_id: int
) -> None:
    report = await _submitted(service)

    assert (await service.can_act(report_id=report.id, user_id=user_id)).unwrap() is False
    result = await service.submit_action(
        report_id=report.id, user_id=user_id, payload=_payload("approve", version=0)
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportAuthorizationError)
    assert gateway.reports[report.id] == report


@pytest.mark.unit
@pytest.mark.asyncio
async def test_lost_write_race_is_conflict_and_rolls_back(
    service: VicReportService, gateway: _FakeReportGateway, pool: _FakePool
) -> None:
    report = await _submitted(service)
    gateway.race_on_write = True

    result = await service.submit_action(
        report_id=report.id, user_id=BOOTH_OFFICER, payload=_payload("approve", version=0)
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportConflictError)
    assert pool.conn.rollbacks == 1
    assert gateway.reports[report.id].timeline == ()


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("allow_reforward", [True, False])
async def test_reforward_to_visited_level_follows_setting(
    pool: _FakePool, gateway: _FakeReportGateway, allow_reforward: bool
) -> None:
    service = _service(pool, gateway, allow_reforward=allow_reforward)
    report = await _submitted(service)
    await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=20),
    )
    # Sitting at Ward 15 as well makes the already visited Booth 10 an ancestor
    service._hierarchy.assignments[MANDAL_OFFICER] = [20, 15]  # type: ignore[attr-defined]

    result = await service.submit_action(
        report_id=report.id,
        user_id=MANDAL_OFFICER,
        payload=_payload("forward", version=1, notes="back down", target=10),
    )

    if allow_reforward:
        assert result.unwrap().current_level_id == 10
    else:
        assert isinstance(result, Err)
        assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_FORWARD_LOOP


@pytest.mark.unit
@pytest.mark.asyncio
async def test_action_on_unknown_report_is_not_found(service: VicReportService) -> None:
    result = await service.submit_action(
        report_id=404, user_id=BOOTH_OFFICER, payload=_payload("approve", version=0)
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportNotFoundError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_action_is_invalid_payload(service: VicReportService) -> None:
    report = await _submitted(service)

    result = await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("escalate", version=0, notes="x"),
    )

    assert isinstance(result, Err)
    assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD


# ---- update / delete ----


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submitter_can_edit_before_any_action(
    service: VicReportService, events: list[ReportEvent]
) -> None:
    report = await _submitted(service)

    updated = (
        await service.update_report(
            report_id=report.id,
            editor_user_id=SUBMITTER,
            changes={"priority": "Critical", "part_no": "113"},
        )
    ).unwrap()

    assert updated.priority is ReportPriority.CRITICAL
    assert updated.part_no == "113"
    assert updated.version == report.version + 1
    assert events[-1].kind == "report_updated"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_only_submitter_can_edit(service: VicReportService) -> None:
    report = await _submitted(service)

    result = await service.update_report(
        report_id=report.id, editor_user_id=BOOTH_OFFICER, changes={"part_no": "1"}
    )

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportAuthorizationError)
    assert result.error.error_code is ReportErrorCode.REPORT_AUTH_NOT_SUBMITTER


@pytest.mark.unit
@pytest.mark.asyncio
async def test_edit_after_action_is_rejected(service: VicReportService) -> None:
    report = await _submitted(service)
    await service.submit_action(
        report_id=report.id,
        user_id=BOOTH_OFFICER,
        payload=_payload("forward", version=0, notes="up", target=20),
    )

    result = await service.update_report(
        report_id=report.id, editor_user_id=SUBMITTER, changes={"part_no": "1"}
    )

    assert isinstance(result, Err)
    assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_NOT_EDITABLE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_update_is_invalid(service: VicReportService) -> None:
    report = await _submitted(service)

    result = await service.update_report(report_id=report.id, editor_user_id=SUBMITTER, changes={})

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportValidationError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_soft_delete_hides_report(
    service: VicReportService, events: list[ReportEvent]
) -> None:
    report = await _submitted(service)

    assert (await service.delete_report(report_id=report.id, user_id=SUBMITTER)).unwrap() is True

    missing = await service.get_report(report.id)
    assert isinstance(missing, Err)
    assert isinstance(missing.error, ReportNotFoundError)
    assert events[-1].kind == "report_deleted"


# ---- listing ----


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_reports_pages_with_default_limit(
    service: VicReportService, gateway: _FakeReportGateway
) -> None:
    for _ in range(3):
        await _submitted(service)

    page = (await service.list_reports({"page": 2, "limit": 2})).unwrap()

    assert page.total == 3
    assert page.page == 2
    assert page.total_pages == 2
    assert len(page.items) == 1
    assert gateway.last_query is not None and gateway.last_query.offset == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_reports_rejects_limit_above_max(service: VicReportService) -> None:
    result = await service.list_reports({"limit": 1000})

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportValidationError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_reports_rejects_page_zero(service: VicReportService) -> None:
    result = await service.list_reports({"page": 0})

    assert isinstance(result, Err)
    assert isinstance(result.error, ReportValidationError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_my_and_assigned_reports_scope_queries(
    service: VicReportService, gateway: _FakeReportGateway
) -> None:
    await _submitted(service)

    mine = (await service.list_my_reports(SUBMITTER)).unwrap()
    assert mine.total == 1
    assert gateway.last_query is not None and gateway.last_query.submitted_by == SUBMITTER

    assigned = (await service.list_assigned_reports(BOOTH_OFFICER)).unwrap()
    assert assigned.total == 1
    assert gateway.last_query.assigned_level_ids == [10]

    nobody = (await service.list_assigned_reports(SUBMITTER)).unwrap()
    assert nobody.total == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_forward_levels_exclude_own_and_current_level(service: VicReportService) -> None:
    report = await _submitted(service)

    levels = (await service.get_forward_levels(BOOTH_OFFICER, report.id)).unwrap()

    assert [n.id for n in levels] == [20, 30, 42]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_statistics(service: VicReportService) -> None:
    await _submitted(service)

    stats = (await service.get_statistics(SUBMITTER)).unwrap()

    assert stats.my_reports_count == 1

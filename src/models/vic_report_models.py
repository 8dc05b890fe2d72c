from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

__all__ = [
    "EntryStatus",
    "ReportAction",
    "ReportPage",
    "ReportPriority",
    "ReportStatistics",
    "ReportStatus",
    "ReportType",
    "TimelineEntry",
    "VicReport",
    "TERMINAL_STATUSES",
]


class ReportStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In_Progress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RESOLVED = "Resolved"
    FORWARDED = "Forwarded"


class EntryStatus(str, Enum):
    PENDING = "Pending"
    FORWARDED = "Forwarded"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RESOLVED = "Resolved"


class ReportPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ReportType(str, Enum):
    COMPLAINT = "Complaint"
    FEEDBACK = "Feedback"
    ISSUE = "Issue"
    OTHER = "Other"


class ReportAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    FORWARD = "forward"
    RESOLVE = "resolve"


# No action is accepted once a report reaches one of these
TERMINAL_STATUSES: frozenset[ReportStatus] = frozenset(
    {ReportStatus.APPROVED, ReportStatus.RESOLVED}
)


@dataclass(slots=True, frozen=True)
class TimelineEntry:
    hierarchy_order: int
    level_id: int
    status: EntryStatus
    level_display_name: str = ""
    assigned_user_id: int | None = None
    action_notes: str | None = None
    action_taken_at: datetime | None = None
    action_taken_by: int | None = None
    forwarded_to_level_id: int | None = None
    id: int | None = None


@dataclass(slots=True, frozen=True)
class VicReport:
    id: int
    status: ReportStatus
    priority: ReportPriority
    report_type: ReportType
    submitted_by: int
    submitted_at: datetime
    current_level_id: int
    report_content: str
    voter_id_epic_no: str
    voter_first_name: str
    part_no: str
    voter_relative_name: str
    voter_last_name: str | None = None
    current_level_display_name: str = ""
    attachments: tuple[str, ...] = ()
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    resolved_by: int | None = None
    version: int = 0
    timeline: tuple[TimelineEntry, ...] = ()
    is_deleted: bool = False
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def pending_entry(self) -> TimelineEntry | None:
        for entry in self.timeline:
            if entry.status is EntryStatus.PENDING:
                return entry
        return None


@dataclass(slots=True, frozen=True)
class ReportPage:
    items: tuple[VicReport, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.total <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(slots=True, frozen=True)
class ReportStatistics:
    my_reports_count: int
    assigned_reports_count: int
    pending_count: int
    in_progress_count: int
    approved_count: int
    rejected_count: int
    resolved_count: int

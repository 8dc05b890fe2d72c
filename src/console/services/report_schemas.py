"""Request payloads accepted by ``VicReportService``."""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from src.console.services.report_errors import ReportErrorCode, ReportValidationError
from src.console.services.report_workflow import ActionRequest
from src.infra.result import Err, Ok, Result
from src.models.vic_report_models import ReportAction, ReportPriority, ReportStatus, ReportType

ModelT = TypeVar("ModelT", bound=BaseModel)


class ReportSubmission(BaseModel):
    """A new VIC report as filled in by the submitter."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    report_type: ReportType
    priority: ReportPriority = ReportPriority.MEDIUM
    report_content: str = Field(..., min_length=1, max_length=5000)
    voter_id_epic_no: str = Field(..., min_length=1, max_length=32)
    voter_first_name: str = Field(..., min_length=1, max_length=100)
    voter_last_name: str | None = Field(default=None, max_length=100)
    part_no: str = Field(..., min_length=1, max_length=16)
    voter_relative_name: str = Field(..., min_length=1, max_length=200)
    attachments: list[str] = Field(default_factory=list)


class ReportUpdate(BaseModel):
    """Partial edit of a report that nobody has acted on yet."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    report_type: ReportType | None = None
    priority: ReportPriority | None = None
    report_content: str | None = Field(default=None, min_length=1, max_length=5000)
    voter_id_epic_no: str | None = Field(default=None, min_length=1, max_length=32)
    voter_first_name: str | None = Field(default=None, min_length=1, max_length=100)
    voter_last_name: str | None = Field(default=None, max_length=100)
    part_no: str | None = Field(default=None, min_length=1, max_length=16)
    voter_relative_name: str | None = Field(default=None, min_length=1, max_length=200)
    attachments: list[str] | None = None

    @model_validator(mode="after")
    def _require_change(self) -> "ReportUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one field must be changed")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ReportFilters(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: ReportStatus | None = None
    priority: ReportPriority | None = None
    report_type: ReportType | None = None
    search: str | None = Field(default=None, max_length=200)
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)


class ActionPayload(BaseModel):
    """Raw action input; blank notes are rejected later by the workflow.

    ``expected_version`` is the report version the caller last saw.
    """

    model_config = ConfigDict(extra="forbid")

    action: ReportAction
    notes: str = ""
    forward_target_level_id: int | None = None
    expected_version: int = Field(..., ge=0)

    def to_request(self) -> ActionRequest:
        return ActionRequest(
            action=self.action,
            notes=self.notes,
            forward_target_level_id=self.forward_target_level_id,
            expected_version=self.expected_version,
        )


def parse_payload(
    model: type[ModelT], data: Mapping[str, Any] | ModelT
) -> Result[ModelT, ReportValidationError]:
    """Validate ``data`` into ``model``; pydantic errors become ``ReportValidationError``."""
    if isinstance(data, model):
        return Ok(data)
    try:
        return Ok(model.model_validate(data))
    except ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        return Err(
            ReportValidationError(
                f"Invalid {model.__name__}: {', '.join(fields) or 'payload'}",
                error_code=ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD,
                context={"fields": fields},
                cause=exc,
            )
        )


__all__ = [
    "ActionPayload",
    "ReportFilters",
    "ReportSubmission",
    "ReportUpdate",
    "parse_payload",
]

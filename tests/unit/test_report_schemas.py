from __future__ import annotations

import pytest

from src.console.services.report_errors import ReportErrorCode, ReportValidationError
from src.console.services.report_schemas import (
    ActionPayload,
    ReportFilters,
    ReportSubmission,
    ReportUpdate,
    parse_payload,
)
from src.infra.result import Err, Ok
from src.models.vic_report_models import ReportAction, ReportPriority, ReportStatus


def _submission(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "report_type": "Issue",
        "report_content": "  Polling booth moved without notice  ",
        "voter_id_epic_no": "KLM7654321",
        "voter_first_name": "Farah",
        "part_no": "27",
        "voter_relative_name": "Imran",
    }
    payload.update(overrides)
    return payload


@pytest.mark.unit
class TestReportSubmission:
    def test_defaults_and_whitespace_stripping(self) -> None:
        submission = parse_payload(ReportSubmission, _submission()).unwrap()

        assert submission.priority is ReportPriority.MEDIUM
        assert submission.report_content == "Polling booth moved without notice"
        assert submission.attachments == []
        assert submission.voter_last_name is None

    def test_unknown_fields_are_rejected(self) -> None:
        result = parse_payload(ReportSubmission, _submission(status="Approved"))

        assert isinstance(result, Err)
        assert result.error.context["fields"] == ["status"]

    @pytest.mark.parametrize("field", ["report_content", "voter_first_name", "part_no"])
    def test_blank_required_text_is_rejected(self, field: str) -> None:
        result = parse_payload(ReportSubmission, _submission(**{field: "   "}))

        assert isinstance(result, Err)
        assert isinstance(result.error, ReportValidationError)
        assert result.error.error_code is ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD
        assert field in result.error.context["fields"]

    def test_model_instance_passes_through(self) -> None:
        submission = ReportSubmission.model_validate(_submission())

        result = parse_payload(ReportSubmission, submission)

        assert isinstance(result, Ok)
        assert result.value is submission


@pytest.mark.unit
class TestReportUpdate:
    def test_changes_only_contains_set_fields(self) -> None:
        update = parse_payload(ReportUpdate, {"priority": "Low", "voter_last_name": None}).unwrap()

        assert update.changes() == {"priority": ReportPriority.LOW, "voter_last_name": None}

    def test_empty_update_is_rejected(self) -> None:
        assert isinstance(parse_payload(ReportUpdate, {}), Err)


@pytest.mark.unit
class TestFiltersAndActions:
    def test_filters_defaults(self) -> None:
        filters = parse_payload(ReportFilters, {"status": "Pending"}).unwrap()

        assert filters.status is ReportStatus.PENDING
        assert filters.page == 1
        assert filters.limit is None

    @pytest.mark.parametrize("data", [{"page": 0}, {"limit": 0}, {"status": "Closed"}])
    def test_invalid_filters(self, data: dict[str, object]) -> None:
        assert isinstance(parse_payload(ReportFilters, data), Err)

    def test_action_payload_to_request(self) -> None:
        payload = parse_payload(
            ActionPayload,
            {
                "action": "forward",
                "notes": "needs block review",
                "forward_target_level_id": 30,
                "expected_version": 2,
            },
        ).unwrap()

        request = payload.to_request()

        assert request.action is ReportAction.FORWARD
        assert request.forward_target_level_id == 30
        assert request.expected_version == 2

    def test_action_payload_requires_expected_version(self) -> None:
        result = parse_payload(ActionPayload, {"action": "approve", "notes": "ok"})

        assert isinstance(result, Err)
        assert result.error.context["fields"] == ["expected_version"]

    def test_negative_expected_version_is_rejected(self) -> None:
        result = parse_payload(
            ActionPayload, {"action": "approve", "notes": "ok", "expected_version": -1}
        )
        assert isinstance(result, Err)

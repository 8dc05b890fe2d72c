"""VIC report workflow error types."""

from __future__ import annotations

from enum import Enum
from typing import Any

from src.infra.result import (
    AuthorizationError,
    ConflictError,
    Error,
    NotFoundError,
    ValidationError,
)


class ReportErrorCode(str, Enum):
    """Error codes for report operations.

    Naming: REPORT_<CATEGORY>_<DETAIL>
    - VALIDATION: rejected input, nothing was changed
    - AUTH: caller may not act on the report
    - CONFLICT: the report changed underneath the caller
    - NOT_FOUND: unknown report id
    """

    REPORT_VALIDATION_NOTES_REQUIRED = "REPORT_VALIDATION_NOTES_REQUIRED"
    REPORT_VALIDATION_TERMINAL = "REPORT_VALIDATION_TERMINAL"
    REPORT_VALIDATION_FORWARD_TARGET_REQUIRED = "REPORT_VALIDATION_FORWARD_TARGET_REQUIRED"
    REPORT_VALIDATION_FORWARD_TARGET_NOT_ELIGIBLE = "REPORT_VALIDATION_FORWARD_TARGET_NOT_ELIGIBLE"
    REPORT_VALIDATION_FORWARD_LOOP = "REPORT_VALIDATION_FORWARD_LOOP"
    REPORT_VALIDATION_INVALID_ACTION = "REPORT_VALIDATION_INVALID_ACTION"
    REPORT_VALIDATION_INVALID_PAYLOAD = "REPORT_VALIDATION_INVALID_PAYLOAD"
    REPORT_VALIDATION_NOT_EDITABLE = "REPORT_VALIDATION_NOT_EDITABLE"

    REPORT_AUTH_CANNOT_ACT = "REPORT_AUTH_CANNOT_ACT"
    REPORT_AUTH_NOT_SUBMITTER = "REPORT_AUTH_NOT_SUBMITTER"

    REPORT_CONFLICT_STALE_VERSION = "REPORT_CONFLICT_STALE_VERSION"

    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"

    REPORT_UNKNOWN_ERROR = "REPORT_UNKNOWN_ERROR"


class ReportError(Error):
    """Base error for report operations."""

    error_code: ReportErrorCode = ReportErrorCode.REPORT_UNKNOWN_ERROR

    def __init__(
        self, message: str, *, error_code: ReportErrorCode | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["error_code"] = self.error_code.value
        return payload


class ReportValidationError(ReportError, ValidationError):
    error_code = ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD

    def __init__(
        self,
        message: str,
        *,
        error_code: ReportErrorCode = ReportErrorCode.REPORT_VALIDATION_INVALID_PAYLOAD,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class ReportAuthorizationError(ReportError, AuthorizationError):
    error_code = ReportErrorCode.REPORT_AUTH_CANNOT_ACT

    def __init__(
        self,
        message: str = "You are not allowed to act on this report.",
        *,
        error_code: ReportErrorCode = ReportErrorCode.REPORT_AUTH_CANNOT_ACT,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class ReportConflictError(ReportError, ConflictError):
    """The report version moved on; re-fetch and decide again."""

    error_code = ReportErrorCode.REPORT_CONFLICT_STALE_VERSION

    def __init__(
        self, message: str = "The report was modified by someone else.", **kwargs: Any
    ) -> None:
        super().__init__(
            message, error_code=ReportErrorCode.REPORT_CONFLICT_STALE_VERSION, **kwargs
        )


class ReportNotFoundError(ReportError, NotFoundError):
    error_code = ReportErrorCode.REPORT_NOT_FOUND

    def __init__(self, message: str = "Report not found.", **kwargs: Any) -> None:
        super().__init__(message, error_code=ReportErrorCode.REPORT_NOT_FOUND, **kwargs)


__all__ = [
    "ReportErrorCode",
    "ReportError",
    "ReportValidationError",
    "ReportAuthorizationError",
    "ReportConflictError",
    "ReportNotFoundError",
]

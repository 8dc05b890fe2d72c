"""Hierarchy discovery error types."""

from __future__ import annotations

from enum import Enum
from typing import Any

from src.infra.result import Error, NotFoundError, TransientFetchError, ValidationError


class HierarchyErrorCode(str, Enum):
    HIERARCHY_NODE_NOT_FOUND = "HIERARCHY_NODE_NOT_FOUND"
    HIERARCHY_FETCH_FAILED = "HIERARCHY_FETCH_FAILED"
    HIERARCHY_INVALID_SELECTION = "HIERARCHY_INVALID_SELECTION"
    HIERARCHY_NOTHING_TO_RETRY = "HIERARCHY_NOTHING_TO_RETRY"
    HIERARCHY_UNKNOWN_ERROR = "HIERARCHY_UNKNOWN_ERROR"


class HierarchyError(Error):
    error_code: HierarchyErrorCode = HierarchyErrorCode.HIERARCHY_UNKNOWN_ERROR

    def __init__(
        self, message: str, *, error_code: HierarchyErrorCode | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        if error_code is not None:
            self.error_code = error_code


class NodeNotFoundError(HierarchyError, NotFoundError):
    error_code = HierarchyErrorCode.HIERARCHY_NODE_NOT_FOUND

    def __init__(self, message: str = "Hierarchy node not found.", **kwargs: Any) -> None:
        super().__init__(message, error_code=HierarchyErrorCode.HIERARCHY_NODE_NOT_FOUND, **kwargs)


class HierarchyFetchError(HierarchyError, TransientFetchError):
    """Children could not be loaded; already discovered levels stay usable."""

    error_code = HierarchyErrorCode.HIERARCHY_FETCH_FAILED

    def __init__(self, message: str = "Failed to load hierarchy level.", **kwargs: Any) -> None:
        super().__init__(message, error_code=HierarchyErrorCode.HIERARCHY_FETCH_FAILED, **kwargs)


class InvalidSelectionError(HierarchyError, ValidationError):
    error_code = HierarchyErrorCode.HIERARCHY_INVALID_SELECTION

    def __init__(
        self,
        message: str,
        *,
        error_code: HierarchyErrorCode = HierarchyErrorCode.HIERARCHY_INVALID_SELECTION,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


__all__ = [
    "HierarchyErrorCode",
    "HierarchyError",
    "NodeNotFoundError",
    "HierarchyFetchError",
    "InvalidSelectionError",
]

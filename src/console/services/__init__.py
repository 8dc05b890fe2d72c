"""Service layer for hierarchy discovery and the VIC report workflow.

Submodules are imported as attributes so they are visible on the package.
"""

from . import hierarchy_explorer as hierarchy_explorer  # noqa: F401
from . import hierarchy_service as hierarchy_service  # noqa: F401
from . import report_workflow as report_workflow  # noqa: F401
from . import vic_report_service as vic_report_service  # noqa: F401

__all__ = [
    "hierarchy_explorer",
    "hierarchy_service",
    "report_workflow",
    "vic_report_service",
]

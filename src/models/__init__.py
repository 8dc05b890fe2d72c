"""Frozen dataclass models shared by gateways and services."""

from __future__ import annotations

from . import hierarchy_models, vic_report_models

__all__ = ["hierarchy_models", "vic_report_models"]
